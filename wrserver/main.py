"""wrserver FastAPI application factory + lifespan.

Routes:
  /status          — engine statistics, always 200          (status.py)
  /v1/uris:search  — POST-only threat lookup, JSON/protobuf  (lookup.py)
  /r               — redirector / warning interstitial       (redirect.py)
  /public/*        — static assets, prefix stripped          (assets.py)

Anything else is a 404. Client/protocol errors and server errors are answered
with plain-text bodies carrying the reason.

The engine and asset store are built by the caller (``wrserver.run``) before
the app exists, so a failing engine never results in a half-started server.
The lifespan only closes the engine once the listener has drained; a forced
stop closes it from ``wrserver.lifecycle`` through ``close_engine``.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from wrserver import __version__
from wrserver.assets import AssetStore, DirectoryAssets
from wrserver.assets import router as assets_router
from wrserver.constants import FIND_THREAT_PATH, REDIRECT_PATH, STATUS_PATH
from wrserver.engine.models import EngineError, ThreatEngine
from wrserver.errors import ClientDisconnectedError, ClientProtocolError, WRServerError
from wrserver.lookup import serve_lookups
from wrserver.middleware import RequestContextMiddleware
from wrserver.redirect import InterstitialRenderer, serve_redirector
from wrserver.status import serve_status
from wrserver.utils.logger import get_logger

logger = get_logger(__name__)


# ─── Lifespan ─────────────────────────────────────────────────────────────────


async def close_engine(app: FastAPI) -> None:
    """Close ``app.state.engine`` once. Later calls do nothing.

    Called by the lifespan on a normal stop and by ``LifecycleController``
    after a forced stop, where uvicorn skips the lifespan shutdown.
    """
    if app.state.engine_closed:
        return
    app.state.engine_closed = True
    logger.info("Closing threat engine")
    try:
        await app.state.engine.close()
    except Exception as exc:  # noqa: BLE001
        logger.error("Threat engine close failed", error=str(exc), error_type=type(exc).__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    logger.info("wrserver ready", version=__version__)
    yield
    await close_engine(app)


# ─── Application Factory ──────────────────────────────────────────────────────


def create_app(engine: ThreatEngine, assets: Optional[AssetStore] = None) -> FastAPI:
    """Build the wrserver application around an engine and an asset store.

    Args:
        engine: Threat engine shared read-only by all handlers.
        assets: Template/static store; defaults to the packaged ``static/`` dir.

    Returns:
        Configured FastAPI application. Nothing is started.

    Raises:
        AssetStoreError: default asset directory is missing.
    """
    if assets is None:
        assets = DirectoryAssets()

    application = FastAPI(
        title="wrserver",
        description="Local Web Risk lookup proxy",
        version=__version__,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    application.state.engine = engine
    application.state.assets = assets
    application.state.renderer = InterstitialRenderer(assets)
    application.state.engine_closed = False

    application.add_middleware(RequestContextMiddleware)

    # No method filter: these routes see every method. The lookup handler
    # rejects non-POST itself with 400.
    application.add_route(STATUS_PATH, serve_status)
    application.add_route(FIND_THREAT_PATH, serve_lookups)
    application.add_route(REDIRECT_PATH, serve_redirector)
    application.include_router(assets_router)

    # ── Exception handlers ────────────────────────────────────────────────────

    @application.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> PlainTextResponse:
        return PlainTextResponse(str(exc.detail), status_code=exc.status_code)

    @application.exception_handler(WRServerError)
    async def wrserver_error_handler(request: Request, exc: WRServerError) -> PlainTextResponse:
        if isinstance(exc, ClientProtocolError):
            logger.info(
                "Client error",
                status_code=exc.status_code,
                error=str(exc),
                path=request.url.path,
            )
        elif isinstance(exc, ClientDisconnectedError):
            logger.info("Client disconnected", path=request.url.path)
        else:
            logger.error(
                "Engine error" if isinstance(exc, EngineError) else "Server error",
                status_code=exc.status_code,
                error=str(exc),
                error_type=type(exc).__name__,
                path=request.url.path,
            )
        return PlainTextResponse(str(exc), status_code=exc.status_code)

    @application.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> PlainTextResponse:
        logger.error(
            "Unhandled exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
        )
        return PlainTextResponse("Internal server error", status_code=500)

    return application
