"""Static asset storage for the interstitial pages.

``AssetStore`` is the read-only capability the redirector (templates) and the
``/public/`` route (raw files) consume. ``DirectoryAssets`` serves a directory
tree — by default the ``static/`` directory shipped inside the package:

    static/
      interstitial.html         shared base page
      malware.html              threat fragments (extend interstitial.html)
      unwanted.html
      social_engineering.html
      generic.html              fallback for unclassified threats
      interstitial.css          stylesheet linked as /public/interstitial.css

Paths are always relative to the store root; a leading ``/`` is ignored and
any path resolving outside the root is treated as missing.
"""

from __future__ import annotations

import pathlib
from typing import Optional, Protocol, runtime_checkable

from fastapi import APIRouter, Request, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from wrserver.constants import PUBLIC_PREFIX
from wrserver.errors import WRServerError
from wrserver.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_ASSET_ROOT = pathlib.Path(__file__).parent / "static"

_MEDIA_TYPES: dict[str, str] = {
    ".css": "text/css; charset=utf-8",
    ".html": "text/html; charset=utf-8",
    ".js": "text/javascript; charset=utf-8",
    ".png": "image/png",
    ".svg": "image/svg+xml",
    ".ico": "image/x-icon",
}


class AssetNotFoundError(WRServerError):
    status_code = 404


class AssetStoreError(WRServerError):
    """The asset store cannot be initialised."""


@runtime_checkable
class AssetStore(Protocol):
    def open(self, path: str) -> bytes:
        """Return the content of ``path``. Raises AssetNotFoundError when missing."""
        ...


class DirectoryAssets:
    """AssetStore reading files below ``root``.

    Raises:
        AssetStoreError: ``root`` is not an existing directory.
    """

    def __init__(self, root: Optional[pathlib.Path | str] = None) -> None:
        self.root = pathlib.Path(root if root is not None else DEFAULT_ASSET_ROOT).resolve()
        if not self.root.is_dir():
            raise AssetStoreError(f"asset directory not found: {self.root}")

    def _resolve(self, path: str) -> pathlib.Path:
        relative = path.lstrip("/")
        if not relative:
            raise AssetNotFoundError(path)
        candidate = (self.root / relative).resolve()
        if candidate != self.root and self.root not in candidate.parents:
            raise AssetNotFoundError(path)
        if not candidate.is_file():
            raise AssetNotFoundError(path)
        return candidate

    def open(self, path: str) -> bytes:
        candidate = self._resolve(path)
        try:
            return candidate.read_bytes()
        except OSError as exc:
            raise AssetNotFoundError(path) from exc


def media_type_for(path: str) -> str:
    return _MEDIA_TYPES.get(pathlib.PurePosixPath(path).suffix.lower(), "application/octet-stream")


# ─── /public/ route ───────────────────────────────────────────────────────────

router = APIRouter(tags=["assets"])


@router.api_route(PUBLIC_PREFIX + "{path:path}", methods=["GET", "HEAD"], include_in_schema=False)
async def serve_public(request: Request, path: str) -> Response:
    """Serve ``/public/<path>`` as the raw asset ``<path>`` (prefix stripped)."""
    assets: AssetStore = request.app.state.assets
    try:
        content = assets.open(path)
    except AssetNotFoundError:
        logger.debug("Asset not found", path=path)
        raise StarletteHTTPException(status_code=404, detail="404 page not found")
    return Response(content=content, media_type=media_type_for(path))
