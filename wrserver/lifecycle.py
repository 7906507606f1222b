"""Server lifecycle: start the uvicorn listener, shut it down on a signal.

``LifecycleController.run()`` drives two tasks on one event loop:

  serve task     — ``uvicorn.Server.serve()`` for the wrserver app
  shutdown wait  — an ``asyncio.Event`` fired by SIGINT / SIGTERM / SIGQUIT
                   or by ``request_shutdown()``

On the first termination request uvicorn is told to exit: it stops accepting,
closes idle keep-alive connections and lets in-flight requests finish. If they
have not finished within ``shutdown_timeout`` seconds the remaining request
tasks are cancelled and the exit code is 1. The engine is closed on every
exit path, including a forced one where uvicorn skips the lifespan shutdown.

uvicorn installs its own signal handlers by default; this controller replaces
them so that the shutdown deadline and the exit code are decided here.
"""

from __future__ import annotations

import asyncio
import contextlib
import signal
from typing import Any, Iterator, Optional

import uvicorn

from wrserver.constants import SHUTDOWN_TIMEOUT_S
from wrserver.main import close_engine
from wrserver.utils.logger import get_logger

logger = get_logger(__name__)

# ─── uvicorn defaults ─────────────────────────────────────────────────────────

UVICORN_LIMIT_CONCURRENCY: int = 100
UVICORN_BACKLOG: int = 2048
UVICORN_TIMEOUT_KEEP_ALIVE: int = 5

TERMINATION_SIGNALS: tuple[signal.Signals, ...] = tuple(
    getattr(signal, name) for name in ("SIGINT", "SIGTERM", "SIGQUIT") if hasattr(signal, name)
)


_LOOP_HANDLER = object()


class _ManagedServer(uvicorn.Server):
    """uvicorn.Server that leaves signal handling to LifecycleController."""

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


# ─── Controller ───────────────────────────────────────────────────────────────


class LifecycleController:
    """Owns one run of the HTTP listener, from bind to shutdown."""

    def __init__(
        self,
        app: Any,
        host: str,
        port: int,
        shutdown_timeout: float = SHUTDOWN_TIMEOUT_S,
    ) -> None:
        self.app = app
        self.host = host
        self.port = port
        self.shutdown_timeout = shutdown_timeout
        self.server = _ManagedServer(
            uvicorn.Config(
                app,
                host=host,
                port=port,
                lifespan="on",
                log_config=None,
                access_log=False,
                limit_concurrency=UVICORN_LIMIT_CONCURRENCY,
                backlog=UVICORN_BACKLOG,
                timeout_keep_alive=UVICORN_TIMEOUT_KEEP_ALIVE,
                timeout_graceful_shutdown=None,
            )
        )
        self.done = asyncio.Event()
        self.exit_code: Optional[int] = None
        self._shutdown = asyncio.Event()

    # ── Public API ────────────────────────────────────────────────────────────

    def request_shutdown(self, reason: str = "requested") -> None:
        """Fire the termination event. Only the first call has any effect."""
        if self._shutdown.is_set():
            logger.info("Shutdown already in progress — ignoring", reason=reason)
            return
        logger.info("Shutdown requested", reason=reason)
        self._shutdown.set()

    async def wait_done(self) -> Optional[int]:
        await self.done.wait()
        return self.exit_code

    async def run(self) -> int:
        """Serve until a termination signal arrives or the server fails.

        Returns:
            0 after a graceful shutdown, 1 on bind failure, serve failure or a
            missed shutdown deadline.
        """
        loop = asyncio.get_running_loop()
        installed = self._subscribe_signals(loop)
        serve_task = asyncio.create_task(self._serve(), name="wrserver-serve")
        shutdown_wait = asyncio.create_task(self._shutdown.wait(), name="wrserver-shutdown-wait")
        logger.info("Starting wrserver", host=self.host, port=self.port)

        exit_code = 1
        try:
            await asyncio.wait({serve_task, shutdown_wait}, return_when=asyncio.FIRST_COMPLETED)
            if serve_task.done():
                exit_code = serve_task.result()
                if exit_code != 0 or not self._shutdown.is_set():
                    logger.error("Server stopped without a shutdown request", exit_code=exit_code)
                    exit_code = 1
            else:
                exit_code = await self._drain(serve_task)
        finally:
            shutdown_wait.cancel()
            self._unsubscribe_signals(loop, installed)
            await close_engine(self.app)
            self.exit_code = exit_code
            self.done.set()

        if exit_code == 0:
            logger.info("Shutdown complete")
        return exit_code

    # ── Serving ───────────────────────────────────────────────────────────────

    async def _serve(self) -> int:
        try:
            await self.server.serve()
        except (OSError, SystemExit) as exc:
            # uvicorn logs a bind failure and calls sys.exit(1)
            logger.error("HTTP server failed", error=str(exc), error_type=type(exc).__name__)
            return 1
        if not self.server.started:
            logger.error("HTTP server failed to start", host=self.host, port=self.port)
            return 1
        return 0

    async def _drain(self, serve_task: "asyncio.Task[int]") -> int:
        logger.info("Shutting down — waiting for in-flight requests", timeout_s=self.shutdown_timeout)
        self.server.should_exit = True
        try:
            return await asyncio.wait_for(asyncio.shield(serve_task), self.shutdown_timeout)
        except asyncio.TimeoutError:
            pass

        pending = list(self.server.server_state.tasks)
        logger.error(
            "Graceful shutdown timed out — closing remaining connections",
            timeout_s=self.shutdown_timeout,
            pending_requests=len(pending),
        )
        self.server.force_exit = True
        for task in pending:
            task.cancel()
        for connection in list(self.server.server_state.connections):
            transport = getattr(connection, "transport", None)
            if transport is not None:
                transport.close()
        try:
            await asyncio.wait_for(serve_task, self.shutdown_timeout)
        except (asyncio.TimeoutError, asyncio.CancelledError):
            serve_task.cancel()
        return 1

    # ── Signals ───────────────────────────────────────────────────────────────

    def _on_signal(self, signum: int) -> None:
        self.request_shutdown(reason=signal.Signals(signum).name)

    def _subscribe_signals(self, loop: asyncio.AbstractEventLoop) -> list[tuple[signal.Signals, Any]]:
        installed: list[tuple[signal.Signals, Any]] = []
        for sig in TERMINATION_SIGNALS:
            try:
                loop.add_signal_handler(sig, self._on_signal, int(sig))
                installed.append((sig, _LOOP_HANDLER))
            except NotImplementedError:
                # Windows event loops have no add_signal_handler
                previous = signal.signal(
                    sig, lambda signum, frame: loop.call_soon_threadsafe(self._on_signal, signum)
                )
                installed.append((sig, previous))
            except (RuntimeError, ValueError):
                # not on the main thread (e.g. under a test runner); request_shutdown() still works
                logger.debug("Signal subscription unavailable", signal=sig.name)
        return installed

    def _unsubscribe_signals(
        self, loop: asyncio.AbstractEventLoop, installed: list[tuple[signal.Signals, Any]]
    ) -> None:
        for sig, previous in installed:
            if previous is _LOOP_HANDLER:
                loop.remove_signal_handler(sig)
            else:
                signal.signal(sig, previous)
