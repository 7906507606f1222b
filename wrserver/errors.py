"""Exception hierarchy for wrserver.

Per-request failures are raised as subclasses of ``WRServerError`` and turned
into HTTP responses by the handlers or by the app-level exception handler in
``wrserver.main``. They never reach the listener task.

  ClientProtocolError (400) — the client sent something we cannot serve:
      UnsupportedFormatError, MalformedBodyError, InvalidMethodError,
      InvalidRedirectURLError
  EncodeError (500)         — a response message could not be serialized
  RenderError (500)         — an interstitial template failed to load/render

``EngineError`` lives in ``wrserver.engine.models`` and the asset errors in
``wrserver.assets``; both subclass ``WRServerError`` as well.
"""

from __future__ import annotations


class WRServerError(Exception):
    """Base class for all wrserver errors."""

    status_code: int = 500


# ─── Client protocol errors (4xx) ─────────────────────────────────────────────


class ClientProtocolError(WRServerError):
    """The request cannot be served as sent. Answered with a plain-text 400."""

    status_code = 400


class UnsupportedFormatError(ClientProtocolError):
    """Neither ``alt`` nor ``Content-Type`` names a known wire format."""

    def __init__(self, selector: str = "") -> None:
        super().__init__("invalid interchange format")
        self.selector = selector


class MalformedBodyError(ClientProtocolError):
    """The body does not parse as the declared content type."""


class InvalidMethodError(ClientProtocolError):
    def __init__(self, method: str) -> None:
        super().__init__("invalid method")
        self.method = method


class InvalidRedirectURLError(ClientProtocolError):
    """The ``url`` parameter of the redirector is not a usable URL."""


# ─── Server errors (5xx) ──────────────────────────────────────────────────────


class EncodeError(WRServerError):
    """Response serialization failed; nothing has been written to the client."""


class RenderError(WRServerError):
    """An interstitial template could not be loaded or rendered."""


class ClientDisconnectedError(WRServerError):
    """The client went away while its lookup was in flight; the lookup was cancelled."""

    # Non-standard "client closed request"; only ever seen in logs.
    status_code = 499
