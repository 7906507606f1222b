"""Redirector endpoint: ``/r?url=<target>``.

Safe targets are answered with a 302 to the target; unsafe targets get a
warning interstitial instead:

    $ curl -i localhost:8080/r?url=http://google.com
    HTTP/1.1 302 Found
    location: http://google.com

    $ curl -i localhost:8080/r?url=http://bad1url.org
    HTTP/1.1 200 OK
    content-type: text/html; charset=utf-8
    ...warning interstitial...

Decision policy (``decide()``):
  - no matches                           → Safe
  - first match, in engine order, whose
    threat type has a template           → Unsafe (that match picks the page)
  - matches, none with a template        → Unclassified (generic warning page)

Pages are Jinja2 templates read from the asset store: each threat fragment
``{% extends "interstitial.html" %}``, so rendering loads the fragment first
and the shared base second and produces one document.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union
from urllib.parse import SplitResult, urlsplit

import jinja2
from fastapi import Request, Response
from fastapi.responses import HTMLResponse, RedirectResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from wrserver.assets import AssetNotFoundError, AssetStore
from wrserver.engine.models import ThreatMatch, ThreatType
from wrserver.errors import InvalidRedirectURLError, RenderError
from wrserver.lookup import call_engine
from wrserver.utils.logger import get_logger

logger = get_logger(__name__)

# ─── Templates ────────────────────────────────────────────────────────────────

BASE_TEMPLATE = "interstitial.html"
GENERIC_TEMPLATE = "generic.html"

INTERSTITIAL_TEMPLATES: dict[ThreatType, str] = {
    ThreatType.MALWARE: "malware.html",
    ThreatType.UNWANTED_SOFTWARE: "unwanted.html",
    ThreatType.SOCIAL_ENGINEERING: "social_engineering.html",
    ThreatType.SOCIAL_ENGINEERING_EXTENDED_COVERAGE: "social_engineering.html",
}


# ─── Decisions ────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Safe:
    target: str


@dataclass(frozen=True)
class Unsafe:
    match: ThreatMatch
    target: SplitResult
    template: str

    @property
    def threat_type(self) -> ThreatType:
        return self.match.threat_type


@dataclass(frozen=True)
class Unclassified:
    """Threat matches exist but none maps to a known interstitial."""

    matches: tuple[ThreatMatch, ...]
    target: SplitResult
    template: str = GENERIC_TEMPLATE


RedirectDecision = Union[Safe, Unsafe, Unclassified]


def parse_target(raw_url: str) -> SplitResult:
    """Validate the redirect target.

    Raises:
        InvalidRedirectURLError: control characters, unparseable, or missing
                                 scheme / host.
    """
    if any(ord(ch) < 0x20 or ord(ch) == 0x7F for ch in raw_url):
        raise InvalidRedirectURLError("invalid control character in URL")
    try:
        target = urlsplit(raw_url)
        _ = target.port  # ValueError on a non-numeric or out-of-range port
    except ValueError as exc:
        raise InvalidRedirectURLError(f"invalid URL: {exc}") from exc
    if not target.scheme or not target.netloc:
        raise InvalidRedirectURLError("invalid URL: scheme and host are required")
    return target


def decide(raw_url: str, target: SplitResult, matches: list[ThreatMatch]) -> RedirectDecision:
    if not matches:
        return Safe(target=raw_url)
    for match in matches:
        template = INTERSTITIAL_TEMPLATES.get(match.threat_type)
        if template is not None:
            return Unsafe(match=match, target=target, template=template)
    return Unclassified(matches=tuple(matches), target=target)


# ─── Rendering ────────────────────────────────────────────────────────────────


class InterstitialRenderer:
    """Renders interstitial pages from templates held in an AssetStore.

    The Jinja2 environment is built once and shared by all requests; compiled
    templates are cached after first use.
    """

    def __init__(self, assets: AssetStore) -> None:
        self._assets = assets
        self._env = jinja2.Environment(
            loader=jinja2.FunctionLoader(self._load),
            autoescape=True,
            undefined=jinja2.StrictUndefined,
        )

    def _load(self, name: str) -> Optional[str]:
        try:
            return self._assets.open(name).decode("utf-8")
        except AssetNotFoundError:
            return None  # jinja2 raises TemplateNotFound

    def render(self, decision: Union[Unsafe, Unclassified]) -> str:
        """Raises RenderError when a template is missing, invalid, or fails to render."""
        if isinstance(decision, Unsafe):
            threat_type = decision.threat_type.name
        else:
            threat_type = decision.matches[0].threat_type.name
        target = decision.target

        try:
            template = self._env.get_template(decision.template)
            return template.render(
                threat=decision.match if isinstance(decision, Unsafe) else None,
                threat_type=threat_type,
                url=target.geturl(),
                host=target.hostname or target.netloc,
            )
        except (jinja2.TemplateError, UnicodeDecodeError) as exc:
            raise RenderError(f"failed to render {decision.template}: {exc}") from exc


# ─── Route ────────────────────────────────────────────────────────────────────


async def serve_redirector(request: Request) -> Response:
    """Redirect to ``url`` if it is safe, otherwise show a warning page.

    Errors (plain text):
        404 — ``url`` missing or empty
        400 — ``url`` malformed
        500 — engine failure or template failure
    """
    raw_url = request.query_params.get("url", "")
    if not raw_url:
        raise StarletteHTTPException(status_code=404, detail="404 page not found")

    target = parse_target(raw_url)
    results = await call_engine(request, request.app.state.engine, [raw_url])
    decision = decide(raw_url, target, results[0] if results else [])

    if isinstance(decision, Safe):
        return RedirectResponse(decision.target, status_code=302)

    renderer: InterstitialRenderer = request.app.state.renderer
    html = renderer.render(decision)

    if isinstance(decision, Unclassified):
        logger.warning(
            "No interstitial for threat types — showing generic warning",
            threat_types=[m.threat_type.name for m in decision.matches],
        )
    else:
        logger.info("Interstitial shown", threat_type=decision.threat_type.name)
    return HTMLResponse(html)
