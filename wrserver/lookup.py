"""Lookup endpoint: ``POST /v1/uris:search``.

A lightweight rendition of the Web Risk ``uris:search`` method. Unlike the
real API it needs no API key. It speaks both JSON and protobuf:

    $ curl -H "Content-Type: application/json" \\
        -X POST -d '{"uri": "http://bad1url.org"}' \\
        localhost:8080/v1/uris:search
    {"threat": {"threatTypes": ["MALWARE", "UNWANTED_SOFTWARE"]}}

Flow: method check → codec decode → engine lookup (cancelled if the client
disconnects) → reduce matches to distinct threat types → codec encode.
"""

from __future__ import annotations

import asyncio
from typing import Any

from fastapi import Request, Response

from wrserver.codec import decode, encode
from wrserver.engine.models import ThreatEngine, ThreatMatch, ThreatType
from wrserver.errors import ClientDisconnectedError, InvalidMethodError
from wrserver.messages import SearchUrisRequest, SearchUrisResponse
from wrserver.utils.logger import get_logger

logger = get_logger(__name__)

# ─── Aggregation ──────────────────────────────────────────────────────────────


def aggregate_threat_types(results: list[list[ThreatMatch]]) -> list[ThreatType]:
    """Reduce per-URL match lists to threat types.

    Each URL contributes its distinct threat types (first-seen order); the
    per-URL lists are concatenated. With the single-URI protocol that is simply
    the set of threat types attached to the URL.
    """
    threat_types: list[ThreatType] = []
    for matches in results:
        threat_types.extend(dict.fromkeys(match.threat_type for match in matches))
    return threat_types


def build_search_response(threat_types: list[ThreatType]) -> Any:
    """SearchUrisResponse with ``threat`` always present, even for a clean URL."""
    response = SearchUrisResponse()
    response.threat.SetInParent()
    response.threat.threat_types.extend(int(t) for t in threat_types)
    return response


# ─── Engine call ──────────────────────────────────────────────────────────────


async def _wait_for_disconnect(request: Request) -> None:
    while True:
        message = await request.receive()
        if message["type"] == "http.disconnect":
            return


async def call_engine(
    request: Request, engine: ThreatEngine, urls: list[str]
) -> list[list[ThreatMatch]]:
    """Run ``engine.lookup_urls(urls)`` bound to the lifetime of ``request``.

    The lookup races a watcher on the ASGI receive channel. If the client
    disconnects first, the lookup is cancelled and ClientDisconnectedError is
    raised. Must only be called once the request body has been read.

    Raises:
        EngineError:             the engine failed.
        ClientDisconnectedError: the client went away first.
    """
    lookup = asyncio.ensure_future(engine.lookup_urls(urls))
    watcher = asyncio.ensure_future(_wait_for_disconnect(request))
    try:
        await asyncio.wait({lookup, watcher}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        watcher.cancel()
        if not lookup.done():
            lookup.cancel()

    if lookup.done() and not lookup.cancelled():
        return lookup.result()
    logger.info("Client disconnected — lookup cancelled", urls=len(urls))
    raise ClientDisconnectedError("client disconnected")


# ─── Route ────────────────────────────────────────────────────────────────────


async def lookup(request: Request, engine: ThreatEngine, uri: str) -> Any:
    """Look up one URI and return the SearchUrisResponse message."""
    results = await call_engine(request, engine, [uri])
    return build_search_response(aggregate_threat_types(results))


async def serve_lookups(request: Request) -> Response:
    """Answer a SearchUrisRequest in the wire format the client negotiated.

    Errors (all plain text, via the app exception handler):
        400 — not POST, unsupported format, malformed body (engine never called)
        500 — engine failure (body carries the engine's error text) or encode failure
    """
    if request.method != "POST":
        raise InvalidMethodError(request.method)

    search_request = SearchUrisRequest()
    fmt = await decode(request, search_request)

    search_response = await lookup(request, request.app.state.engine, search_request.uri)

    logger.debug(
        "Lookup served",
        format=fmt.name,
        threat_types=[ThreatType(t).name for t in search_response.threat.threat_types],
    )
    return encode(search_response, fmt)
