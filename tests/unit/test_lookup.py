"""Unit tests for the lookup endpoint (wrserver.lookup).

Test strategy:
  - httpx.ASGITransport drives the app in-process against a FakeEngine
  - call_engine() is exercised directly with a stub request whose receive
    channel reports a client disconnect
"""

from __future__ import annotations

import asyncio
import json

import pytest
from conftest import FakeEngine
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from wrserver.engine.models import EngineError, ThreatMatch, ThreatType
from wrserver.errors import ClientDisconnectedError
from wrserver.lookup import aggregate_threat_types, build_search_response, call_engine
from wrserver.main import create_app
from wrserver.messages import SearchUrisRequest, SearchUrisResponse

# ─── Helpers ──────────────────────────────────────────────────────────────────


def _client(app: FastAPI) -> AsyncClient:
    transport = ASGITransport(app=app)  # type: ignore[arg-type]
    return AsyncClient(transport=transport, base_url="http://test")


class _DisconnectingRequest:
    """Stands in for a Request whose client has already gone away."""

    async def receive(self) -> dict:
        return {"type": "http.disconnect"}


class _ConnectedRequest:
    async def receive(self) -> dict:
        await asyncio.Event().wait()
        return {}


# ─── Aggregation ──────────────────────────────────────────────────────────────


class TestAggregateThreatTypes:
    def test_duplicates_collapse_in_first_seen_order(self) -> None:
        url = "http://x.example/"
        matches = [
            ThreatMatch(ThreatType.MALWARE, url),
            ThreatMatch(ThreatType.MALWARE, url),
            ThreatMatch(ThreatType.SOCIAL_ENGINEERING, url),
        ]
        assert aggregate_threat_types([matches]) == [
            ThreatType.MALWARE,
            ThreatType.SOCIAL_ENGINEERING,
        ]

    def test_no_matches_is_empty(self) -> None:
        assert aggregate_threat_types([[]]) == []
        assert aggregate_threat_types([]) == []

    def test_response_threat_always_present(self) -> None:
        response = build_search_response([])
        assert response.HasField("threat")
        assert list(response.threat.threat_types) == []


# ─── Endpoint ─────────────────────────────────────────────────────────────────


class TestLookupEndpoint:
    @pytest.mark.asyncio
    async def test_json_lookup_of_listed_url(self, app: FastAPI) -> None:
        async with _client(app) as client:
            response = await client.post("/v1/uris:search", json={"uri": "http://bad1url.org"})

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/json")
        assert response.json() == {"threat": {"threatTypes": ["MALWARE", "UNWANTED_SOFTWARE"]}}

    @pytest.mark.asyncio
    async def test_json_lookup_of_clean_url(self, app: FastAPI) -> None:
        async with _client(app) as client:
            response = await client.post("/v1/uris:search", json={"uri": "http://google.com"})

        assert response.status_code == 200
        assert response.json() == {"threat": {"threatTypes": []}}

    @pytest.mark.asyncio
    async def test_duplicate_matches_reported_once(self) -> None:
        engine = FakeEngine(
            threats={
                "http://dup.example/": [
                    ThreatType.MALWARE,
                    ThreatType.MALWARE,
                    ThreatType.SOCIAL_ENGINEERING,
                ]
            }
        )
        async with _client(create_app(engine)) as client:
            response = await client.post("/v1/uris:search", json={"uri": "http://dup.example/"})

        assert response.json()["threat"]["threatTypes"] == ["MALWARE", "SOCIAL_ENGINEERING"]

    @pytest.mark.asyncio
    async def test_proto_lookup_by_content_type(self, app: FastAPI, engine: FakeEngine) -> None:
        body = SearchUrisRequest(uri="http://bad1url.org").SerializeToString()
        async with _client(app) as client:
            response = await client.post(
                "/v1/uris:search",
                content=body,
                headers={"Content-Type": "application/x-protobuf"},
            )

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/x-protobuf"
        parsed = SearchUrisResponse.FromString(response.content)
        assert list(parsed.threat.threat_types) == [
            ThreatType.MALWARE,
            ThreatType.UNWANTED_SOFTWARE,
        ]
        assert engine.calls == [["http://bad1url.org"]]

    @pytest.mark.asyncio
    async def test_alt_proto_overrides_json_content_type(self, app: FastAPI) -> None:
        async with _client(app) as client:
            response = await client.post(
                "/v1/uris:search?alt=proto", json={"uri": "http://bad1url.org"}
            )

        assert response.status_code == 200
        assert response.headers["content-type"] == "application/x-protobuf"
        parsed = SearchUrisResponse.FromString(response.content)
        assert len(parsed.threat.threat_types) == 2

    @pytest.mark.asyncio
    async def test_malformed_body_is_400_and_engine_not_called(
        self, app: FastAPI, engine: FakeEngine
    ) -> None:
        async with _client(app) as client:
            response = await client.post(
                "/v1/uris:search",
                content=b"{broken",
                headers={"Content-Type": "application/json"},
            )

        assert response.status_code == 400
        assert response.headers["content-type"].startswith("text/plain")
        assert engine.calls == []

    @pytest.mark.asyncio
    async def test_unsupported_format_is_400(self, app: FastAPI, engine: FakeEngine) -> None:
        async with _client(app) as client:
            response = await client.post(
                "/v1/uris:search",
                content=b"<uri/>",
                headers={"Content-Type": "application/xml"},
            )

        assert response.status_code == 400
        assert response.text == "invalid interchange format"
        assert engine.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("method", ["GET", "PUT", "DELETE", "PATCH", "PROPFIND", "TRACE"])
    async def test_non_post_is_400(self, app: FastAPI, engine: FakeEngine, method: str) -> None:
        async with _client(app) as client:
            response = await client.request(method, "/v1/uris:search")

        assert response.status_code == 400
        assert response.text == "invalid method"
        assert engine.calls == []

    @pytest.mark.asyncio
    async def test_engine_failure_is_500_with_reason(self) -> None:
        engine = FakeEngine(error=EngineError("Web Risk API returned HTTP 503"))
        async with _client(create_app(engine)) as client:
            response = await client.post("/v1/uris:search", json={"uri": "http://x.example/"})

        assert response.status_code == 500
        assert response.text == "Web Risk API returned HTTP 503"

    @pytest.mark.asyncio
    async def test_json_response_is_parseable_json(self, app: FastAPI) -> None:
        async with _client(app) as client:
            response = await client.post(
                "/v1/uris:search", json={"uri": "http://phish.example/login"}
            )

        assert json.loads(response.content) == {"threat": {"threatTypes": ["SOCIAL_ENGINEERING"]}}


# ─── Disconnect handling ──────────────────────────────────────────────────────


class TestCallEngine:
    @pytest.mark.asyncio
    async def test_disconnect_cancels_lookup(self) -> None:
        engine = FakeEngine(delay=5.0)
        with pytest.raises(ClientDisconnectedError):
            await call_engine(_DisconnectingRequest(), engine, ["http://slow.example/"])  # type: ignore[arg-type]

        await asyncio.sleep(0)
        assert engine.cancelled is True

    @pytest.mark.asyncio
    async def test_completed_lookup_returns_results(self) -> None:
        engine = FakeEngine(threats={"http://a.example/": [ThreatType.MALWARE]})
        results = await call_engine(_ConnectedRequest(), engine, ["http://a.example/"])  # type: ignore[arg-type]
        assert results == [[ThreatMatch(ThreatType.MALWARE, "http://a.example/")]]

    @pytest.mark.asyncio
    async def test_engine_error_propagates(self) -> None:
        engine = FakeEngine(error=EngineError("boom"))
        with pytest.raises(EngineError, match="boom"):
            await call_engine(_ConnectedRequest(), engine, ["http://a.example/"])  # type: ignore[arg-type]
