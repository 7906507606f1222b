"""Integration tests: wrserver app + WebRiskEngine against a mocked Web Risk API.

Test strategy:
  - httpx.MockTransport plays the remote uris:search API
  - httpx.ASGITransport drives the wrserver app in-process
  - /status is checked after lookups to confirm the engine counters move
"""

from __future__ import annotations

import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from wrserver.config import Config
from wrserver.engine import WebRiskEngine
from wrserver.main import create_app
from wrserver.messages import SearchUrisRequest, SearchUrisResponse

LISTED = {
    "http://bad1url.org": {"threat": {"threatTypes": ["MALWARE", "UNWANTED_SOFTWARE"]}},
    "http://phish.example/": {"threat": {"threatTypes": ["SOCIAL_ENGINEERING"]}},
}


class _WebRiskAPI:
    def __init__(self) -> None:
        self.calls = 0
        self.fail = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        if self.fail:
            return httpx.Response(503, json={"error": {"code": 503}})
        return httpx.Response(200, json=LISTED.get(request.url.params["uri"], {}))


@pytest.fixture
def api() -> _WebRiskAPI:
    return _WebRiskAPI()


@pytest.fixture
def client(api: _WebRiskAPI) -> AsyncClient:
    upstream = httpx.AsyncClient(transport=httpx.MockTransport(api.handler))
    engine = WebRiskEngine(Config(api_key="k", nmin_ttl=60.0), client=upstream)
    transport = ASGITransport(app=create_app(engine))  # type: ignore[arg-type]
    return AsyncClient(transport=transport, base_url="http://test")


@pytest.mark.asyncio
async def test_lookup_then_status(client: AsyncClient, api: _WebRiskAPI) -> None:
    async with client:
        listed = await client.post("/v1/uris:search", json={"uri": "http://bad1url.org"})
        clean = await client.post("/v1/uris:search", json={"uri": "http://google.com"})
        clean_again = await client.post("/v1/uris:search", json={"uri": "http://google.com"})
        status = await client.get("/status")

    assert listed.json() == {"threat": {"threatTypes": ["MALWARE", "UNWANTED_SOFTWARE"]}}
    assert clean.json() == clean_again.json() == {"threat": {"threatTypes": []}}
    assert api.calls == 2
    assert status.json() == {
        "Stats": {
            "QueriesByDatabase": 0,
            "QueriesByCache": 1,
            "QueriesByAPI": 2,
            "QueriesFail": 0,
            "DatabaseUpdateLag": 0,
        },
        "Error": "",
    }


@pytest.mark.asyncio
async def test_protobuf_round_trip(client: AsyncClient) -> None:
    body = SearchUrisRequest(uri="http://phish.example/").SerializeToString()
    async with client:
        response = await client.post(
            "/v1/uris:search", content=body, headers={"Content-Type": "application/x-protobuf"}
        )

    assert response.status_code == 200
    parsed = SearchUrisResponse.FromString(response.content)
    assert list(parsed.threat.threat_types) == [2]


@pytest.mark.asyncio
async def test_redirector_uses_engine(client: AsyncClient) -> None:
    async with client:
        safe = await client.get("/r", params={"url": "http://google.com"})
        unsafe = await client.get("/r", params={"url": "http://phish.example/"})

    assert safe.status_code == 302
    assert safe.headers["location"] == "http://google.com"
    assert unsafe.status_code == 200
    assert "http://phish.example/" in unsafe.text


@pytest.mark.asyncio
async def test_api_outage_is_500_and_reported_by_status(
    client: AsyncClient, api: _WebRiskAPI
) -> None:
    api.fail = True
    async with client:
        lookup = await client.post("/v1/uris:search", json={"uri": "http://new.example/"})
        status = await client.get("/status")

    assert lookup.status_code == 500
    assert lookup.text == "Web Risk API returned HTTP 503"
    assert status.status_code == 200
    assert status.json()["Stats"]["QueriesFail"] == 1
    assert status.json()["Error"] == "Web Risk API returned HTTP 503"
