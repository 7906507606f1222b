"""Root test configuration for wrserver.

Provides ``FakeEngine``, an in-memory ThreatEngine, and clears the
environment variables ``load_config`` reads so a developer's shell (or a
``.wrserver/config.yaml`` in the working tree) never leaks into a test.
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from typing import Optional

import pytest
from fastapi import FastAPI

from wrserver.assets import DirectoryAssets
from wrserver.engine.models import Stats, ThreatMatch, ThreatType
from wrserver.main import create_app

_CONFIG_ENV_VARS = ("APIKEY", "PMINTTL", "NMINTTL", "LOGAPIQUERIES", "WRSERVER_CONFIG")


class FakeEngine:
    """ThreatEngine answering from a fixed ``url → threat types`` table.

    Records every ``lookup_urls`` call. ``delay`` makes lookups slow enough to
    still be in flight when a test triggers shutdown or a disconnect;
    ``entered`` is set as soon as a lookup starts.
    """

    def __init__(
        self,
        threats: Optional[dict[str, list[ThreatType]]] = None,
        error: Optional[Exception] = None,
        delay: float = 0.0,
    ) -> None:
        self.threats = threats or {}
        self.error = error
        self.delay = delay
        self.calls: list[list[str]] = []
        self.stats = Stats()
        self.status_error: Optional[Exception] = None
        self.closed = False
        self.close_calls = 0
        self.cancelled = False
        self.entered = asyncio.Event()

    async def lookup_urls(self, urls: list[str]) -> list[list[ThreatMatch]]:
        self.calls.append(list(urls))
        self.entered.set()
        if self.delay:
            try:
                await asyncio.sleep(self.delay)
            except asyncio.CancelledError:
                self.cancelled = True
                raise
        if self.error is not None:
            raise self.error
        return [
            [ThreatMatch(threat_type=t, url=url) for t in self.threats.get(url, [])]
            for url in urls
        ]

    def status(self) -> tuple[Stats, Optional[Exception]]:
        return replace(self.stats), self.status_error

    async def close(self) -> None:
        self.closed = True
        self.close_calls += 1


@pytest.fixture(autouse=True)
def clean_config_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr("wrserver.config.DEFAULT_CONFIG_PATHS", [])


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine(
        threats={
            "http://bad1url.org": [ThreatType.MALWARE, ThreatType.UNWANTED_SOFTWARE],
            "http://phish.example/login": [ThreatType.SOCIAL_ENGINEERING],
        }
    )


@pytest.fixture
def app(engine: FakeEngine) -> FastAPI:
    return create_app(engine, DirectoryAssets())
