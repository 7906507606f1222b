"""ThreatEngine Protocol + the data types it exchanges with the protocol layer.

The protocol layer (lookup, redirect, status) only ever talks to an engine
through ``ThreatEngine``. Production uses ``WebRiskEngine`` (engine/webrisk.py);
tests plug in in-memory fakes implementing the same three methods.

Layout:
    models.py  — ThreatType, ThreatMatch, Stats, EngineError, ThreatEngine
    webrisk.py — WebRiskEngine (remote uris:search + TTL cache)
"""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass
from typing import Any, Optional, Protocol, runtime_checkable

from wrserver.errors import WRServerError


# ─── Threat types ─────────────────────────────────────────────────────────────


class ThreatType(enum.IntEnum):
    """Web Risk threat categories. Values match the wire enum numbers."""

    THREAT_TYPE_UNSPECIFIED = 0
    MALWARE = 1
    SOCIAL_ENGINEERING = 2
    UNWANTED_SOFTWARE = 3
    SOCIAL_ENGINEERING_EXTENDED_COVERAGE = 4


# Every concrete threat type a client may subscribe to with "ALL".
ALL_THREAT_TYPES: tuple[ThreatType, ...] = (
    ThreatType.MALWARE,
    ThreatType.SOCIAL_ENGINEERING,
    ThreatType.UNWANTED_SOFTWARE,
    ThreatType.SOCIAL_ENGINEERING_EXTENDED_COVERAGE,
)


def parse_threat_types(value: str) -> tuple[ThreatType, ...]:
    """Parse a threat-type list such as ``"ALL"`` or ``"MALWARE,UNWANTED_SOFTWARE"``.

    Names are case-insensitive and duplicates are dropped (first occurrence wins).

    Raises:
        ValueError: empty list, unknown name, or THREAT_TYPE_UNSPECIFIED.
    """
    names = [part.strip().upper() for part in value.split(",") if part.strip()]
    if not names:
        raise ValueError("no threat types given")
    if names == ["ALL"]:
        return ALL_THREAT_TYPES

    parsed: list[ThreatType] = []
    for name in names:
        try:
            threat_type = ThreatType[name]
        except KeyError:
            raise ValueError(f"unknown threat type: {name!r}") from None
        if threat_type is ThreatType.THREAT_TYPE_UNSPECIFIED:
            raise ValueError(f"unknown threat type: {name!r}")
        if threat_type not in parsed:
            parsed.append(threat_type)
    return tuple(parsed)


# ─── Match + stats ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ThreatMatch:
    """One threat classification of one looked-up URL."""

    threat_type: ThreatType
    url: str


@dataclass
class Stats:
    """Engine counters surfaced verbatim by ``/status``.

    Field names are the JSON keys existing status consumers read.
    """

    QueriesByDatabase: int = 0
    QueriesByCache: int = 0
    QueriesByAPI: int = 0
    QueriesFail: int = 0
    DatabaseUpdateLag: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class EngineError(WRServerError):
    """A lookup or status call to the threat engine failed."""


# ─── ThreatEngine Protocol ────────────────────────────────────────────────────


@runtime_checkable
class ThreatEngine(Protocol):
    """Threat-evaluation capability consumed by the HTTP handlers.

    The engine is shared by every concurrent request handler. Handlers never
    mutate it; any locking it needs is its own business.
    """

    async def lookup_urls(self, urls: list[str]) -> list[list[ThreatMatch]]:
        """Return one match list per input URL, in input order.

        An empty inner list means the URL is not known to be unsafe.
        Raises EngineError on failure; must be safe to cancel.
        """
        ...

    def status(self) -> tuple[Stats, Optional[Exception]]:
        """Return current counters plus the engine's degraded condition, if any."""
        ...

    async def close(self) -> None:
        """Release network connections and flush state. Called at shutdown."""
        ...
