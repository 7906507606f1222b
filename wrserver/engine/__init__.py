"""wrserver threat engine.

Public API:
    ThreatEngine   — Protocol consumed by the HTTP handlers
    ThreatType     — threat category enum
    ThreatMatch    — one classification of one URL
    Stats          — engine counters for /status
    EngineError    — lookup/status failure
    WebRiskEngine  — production engine backed by the remote uris:search API
"""
from wrserver.engine.models import (
    ALL_THREAT_TYPES,
    EngineError,
    Stats,
    ThreatEngine,
    ThreatMatch,
    ThreatType,
    parse_threat_types,
)
from wrserver.engine.webrisk import WebRiskEngine

__all__ = [
    "ALL_THREAT_TYPES",
    "EngineError",
    "Stats",
    "ThreatEngine",
    "ThreatMatch",
    "ThreatType",
    "WebRiskEngine",
    "parse_threat_types",
]
