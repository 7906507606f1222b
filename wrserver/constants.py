"""Shared constants for wrserver.

Paths and MIME strings are a compatibility contract with existing clients of
the Web Risk proxy — do not change them.
"""

from __future__ import annotations

# ─── HTTP paths ───────────────────────────────────────────────────────────────

STATUS_PATH: str = "/status"
FIND_THREAT_PATH: str = "/v1/uris:search"
REDIRECT_PATH: str = "/r"
PUBLIC_PREFIX: str = "/public/"

# ─── Wire formats ─────────────────────────────────────────────────────────────

MIME_JSON: str = "application/json"
MIME_PROTO: str = "application/x-protobuf"

# Query parameter that overrides Content-Type for format selection.
FORMAT_QUERY_PARAM: str = "alt"

# ─── Lifecycle ────────────────────────────────────────────────────────────────

# Deadline for draining in-flight requests after a termination signal (seconds).
SHUTDOWN_TIMEOUT_S: float = 5.0

# ─── Defaults ─────────────────────────────────────────────────────────────────

DEFAULT_SRV_ADDR: str = "0.0.0.0:8080"
DEFAULT_THREAT_TYPES: str = "ALL"
DEFAULT_WEBRISK_ENDPOINT: str = "https://webrisk.googleapis.com"

# Outbound timeout for a single uris:search call made by the engine (seconds).
ENGINE_HTTP_TIMEOUT_S: float = 10.0
