"""WebRiskEngine — ThreatEngine backed by the remote Web Risk ``uris:search`` API.

One GET per uncached URL:

    GET {endpoint}/v1/uris:search?key=...&uri=...&threatTypes=MALWARE&...

    → {}                                                    (clean)
    → {"threat": {"threatTypes": ["MALWARE"],
                  "expireTime": "2024-05-01T12:00:00.5Z"}}  (listed)

Results are cached per URL:
  - positive results until max(expireTime, now + pmin_ttl)
  - negative results for nmin_ttl (no caching when nmin_ttl is 0)

With ``config.db_path`` set, the cache is loaded from that JSON file at
construction and written back on ``close()``, so a restart keeps warm entries.

All state lives on the event loop thread; handlers only await
``lookup_urls()`` and read ``status()``, so no locking is needed.
"""

from __future__ import annotations

import json
import os
import time
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, Callable, Optional

import httpx
from google.protobuf import timestamp_pb2

from wrserver.constants import ENGINE_HTTP_TIMEOUT_S
from wrserver.engine.models import EngineError, Stats, ThreatMatch, ThreatType
from wrserver.utils.logger import PerformanceLogger, get_logger

if TYPE_CHECKING:
    from wrserver.config import Config

logger = get_logger(__name__)

SEARCH_PATH = "/v1/uris:search"

# Connection pool for outbound API calls. Lookups are serialised per URL and
# a local proxy rarely has more than a handful in flight.
POOL_MAX_CONNECTIONS: int = 20
POOL_KEEPALIVE_EXPIRY: float = 30.0  # seconds


# ─── httpx.AsyncClient factory ────────────────────────────────────────────────


def create_http_client(proxy_url: Optional[str] = None) -> httpx.AsyncClient:
    """Create the shared outbound client, optionally routed through ``proxy_url``.

    Raises:
        EngineError: the proxy URL is not usable.
    """
    try:
        return httpx.AsyncClient(
            proxy=proxy_url or None,
            limits=httpx.Limits(
                max_connections=POOL_MAX_CONNECTIONS,
                max_keepalive_connections=POOL_MAX_CONNECTIONS,
                keepalive_expiry=POOL_KEEPALIVE_EXPIRY,
            ),
            timeout=httpx.Timeout(ENGINE_HTTP_TIMEOUT_S),
            follow_redirects=False,
        )
    except (ValueError, TypeError, httpx.InvalidURL) as exc:
        raise EngineError(f"invalid proxy URL {proxy_url!r}: {exc}") from exc


# ─── Cache ────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class _CacheEntry:
    threat_types: tuple[ThreatType, ...]
    expires_at: float  # epoch seconds


def _parse_expire_time(value: Any) -> Optional[float]:
    if not isinstance(value, str) or not value:
        return None
    ts = timestamp_pb2.Timestamp()
    try:
        ts.FromJsonString(value)
    except ValueError:
        logger.debug("Ignoring unparseable expireTime", value=value)
        return None
    return ts.ToNanoseconds() / 1e9


def _parse_search_response(payload: Any) -> tuple[tuple[ThreatType, ...], Optional[float]]:
    """Extract (threat types, expire time) from a uris:search JSON payload."""
    if not isinstance(payload, dict):
        raise ValueError("response is not a JSON object")
    threat = payload.get("threat")
    if threat is None:
        return (), None
    if not isinstance(threat, dict):
        raise ValueError("'threat' is not a JSON object")

    threat_types: list[ThreatType] = []
    for name in threat.get("threatTypes", []):
        try:
            threat_types.append(ThreatType[name])
        except (KeyError, TypeError):
            logger.debug("Ignoring unknown threat type in API response", threat_type=name)
    return tuple(threat_types), _parse_expire_time(threat.get("expireTime"))


# ─── Engine ───────────────────────────────────────────────────────────────────


class WebRiskEngine:
    """ThreatEngine implementation calling the Web Risk Lookup API.

    Args:
        config: Process configuration (API key, endpoint, threat types, TTLs,
                outbound proxy, cache file, query logging).
        client: Optional pre-built httpx.AsyncClient (tests inject one backed by
                ``httpx.MockTransport``). When omitted the engine builds and owns one.
        clock:  Wall-clock source in epoch seconds; injectable for TTL tests.

    Raises:
        EngineError: missing API key, unusable proxy URL, or a cache path whose
                     directory does not exist.
    """

    def __init__(
        self,
        config: Config,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not config.api_key:
            raise EngineError("no API key configured")

        self._api_key = config.api_key
        self._search_url = config.endpoint.rstrip("/") + SEARCH_PATH
        self._threat_types = tuple(config.threat_types)
        self._pmin_ttl = config.pmin_ttl
        self._nmin_ttl = config.nmin_ttl
        self._log_api_queries = config.log_api_queries
        self._db_path = os.path.expanduser(config.db_path) if config.db_path else None
        self._clock = clock

        self._cache: dict[str, _CacheEntry] = {}
        self._stats = Stats()
        self._last_error: Optional[Exception] = None

        if self._db_path:
            self._load_db(self._db_path)

        self._owns_client = client is None
        self._client = client if client is not None else create_http_client(config.proxy_url)

    # ── ThreatEngine ──────────────────────────────────────────────────────────

    async def lookup_urls(self, urls: list[str]) -> list[list[ThreatMatch]]:
        results: list[list[ThreatMatch]] = []
        for url in urls:
            threat_types = await self._lookup(url)
            results.append([ThreatMatch(threat_type=t, url=url) for t in threat_types])
        return results

    def status(self) -> tuple[Stats, Optional[Exception]]:
        return replace(self._stats), self._last_error

    async def close(self) -> None:
        if self._db_path:
            self._save_db(self._db_path)
        if self._owns_client:
            await self._client.aclose()

    # ── Lookup ────────────────────────────────────────────────────────────────

    async def _lookup(self, url: str) -> tuple[ThreatType, ...]:
        key = url.strip()
        if not key:
            raise EngineError("cannot look up an empty URL")

        now = self._clock()
        entry = self._cache.get(key)
        if entry is not None:
            if entry.expires_at > now:
                self._stats.QueriesByCache += 1
                return entry.threat_types
            del self._cache[key]

        threat_types, expire_time = await self._query_api(key)

        if threat_types:
            expires_at = max(expire_time or now, now + self._pmin_ttl)
        else:
            expires_at = now + self._nmin_ttl
        if expires_at > now:
            self._cache[key] = _CacheEntry(threat_types=threat_types, expires_at=expires_at)
        return threat_types

    async def _query_api(self, url: str) -> tuple[tuple[ThreatType, ...], Optional[float]]:
        params: list[tuple[str, str]] = [("key", self._api_key), ("uri", url)]
        params.extend(("threatTypes", t.name) for t in self._threat_types)

        if self._log_api_queries:
            logger.info(
                "Web Risk API query",
                url=url,
                threat_types=[t.name for t in self._threat_types],
            )

        try:
            with PerformanceLogger("Web Risk uris:search", logger):
                response = await self._client.get(self._search_url, params=params)
        except httpx.HTTPError as exc:
            # httpx messages can embed the request URL, which carries the API key.
            raise self._fail(f"Web Risk API unreachable: {type(exc).__name__}") from exc

        if response.status_code != 200:
            raise self._fail(f"Web Risk API returned HTTP {response.status_code}")

        try:
            parsed = _parse_search_response(response.json())
        except ValueError as exc:
            raise self._fail(f"invalid Web Risk API response: {exc}") from exc

        self._stats.QueriesByAPI += 1
        self._last_error = None
        return parsed

    def _fail(self, message: str) -> EngineError:
        """Count a failed API query and remember it for status()."""
        error = EngineError(message)
        self._stats.QueriesFail += 1
        self._last_error = error
        logger.warning("Web Risk lookup failed", error=message)
        return error

    # ── Persistence ───────────────────────────────────────────────────────────

    def _load_db(self, path: str) -> None:
        directory = os.path.dirname(os.path.abspath(path))
        if not os.path.isdir(directory):
            raise EngineError(f"database directory does not exist: {directory}")
        if not os.path.exists(path):
            logger.info("Cache database not found — starting empty", path=path)
            return

        try:
            with open(path) as fh:
                raw = json.load(fh)
            entries = raw["entries"]
            now = self._clock()
            for url, item in entries.items():
                expires_at = float(item["expiresAt"])
                if expires_at <= now:
                    continue
                threat_types = tuple(ThreatType[name] for name in item["threatTypes"])
                self._cache[url] = _CacheEntry(threat_types=threat_types, expires_at=expires_at)
        except OSError as exc:
            raise EngineError(f"cannot read database {path}: {exc}") from exc
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            logger.warning("Cache database is corrupt — starting empty", path=path, error=str(exc))
            self._cache.clear()
            return

        logger.info("Cache database loaded", path=path, entries=len(self._cache))

    def _save_db(self, path: str) -> None:
        now = self._clock()
        payload = {
            "version": 1,
            "entries": {
                url: {
                    "threatTypes": [t.name for t in entry.threat_types],
                    "expiresAt": entry.expires_at,
                }
                for url, entry in self._cache.items()
                if entry.expires_at > now
            },
        }
        tmp_path = f"{path}.tmp"
        try:
            with open(tmp_path, "w") as fh:
                json.dump(payload, fh)
            os.replace(tmp_path, path)
        except OSError as exc:
            logger.error("Failed to write cache database", path=path, error=str(exc))
            return
        logger.info("Cache database saved", path=path, entries=len(payload["entries"]))
