"""Config loading for wrserver.

Values are merged from four sources, lowest precedence first:

  1. Built-in defaults (``Config.defaults()``)
  2. An optional YAML file — ``-config`` flag, ``WRSERVER_CONFIG`` env var,
     ``.wrserver/config.yaml`` or ``~/.wrserver/config.yaml`` (first found wins).
     The file must carry ``version: 1``.
  3. Environment variables: ``APIKEY``, ``PMINTTL``, ``NMINTTL``,
     ``LOGAPIQUERIES`` (``yes`` enables query logging)
  4. Command-line flags (``-apikey``, ``-srvaddr``, ``-proxy``, ``-db``,
     ``-threatTypes``, ``-pminTTL``, ``-nminTTL``, ``-logAPIQueries``)

Any invalid value writes ``CONFIG ERROR: ...`` to stderr and raises
SystemExit(1) before the server or the engine is created.

The resulting ``Config`` is built once in ``wrserver.run.main()`` and handed
to the components that need it; nothing reads flags or env vars later.
"""

from __future__ import annotations

import argparse
import os
import re
import sys
from dataclasses import dataclass, field
from typing import Any, NoReturn, Optional, Sequence

import yaml

from wrserver.constants import (
    DEFAULT_SRV_ADDR,
    DEFAULT_THREAT_TYPES,
    DEFAULT_WEBRISK_ENDPOINT,
)
from wrserver.engine.models import ALL_THREAT_TYPES, ThreatType, parse_threat_types
from wrserver.utils.logger import get_logger

logger = get_logger(__name__)

# ─── Version constants ────────────────────────────────────────────────────────

SUPPORTED_CONFIG_VERSION = 1
SUPPORTED_VERSIONS: frozenset[int] = frozenset({1})

DEFAULT_CONFIG_PATHS = [
    ".wrserver/config.yaml",
    os.path.expanduser("~/.wrserver/config.yaml"),
]

USAGE = """wrserver: starts a Web Risk API proxy server.

In order to abstract away the complexities of the Web Risk API, the
wrserver application can be used to serve a subset of the API.
This subset is intentionally small so that it would be easy to implement by
a client. It is intended for wrserver to either be running locally on a
client's machine or within the same local network so that it can handle most
local API calls before resorting to making an API call to the actual
Web Risk API over the internet.

Usage: %(prog)s -apikey=$APIKEY
"""

# ─── Durations ────────────────────────────────────────────────────────────────

_DURATION_UNITS: dict[str, float] = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "μs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}

_DURATION_TERM = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|μs|ms|s|m|h)")


def parse_duration(value: Optional[str]) -> float:
    """Parse a duration string like ``"1h30m"``, ``"90s"`` or ``"250ms"`` into seconds.

    An empty or missing value means zero. A bare ``"0"`` is accepted; any other
    number must carry a unit.

    Raises:
        ValueError: the string is not a valid duration.
    """
    if value is None or value == "":
        return 0.0
    text = value.strip()
    sign = 1.0
    if text[:1] in "+-":
        sign = -1.0 if text[0] == "-" else 1.0
        text = text[1:]
    if text == "0":
        return 0.0
    if not text:
        raise ValueError(f"invalid duration {value!r}")

    total = 0.0
    pos = 0
    while pos < len(text):
        match = _DURATION_TERM.match(text, pos)
        if match is None:
            raise ValueError(f"invalid duration {value!r}")
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    return sign * total


def split_host_port(addr: str) -> tuple[str, int]:
    """Split ``host:port`` (``[v6]:port`` for IPv6). An empty host means all interfaces.

    Raises:
        ValueError: missing or out-of-range port, or malformed brackets.
    """
    if addr.startswith("["):
        end = addr.find("]")
        if end == -1 or addr[end + 1:end + 2] != ":":
            raise ValueError(f"invalid address {addr!r}")
        host, port_text = addr[1:end], addr[end + 2:]
    else:
        host, sep, port_text = addr.rpartition(":")
        if not sep or ":" in host:
            raise ValueError(f"invalid address {addr!r}")
    if not port_text.isdigit() or not 0 <= int(port_text) <= 65535:
        raise ValueError(f"invalid port in address {addr!r}")
    return host or "0.0.0.0", int(port_text)


# ─── Dataclasses ─────────────────────────────────────────────────────────────


@dataclass
class Config:
    """Root configuration object.

    All fields except ``api_key`` have usable defaults; ``load_config`` refuses
    to return a Config without an API key.
    """

    version: int = SUPPORTED_CONFIG_VERSION
    api_key: str = ""
    srv_addr: str = DEFAULT_SRV_ADDR
    host: str = "0.0.0.0"
    port: int = 8080
    proxy_url: Optional[str] = None  # outbound proxy for calls to the Web Risk API
    db_path: Optional[str] = None    # on-disk cache file; None = memory only
    threat_types: tuple[ThreatType, ...] = field(default_factory=lambda: ALL_THREAT_TYPES)
    pmin_ttl: float = 0.0            # seconds; minimum cache time for positive results
    nmin_ttl: float = 0.0            # seconds; minimum cache time for negative results
    log_api_queries: bool = False
    endpoint: str = DEFAULT_WEBRISK_ENDPOINT
    path: Optional[str] = None       # config file the values were read from, if any

    @classmethod
    def defaults(cls) -> "Config":
        return cls()


# ─── Errors ───────────────────────────────────────────────────────────────────


def _fail(msg: str) -> NoReturn:
    print(msg, file=sys.stderr)
    raise SystemExit(1)


# ─── Command line ─────────────────────────────────────────────────────────────


def build_arg_parser() -> argparse.ArgumentParser:
    """Flags accept both the single-dash spelling (``-apikey``) and ``--apikey``.

    Every flag defaults to None so that only explicitly passed flags override
    the file and environment values.
    """
    parser = argparse.ArgumentParser(
        prog="wrserver",
        usage=USAGE,
        allow_abbrev=False,
    )
    parser.add_argument("-apikey", "--apikey", dest="apikey",
                        help="specify your Web Risk API key")
    parser.add_argument("-srvaddr", "--srvaddr", dest="srvaddr",
                        help=f"TCP network address the HTTP server should use (default {DEFAULT_SRV_ADDR})")
    parser.add_argument("-proxy", "--proxy", dest="proxy",
                        help="proxy to use to connect to the Web Risk API")
    parser.add_argument("-db", "--db", dest="db",
                        help="path to the Web Risk cache database")
    parser.add_argument("-threatTypes", "--threatTypes", dest="threat_types",
                        help=f"threat types to check against (default {DEFAULT_THREAT_TYPES})")
    parser.add_argument("-pminTTL", "--pminTTL", dest="pmin_ttl",
                        help="minimum time to cache positive responses")
    parser.add_argument("-nminTTL", "--nminTTL", dest="nmin_ttl",
                        help="minimum time to cache negative responses")
    parser.add_argument("-logAPIQueries", "--logAPIQueries", dest="log_api_queries",
                        action="store_const", const=True, default=None,
                        help="log queries sent to the Web Risk API")
    parser.add_argument("-config", "--config", dest="config",
                        help="path to a YAML config file")
    return parser


# ─── Config file ──────────────────────────────────────────────────────────────


def _find_config_file(explicit: Optional[str]) -> Optional[str]:
    search_paths: list[str] = []
    if explicit:
        search_paths.append(explicit)
    env_config = os.environ.get("WRSERVER_CONFIG")
    if env_config:
        search_paths.append(env_config)
    search_paths.extend(DEFAULT_CONFIG_PATHS)

    for candidate in search_paths:
        expanded = os.path.expanduser(candidate)
        if os.path.isfile(expanded):
            return expanded

    if explicit:
        _fail(f"CONFIG ERROR: config file not found: {explicit}")
    logger.debug("No config file found — using flags and environment", searched=search_paths)
    return None


def _read_config_file(path: str) -> dict[str, Any]:
    logger.info("Loading config", path=path)
    try:
        with open(path) as fh:
            raw = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        _fail(
            f"CONFIG ERROR: Failed to parse {path}: {exc}\n"
            "wrserver refuses to start with an invalid config."
        )
    except OSError as exc:
        _fail(f"CONFIG ERROR: Could not read {path}: {exc}")

    if not isinstance(raw, dict):
        _fail(
            f"CONFIG ERROR: {path} is not a valid YAML mapping.\n"
            "The config file must be a YAML dictionary with a 'version' field."
        )

    version = raw.get("version")
    if version is None:
        _fail(
            f"CONFIG ERROR: {path} is missing the required 'version' field.\n"
            "Add 'version: 1' to the top of your config file."
        )
    if version not in SUPPORTED_VERSIONS:
        _fail(
            f"CONFIG ERROR: Unsupported config version: {version}. "
            f"Supported versions: {sorted(SUPPORTED_VERSIONS)}."
        )
    return raw


# ─── Config loading ───────────────────────────────────────────────────────────


def load_config(argv: Optional[Sequence[str]] = None) -> Config:
    """Build the process configuration from file, environment and flags.

    Args:
        argv: Command-line arguments without the program name.
              ``None`` reads ``sys.argv[1:]``.

    Returns:
        A fully validated Config.

    Raises:
        SystemExit(1): missing API key, invalid TTL duration, invalid listen
                       address, unknown threat type, or an invalid config file.
        SystemExit(2): unknown command-line flag (argparse).
    """
    args = build_arg_parser().parse_args(argv)

    # ── Gather raw string values, lowest precedence first ─────────────────────
    raw: dict[str, Any] = {
        "api_key": "",
        "srv_addr": DEFAULT_SRV_ADDR,
        "proxy_url": None,
        "db_path": None,
        "threat_types": DEFAULT_THREAT_TYPES,
        "pmin_ttl": "",
        "nmin_ttl": "",
        "log_api_queries": False,
        "endpoint": DEFAULT_WEBRISK_ENDPOINT,
    }

    config_path = _find_config_file(args.config)
    if config_path:
        file_raw = _read_config_file(config_path)
        for key in ("api_key", "srv_addr", "threat_types", "endpoint"):
            if file_raw.get(key) is not None:
                raw[key] = str(file_raw[key])
        if file_raw.get("proxy") is not None:
            raw["proxy_url"] = str(file_raw["proxy"])
        if file_raw.get("db") is not None:
            raw["db_path"] = str(file_raw["db"])
        for key in ("pmin_ttl", "nmin_ttl"):
            if file_raw.get(key) is not None:
                raw[key] = str(file_raw[key])
        if file_raw.get("log_api_queries") is not None:
            raw["log_api_queries"] = bool(file_raw["log_api_queries"])

    env = os.environ
    if env.get("APIKEY"):
        raw["api_key"] = env["APIKEY"]
    if env.get("PMINTTL"):
        raw["pmin_ttl"] = env["PMINTTL"]
    if env.get("NMINTTL"):
        raw["nmin_ttl"] = env["NMINTTL"]
    if "LOGAPIQUERIES" in env:
        raw["log_api_queries"] = env["LOGAPIQUERIES"] == "yes"

    flag_overrides = {
        "api_key": args.apikey,
        "srv_addr": args.srvaddr,
        "proxy_url": args.proxy,
        "db_path": args.db,
        "threat_types": args.threat_types,
        "pmin_ttl": args.pmin_ttl,
        "nmin_ttl": args.nmin_ttl,
        "log_api_queries": args.log_api_queries,
    }
    for key, value in flag_overrides.items():
        if value is not None:
            raw[key] = value

    # ── Validate ──────────────────────────────────────────────────────────────
    if not raw["api_key"]:
        _fail("No -apikey specified")

    try:
        pmin_ttl = parse_duration(raw["pmin_ttl"])
    except ValueError:
        _fail("CONFIG ERROR: Invalid -pminTTL")
    try:
        nmin_ttl = parse_duration(raw["nmin_ttl"])
    except ValueError:
        _fail("CONFIG ERROR: Invalid -nminTTL")

    try:
        host, port = split_host_port(raw["srv_addr"])
    except ValueError as exc:
        _fail(f"CONFIG ERROR: Invalid -srvaddr: {exc}")

    try:
        threat_types = parse_threat_types(raw["threat_types"])
    except ValueError as exc:
        _fail(f"CONFIG ERROR: Invalid -threatTypes: {exc}")

    config = Config(
        api_key=raw["api_key"],
        srv_addr=raw["srv_addr"],
        host=host,
        port=port,
        proxy_url=raw["proxy_url"] or None,
        db_path=raw["db_path"] or None,
        threat_types=threat_types,
        pmin_ttl=pmin_ttl,
        nmin_ttl=nmin_ttl,
        log_api_queries=bool(raw["log_api_queries"]),
        endpoint=raw["endpoint"].rstrip("/"),
        path=config_path,
    )

    logger.info(
        "Config loaded",
        path=config_path,
        srv_addr=config.srv_addr,
        threat_types=[t.name for t in config.threat_types],
        pmin_ttl_s=config.pmin_ttl,
        nmin_ttl_s=config.nmin_ttl,
        proxy=bool(config.proxy_url),
        db_path=config.db_path,
    )
    return config
