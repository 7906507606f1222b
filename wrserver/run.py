"""Programmatic entry point for wrserver.

Startup order, each step fatal (exit code 1) on failure:

  1. logging    — LOG_LEVEL / DEBUG / JSON_LOGS environment variables
  2. config     — file, environment, flags (``wrserver.config.load_config``)
  3. engine     — Web Risk client with its cache (``WebRiskEngine``)
  4. assets     — packaged templates and static files (``DirectoryAssets``)
  5. serve      — ``LifecycleController.run()`` until a termination signal

Usage:
    wrserver -apikey=$APIKEY                 # via pyproject.toml [project.scripts]
    python -m wrserver.run -apikey=$APIKEY -srvaddr=127.0.0.1:8080
"""

from __future__ import annotations

import asyncio
import os
import sys
from typing import Optional, Sequence

from wrserver.assets import AssetStoreError, DirectoryAssets
from wrserver.config import load_config
from wrserver.engine import EngineError, WebRiskEngine
from wrserver.lifecycle import LifecycleController
from wrserver.main import create_app
from wrserver.utils.logger import configure_logging, get_logger

logger = get_logger(__name__)


def _configure_logging_from_env() -> None:
    debug = os.environ.get("DEBUG", "").lower() in ("1", "true", "yes")
    log_level = "DEBUG" if debug else os.environ.get("LOG_LEVEL", "INFO")
    json_output = os.environ.get("JSON_LOGS", "true").lower() not in ("0", "false", "no")
    configure_logging(log_level=log_level, json_output=json_output)


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Start wrserver and exit with the lifecycle's exit code.

    Raises:
        SystemExit: always; 0 after a graceful shutdown, 1 on any startup,
                    serve or shutdown failure, 2 on unknown flags.
    """
    _configure_logging_from_env()
    config = load_config(argv)

    try:
        engine = WebRiskEngine(config)
    except EngineError as exc:
        print(f"STARTUP ERROR: Unable to initialize Web Risk client: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc

    try:
        assets = DirectoryAssets()
    except AssetStoreError as exc:
        print(f"STARTUP ERROR: Unable to initialize static files: {exc}", file=sys.stderr)
        raise SystemExit(1) from exc

    app = create_app(engine, assets)
    controller = LifecycleController(app, config.host, config.port)
    exit_code = asyncio.run(controller.run())

    logger.info("wrserver exiting.", exit_code=exit_code)
    sys.exit(exit_code)


if __name__ == "__main__":
    main()
