"""Status endpoint: ``/status``.

Reports the engine counters so operators can see how many lookups were
answered locally and how many went to the Web Risk API:

    $ curl localhost:8080/status
    {
        "Stats": {
            "QueriesByDatabase": 0,
            "QueriesByCache": 31,
            "QueriesByAPI": 6,
            "QueriesFail": 0,
            "DatabaseUpdateLag": 0
        },
        "Error": ""
    }

Unlike the other endpoints this one always answers 200 with what it knows.
A degraded engine shows up in the ``Error`` string, never as a failure status.
"""

from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from wrserver.engine.models import ThreatEngine


def build_status(engine: ThreatEngine) -> dict[str, Any]:
    stats, error = engine.status()
    return {
        "Stats": stats.to_dict(),
        "Error": str(error) if error is not None else "",
    }


async def serve_status(request: Request) -> JSONResponse:
    return JSONResponse(build_status(request.app.state.engine))
