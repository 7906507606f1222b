"""ULID request identifiers for wrserver.

Every inbound request gets a ULID that is bound into the log context and
echoed back to the client in the ``X-Request-ID`` response header, so a
client report can be matched with the proxy's log lines.

Uses the ``python-ulid`` library; do not hand-roll ULID generation.
"""

from __future__ import annotations

from ulid import ULID


def generate_ulid() -> str:
    """Return a new 26-character Crockford Base32 ULID string.

    ULIDs sort by creation time, which keeps request ids in log order::

        request_id = generate_ulid()
        assert len(request_id) == 26
    """
    return str(ULID())
