"""Content negotiation for the lookup endpoint.

A request selects its wire format with the ``alt`` query parameter
(``json`` / ``proto`` or the full MIME strings); when ``alt`` is absent or
empty the ``Content-Type`` header is used instead. The body itself is parsed
according to the declared ``Content-Type``:

  application/json        → protobuf JSON mapping (unknown fields rejected)
  application/x-protobuf  → protobuf binary
  anything else           → body left unparsed; the message keeps its defaults

The response is always encoded in the format resolved for the request.

``resolve_format()`` is pure and independent of the HTTP framework; only
``decode()`` and ``encode()`` touch Starlette request/response objects.
"""

from __future__ import annotations

import enum

from google.protobuf import json_format
from google.protobuf.message import DecodeError, Message
from google.protobuf.message import EncodeError as ProtoEncodeError
from starlette.requests import Request
from starlette.responses import Response

from wrserver.constants import FORMAT_QUERY_PARAM, MIME_JSON, MIME_PROTO
from wrserver.errors import EncodeError, MalformedBodyError, UnsupportedFormatError


class WireFormat(enum.Enum):
    """The two interchangeable encodings. The value is the MIME string."""

    JSON = MIME_JSON
    PROTO = MIME_PROTO

    @property
    def mime(self) -> str:
        return self.value


_SELECTORS: dict[str, WireFormat] = {
    "json": WireFormat.JSON,
    MIME_JSON: WireFormat.JSON,
    "proto": WireFormat.PROTO,
    MIME_PROTO: WireFormat.PROTO,
}


def media_type(value: str) -> str:
    """Strip MIME parameters and normalise case: ``"Application/JSON; charset=utf-8"`` → ``"application/json"``."""
    return value.split(";", 1)[0].strip().lower()


def resolve_format(selector: str) -> WireFormat:
    """Map a format selector (``alt`` value or Content-Type) to a WireFormat.

    Raises:
        UnsupportedFormatError: the selector names no known format.
    """
    try:
        return _SELECTORS[media_type(selector)]
    except KeyError:
        raise UnsupportedFormatError(selector) from None


def select_format(alt: str, content_type: str) -> WireFormat:
    """``alt`` wins over ``Content-Type`` when it is non-empty."""
    return resolve_format(alt if alt else content_type)


async def decode(request: Request, message: Message) -> WireFormat:
    """Fill ``message`` from the request body and return the negotiated format.

    The format is resolved before the body is read, so an unsupported selector
    never costs a body read.

    Raises:
        UnsupportedFormatError: no usable format selector.
        MalformedBodyError:     the body does not parse as its Content-Type.
    """
    content_type = request.headers.get("content-type", "")
    fmt = select_format(request.query_params.get(FORMAT_QUERY_PARAM, ""), content_type)

    declared = media_type(content_type)
    if declared == MIME_JSON:
        body = await request.body()
        try:
            json_format.Parse(body, message)
        except (json_format.ParseError, ValueError) as exc:
            raise MalformedBodyError(str(exc) or "invalid JSON body") from exc
    elif declared == MIME_PROTO:
        body = await request.body()
        try:
            message.ParseFromString(body)
        except DecodeError as exc:
            raise MalformedBodyError(str(exc) or "invalid protobuf body") from exc

    return fmt


def encode(message: Message, fmt: WireFormat) -> Response:
    """Serialize ``message`` in ``fmt``.

    The body is fully serialized before the Response object exists, so a
    failure can never leave a partially written body.

    Raises:
        EncodeError: serialization failed.
    """
    try:
        if fmt is WireFormat.PROTO:
            body: bytes | str = message.SerializeToString()
        else:
            body = json_format.MessageToJson(
                message,
                always_print_fields_with_no_presence=True,
                indent=None,
            )
    except (ProtoEncodeError, json_format.SerializeToJsonError, ValueError, TypeError) as exc:
        raise EncodeError(f"failed to encode response: {exc}") from exc

    return Response(content=body, media_type=fmt.mime)
