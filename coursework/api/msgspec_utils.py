"""Utility helpers for msgspec response encoding."""

from __future__ import annotations

import msgspec
from starlette.responses import Response


def encode_msgspec_response(payload: msgspec.Struct | list[msgspec.Struct], *, status_code: int = 200) -> Response:
  """Encode a msgspec.Struct value, or a list of them, as a JSON HTTP response."""
  encoded = msgspec.json.encode(payload)
  return Response(content=encoded, status_code=status_code, media_type="application/json")


def encode_sse_event(payload: msgspec.Struct) -> bytes:
  """Frame a msgspec.Struct value as one server-sent event."""
  return b"data: " + msgspec.json.encode(payload) + b"\n\n"
