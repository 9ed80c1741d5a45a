"""Response classes backed by msgspec encoding."""

from __future__ import annotations

from typing import Any

import msgspec
from fastapi.responses import JSONResponse


class MsgspecJSONResponse(JSONResponse):
  """JSONResponse that renders with msgspec instead of the stdlib encoder."""

  def render(self, content: Any) -> bytes:
    return msgspec.json.encode(content)


def encode_sse_event(event: dict[str, Any]) -> bytes:
  """Frame one event as a server-sent-event ``data:`` record."""
  return b"data: " + msgspec.json.encode(event) + b"\n\n"
