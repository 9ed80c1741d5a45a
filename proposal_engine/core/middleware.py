"""ASGI middleware that tags each HTTP request with an id and logs its outcome."""

import logging
import time
import uuid
from typing import Any

from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "x-request-id"


def _target(scope: Scope) -> str:
  query = scope.get("query_string") or b""
  path = scope.get("path", "")
  return f"{path}?{query.decode('latin-1')}" if query else path


class RequestLoggingMiddleware:
  """Correlate requests with logs through ``x-request-id``.

  A caller-supplied id is reused; otherwise a fresh one is generated. Written as raw ASGI
  so event streams are forwarded frame by frame. Bodies are never logged.
  """

  def __init__(self, app: ASGIApp) -> None:
    self.app = app

  async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
    if scope["type"] != "http":
      await self.app(scope, receive, send)
      return

    request_id = Headers(scope=scope).get(REQUEST_ID_HEADER) or uuid.uuid4().hex
    state: dict[str, Any] = scope.setdefault("state", {})
    state["request_id"] = request_id

    started = time.perf_counter()
    outcome = {"status": 0}

    async def send_with_request_id(message: Message) -> None:
      if message["type"] == "http.response.start":
        outcome["status"] = message["status"]
        headers = MutableHeaders(scope=message)
        headers.setdefault(REQUEST_ID_HEADER, request_id)
      await send(message)

    logger.info("-> %s %s [%s]", scope.get("method", "?"), _target(scope), request_id)
    try:
      await self.app(scope, receive, send_with_request_id)
    finally:
      elapsed_ms = (time.perf_counter() - started) * 1000
      logger.info("<- %s %s [%s] %.1fms", outcome["status"], _target(scope), request_id, elapsed_ms)
