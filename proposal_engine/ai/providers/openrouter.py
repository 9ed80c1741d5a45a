"""OpenRouter chat-completions transport over raw httpx requests."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx
import msgspec

from proposal_engine.ai.errors import UpstreamError, upstream_error_message

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"


@dataclass(frozen=True)
class UpstreamRequest:
  """A single chat-completion request."""

  model: str
  messages: list[dict[str, str]] = field(hash=False)
  max_tokens: int
  stream: bool = False

  def to_payload(self) -> dict[str, Any]:
    return {"model": self.model, "messages": self.messages, "max_tokens": self.max_tokens, "stream": self.stream}


class UpstreamStream(Protocol):
  """An opened streaming reply whose status has already been checked."""

  def lines(self) -> AsyncIterator[str]: ...

  async def aclose(self) -> None: ...


class UpstreamTransport(Protocol):
  """Calls the model provider on behalf of the orchestrator."""

  async def complete(self, request: UpstreamRequest, api_key: str) -> dict[str, Any]: ...

  async def open_stream(self, request: UpstreamRequest, api_key: str) -> UpstreamStream: ...


class HttpxUpstreamStream:
  """Streaming reply backed by an open httpx response."""

  def __init__(self, response: httpx.Response) -> None:
    self._response = response

  def lines(self) -> AsyncIterator[str]:
    return self._response.aiter_lines()

  async def aclose(self) -> None:
    await self._response.aclose()


class OpenRouterTransport:
  """Send chat-completion requests to OpenRouter's OpenAI-compatible API."""

  def __init__(self, *, base_url: str = DEFAULT_BASE_URL, referer: str | None = None, title: str | None = None, timeout: float = 300.0, client: httpx.AsyncClient | None = None) -> None:
    self._url = f"{base_url.rstrip('/')}/chat/completions"
    self._referer = referer
    self._title = title
    self._owns_client = client is None
    # Streaming replies can stay silent for a while between tokens; only bound the connect phase tightly.
    self._client = client or httpx.AsyncClient(timeout=httpx.Timeout(timeout, connect=10.0), trust_env=False)

  def _headers(self, api_key: str) -> dict[str, str]:
    headers = {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}
    # OpenRouter attribution headers are optional.
    if self._referer:
      headers["HTTP-Referer"] = self._referer
    if self._title:
      headers["X-Title"] = self._title
    return headers

  def _build_request(self, request: UpstreamRequest, api_key: str) -> httpx.Request:
    return self._client.build_request("POST", self._url, content=msgspec.json.encode(request.to_payload()), headers=self._headers(api_key))

  @staticmethod
  def _error_from_response(status_code: int, raw: bytes) -> UpstreamError:
    text = raw.decode("utf-8", errors="replace")
    try:
      body = msgspec.json.decode(raw) if raw else None
    except msgspec.DecodeError:
      body = None
    message = upstream_error_message(status_code, body, text)
    logger.error("OpenRouter returned status=%s: %s", status_code, message)
    return UpstreamError(message, status_code=status_code)

  async def complete(self, request: UpstreamRequest, api_key: str) -> dict[str, Any]:
    """Perform one non-streaming call and return the decoded reply body."""
    logger.info("OpenRouter request model=%s max_tokens=%s stream=false", request.model, request.max_tokens)
    try:
      response = await self._client.send(self._build_request(request, api_key))
    except httpx.RequestError as exc:
      logger.error("OpenRouter request failed: %s", exc)
      raise UpstreamError(f"OpenRouter request failed: {exc}") from exc

    if response.status_code >= 400:
      raise self._error_from_response(response.status_code, response.content)

    try:
      body = msgspec.json.decode(response.content)
    except msgspec.DecodeError as exc:
      raise UpstreamError("OpenRouter returned an unreadable response body", status_code=response.status_code) from exc

    if not isinstance(body, dict):
      raise UpstreamError("OpenRouter returned an unexpected response body", status_code=response.status_code)
    return body

  async def open_stream(self, request: UpstreamRequest, api_key: str) -> UpstreamStream:
    """Open a streaming call; the caller owns the returned stream and must close it."""
    logger.info("OpenRouter request model=%s max_tokens=%s stream=true", request.model, request.max_tokens)
    try:
      response = await self._client.send(self._build_request(request, api_key), stream=True)
    except httpx.RequestError as exc:
      logger.error("OpenRouter stream request failed: %s", exc)
      raise UpstreamError(f"OpenRouter request failed: {exc}") from exc

    if response.status_code >= 400:
      try:
        raw = await response.aread()
      finally:
        await response.aclose()
      raise self._error_from_response(response.status_code, raw)

    return HttpxUpstreamStream(response)

  async def aclose(self) -> None:
    if self._owns_client:
      await self._client.aclose()
