from __future__ import annotations

import json

import httpx
import pytest

from proposal_engine.ai.errors import UpstreamError, is_rate_limited
from proposal_engine.ai.providers.openrouter import OpenRouterTransport, UpstreamRequest

REQUEST = UpstreamRequest(model="anthropic/claude-3-5-sonnet-20241022", messages=[{"role": "user", "content": "hi"}], max_tokens=128)


def _transport(handler) -> OpenRouterTransport:  # type: ignore[no-untyped-def]
  client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
  return OpenRouterTransport(base_url="https://openrouter.test/api/v1/", referer="https://crm.example", title="Proposal Engine", client=client)


@pytest.mark.anyio
async def test_complete_posts_payload_with_auth_and_attribution_headers() -> None:
  seen: list[httpx.Request] = []

  def handler(request: httpx.Request) -> httpx.Response:
    seen.append(request)
    return httpx.Response(200, json={"choices": [{"message": {"content": "ok"}, "finish_reason": "stop"}]})

  body = await _transport(handler).complete(REQUEST, "sk-user")
  assert body["choices"][0]["message"]["content"] == "ok"

  sent = seen[0]
  assert str(sent.url) == "https://openrouter.test/api/v1/chat/completions"
  assert sent.headers["Authorization"] == "Bearer sk-user"
  assert sent.headers["HTTP-Referer"] == "https://crm.example"
  assert sent.headers["X-Title"] == "Proposal Engine"
  assert json.loads(sent.content) == {"model": REQUEST.model, "messages": REQUEST.messages, "max_tokens": 128, "stream": False}


@pytest.mark.anyio
async def test_rate_limit_body_becomes_retryable_upstream_error() -> None:
  def handler(_request: httpx.Request) -> httpx.Response:
    return httpx.Response(429, json={"error": {"message": "Provider returned error", "metadata": {"raw": "model is temporarily rate-limited upstream"}}})

  with pytest.raises(UpstreamError) as exc_info:
    await _transport(handler).complete(REQUEST, "sk")

  assert exc_info.value.status_code == 429
  assert str(exc_info.value).startswith("Model is temporarily rate-limited")
  assert is_rate_limited(exc_info.value)


@pytest.mark.anyio
async def test_provider_error_message_is_surfaced() -> None:
  def handler(_request: httpx.Request) -> httpx.Response:
    return httpx.Response(400, json={"error": {"message": "Invalid model"}})

  with pytest.raises(UpstreamError, match="OpenRouter error: Invalid model") as exc_info:
    await _transport(handler).complete(REQUEST, "sk")
  assert not is_rate_limited(exc_info.value)


@pytest.mark.anyio
async def test_unparseable_error_body_keeps_raw_text() -> None:
  def handler(_request: httpx.Request) -> httpx.Response:
    return httpx.Response(503, text="upstream unavailable")

  with pytest.raises(UpstreamError, match="OpenRouter API error: 503 - upstream unavailable"):
    await _transport(handler).complete(REQUEST, "sk")


@pytest.mark.anyio
async def test_open_stream_yields_lines_and_closes() -> None:
  sse = 'data: {"choices":[{"delta":{"content":"Hi"}}]}\n\ndata: [DONE]\n\n'

  def handler(request: httpx.Request) -> httpx.Response:
    assert json.loads(request.content)["stream"] is True
    return httpx.Response(200, text=sse, headers={"content-type": "text/event-stream"})

  stream_request = UpstreamRequest(model=REQUEST.model, messages=REQUEST.messages, max_tokens=128, stream=True)
  stream = await _transport(handler).open_stream(stream_request, "sk")
  lines = [line async for line in stream.lines()]
  await stream.aclose()
  assert 'data: {"choices":[{"delta":{"content":"Hi"}}]}' in lines
  assert "data: [DONE]" in lines


@pytest.mark.anyio
async def test_open_stream_error_status_raises_before_streaming() -> None:
  def handler(_request: httpx.Request) -> httpx.Response:
    return httpx.Response(429, json={"error": {"message": "Too Many Requests"}})

  with pytest.raises(UpstreamError) as exc_info:
    await _transport(handler).open_stream(REQUEST, "sk")
  assert exc_info.value.rate_limited


@pytest.mark.anyio
async def test_connection_errors_become_upstream_errors() -> None:
  def handler(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("refused", request=request)

  with pytest.raises(UpstreamError, match="OpenRouter request failed"):
    await _transport(handler).complete(REQUEST, "sk")
