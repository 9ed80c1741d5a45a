"""Drive one generation from prompt to normalized document, without persistence."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Any

from proposal_engine.ai.backoff import RetryController
from proposal_engine.ai.errors import GenerationError
from proposal_engine.ai.json_parser import parse_json_object
from proposal_engine.ai.normalizer import CONTENT_TYPE_BY_ACTION, normalize
from proposal_engine.ai.prompts import PromptBundle, PromptSource
from proposal_engine.ai.providers.openrouter import UpstreamRequest, UpstreamStream, UpstreamTransport
from proposal_engine.ai.streaming import AggregationState, ResponseAggregator, TokenUsage, decode_frames
from proposal_engine.services.runtime_config import GenerationConfig

logger = logging.getLogger(__name__)

_ANTHROPIC_TRUNCATION = "max_tokens"


@dataclass(frozen=True)
class GenerationResult:
  """Normalized output of one generation."""

  content: str
  usage: TokenUsage
  finish_reason: str | None
  truncated: bool
  max_tokens: int

  @property
  def warning(self) -> str | None:
    if not self.truncated:
      return None
    return f"Response reached token limit: {self.usage.output_tokens}/{self.max_tokens} tokens"


def _finalize(action: str, state: AggregationState, max_tokens: int) -> GenerationResult:
  content_type = CONTENT_TYPE_BY_ACTION[action]
  content = normalize(content_type, state.accumulated_text, truncated=state.truncated)
  if state.truncated:
    logger.warning("Generation for action=%s hit the token limit (%s/%s)", action, state.usage_totals.output_tokens, max_tokens)
  return GenerationResult(content=content, usage=state.usage_totals, finish_reason=state.finish_reason, truncated=state.truncated, max_tokens=max_tokens)


def completion_state(body: dict[str, Any]) -> AggregationState:
  """Read text, usage and finish reason from a non-streaming reply in either dialect."""
  text = ""
  finish_reason: str | None = None
  choices = body.get("choices")
  if isinstance(choices, list) and choices and isinstance(choices[0], dict):
    choice = choices[0]
    message = choice.get("message")
    if isinstance(message, dict) and isinstance(message.get("content"), str):
      text = message["content"]
    finish_reason = choice.get("finish_reason")
  else:
    blocks = body.get("content")
    if isinstance(blocks, list):
      text = "".join(block.get("text", "") for block in blocks if isinstance(block, dict))

  # Anthropic replies report truncation through stop_reason instead.
  if body.get("stop_reason") == _ANTHROPIC_TRUNCATION:
    finish_reason = "length"
  elif finish_reason is None and body.get("stop_reason"):
    finish_reason = "stop"

  usage = TokenUsage.from_payload(body.get("usage")) or TokenUsage()
  return AggregationState(accumulated_text=text, usage_totals=usage, is_terminal=True, finish_reason=finish_reason)


class StreamingGeneration:
  """An opened upstream stream, consumed once through :meth:`fragments`."""

  def __init__(self, action: str, stream: UpstreamStream, max_tokens: int) -> None:
    self.action = action
    self.max_tokens = max_tokens
    self.result: GenerationResult | None = None
    self._stream = stream
    self._aggregator = ResponseAggregator()

  @property
  def partial_text(self) -> str:
    return self._aggregator.state.accumulated_text

  async def fragments(self) -> AsyncIterator[str]:
    """Yield text fragments as they arrive; ``result`` is set once the stream completes."""
    try:
      async for fragment in self._aggregator.consume(decode_frames(self._stream.lines())):
        yield fragment
    finally:
      await self._stream.aclose()

    self.result = _finalize(self.action, self._aggregator.state, self.max_tokens)

  async def collect(self) -> GenerationResult:
    async for _fragment in self.fragments():
      pass
    if self.result is None:
      raise GenerationError("Stream finished without a result")
    return self.result


class DocumentOrchestrator:
  """Build prompts, call the provider through the retry controller and normalize replies."""

  def __init__(self, *, transport: UpstreamTransport, prompts: PromptSource, config: GenerationConfig, retry: RetryController) -> None:
    self._transport = transport
    self._prompts = prompts
    self._config = config
    self._retry = retry

  async def _prepare(self, action: str, payload: dict[str, Any], user_id: str, *, stream: bool) -> tuple[UpstreamRequest, str]:
    bundle: PromptBundle = self._prompts.build(action, payload)
    model = bundle.model or self._config.resolve_model(action)
    # Credentials are resolved on every call.
    api_key = await self._config.resolve_api_key(user_id)
    return UpstreamRequest(model=model, messages=bundle.messages(), max_tokens=bundle.max_tokens, stream=stream), api_key

  async def open_stream(self, action: str, payload: dict[str, Any], user_id: str) -> StreamingGeneration:
    """Open a streaming call; rate-limited opens are retried, mid-stream failures are not."""
    request, api_key = await self._prepare(action, payload, user_id, stream=True)
    logger.info("Opening stream action=%s model=%s user_id=%s", action, request.model, user_id)
    stream = await self._retry.execute(lambda: self._transport.open_stream(request, api_key))
    return StreamingGeneration(action, stream, request.max_tokens)

  async def generate(self, action: str, payload: dict[str, Any], user_id: str) -> GenerationResult:
    """Perform one request/response generation and normalize the whole reply."""
    request, api_key = await self._prepare(action, payload, user_id, stream=False)
    logger.info("Generating action=%s model=%s user_id=%s", action, request.model, user_id)
    body = await self._retry.execute(lambda: self._transport.complete(request, api_key))
    return _finalize(action, completion_state(body), request.max_tokens)

  async def analyze_focus_areas(self, payload: dict[str, Any], user_id: str) -> list[dict[str, Any]]:
    """Ask the model for focus areas and return the parsed list."""
    request, api_key = await self._prepare("analyze_focus_areas", payload, user_id, stream=False)
    body = await self._retry.execute(lambda: self._transport.complete(request, api_key))
    text = completion_state(body).accumulated_text
    try:
      parsed = parse_json_object(text)
    except ValueError as exc:
      logger.error("Focus area reply was not valid JSON: %.200s", text)
      raise GenerationError(f"Failed to parse JSON response: {exc}. Content preview: {text[:200]}") from exc

    focus_areas = parsed.get("focus_areas") or []
    if not isinstance(focus_areas, list):
      raise GenerationError("Focus area reply did not contain a list")
    return [area for area in focus_areas if isinstance(area, dict)]
