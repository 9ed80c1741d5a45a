"""Server-sent-event decoding and response aggregation for upstream model replies.

The upstream provider speaks one of two reply dialects:

* OpenAI-compatible chunks, where text arrives at ``choices[0].delta.content`` and
  completion is signalled by ``choices[0].finish_reason``.
* Anthropic-style events, where text arrives in ``content_block_delta`` events, usage in
  ``message_delta`` and completion in ``message_stop``.

Both are decoded into the same :class:`ProviderFrame` kinds so the aggregator never needs
to know which dialect it is reading.
"""

from __future__ import annotations

import inspect
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any, Literal

import msgspec

from proposal_engine.ai.errors import StreamAbortedError

logger = logging.getLogger(__name__)

FrameKind = Literal["delta", "usage", "terminal"]

_DATA_PREFIX = "data:"
_DONE_SENTINEL = "[DONE]"
# Anthropic stop reasons expressed as OpenAI finish reasons.
_STOP_REASON_MAP = {"max_tokens": "length", "end_turn": "stop", "stop_sequence": "stop", "tool_use": "tool_calls"}


@dataclass(frozen=True)
class TokenUsage:
  """Token accounting reported by the provider."""

  input_tokens: int = 0
  output_tokens: int = 0

  @property
  def total_tokens(self) -> int:
    return self.input_tokens + self.output_tokens

  def is_zero(self) -> bool:
    return self.input_tokens == 0 and self.output_tokens == 0

  def as_dict(self) -> dict[str, int]:
    return {"input_tokens": self.input_tokens, "output_tokens": self.output_tokens, "total_tokens": self.total_tokens}

  @classmethod
  def from_payload(cls, payload: Any) -> TokenUsage | None:
    """Read usage from either dialect's field names."""
    if not isinstance(payload, dict):
      return None

    input_tokens = payload.get("prompt_tokens", payload.get("input_tokens")) or 0
    output_tokens = payload.get("completion_tokens", payload.get("output_tokens")) or 0
    try:
      return cls(input_tokens=int(input_tokens), output_tokens=int(output_tokens))
    except (TypeError, ValueError):
      return None


@dataclass(frozen=True)
class ProviderFrame:
  """One decoded unit of an upstream reply."""

  kind: FrameKind
  text: str = ""
  usage: TokenUsage | None = None
  finish_reason: str | None = None

  @classmethod
  def delta(cls, text: str) -> ProviderFrame:
    return cls(kind="delta", text=text)

  @classmethod
  def usage_totals(cls, usage: TokenUsage) -> ProviderFrame:
    return cls(kind="usage", usage=usage)

  @classmethod
  def terminal(cls, finish_reason: str | None) -> ProviderFrame:
    return cls(kind="terminal", finish_reason=finish_reason)


@dataclass
class DecoderState:
  """Per-stream memory for the Anthropic dialect, which spreads usage over several events."""

  input_tokens: int = 0
  stop_reason: str | None = None


def _extract_payload(line: str) -> str | None:
  """Return the payload of a ``data:`` line, or None when the line carries nothing."""
  stripped = line.strip()
  # Comments, event names, ids and keepalives are not payload lines.
  if not stripped.startswith(_DATA_PREFIX):
    return None

  payload = stripped[len(_DATA_PREFIX) :].strip()
  if not payload or payload == _DONE_SENTINEL:
    return None

  return payload


def _decode_openai(choice: dict[str, Any], payload: dict[str, Any]) -> list[ProviderFrame]:
  frames: list[ProviderFrame] = []
  delta = choice.get("delta")
  if isinstance(delta, dict):
    content = delta.get("content")
    if isinstance(content, str) and content:
      frames.append(ProviderFrame.delta(content))

  usage = TokenUsage.from_payload(payload.get("usage"))
  if usage is not None:
    frames.append(ProviderFrame.usage_totals(usage))

  finish_reason = choice.get("finish_reason")
  if finish_reason:
    frames.append(ProviderFrame.terminal(str(finish_reason)))

  return frames


def _decode_anthropic(event_type: str, payload: dict[str, Any], state: DecoderState) -> list[ProviderFrame]:
  if event_type == "message_start":
    # Input tokens are reported up front and omitted from later usage events.
    message = payload.get("message")
    usage = TokenUsage.from_payload(message.get("usage") if isinstance(message, dict) else None)
    if usage is not None:
      state.input_tokens = usage.input_tokens
    return []

  if event_type == "content_block_delta":
    delta = payload.get("delta")
    text = delta.get("text") if isinstance(delta, dict) else None
    if isinstance(text, str) and text:
      return [ProviderFrame.delta(text)]
    return []

  if event_type == "message_delta":
    delta = payload.get("delta")
    if isinstance(delta, dict) and delta.get("stop_reason"):
      state.stop_reason = str(delta["stop_reason"])

    raw_usage = payload.get("usage")
    usage = TokenUsage.from_payload(raw_usage)
    if usage is None:
      return []

    if isinstance(raw_usage, dict) and "input_tokens" not in raw_usage:
      usage = TokenUsage(input_tokens=state.input_tokens, output_tokens=usage.output_tokens)
    return [ProviderFrame.usage_totals(usage)]

  if event_type == "message_stop":
    finish_reason = _STOP_REASON_MAP.get(state.stop_reason or "", state.stop_reason) or "stop"
    return [ProviderFrame.terminal(finish_reason)]

  return []


def decode_payload(payload: Any, state: DecoderState | None = None) -> list[ProviderFrame]:
  """Translate one parsed payload into zero or more frames."""
  if not isinstance(payload, dict):
    return []

  state = state if state is not None else DecoderState()
  choices = payload.get("choices")
  if isinstance(choices, list) and choices and isinstance(choices[0], dict):
    return _decode_openai(choices[0], payload)

  event_type = payload.get("type")
  if isinstance(event_type, str):
    return _decode_anthropic(event_type, payload, state)

  # Trailing usage-only chunks carry an empty choices list.
  if isinstance(choices, list):
    usage = TokenUsage.from_payload(payload.get("usage"))
    if usage is not None:
      return [ProviderFrame.usage_totals(usage)]

  return []


async def decode_frames(lines: AsyncIterator[str]) -> AsyncIterator[ProviderFrame]:
  """Decode an async iterator of SSE lines into provider frames.

  Malformed payloads are dropped one by one. Exceptions raised by ``lines`` itself are
  transport failures and propagate unchanged.
  """
  state = DecoderState()
  try:
    async for line in lines:
      payload = _extract_payload(line)
      if payload is None:
        continue

      try:
        parsed = msgspec.json.decode(payload)
      except msgspec.DecodeError:
        logger.debug("Skipping malformed stream payload: %.120s", payload)
        continue

      for frame in decode_payload(parsed, state):
        yield frame
  finally:
    # Release the underlying line iterator when the consumer stops early.
    closer = getattr(lines, "aclose", None)
    if closer is not None:
      result = closer()
      if inspect.isawaitable(result):
        await result


@dataclass
class AggregationState:
  """Accumulated view of a reply as frames arrive."""

  accumulated_text: str = ""
  usage_totals: TokenUsage = field(default_factory=TokenUsage)
  is_terminal: bool = False
  finish_reason: str | None = None

  @property
  def truncated(self) -> bool:
    return self.finish_reason == "length"


class ResponseAggregator:
  """Fold provider frames into an :class:`AggregationState`.

  ``consume`` is the single iteration point for live streaming: every text fragment is
  appended to the state and then yielded to the caller, once and in arrival order.
  """

  def __init__(self) -> None:
    self.state = AggregationState()

  def apply(self, frame: ProviderFrame) -> str | None:
    """Apply one frame, returning the text fragment to forward (if any)."""
    if self.state.is_terminal:
      return None

    if frame.kind == "delta":
      self.state.accumulated_text += frame.text
      return frame.text

    if frame.kind == "usage":
      # Usage values are absolute totals; an all-zero report never erases a real one.
      if frame.usage is not None and not frame.usage.is_zero():
        self.state.usage_totals = frame.usage
      return None

    self.state.is_terminal = True
    self.state.finish_reason = frame.finish_reason
    return None

  async def consume(self, frames: AsyncIterator[ProviderFrame]) -> AsyncIterator[str]:
    """Accumulate frames and yield each text fragment as it arrives."""
    try:
      async for frame in frames:
        fragment = self.apply(frame)
        if fragment:
          yield fragment
        if self.state.is_terminal:
          break
    except StreamAbortedError:
      raise
    except Exception as exc:
      logger.warning("Upstream stream aborted after %d characters: %s", len(self.state.accumulated_text), exc)
      raise StreamAbortedError(self.state.accumulated_text, f"Upstream stream aborted: {exc}") from exc
    finally:
      closer = getattr(frames, "aclose", None)
      if closer is not None:
        await closer()

    if not self.state.is_terminal:
      raise StreamAbortedError(self.state.accumulated_text)
