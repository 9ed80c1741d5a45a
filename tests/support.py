"""Scripted upstream replies and SSE builders shared by the test suite."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Iterable
from typing import Any

from proposal_engine.ai.providers.openrouter import UpstreamRequest

TEST_USER_ID = "user-1"


async def no_sleep(_delay: float) -> None:
  return None


def openai_lines(fragments: Iterable[str], *, finish_reason: str = "stop", usage: tuple[int, int] | None = (12, 34)) -> list[str]:
  """Build an OpenAI-dialect SSE body, one ``data:`` line per chunk."""
  lines = [": OPENROUTER PROCESSING", ""]
  for fragment in fragments:
    lines.append("data: " + json.dumps({"choices": [{"delta": {"content": fragment}, "finish_reason": None}]}))
    lines.append("")
  final: dict[str, Any] = {"choices": [{"delta": {}, "finish_reason": finish_reason}]}
  if usage is not None:
    final["usage"] = {"prompt_tokens": usage[0], "completion_tokens": usage[1], "total_tokens": sum(usage)}
  lines.append("data: " + json.dumps(final))
  lines.append("")
  lines.append("data: [DONE]")
  return lines


def anthropic_lines(fragments: Iterable[str], *, stop_reason: str = "end_turn", usage: tuple[int, int] = (12, 34)) -> list[str]:
  """Build an Anthropic-dialect SSE body carrying the same reply."""
  lines = ["event: message_start", "data: " + json.dumps({"type": "message_start", "message": {"usage": {"input_tokens": usage[0], "output_tokens": 1}}}), ""]
  for fragment in fragments:
    lines.append("event: content_block_delta")
    lines.append("data: " + json.dumps({"type": "content_block_delta", "index": 0, "delta": {"type": "text_delta", "text": fragment}}))
    lines.append("")
  lines.append("data: " + json.dumps({"type": "message_delta", "delta": {"stop_reason": stop_reason}, "usage": {"output_tokens": usage[1]}}))
  lines.append("data: " + json.dumps({"type": "message_stop"}))
  return lines


def completion_body(content: str, *, finish_reason: str = "stop", usage: tuple[int, int] = (12, 34)) -> dict[str, Any]:
  return {"choices": [{"message": {"role": "assistant", "content": content}, "finish_reason": finish_reason}], "usage": {"prompt_tokens": usage[0], "completion_tokens": usage[1]}}


class FakeUpstreamStream:
  """Replays scripted SSE lines; ``error`` is raised after all lines are sent."""

  def __init__(self, lines: list[str], *, error: Exception | None = None) -> None:
    self._lines = lines
    self._error = error
    self.closed = False

  async def lines(self) -> AsyncIterator[str]:
    for line in self._lines:
      yield line
    if self._error is not None:
      raise self._error

  async def aclose(self) -> None:
    self.closed = True


class FakeTransport:
  """Scripted upstream: each call pops the next reply, raising it when it is an exception."""

  def __init__(self) -> None:
    self.completions: list[dict[str, Any] | Exception] = []
    self.streams: list[FakeUpstreamStream | Exception] = []
    self.requests: list[tuple[UpstreamRequest, str]] = []
    self.opened: list[FakeUpstreamStream] = []

  async def complete(self, request: UpstreamRequest, api_key: str) -> dict[str, Any]:
    self.requests.append((request, api_key))
    reply = self.completions.pop(0)
    if isinstance(reply, Exception):
      raise reply
    return reply

  async def open_stream(self, request: UpstreamRequest, api_key: str) -> FakeUpstreamStream:
    self.requests.append((request, api_key))
    reply = self.streams.pop(0)
    if isinstance(reply, Exception):
      raise reply
    self.opened.append(reply)
    return reply


