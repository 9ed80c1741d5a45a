"""Decoder and aggregator behavior across both reply dialects."""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterable

import pytest

from proposal_engine.ai.errors import StreamAbortedError
from proposal_engine.ai.streaming import AggregationState, DecoderState, ProviderFrame, ResponseAggregator, TokenUsage, decode_frames, decode_payload
from tests.support import anthropic_lines, openai_lines


async def _aiter(items: Iterable[str]) -> AsyncIterator[str]:
  for item in items:
    yield item


def _fold(frames: Iterable[ProviderFrame]) -> AggregationState:
  aggregator = ResponseAggregator()
  for frame in frames:
    aggregator.apply(frame)
  return aggregator.state


async def _collect(lines: Iterable[str]) -> tuple[list[str], ResponseAggregator]:
  aggregator = ResponseAggregator()
  fragments = [fragment async for fragment in aggregator.consume(decode_frames(_aiter(lines)))]
  return fragments, aggregator


@pytest.mark.anyio
async def test_both_dialects_produce_the_same_state() -> None:
  fragments = ["Hello", ", ", "world"]
  openai_fragments, openai = await _collect(openai_lines(fragments, usage=(7, 3)))
  anthropic_fragments, anthropic = await _collect(anthropic_lines(fragments, usage=(7, 3)))

  assert openai_fragments == anthropic_fragments == fragments
  assert openai.state.accumulated_text == anthropic.state.accumulated_text == "Hello, world"
  assert openai.state.usage_totals == anthropic.state.usage_totals == TokenUsage(input_tokens=7, output_tokens=3)
  assert openai.state.finish_reason == anthropic.state.finish_reason == "stop"
  assert openai.state.is_terminal and anthropic.state.is_terminal


@pytest.mark.anyio
async def test_anthropic_max_tokens_maps_to_length() -> None:
  _fragments, aggregator = await _collect(anthropic_lines(["<div>"], stop_reason="max_tokens"))
  assert aggregator.state.finish_reason == "length"
  assert aggregator.state.truncated


@pytest.mark.anyio
async def test_malformed_and_non_data_lines_are_skipped() -> None:
  lines = [": keepalive", "event: ping", "id: 4", "data: {not json", "data:", *openai_lines(["ok"])]
  fragments, aggregator = await _collect(lines)
  assert fragments == ["ok"]
  assert aggregator.state.accumulated_text == "ok"


@pytest.mark.anyio
async def test_stream_without_terminal_frame_aborts_with_partial_text() -> None:
  lines = openai_lines(["partial ", "text"])[:-4]
  aggregator = ResponseAggregator()
  received: list[str] = []
  with pytest.raises(StreamAbortedError) as exc_info:
    async for fragment in aggregator.consume(decode_frames(_aiter(lines))):
      received.append(fragment)

  assert received == ["partial ", "text"]
  assert exc_info.value.partial_text == "partial text"


@pytest.mark.anyio
async def test_transport_failure_mid_stream_is_wrapped() -> None:
  async def _broken() -> AsyncIterator[str]:
    yield openai_lines(["first"])[2]
    raise ConnectionResetError("peer reset")

  aggregator = ResponseAggregator()
  with pytest.raises(StreamAbortedError) as exc_info:
    async for _fragment in aggregator.consume(decode_frames(_broken())):
      pass

  assert exc_info.value.partial_text == "first"
  assert isinstance(exc_info.value.__cause__, ConnectionResetError)


def test_usage_is_overwritten_not_summed_and_zero_reports_are_ignored() -> None:
  frames = [
    ProviderFrame.delta("a"),
    ProviderFrame.usage_totals(TokenUsage(5, 1)),
    ProviderFrame.usage_totals(TokenUsage(5, 9)),
    ProviderFrame.usage_totals(TokenUsage(0, 0)),
    ProviderFrame.terminal("stop"),
  ]
  state = _fold(frames)
  assert state.usage_totals == TokenUsage(5, 9)
  assert state.usage_totals.total_tokens == 14


def test_frames_after_terminal_are_ignored() -> None:
  state = _fold([ProviderFrame.delta("done"), ProviderFrame.terminal("stop"), ProviderFrame.delta(" extra")])
  assert state.accumulated_text == "done"


def test_openai_chunk_emits_delta_usage_then_terminal() -> None:
  payload = {"choices": [{"delta": {"content": "x"}, "finish_reason": "length"}], "usage": {"prompt_tokens": 2, "completion_tokens": 3}}
  kinds = [frame.kind for frame in decode_payload(payload)]
  assert kinds == ["delta", "usage", "terminal"]


def test_usage_only_chunk_with_empty_choices() -> None:
  frames = decode_payload({"choices": [], "usage": {"prompt_tokens": 4, "completion_tokens": 6}})
  assert frames == [ProviderFrame.usage_totals(TokenUsage(4, 6))]


def test_anthropic_message_delta_reuses_input_tokens_from_message_start() -> None:
  state = DecoderState()
  decode_payload({"type": "message_start", "message": {"usage": {"input_tokens": 21, "output_tokens": 1}}}, state)
  frames = decode_payload({"type": "message_delta", "delta": {"stop_reason": "end_turn"}, "usage": {"output_tokens": 40}}, state)
  assert frames == [ProviderFrame.usage_totals(TokenUsage(21, 40))]
  assert decode_payload({"type": "message_stop"}, state) == [ProviderFrame.terminal("stop")]
