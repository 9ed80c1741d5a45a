"""Decide how a generation request is executed."""

from __future__ import annotations

from enum import Enum

ASYNC_ONLY_ACTIONS = frozenset({"generate_proposal", "stream_proposal", "generate_sow"})


class DispatchMode(str, Enum):
  """Execution modes for a generation request."""

  SYNC = "sync"
  ASYNC_BACKGROUND = "async-background"
  ASYNC_STREAM = "async-stream"


def choose_dispatch_mode(action: str, *, async_requested: bool | None = None, stream_requested: bool | None = None) -> DispatchMode:
  """Pick the execution mode from the action and the caller's optional flags.

  ``None`` means the caller did not send the flag, which is not the same as ``False``:
  documents default to streaming, while goals only stream when asked to.
  """
  if action in ASYNC_ONLY_ACTIONS:
    return DispatchMode.ASYNC_BACKGROUND if stream_requested is False else DispatchMode.ASYNC_STREAM

  if action == "generate_goals":
    if async_requested is False:
      return DispatchMode.SYNC
    if stream_requested is True or (async_requested is True and stream_requested is not False):
      return DispatchMode.ASYNC_STREAM
    return DispatchMode.ASYNC_BACKGROUND

  # Focus-area analysis and anything else without a job answers inline.
  return DispatchMode.SYNC
