"""Retry logic with exponential backoff for rate-limited upstream calls."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from proposal_engine.ai.errors import RateLimitExhaustedError, is_rate_limited

logger = logging.getLogger(__name__)

RetryClassifier = Callable[[BaseException], bool]
SleepFunc = Callable[[float], Awaitable[None]]


class RetryController:
  """
  Execute an attempt with retries for rate-limited failures only.

  Delays grow as ``base_delay * 2 ** attempt`` (5s, 10s, 20s by default), for at most
  ``max_retries + 1`` attempts in total. Any failure the classifier does not recognise is
  raised immediately without wrapping.
  """

  def __init__(self, *, max_retries: int = 3, base_delay: float = 5.0, classifier: RetryClassifier = is_rate_limited, sleep: SleepFunc = asyncio.sleep) -> None:
    if max_retries < 0:
      raise ValueError("max_retries must be zero or a positive integer.")
    self.max_retries = max_retries
    self.base_delay = base_delay
    self._classifier = classifier
    self._sleep = sleep

  @property
  def max_attempts(self) -> int:
    return self.max_retries + 1

  def delay_for(self, attempt: int) -> float:
    return self.base_delay * (2**attempt)

  async def execute[T](self, attempt_fn: Callable[[], Awaitable[T]]) -> T:
    last_error: BaseException | None = None
    for attempt in range(self.max_attempts):
      try:
        return await attempt_fn()
      except Exception as exc:
        if not self._classifier(exc):
          # Non-retryable error, raise immediately
          raise

        last_error = exc
        if attempt >= self.max_retries:
          break

        delay = self.delay_for(attempt)
        logger.warning("Rate limited (attempt %d/%d). Retrying in %.1fs. Error: %s", attempt + 1, self.max_attempts, delay, exc)
        await self._sleep(delay)

    logger.error("Rate limit persisted after %d attempts", self.max_attempts)
    raise RateLimitExhaustedError(self.max_attempts, last_error) from last_error
