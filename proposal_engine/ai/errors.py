"""Error types raised while generating documents against the upstream model provider."""

from __future__ import annotations

from typing import Any

RATE_LIMIT_HELP_URL = "https://openrouter.ai/settings/integrations"
MISSING_API_KEY_MESSAGE = "OPENROUTER_API_KEY not configured. Please add your OpenRouter API key in Settings > AI Provider Settings."
SYNC_TIMEOUT_MESSAGE = "Request timeout: Goals generation took too long. Try reducing the input size or using async mode."

_RATE_LIMIT_HINTS = ("rate-limited", "rate limit", "too many requests")


class GenerationError(RuntimeError):
  """Base class for generation failures surfaced to callers."""


class ConfigurationError(GenerationError):
  """Raised when a required credential or model setting is missing."""


class UpstreamError(GenerationError):
  """Raised when the provider answers with a non-success status."""

  def __init__(self, message: str, *, status_code: int | None = None) -> None:
    super().__init__(message)
    self.status_code = status_code

  @property
  def rate_limited(self) -> bool:
    return self.status_code == 429 or is_rate_limit_message(str(self))


class RateLimitExhaustedError(GenerationError):
  """Raised when every retry attempt was rejected as rate limited."""

  def __init__(self, attempts: int, last_error: BaseException | None = None) -> None:
    message = (
      f"Rate limit exceeded after {attempts} attempts. The model is temporarily rate-limited upstream. "
      f"To avoid this, add your own Anthropic API key at {RATE_LIMIT_HELP_URL} for higher rate limits, or wait a minute and try again."
    )
    super().__init__(message)
    self.attempts = attempts
    self.last_error = last_error
    self.help_url = RATE_LIMIT_HELP_URL


class StreamAbortedError(GenerationError):
  """Raised when a response stream ends before the provider signalled completion."""

  def __init__(self, partial_text: str, message: str = "Upstream stream ended before completion") -> None:
    super().__init__(message)
    self.partial_text = partial_text


class GenerationTimeoutError(GenerationError):
  """Raised when a synchronous caller's deadline expires."""

  def __init__(self, message: str = SYNC_TIMEOUT_MESSAGE) -> None:
    super().__init__(message)


class JobNotFoundError(GenerationError):
  """Raised when no job is visible (or claimable) for the caller."""


class JobStoreError(GenerationError):
  """Raised when the job store rejects a write needed to dispatch work."""


def is_rate_limit_message(message: str) -> bool:
  """Return True when an error message uses rate-limit phrasing."""
  lowered = message.lower()
  return any(hint in lowered for hint in _RATE_LIMIT_HINTS)


def is_rate_limited(exc: BaseException) -> bool:
  """Default retry classifier: HTTP 429 or rate-limit phrasing in the message."""
  # Prefer the structured status when the transport attached one.
  if isinstance(exc, UpstreamError) and exc.status_code == 429:
    return True

  return is_rate_limit_message(str(exc))


def upstream_error_message(status_code: int, body: Any, raw_text: str = "") -> str:
  """Build a caller-facing message from a provider error response body."""
  error = body.get("error") if isinstance(body, dict) else None
  if isinstance(error, dict):
    metadata = error.get("metadata")
    raw = str(metadata.get("raw") or "") if isinstance(metadata, dict) else ""
    # Surface the provider's own rate-limit wording when present.
    if "rate-limited" in raw:
      return "Model is temporarily rate-limited. Please wait a moment and try again, or add your API key to OpenRouter for higher limits."

    if "rate limit" in raw.lower():
      return "Rate limit exceeded. Please wait a moment and try again, or add your API key to OpenRouter for higher limits."

    if error.get("message"):
      return f"OpenRouter error: {error['message']}"

  return f"OpenRouter API error: {status_code} - {raw_text}"
