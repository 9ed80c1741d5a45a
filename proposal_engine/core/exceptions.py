"""Exception handlers that turn failures into JSON bodies without echoing request payloads."""

import logging
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError

from proposal_engine.ai.errors import (
  ConfigurationError,
  GenerationError,
  GenerationTimeoutError,
  JobNotFoundError,
  RateLimitExhaustedError,
  StreamAbortedError,
  UpstreamError,
)
from proposal_engine.core.json import MsgspecJSONResponse

logger = logging.getLogger(__name__)

INTERNAL_ERROR_DETAIL = "Internal Server Error"

# Most specific classes first; the first isinstance match wins.
_GENERATION_STATUS: tuple[tuple[type[GenerationError], int], ...] = (
  (ConfigurationError, status.HTTP_400_BAD_REQUEST),
  (JobNotFoundError, status.HTTP_404_NOT_FOUND),
  (RateLimitExhaustedError, status.HTTP_429_TOO_MANY_REQUESTS),
  (GenerationTimeoutError, status.HTTP_504_GATEWAY_TIMEOUT),
  (UpstreamError, status.HTTP_502_BAD_GATEWAY),
  (StreamAbortedError, status.HTTP_502_BAD_GATEWAY),
)


def _request_id(request: Request) -> str | None:
  return getattr(request.state, "request_id", None)


def _json_safe(value: Any) -> Any:
  if value is None or isinstance(value, bool | int | float | str):
    return value
  if isinstance(value, dict):
    return {str(key): _json_safe(item) for key, item in value.items()}
  if isinstance(value, list | tuple | set):
    return [_json_safe(item) for item in value]
  if isinstance(value, BaseException):
    return f"{type(value).__name__}: {value}" if str(value) else type(value).__name__
  return str(value)


def _detail_body(detail: Any, request_id: str | None) -> dict[str, Any]:
  body: dict[str, Any] = {"detail": detail}
  if request_id:
    body["requestId"] = request_id
  return body


def _sanitize_validation_errors(errors: list[dict[str, Any]]) -> list[dict[str, Any]]:
  """Drop the offending ``input`` (top level and in ``ctx``) so transcripts never reach logs or callers."""
  cleaned = []
  for error in errors:
    entry = {key: value for key, value in error.items() if key != "input"}
    ctx = entry.get("ctx")
    if isinstance(ctx, dict):
      entry["ctx"] = {key: value for key, value in ctx.items() if key != "input"}
    cleaned.append(_json_safe(entry))
  return cleaned


def generation_status_code(exc: GenerationError) -> int:
  return next((code for error_type, code in _GENERATION_STATUS if isinstance(exc, error_type)), status.HTTP_500_INTERNAL_SERVER_ERROR)


def generation_error_body(exc: GenerationError, *, request_id: str | None = None) -> dict[str, Any]:
  """Caller-facing body for a generation failure: ``{success: false, error, ...}``."""
  body: dict[str, Any] = {"success": False, "error": str(exc)}
  if isinstance(exc, RateLimitExhaustedError):
    body.update(error_type="rate_limit", help_url=exc.help_url)
  if request_id:
    body["requestId"] = request_id
  return body


async def global_exception_handler(request: Request, exc: Exception) -> MsgspecJSONResponse:
  request_id = _request_id(request)
  logger.error("Unhandled %s on %s %s request_id=%s", type(exc).__name__, request.method, request.url.path, request_id, exc_info=exc)
  return MsgspecJSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content=_detail_body(INTERNAL_ERROR_DETAIL, request_id))


async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> MsgspecJSONResponse:
  request_id = _request_id(request)
  errors = _sanitize_validation_errors(exc.errors())
  logger.warning("Rejected %s %s with 422 request_id=%s errors=%s", request.method, request.url.path, request_id, errors)
  return MsgspecJSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=_detail_body(errors, request_id))


async def http_exception_handler(request: Request, exc: HTTPException) -> MsgspecJSONResponse:
  """Pass 4xx details through; replace 5xx details with a generic message."""
  from proposal_engine.config import get_settings

  request_id = _request_id(request)
  if exc.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
    logger.error("HTTP %s on %s request_id=%s detail=%s", exc.status_code, request.url.path, request_id, exc.detail, exc_info=exc)
    return MsgspecJSONResponse(status_code=exc.status_code, content=_detail_body(INTERNAL_ERROR_DETAIL, request_id))

  if get_settings().log_http_4xx:
    logger.warning("HTTP %s on %s request_id=%s detail=%s", exc.status_code, request.url.path, request_id, exc.detail)
  return MsgspecJSONResponse(status_code=exc.status_code, content=_detail_body(exc.detail, request_id), headers=exc.headers)


async def generation_exception_handler(request: Request, exc: GenerationError) -> MsgspecJSONResponse:
  """Map generation failures onto status codes with a user-actionable message."""
  request_id = _request_id(request)
  status_code = generation_status_code(exc)
  if status_code == status.HTTP_500_INTERNAL_SERVER_ERROR:
    # Store failures keep their details in the log only.
    logger.error("Generation failed with %s on %s request_id=%s", type(exc).__name__, request.url.path, request_id, exc_info=exc)
    exc = GenerationError(INTERNAL_ERROR_DETAIL)
  elif status_code == status.HTTP_502_BAD_GATEWAY:
    logger.error("Upstream failure on %s request_id=%s: %s", request.url.path, request_id, exc)
  else:
    logger.warning("Generation rejected with %s on %s request_id=%s: %s", status_code, request.url.path, request_id, exc)
  return MsgspecJSONResponse(status_code=status_code, content=generation_error_body(exc, request_id=request_id))
