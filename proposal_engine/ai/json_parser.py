"""Lenient JSON parsing for model replies that should contain a JSON object."""

from __future__ import annotations

import json
import re
from typing import Any

_LEADING_JSON_FENCE = re.compile(r"^```(?:json)?\s*\n?", re.IGNORECASE)
_TRAILING_FENCE = re.compile(r"\n?```\s*$")
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")


def _extract_object(raw: str) -> str | None:
  """Return the text between the first ``{`` and the last ``}``."""
  first = raw.find("{")
  last = raw.rfind("}")
  if first == -1 or last <= first:
    return None
  return raw[first : last + 1]


def parse_json_object(raw: str) -> dict[str, Any]:
  """Parse a JSON object from model output, tolerating fences and surrounding chatter."""
  text = raw.strip()
  # Prefer strict parsing so valid JSON is preserved without mutation.
  try:
    parsed: Any = json.loads(text)
  except json.JSONDecodeError as exc:
    text = _TRAILING_FENCE.sub("", _LEADING_JSON_FENCE.sub("", text)).strip()
    candidate = _extract_object(text)
    if candidate is None:
      raise exc

    try:
      parsed = json.loads(candidate)
    except json.JSONDecodeError:
      # Strip trailing commas that commonly appear in LLM output.
      parsed = json.loads(_TRAILING_COMMA_RE.sub(r"\1", candidate))

  if not isinstance(parsed, dict):
    raise ValueError("Expected a JSON object in the model response")
  return parsed
