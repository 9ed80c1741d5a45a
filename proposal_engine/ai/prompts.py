"""Prompt construction for each generation action."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

MAX_TOKENS_BY_ACTION: dict[str, int] = {
  "generate_goals": 8192,
  "generate_sow": 8192,
  "generate_proposal": 16384,
  "stream_proposal": 16384,
  "analyze_focus_areas": 4096,
}

_LENGTH_GUIDANCE = {
  "short": "Keep the document concise: under 1000 words, approximately 2 pages.",
  "medium": "Create a medium-length document: 1000-2500 words, approximately 3-5 pages.",
  "long": "Create a comprehensive document: over 2500 words, approximately 6+ pages.",
}

_SYSTEM_PROMPTS = {
  "generate_goals": (
    "You are an expert business consultant who extracts strategic goals and objectives from sales call transcripts. "
    "Organize goals by category, include specific metrics and timelines where mentioned, and keep the language professional and clear."
  ),
  "generate_sow": (
    "You are an expert proposal writer who creates Statement of Work documents in MARKDOWN FORMAT ONLY. "
    "Start with markdown headers, use markdown syntax only, and never emit HTML, CSS or JavaScript."
  ),
  "generate_proposal": (
    "You are an expert proposal designer who produces a complete, self-contained HTML proposal document. "
    "Return a single HTML document starting with <!DOCTYPE html>, with styles in a <style> block inside <head>, and no surrounding commentary."
  ),
  "analyze_focus_areas": "You analyze meeting transcripts and answer with valid JSON only.",
}
_SYSTEM_PROMPTS["stream_proposal"] = _SYSTEM_PROMPTS["generate_proposal"]


@dataclass(frozen=True)
class PromptBundle:
  """Everything the orchestrator needs to call the model for one action."""

  system_prompt: str
  user_prompt: str
  max_tokens: int
  model: str | None = None

  def messages(self) -> list[dict[str, str]]:
    messages: list[dict[str, str]] = []
    if self.system_prompt:
      messages.append({"role": "system", "content": self.system_prompt})
    messages.append({"role": "user", "content": self.user_prompt})
    return messages


class PromptSource(Protocol):
  """Builds prompts for an action from the caller's validated parameters."""

  def build(self, action: str, payload: dict[str, Any]) -> PromptBundle: ...


def _client_lines(payload: dict[str, Any]) -> str:
  lines = []
  if payload.get("contact_name"):
    lines.append(f"Client: {payload['contact_name']}")
  if payload.get("company_name"):
    lines.append(f"Company: {payload['company_name']}")
  return "\n".join(lines)


def _transcripts_text(payload: dict[str, Any]) -> str:
  transcripts = payload.get("transcripts") or []
  if isinstance(transcripts, str):
    return transcripts
  return "\n\n---\n\n".join(str(item) for item in transcripts)


def _focus_areas_text(payload: dict[str, Any], closing: str) -> str:
  focus_areas = payload.get("focus_areas") or []
  if not focus_areas:
    return ""
  numbered = "\n".join(f"{index}. {area}" for index, area in enumerate(focus_areas, start=1))
  return f"\n\nFOCUS AREAS TO EMPHASIZE:\n{numbered}\n\n{closing}"


def length_guidance(payload: dict[str, Any]) -> str:
  """Describe the requested document length; named targets win over numeric ones."""
  length_target = payload.get("length_target")
  if length_target in _LENGTH_GUIDANCE:
    return _LENGTH_GUIDANCE[length_target]
  if payload.get("word_limit"):
    return f"Target approximately {payload['word_limit']} words."
  if payload.get("page_target"):
    return f"Target approximately {payload['page_target']} pages."
  return ""


class TemplatePromptSource:
  """Default prompt source built from short in-code templates."""

  def __init__(self, *, max_tokens: dict[str, int] | None = None) -> None:
    self._max_tokens = {**MAX_TOKENS_BY_ACTION, **(max_tokens or {})}

  def build(self, action: str, payload: dict[str, Any]) -> PromptBundle:
    if action not in _SYSTEM_PROMPTS:
      raise ValueError(f"Unsupported action: {action}")

    client = _client_lines(payload)
    if action == "generate_goals":
      focus = _focus_areas_text(payload, "Please ensure these focus areas are prominently featured in the Goals & Objectives document.")
      user_prompt = f"Analyze the following sales call transcripts and create a comprehensive Goals & Objectives document.\n\n{client}\n\nCall Transcripts:\n{_transcripts_text(payload)}{focus}"
    elif action == "analyze_focus_areas":
      user_prompt = (
        "Analyze the following meeting transcripts and identify 5-10 key focus areas that should be included in a proposal or Statement of Work.\n\n"
        f"{client}\n\nMeeting Transcripts:\n{_transcripts_text(payload)}\n\n"
        "For each focus area provide an id, a concise title (5-8 words), a brief description (20-40 words) and a category.\n"
        'Return ONLY valid JSON of the form {"focus_areas": [{"id": "focus-1", "title": "...", "description": "...", "category": "Strategy"}]}'
      )
    else:
      document = "Statement of Work" if action == "generate_sow" else "proposal"
      focus = _focus_areas_text(payload, f"Ensure these focus areas receive prominent coverage in the {document}.")
      guidance = length_guidance(payload)
      user_prompt = f"Transform the following Goals & Objectives document into a {document}.\n\n{client}\n\nGoals & Objectives:\n{payload.get('goals') or ''}{focus}"
      if guidance:
        user_prompt = f"{user_prompt}\n\nLENGTH REQUIREMENTS:\n{guidance}"

    return PromptBundle(system_prompt=_SYSTEM_PROMPTS[action], user_prompt=user_prompt.strip(), max_tokens=self._max_tokens[action])
