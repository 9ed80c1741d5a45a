"""Per-content-type cleanup of model output.

Models wrap documents in code fences, prepend chatter, or emit markup where plain
Markdown was requested. ``normalize`` turns raw accumulated text into the document the
CRM stores. Every transformation is idempotent so re-normalizing stored content is safe.
"""

from __future__ import annotations

import logging
import re
from typing import Literal

from proposal_engine.ai.tag_repair import repair_truncated_markup

logger = logging.getLogger(__name__)

ContentType = Literal["markup", "structured-text", "prose"]

CONTENT_TYPE_BY_ACTION: dict[str, ContentType] = {
  "generate_proposal": "markup",
  "stream_proposal": "markup",
  "generate_sow": "structured-text",
  "generate_goals": "prose",
}

DEFAULT_SOW_HEADING = "# Statement of Work"
LAYOUT_STYLESHEET_MARKER = "/* Page scrolling and centering */"
LAYOUT_STYLESHEET = f"""
  {LAYOUT_STYLESHEET_MARKER}
  html, body {{
    margin: 0;
    padding: 0;
    width: 100%;
    height: 100%;
    overflow-x: hidden;
  }}

  body {{
    display: flex;
    flex-direction: column;
    align-items: center;
    justify-content: flex-start;
    min-height: 100vh;
  }}

  /* Ensure content can scroll vertically */
  .container, main, [class*="container"] {{
    max-width: 100%;
    width: 100%;
  }}

  /* Page break support for printing */
  @media print {{
    section, .slide {{
      page-break-after: always;
    }}
  }}
"""

_MARKUP_LEADING_FENCE = re.compile(r"^(?:```|''')[ \t]*(?:html)?[ \t]*\n?", re.IGNORECASE)
_TRAILING_FENCE = re.compile(r"\n?[ \t]*```[ \t]*$")
_LEADING_HTML_WORD = re.compile(r"^html(?![>\w])\s*", re.IGNORECASE)
_DOCUMENT_START = re.compile(r"<!DOCTYPE|<html", re.IGNORECASE)
_STYLE_CLOSE = re.compile(r"</style>", re.IGNORECASE)
_HEAD_CLOSE = re.compile(r"</head>", re.IGNORECASE)

_STRUCTURAL_BLOCKS = (
  re.compile(r"<!DOCTYPE[^>]*>", re.IGNORECASE),
  re.compile(r"<head[^>]*>[\s\S]*?</head>", re.IGNORECASE),
  re.compile(r"<style[^>]*>[\s\S]*?</style>", re.IGNORECASE),
  re.compile(r"<script[^>]*>[\s\S]*?</script>", re.IGNORECASE),
  re.compile(r"</?html[^>]*>", re.IGNORECASE),
  re.compile(r"</?body[^>]*>", re.IGNORECASE),
)
_ANY_TAG = re.compile(r"<[^>]+>")
_MARKDOWN_LEADING_FENCE = re.compile(r"^```[ \t]*(?:markdown|md)?[ \t]*\n?", re.IGNORECASE)
_MARKDOWN_HEADING = re.compile(r"^#+\s+.*$", re.MULTILINE)


def _strip_until_stable(text: str, patterns: tuple[re.Pattern[str], ...]) -> str:
  """Apply ``patterns`` repeatedly until the text stops changing."""
  previous = None
  current = text.strip()
  while current != previous:
    previous = current
    for pattern in patterns:
      current = pattern.sub("", current).strip()
  return current


def inject_layout_stylesheet(markup: str) -> str:
  """Insert the layout stylesheet before the first ``</style>``, else before ``</head>``."""
  if LAYOUT_STYLESHEET_MARKER in markup:
    return markup

  style_close = _STYLE_CLOSE.search(markup)
  if style_close is not None:
    index = style_close.start()
    return markup[:index] + LAYOUT_STYLESHEET + markup[index:]

  head_close = _HEAD_CLOSE.search(markup)
  if head_close is not None:
    index = head_close.start()
    return markup[:index] + "<style>" + LAYOUT_STYLESHEET + "</style>\n" + markup[index:]

  return markup


def normalize_markup(raw_text: str, *, truncated: bool = False) -> str:
  text = _strip_until_stable(raw_text, (_MARKUP_LEADING_FENCE, _TRAILING_FENCE, _LEADING_HTML_WORD))

  # Drop any chatter before the document root; add a doctype when there is no root at all.
  document_start = _DOCUMENT_START.search(text)
  if document_start is None:
    text = "<!DOCTYPE html>\n" + text
  elif document_start.start() > 0:
    text = text[document_start.start() :]

  if truncated:
    text = repair_truncated_markup(text)

  return inject_layout_stylesheet(text).strip()


def normalize_structured_text(raw_text: str) -> str:
  # Markup blocks first, then any stray tag, then code fences, until nothing is left to remove.
  text = _strip_until_stable(raw_text, (*_STRUCTURAL_BLOCKS, _ANY_TAG, _MARKDOWN_LEADING_FENCE, _TRAILING_FENCE))

  if not text.startswith("#"):
    heading = _MARKDOWN_HEADING.search(text)
    if heading is not None:
      text = text[heading.start() :]
    else:
      text = f"{DEFAULT_SOW_HEADING}\n\n{text}"

  return text.strip()


def normalize_prose(raw_text: str) -> str:
  return raw_text.strip()


def normalize(content_type: ContentType, raw_text: str, *, truncated: bool = False) -> str:
  """Return the cleaned document for ``content_type``.

  Only ``markup`` honours ``truncated``; structured text is never repaired. Internal
  failures are logged and the input is returned unmodified.
  """
  try:
    if content_type == "markup":
      return normalize_markup(raw_text, truncated=truncated)

    if content_type == "structured-text":
      return normalize_structured_text(raw_text)

    return normalize_prose(raw_text)
  except Exception as exc:  # noqa: BLE001
    logger.error("Normalization failed for content_type=%s: %s", content_type, exc, exc_info=True)
    return raw_text
