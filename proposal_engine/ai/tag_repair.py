"""Close dangling elements in markup that was cut off by the model's token limit."""

from __future__ import annotations

import logging
import re

logger = logging.getLogger(__name__)

VOID_TAGS = frozenset({"br", "hr", "img", "input", "meta", "link"})
ROOT_TAGS = ("body", "html")

_TAG_PATTERN = re.compile(r"<\/?([a-zA-Z][a-zA-Z0-9]*)[^>]*>")
_NAIVE_OPEN_PATTERN = re.compile(r"<[^/][^>]*>")
_NAIVE_CLOSE_PATTERN = re.compile(r"<\/[^>]+>")
# An opening or closing tag with no ">" before the end of the text.
_PARTIAL_TAG_PATTERN = re.compile(r"<\/?[a-zA-Z!][^>]*$")


def _unclosed_tags(text: str) -> list[str]:
  """Return the names of elements still open at the end of ``text``, oldest first."""
  stack: list[str] = []
  for match in _TAG_PATTERN.finditer(text):
    raw_tag = match.group(0)
    name = match.group(1).lower()
    if raw_tag.startswith("</"):
      # Drop the most recent matching opener, which is not necessarily the top.
      for index in range(len(stack) - 1, -1, -1):
        if stack[index] == name:
          del stack[index]
          break
      continue

    if raw_tag.endswith("/>") or name in VOID_TAGS:
      continue

    stack.append(name)

  return stack


def _drop_partial_tag(text: str) -> str:
  """Cut a tag the reply stopped in the middle of, such as ``<div class="card``."""
  partial = _PARTIAL_TAG_PATTERN.search(text)
  return text[: partial.start()].rstrip() if partial else text


def _root_closers(text: str, stack: list[str]) -> list[str]:
  # A root is closed unless the document already carries its closing tag.
  lowered = text.lower()
  return [f"</{name}>" for name in ROOT_TAGS if name in stack or f"</{name}>" not in lowered]


def repair_truncated_markup(text: str) -> str:
  """Append closing tags for every element left open, innermost first.

  A tag cut off mid-way is removed first. Inner elements are then closed in reverse order
  of opening, followed by ``</body>`` and ``</html>`` unless the document already closes
  them. Returns ``text`` unchanged when nothing needs closing or anything goes wrong.
  """
  try:
    trimmed = _drop_partial_tag(text)
    open_count = len(_NAIVE_OPEN_PATTERN.findall(trimmed))
    close_count = len(_NAIVE_CLOSE_PATTERN.findall(trimmed))
    if open_count <= close_count:
      return trimmed

    stack = _unclosed_tags(trimmed)
    if not stack:
      return trimmed

    closers = [f"</{name}>" for name in reversed(stack) if name not in ROOT_TAGS]
    closers.extend(_root_closers(trimmed, stack))
    logger.info("Repairing truncated markup: closing %d element(s)", len(closers))
    return trimmed + "\n" + "\n".join(closers)
  except Exception as exc:  # noqa: BLE001
    logger.warning("Tag repair failed; returning markup unchanged: %s", exc)
    return text
