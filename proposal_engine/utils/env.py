"""Populate ``os.environ`` from a local ``.env`` file before settings are read."""

from __future__ import annotations

import os
from pathlib import Path

_QUOTES = ('"', "'")


def default_env_path() -> Path:
  return Path(__file__).resolve().parents[2] / ".env"


def _parse_assignment(raw_line: str) -> tuple[str, str] | None:
  """Split ``[export ]KEY=value`` into a pair; comments and malformed lines give None."""
  stripped = raw_line.strip()
  if stripped.startswith("#"):
    return None

  name, sep, value = stripped.removeprefix("export ").partition("=")
  name = name.strip()
  if not sep or not name:
    return None

  value = value.strip()
  if len(value) >= 2 and value[0] in _QUOTES and value[-1] == value[0]:
    value = value[1:-1]
  return name, value


def load_env_file(path: Path, *, override: bool = False) -> None:
  """Export assignments from ``path``; existing variables win unless ``override`` is set."""
  if not path.is_file():
    return

  with path.open(encoding="utf-8") as handle:
    assignments = [pair for pair in map(_parse_assignment, handle) if pair is not None]

  for name, value in assignments:
    if override or name not in os.environ:
      os.environ[name] = value
