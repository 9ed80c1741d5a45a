"""Process-wide logging: a stdout stream plus a size-rotated log file per process start."""

import logging
import logging.handlers
import sys
import time
import traceback
from pathlib import Path
from types import TracebackType

from proposal_engine.config import Settings

LOG_LINE_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
# Frames kept from the end of a traceback on the console.
TRACEBACK_TAIL_LINES = 5
# Loggers that install their own handlers and would otherwise bypass ours.
_SERVER_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "fastapi")
_CHATTY_LOGGERS = ("httpx", "httpcore", "asyncio", "sqlalchemy.engine")

_active_log_path: Path | None = None


class TruncatedFormatter(logging.Formatter):
  """Console formatter that elides the middle of long tracebacks."""

  # ruff: noqa: N802
  def formatException(self, ei: tuple[type[BaseException] | None, BaseException | None, TracebackType | None]) -> str:
    parts = traceback.format_exception(*ei)
    if len(parts) <= TRACEBACK_TAIL_LINES + 1:
      return "".join(parts)
    head, tail = parts[0], parts[-TRACEBACK_TAIL_LINES:]
    return "".join([head, "    ...\n", *tail])


def _backup_namer(default_name: str) -> str:
  """Map ``x.log.3`` onto ``x.log-3`` so rotated files sort next to the live one."""
  stem, dot, suffix = default_name.rpartition(".")
  return f"{stem}-{suffix}" if dot and suffix.isdigit() else default_name


def _default_log_dir() -> Path:
  return Path(__file__).resolve().parents[2] / "logs"


def _new_log_path(log_dir: Path) -> Path:
  try:
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / time.strftime("proposal_engine_%Y%m%d_%H%M%S.log")
    log_path.touch(exist_ok=True)
  except OSError as exc:
    raise RuntimeError(f"Cannot prepare log file under {log_dir}: {exc}") from exc
  return log_path


def _build_handlers(settings: Settings, log_dir: Path | None = None) -> tuple[logging.Handler, logging.Handler, Path]:
  """Return ``(stdout_handler, rotating_file_handler, log_path)``."""
  log_path = _new_log_path(log_dir or _default_log_dir())

  console = logging.StreamHandler(sys.stdout)
  console.setFormatter(TruncatedFormatter(LOG_LINE_FORMAT, datefmt=LOG_DATE_FORMAT))

  rotating = logging.handlers.RotatingFileHandler(log_path, maxBytes=settings.log_max_bytes, backupCount=settings.log_backup_count, encoding="utf-8")
  rotating.namer = _backup_namer
  # Full tracebacks go to the file.
  rotating.setFormatter(logging.Formatter(LOG_LINE_FORMAT, datefmt=LOG_DATE_FORMAT))
  return console, rotating, log_path


def setup_logging(settings: Settings, log_dir: Path | None = None) -> Path:
  """Install the handlers on the root logger and on the server loggers."""
  handlers = _build_handlers(settings, log_dir)
  console, rotating, log_path = handlers

  logging.basicConfig(level=logging.DEBUG if settings.debug else logging.INFO, handlers=[console, rotating], force=True)
  for name in _SERVER_LOGGERS:
    server_logger = logging.getLogger(name)
    server_logger.handlers = [console, rotating]
    server_logger.propagate = False
  for name in _CHATTY_LOGGERS:
    logging.getLogger(name).setLevel(logging.WARNING)
  return log_path


def initialize_logging(settings: Settings) -> Path:
  """Configure logging on first call; later calls return the existing log path."""
  global _active_log_path
  if _active_log_path is None:
    _active_log_path = setup_logging(settings)
    logging.getLogger(__name__).info("Logging to %s (debug=%s)", _active_log_path, settings.debug)
  return _active_log_path
