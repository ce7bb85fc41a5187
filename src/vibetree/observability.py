"""Logging for vibetree.

All output goes through the ``vibetree`` logger: a rotating per-session file
under ``~/.vibetree/logs`` plus stderr for warnings and errors. Settings come
from the environment so that they apply before any config file is read:

    VIBETREE_LOG_DIR           log directory (default ~/.vibetree/logs)
    VIBETREE_LOG_LEVEL         DEBUG, INFO, WARNING or ERROR (default INFO)
    VIBETREE_LOG_MAX_BYTES     rotation size (default 10 MB)
    VIBETREE_LOG_BACKUP_COUNT  rotated files kept (default 5)
    VIBETREE_LOG_DISABLE_FILE  1/true/yes for stderr only
"""

from __future__ import annotations

import json
import logging
import os
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional


LOGGER_NAME = "vibetree"

ENV_LOG_DIR = "VIBETREE_LOG_DIR"
ENV_LOG_LEVEL = "VIBETREE_LOG_LEVEL"
ENV_LOG_MAX_BYTES = "VIBETREE_LOG_MAX_BYTES"
ENV_LOG_BACKUP_COUNT = "VIBETREE_LOG_BACKUP_COUNT"
ENV_LOG_DISABLE_FILE = "VIBETREE_LOG_DISABLE_FILE"

DEFAULT_LOG_DIR = Path.home() / ".vibetree" / "logs"
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_MAX_BYTES = 10 * 1024 * 1024
DEFAULT_BACKUP_COUNT = 5

_LINE_FORMAT = "[%(levelname)s %(asctime)s] %(message)s"
_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

_logger_initialized = False
_session_start: Optional[str] = None


def _get_log_level() -> int:
    name = os.getenv(ENV_LOG_LEVEL, DEFAULT_LOG_LEVEL).upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def _get_log_file_path() -> Optional[Path]:
    """Session log file (vibetree_<YYYY-mm-dd_HHMMSS>.log), or None when disabled."""
    global _session_start
    if os.getenv(ENV_LOG_DISABLE_FILE, "").lower() in ("1", "true", "yes"):
        return None
    if _session_start is None:
        _session_start = datetime.now(timezone.utc).strftime("%Y-%m-%d_%H%M%S")
    log_dir = Path(os.getenv(ENV_LOG_DIR) or DEFAULT_LOG_DIR)
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir / f"vibetree_{_session_start}.log"


def _build_handlers(level: int) -> List[logging.Handler]:
    handlers: List[logging.Handler] = []
    try:
        log_file = _get_log_file_path()
    except OSError:
        # Unwritable log directory: stderr only
        log_file = None
    if log_file is not None:
        handlers.append(
            RotatingFileHandler(
                str(log_file),
                maxBytes=int(os.getenv(ENV_LOG_MAX_BYTES) or DEFAULT_MAX_BYTES),
                backupCount=int(os.getenv(ENV_LOG_BACKUP_COUNT) or DEFAULT_BACKUP_COUNT),
            )
        )
        handlers[-1].setLevel(level)

    stderr = logging.StreamHandler()
    stderr.setLevel(max(level, logging.WARNING))
    handlers.append(stderr)
    return handlers


def _get_logger() -> logging.Logger:
    """The ``vibetree`` logger, (re)configured from the environment on first use."""
    global _logger_initialized
    logger = logging.getLogger(LOGGER_NAME)
    if _logger_initialized:
        return logger

    _logger_initialized = True
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    level = _get_log_level()
    logger.setLevel(level)
    formatter = logging.Formatter(_LINE_FORMAT, datefmt=_DATE_FORMAT)
    for handler in _build_handlers(level):
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    return logger


def configure_from_config(logging_config: Any) -> None:
    """Seed the logging environment from a loaded ``LoggingConfig``.

    Variables already present in the environment are left alone. The logger
    is rebuilt on its next use.
    """
    global _logger_initialized
    seeded = {
        ENV_LOG_LEVEL: logging_config.level,
        ENV_LOG_DIR: logging_config.dir,
        ENV_LOG_MAX_BYTES: str(logging_config.max_bytes),
        ENV_LOG_BACKUP_COUNT: str(logging_config.backup_count),
        ENV_LOG_DISABLE_FILE: "1" if logging_config.disable_file else "",
    }
    for env_var, value in seeded.items():
        if value and env_var not in os.environ:
            os.environ[env_var] = value
    _logger_initialized = False


def _format(message: str, fields: Dict[str, Any]) -> str:
    if not fields:
        return message
    return f"{message} {json.dumps(fields, separators=(',', ':'), sort_keys=True, default=str)}"


def log_action(action: str, *, outcome: str = "ok", duration_ms: Optional[float] = None, **fields: Any) -> None:
    """One JSON line per completed action.

    ``ts``, ``action`` and ``outcome`` are always present; ``duration_ms`` is
    rounded to two decimals; extra fields are added as-is.
    """
    payload: Dict[str, Any] = {
        "ts": datetime.now(timezone.utc).isoformat(),
        "action": action,
        "outcome": outcome,
    }
    if duration_ms is not None:
        payload["duration_ms"] = round(duration_ms, 2)
    payload.update(fields)
    _get_logger().info(json.dumps(payload, separators=(",", ":"), sort_keys=True, default=str))


def log_debug(message: str, **fields: Any) -> None:
    logger = _get_logger()
    if logger.isEnabledFor(logging.DEBUG):
        logger.debug(_format(message, fields))


def log_warning(message: str, **fields: Any) -> None:
    _get_logger().warning(_format(message, fields))


def log_error(message: str, **fields: Any) -> None:
    _get_logger().error(_format(message, fields))


@contextmanager
def timeit(action: str, **fields: Any) -> Iterator[Dict[str, Any]]:
    """Time the block and ``log_action`` it with outcome ok or error.

    The yielded dict is merged into the final log line, so the block can
    report counts it only knows at the end. Exceptions are re-raised.
    """
    extra: Dict[str, Any] = {}
    start = time.perf_counter()
    try:
        yield extra
    except Exception:
        log_action(action, outcome="error", duration_ms=_elapsed_ms(start), **fields)
        raise
    log_action(action, outcome="ok", duration_ms=_elapsed_ms(start), **{**fields, **extra})


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000.0
