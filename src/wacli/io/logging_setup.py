"""Centralized logging bootstrap for the wacli runtime.

// [LAW:single-enforcer] Logger handler wiring is enforced in this module only.
// [LAW:one-source-of-truth] Runtime log path/level are derived here and returned to callers.

The TUI owns the terminal, so records go to a rotating file only.
"""

from __future__ import annotations

import logging
import os
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path


@dataclass(frozen=True)
class LoggingRuntime:
    """Resolved runtime logging configuration."""

    level_name: str
    level: int
    file_path: str


_RUNTIME: LoggingRuntime | None = None


def _parse_level(raw: str) -> tuple[str, int]:
    normalized = str(raw or "INFO").strip().upper()
    level = getattr(logging, normalized, logging.INFO)
    if not isinstance(level, int):
        level = logging.INFO
    return str(logging.getLevelName(level)), int(level)


def _safe_name(value: str) -> str:
    candidate = "".join(ch if (ch.isalnum() or ch in {"-", "_"}) else "-" for ch in value)
    return candidate.strip("-_") or "session"


def _default_log_path(session_name: str) -> str:
    log_dir = Path(
        os.environ.get("WACLI_LOG_DIR", os.path.expanduser("~/.local/share/wacli/logs"))
    )
    log_dir.mkdir(parents=True, exist_ok=True)
    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    return str(log_dir / f"{_safe_name(session_name)}-{ts}-{os.getpid()}.log")


def _make_file_handler(level: int, file_path: str) -> logging.Handler:
    handler = RotatingFileHandler(
        file_path,
        maxBytes=20 * 1024 * 1024,
        backupCount=5,
        encoding="utf-8",
    )
    handler.setLevel(level)
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s [%(threadName)s] %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )
    )
    return handler


def configure(session_name: str = "default") -> LoggingRuntime:
    """Configure the wacli logger hierarchy with a rotating file handler.

    Idempotent: repeated calls return the originally configured runtime.
    """
    global _RUNTIME
    if _RUNTIME is not None:
        return _RUNTIME

    level_name, level = _parse_level(os.environ.get("WACLI_LOG_LEVEL", "INFO"))
    file_path = os.environ.get("WACLI_LOG_FILE") or _default_log_path(session_name)
    Path(file_path).parent.mkdir(parents=True, exist_ok=True)

    # [LAW:single-enforcer] All wacli module loggers propagate to this one logger.
    logger = logging.getLogger("wacli")
    logger.setLevel(level)
    logger.propagate = False
    logger.handlers.clear()
    logger.addHandler(_make_file_handler(level, file_path))

    # Keep third-party logging quiet unless it is warning+.
    root = logging.getLogger()
    if root.level > logging.WARNING:
        root.setLevel(logging.WARNING)

    logging.captureWarnings(True)

    _RUNTIME = LoggingRuntime(level_name=level_name, level=level, file_path=file_path)
    return _RUNTIME


class DiagnosticsHandler(logging.Handler):
    """Bounded in-memory tail of warning+ records.

    The reconciler hands its containment records here as well as to the file
    handler, so the diagnostics view and the log file carry the same text.
    """

    def __init__(self, limit: int = 50, level: int = logging.WARNING):
        super().__init__(level)
        self.entries: deque[str] = deque(maxlen=limit)
        self.setFormatter(logging.Formatter("%(levelname)s %(name)s %(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.entries.append(self.format(record))
        except Exception:
            self.handleError(record)


def record_diagnostic(
    logger: logging.Logger,
    handler: DiagnosticsHandler,
    level: int,
    msg: str,
    *args: object,
    exc_info: BaseException | None = None,
) -> None:
    """Log through ``logger`` and keep the same record in ``handler``."""
    exc = (type(exc_info), exc_info, exc_info.__traceback__) if exc_info is not None else None
    record = logger.makeRecord(logger.name, level, "(diagnostics)", 0, msg, args, exc)
    if logger.isEnabledFor(level):
        logger.handle(record)
    handler.handle(record)


def get_runtime() -> LoggingRuntime | None:
    """Return configured logging runtime, if configure() has run."""
    return _RUNTIME
