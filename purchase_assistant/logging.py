from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Generator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any

from purchase_assistant.config import get_log_path, load_config

# Identifies one chat turn across resolver, store and renderer log lines.
_turn_id: ContextVar[str] = ContextVar("turn_id", default="")

NOISY_LOGGERS = ("httpx", "httpcore", "telegram.ext.Updater")


def get_turn_id() -> str:
    """Return the id of the turn being processed, or an empty string outside a turn."""
    return _turn_id.get()


def new_turn_id() -> str:
    """Short id for one chat message, e.g. ``142305-9f3a1c``.

    The UTC time prefix keeps ids from the same log file roughly sortable.
    """
    return f"{datetime.now(timezone.utc):%H%M%S}-{uuid.uuid4().hex[:6]}"


@contextmanager
def turn_context(turn_id: str | None = None) -> Generator[str, None, None]:
    """Tag every log record emitted inside the block with a turn id."""
    previous = _turn_id.get()
    current = turn_id or new_turn_id()
    _turn_id.set(current)
    try:
        yield current
    finally:
        _turn_id.set(previous)


class TurnIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.turn_id = get_turn_id() or "-"
        return True


class StructuredFormatter(logging.Formatter):
    """One JSON object per line, keyed by the turn that produced it.

    Fields passed to ``log_with_context`` (intent, outcome, duration) land under
    ``fields`` so a turn can be reconstructed with a single ``turn_id`` filter.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "turn_id": getattr(record, "turn_id", "-"),
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        if hasattr(record, "extra_data"):
            log_entry["fields"] = record.extra_data
        return json.dumps(log_entry, default=str)


class TurnTextFormatter(logging.Formatter):
    """Pipe separated text lines; structured fields are appended as key=value."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s | %(levelname)s | %(turn_id)s | %(name)s | %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = getattr(record, "extra_data", None)
        if fields:
            line += " | " + " ".join(f"{key}={value}" for key, value in fields.items())
        return line


def configure_logging(config: dict[str, Any] | None = None) -> None:
    cfg = config or load_config()
    logging_cfg = cfg.get("logging", {}) if isinstance(cfg.get("logging"), dict) else {}
    level_name = str(logging_cfg.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)
    use_json = bool(logging_cfg.get("json_format", False))

    log_path = get_log_path(cfg)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(level)

    # The Telegram poller logs every HTTP round trip at INFO.
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if root.handlers:
        # Avoid duplicate handlers when app is imported repeatedly in tests.
        return

    turn_filter = TurnIdFilter()

    if use_json:
        fmt: logging.Formatter = StructuredFormatter()
    else:
        fmt = TurnTextFormatter()

    stream = logging.StreamHandler()
    stream.setFormatter(fmt)
    stream.addFilter(turn_filter)
    root.addHandler(stream)

    file_handler = RotatingFileHandler(
        log_path, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8"
    )
    file_handler.setFormatter(fmt)
    file_handler.addFilter(turn_filter)
    root.addHandler(file_handler)


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    **extra: Any,
) -> None:
    """Log a message with structured fields attached as ``extra_data``."""
    if not logger.isEnabledFor(level):
        return
    record = logger.makeRecord(
        logger.name,
        level,
        "(unknown)",
        0,
        message,
        (),
        None,
    )
    record.extra_data = extra
    record.turn_id = get_turn_id() or "-"
    logger.handle(record)
