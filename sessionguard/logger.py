"""
Structured JSON logging.

Every component receives a ``StructuredLogger`` through its constructor.
Records are rendered as one JSON object per line; fields passed through
``extra`` land under an ``"extra"`` key, with credential-bearing names
(bearer tokens, challenge tokens, verification codes, passwords) masked
before any handler sees them.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Mapping, Optional, TextIO

MASK: str = "***"

# Extra-field names whose values are never written verbatim.
SENSITIVE_FIELDS: frozenset[str] = frozenset({
    "token",
    "challenge_token",
    "code",
    "recovery_code",
    "main_email_code",
    "recovery_email_code",
    "password",
    "current_password",
    "secret",
    "authorization",
})

_RESERVED: frozenset[str] = frozenset(
    vars(logging.makeLogRecord({})).keys()
) | {"message", "asctime"}


def mask_fields(fields: Mapping[str, Any]) -> dict[str, str]:
    """Stringify *fields*, replacing sensitive values with ``MASK``."""
    return {
        key: MASK if key.lower() in SENSITIVE_FIELDS else str(value)
        for key, value in fields.items()
    }


class JSONFormatter(logging.Formatter):
    """Render a record as ``{timestamp, level, logger_name, message[, extra][, exception]}``."""

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        entry: dict[str, Any] = {
            "timestamp": created.isoformat(),
            "level": record.levelname,
            "logger_name": record.name,
            "message": record.getMessage(),
        }

        supplied = {k: v for k, v in vars(record).items() if k not in _RESERVED}
        if supplied:
            entry["extra"] = mask_fields(supplied)

        if record.exc_info and not record.exc_text:
            record.exc_text = self.formatException(record.exc_info)
        if record.exc_text:
            entry["exception"] = record.exc_text

        return json.dumps(entry, ensure_ascii=False)


class StructuredLogger:
    """Injectable JSON logger.

    Unset arguments fall back to ``AppConfig`` (``LOG_LEVEL``,
    ``LOG_FILE``, ``LOG_MAX_BYTES``, ``LOG_BACKUP_COUNT``).  An empty
    ``log_file`` keeps output on the stream only.  Handlers are attached
    once per logger name, so building a second instance with the same
    name reuses the first one's output.

    Usage::

        log = StructuredLogger(name="sessionguard.auth")
        log.info("Login accepted", extra={"event": "LOGIN", "user_id": "42"})
    """

    def __init__(
        self,
        name: str = "sessionguard",
        level: Optional[int] = None,
        stream: Optional[TextIO] = None,
        log_file: Optional[str] = None,
        max_bytes: Optional[int] = None,
        backup_count: Optional[int] = None,
    ) -> None:
        # Imported here: config imports nothing from this module, but
        # callers may build a logger before settings are first loaded.
        from sessionguard.config import get_config
        cfg = get_config()

        self._level: int = cfg.log_level if level is None else level
        self._logger: logging.Logger = logging.getLogger(name)
        self._logger.setLevel(self._level)

        if self._logger.handlers:
            return

        formatter = JSONFormatter()
        self._attach(logging.StreamHandler(stream or sys.stdout), formatter)

        path = cfg.LOG_FILE if log_file is None else log_file
        if path:
            handler = self._file_handler(
                path,
                cfg.LOG_MAX_BYTES if max_bytes is None else max_bytes,
                cfg.LOG_BACKUP_COUNT if backup_count is None else backup_count,
            )
            if handler is not None:
                self._attach(handler, formatter)

    def _attach(self, handler: logging.Handler, formatter: logging.Formatter) -> None:
        handler.setLevel(self._level)
        handler.setFormatter(formatter)
        self._logger.addHandler(handler)

    def _file_handler(
        self, path: str, max_bytes: int, backup_count: int,
    ) -> Optional[RotatingFileHandler]:
        try:
            target = Path(path)
            target.parent.mkdir(parents=True, exist_ok=True)
            return RotatingFileHandler(
                filename=str(target),
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
            )
        except OSError as exc:
            self._logger.warning(
                "Log file '%s' unavailable (%s); logging to the console only.",
                path,
                exc,
            )
            return None

    def debug(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._logger.debug(msg, *args, **kwargs)

    def info(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._logger.info(msg, *args, **kwargs)

    def warning(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._logger.warning(msg, *args, **kwargs)

    def error(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._logger.error(msg, *args, **kwargs)


def get_logger(name: str = "sessionguard") -> StructuredLogger:
    """Build a ``StructuredLogger`` with configuration defaults."""
    return StructuredLogger(name=name)
