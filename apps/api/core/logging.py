"""
Structured logging configuration.

JSON lines in production (or with LOG_FORMAT=json), plain text otherwise.
Services attach structured context through the ``extra_fields`` extra:

    logger.info("...", extra={"extra_fields": {"user_id": user_id}})

Records tagged ``error_kind=integrity`` describe stored data the engine
cannot reconcile (a user without a companion for a category). They are
copied to stderr so they can be alerted on apart from user-caused
conflicts, which stay at INFO/WARNING on stdout.
"""
import logging
import sys
import json
from datetime import datetime, timezone
from typing import Any, Dict
from core.config import settings

INTEGRITY_ERROR_KIND = "integrity"

# Marks handlers owned by setup_logging so a second call replaces them
_HANDLER_TAG = "_habit_engine_handler"


def _extra_fields(record: logging.LogRecord) -> Dict[str, Any]:
    return getattr(record, "extra_fields", None) or {}


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        log_data.update(_extra_fields(record))

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable lines with structured context appended as key=value."""

    def __init__(self):
        super().__init__("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = _extra_fields(record)
        if fields:
            line += " | " + " ".join(f"{key}={value}" for key, value in fields.items())
        return line


class IntegrityFilter(logging.Filter):
    """Pass only records tagged as data-integrity problems."""

    def filter(self, record: logging.LogRecord) -> bool:
        return _extra_fields(record).get("error_kind") == INTEGRITY_ERROR_KIND


def _tagged(handler: logging.Handler) -> logging.Handler:
    setattr(handler, _HANDLER_TAG, True)
    return handler


def setup_logging() -> logging.Logger:
    """
    Configure the root logger for the engine.

    Safe to call more than once: handlers from an earlier call are replaced,
    handlers installed by anything else are left alone.
    """
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    if settings.LOG_FORMAT == "json" or settings.ENVIRONMENT == "production":
        formatter: logging.Formatter = JSONFormatter()
    else:
        formatter = TextFormatter()

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for handler in [h for h in root_logger.handlers if getattr(h, _HANDLER_TAG, False)]:
        root_logger.removeHandler(handler)

    console_handler = _tagged(logging.StreamHandler(sys.stdout))
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    integrity_handler = _tagged(logging.StreamHandler(sys.stderr))
    integrity_handler.setLevel(logging.ERROR)
    integrity_handler.addFilter(IntegrityFilter())
    integrity_handler.setFormatter(formatter)
    root_logger.addHandler(integrity_handler)

    # Set levels for noisy libraries
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    return root_logger
