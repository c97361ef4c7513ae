"""
Logging setup for the sample ingestion pipeline.

JSON lines for log files and aggregation, coloured text for terminals.
Per-file context (upload name, stage) travels through LoggerAdapter so a
batch run can be filtered down to a single upload.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, MutableMapping, Optional

# Context keys lifted from LogRecord attributes into the JSON payload
CONTEXT_FIELDS = ("upload", "stage")
LOG_FILE_MAX_BYTES = 10485760
LOG_FILE_BACKUPS = 5


class JSONFormatter(logging.Formatter):
    """Formats log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                log_obj[key] = value

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_obj, default=str)


class ColoredFormatter(logging.Formatter):
    """Adds ANSI colours to the level name for terminal output."""

    COLORS = {
        "DEBUG": "\033[36m",     # Cyan
        "INFO": "\033[32m",      # Green
        "WARNING": "\033[33m",   # Yellow
        "ERROR": "\033[31m",     # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        original = record.levelname
        record.levelname = f"{color}{original}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = original


def setup_logging(
    level: str = "INFO",
    log_format: str = "text",
    log_file: Optional[str] = None,
    console_enabled: bool = True,
    colored: bool = True,
) -> None:
    """
    Configure application-wide logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Console output format ("json" or "text")
        log_file: Optional file path; file output is always JSON and
            rotates at 10MB
        console_enabled: Whether to log to stderr
        colored: Colour the level name (text format only)
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers = []

    if log_format == "json":
        formatter: logging.Formatter = JSONFormatter()
    else:
        fmt = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
        datefmt = "%Y-%m-%d %H:%M:%S"
        if colored:
            formatter = ColoredFormatter(fmt, datefmt)
        else:
            formatter = logging.Formatter(fmt, datefmt)

    if console_enabled:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=LOG_FILE_MAX_BYTES,
            backupCount=LOG_FILE_BACKUPS,
        )
        file_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(file_handler)


def get_logger(name: str) -> logging.Logger:
    """Return the logger for a pipeline component."""
    return logging.getLogger(name)


class LoggerAdapter(logging.LoggerAdapter):
    """
    Merges persistent context into every record's ``extra``.

    Call-site ``extra`` wins over the adapter's context, so a stage name
    can be attached to a single message.
    """

    def process(
        self, msg: str, kwargs: MutableMapping[str, Any]
    ) -> tuple:
        extra = dict(self.extra)
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        prefix = extra.get("upload")
        if prefix:
            msg = f"[{prefix}] {msg}"
        return msg, kwargs


def create_logger_with_context(
    name: str, context: Dict[str, Any]
) -> LoggerAdapter:
    """
    Create a logger that stamps ``context`` onto every record.

    Example:
        logger = create_logger_with_context("orchestrator", {"upload": "kick.wav"})
        logger.info("Uploaded")
        # text:  ... | orchestrator | [kick.wav] Uploaded
        # json:  {"message": "[kick.wav] Uploaded", "upload": "kick.wav", ...}
    """
    return LoggerAdapter(get_logger(name), context)
