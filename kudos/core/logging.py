"""
Logging configuration for Kudos
"""
import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler, TimedRotatingFileHandler
from pathlib import Path
from typing import Optional

CONTEXT_FIELDS = (
    "request_id",
    "user_id",
    "session_id",
    "ip_address",
    "event_type",
    "severity",
)


class StructuredFormatter(logging.Formatter):
    """JSON structured logging formatter"""

    def format(self, record: logging.LogRecord) -> str:
        log_obj = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        for field_name in CONTEXT_FIELDS:
            if hasattr(record, field_name):
                log_obj[field_name] = getattr(record, field_name)

        return json.dumps(log_obj, default=str)


def _build_formatter(structured: bool) -> logging.Formatter:
    if structured:
        return StructuredFormatter()
    return logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    structured: bool = True,
) -> None:
    """
    Setup logging configuration
    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional log file path
        structured: Use structured JSON logging
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    # Drop handlers installed by an earlier call
    for handler in list(root_logger.handlers):
        if getattr(handler, "_kudos_handler", False):
            root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(_build_formatter(structured))
    console_handler._kudos_handler = True
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        # Daily rotation for *.daily.log, size based otherwise
        if log_file.endswith(".daily.log"):
            file_handler = TimedRotatingFileHandler(
                log_file,
                when="midnight",
                interval=1,
                backupCount=30,
                encoding="utf-8",
            )
        else:
            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=10 * 1024 * 1024,
                backupCount=5,
                encoding="utf-8",
            )
        file_handler.setLevel(level)
        file_handler.setFormatter(_build_formatter(structured))
        file_handler._kudos_handler = True
        root_logger.addHandler(file_handler)

    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("passlib").setLevel(logging.ERROR)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance
    Args:
        name: Logger name (usually __name__)
    Returns:
        Logger instance
    """
    return logging.getLogger(name)


class AuditLogAdapter(logging.LoggerAdapter):
    """Logger adapter that stamps request context onto every record"""

    def process(self, msg, kwargs):
        extra = kwargs.setdefault("extra", {})
        for field_name in CONTEXT_FIELDS:
            value = self.extra.get(field_name)
            if value is not None:
                extra.setdefault(field_name, value)
        return msg, kwargs
