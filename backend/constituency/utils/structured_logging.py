"""
Structured logging setup shared by the API process and the CLI scripts
"""
import logging
import json
import os
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Optional
from datetime import datetime

# Context fields the application attaches through ``extra=``
CONTEXT_FIELDS = (
    "request_id",
    "error_code",
    "status_code",
    "is_transient",
    "path",
    "method",
    "details",
    "error_type",
    "job_id",
    "version_id",
    "table",
)

_RESERVED_ATTRS = set(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime"}


class SafeFormatter(logging.Formatter):
    """
    Human-readable formatter that tolerates records without request context

    Context fields present on the record are appended as ``key=value`` pairs,
    so startup messages and background job messages format the same way.
    """

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        context = [
            f"{field}={getattr(record, field)}"
            for field in CONTEXT_FIELDS
            if getattr(record, field, None) not in (None, "")
        ]
        if context:
            return f"{base} [{' '.join(context)}]"
        return base


class StructuredFormatter(logging.Formatter):
    """
    Formatter that emits one JSON object per log record
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.utcnow().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS or key.startswith("_"):
                continue
            log_data.setdefault(key, value)

        try:
            return json.dumps(log_data, default=str)
        except (TypeError, ValueError):
            return json.dumps({
                "timestamp": log_data["timestamp"],
                "level": log_data["level"],
                "logger": log_data["logger"],
                "message": str(log_data["message"]),
                "error": "Failed to serialize log data"
            })


def setup_structured_logging(
    level: str = "INFO",
    use_json: bool = False,
    include_console: bool = True,
    log_dir: Optional[str] = None,
    log_to_file: bool = True,
    max_bytes: int = 10485760,
    backup_count: int = 5
) -> None:
    """
    Configure the root logger

    Args:
        level: Logging level name
        use_json: Emit JSON lines instead of the human-readable format
        include_console: Attach a stream handler
        log_dir: Directory for the rotating log file (default: ./logs)
        log_to_file: Attach a rotating file handler
        max_bytes: Rotation threshold for the log file
        backup_count: Number of rotated files to keep
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if use_json:
        formatter: logging.Formatter = StructuredFormatter()
    else:
        formatter = SafeFormatter(
            '%(asctime)s - %(name)s - %(levelname)s - '
            '[%(filename)s:%(lineno)d] - %(message)s'
        )

    if include_console:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(numeric_level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    if log_to_file:
        log_dir = log_dir or "./logs"
        os.makedirs(log_dir, exist_ok=True)

        log_filename = "constituency.json.log" if use_json else "constituency.log"
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, log_filename),
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding='utf-8'
        )
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # Noisy third-party loggers
    for noisy in ("httpx", "httpcore", "uvicorn.access", "sqlalchemy.engine", "sqlalchemy.pool", "alembic"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def log_with_context(
    logger: logging.Logger,
    level: int,
    message: str,
    **context: Any
) -> None:
    """Log ``message`` with ``context`` attached as record attributes"""
    logger.log(level, message, extra=context)
