"""
Logger factory that configures logging from ``constituency.config`` on first use

Example:
    ```python
    from constituency.utils.logging import get_logger

    logger = get_logger(__name__)
    logger.info("Import started", extra={"version_id": 3})
    ```
"""
import logging
from constituency.config import config
from constituency.utils.structured_logging import setup_structured_logging


_logging_initialized = False


def configure_logging(force: bool = False) -> None:
    """Apply the configured log format and handlers once per process"""
    global _logging_initialized

    if _logging_initialized and not force:
        return

    setup_structured_logging(
        level=config.LOG_LEVEL,
        use_json=config.LOG_JSON,
        include_console=True,
        log_dir=config.LOG_DIR,
        log_to_file=config.LOG_TO_FILE,
        max_bytes=config.LOG_FILE_MAX_BYTES,
        backup_count=config.LOG_FILE_BACKUP_COUNT
    )
    _logging_initialized = True


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger, initializing structured logging if nothing else has

    Args:
        name: Logger name (typically __name__)
    """
    configure_logging()
    return logging.getLogger(name)
