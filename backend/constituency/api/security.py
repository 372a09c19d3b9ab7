"""
Security utilities for rate limiting and resource management
"""
from slowapi import Limiter
from slowapi.util import get_remote_address
import logging
import os
from typing import Optional
from fastapi import Request
from constituency.config import config

logger = logging.getLogger(__name__)

# Rate limit configurations
READ_RATE_LIMIT = "100/minute"
# Chunked uploads send many requests in a row
IMPORT_CHUNK_RATE_LIMIT = "600/minute"
WRITE_RATE_LIMIT = "30/minute"
# Whole-table scans and provider-bound jobs
EXPENSIVE_RATE_LIMIT = "10/minute"

# Resource limits
MAX_CHUNK_LINES = int(os.getenv("MAX_CHUNK_LINES", "5000"))
MAX_CSV_SIZE_MB = int(os.getenv("MAX_CSV_SIZE_MB", "50"))
MAX_CONCURRENT_GEOCODING_JOBS = int(os.getenv("MAX_CONCURRENT_GEOCODING_JOBS", "3"))

# Shared limiter; main.py attaches it to app.state
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[f"{config.RATE_LIMIT_PER_HOUR}/hour"],
    enabled=config.RATE_LIMIT_ENABLED,
)


def csv_within_size_limit(content: str) -> bool:
    return len(content.encode("utf-8")) <= MAX_CSV_SIZE_MB * 1024 * 1024


def log_security_event(event_type: str, details: dict, request: Optional[Request] = None):
    """
    Log security-related events

    Args:
        event_type: Type of event (rate_limit, access_denied, resource_limit, ...)
        details: Event details
        request: Optional request for client address and path
    """
    log_data = {
        "event_type": event_type,
        **details
    }
    if request:
        log_data.update({
            "client_ip": get_remote_address(request),
            "path": request.url.path,
            "method": request.method
        })
    logger.warning(f"Security event: {log_data}")
