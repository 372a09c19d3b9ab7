"""
Shared utilities for constituency services
"""
from .exceptions import (
    ConstituencyServiceError,
    AuthenticationRequiredError,
    AccessDeniedError,
    RecordNotFoundError,
    InvalidStateError,
    InputValidationError,
    CsvValidationError,
    GeocodingProviderError,
    DatabaseLockError,
)
from .retry import retry_on_db_lock, retry_with_backoff

__all__ = [
    "ConstituencyServiceError",
    "AuthenticationRequiredError",
    "AccessDeniedError",
    "RecordNotFoundError",
    "InvalidStateError",
    "InputValidationError",
    "CsvValidationError",
    "GeocodingProviderError",
    "DatabaseLockError",
    "retry_on_db_lock",
    "retry_with_backoff",
]
