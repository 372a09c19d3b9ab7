"""
Custom exceptions for constituency services
"""
from typing import Optional, List


class ConstituencyServiceError(Exception):
    """Base exception for all constituency service errors"""
    status_code: int = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class AuthenticationRequiredError(ConstituencyServiceError):
    """No authenticated identity accompanied the request"""
    status_code = 401

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class AccessDeniedError(ConstituencyServiceError):
    """Caller is authenticated but lacks an administrator role"""
    status_code = 403

    def __init__(self, action: str):
        super().__init__(f"Access denied: Only super admin and ADUN can {action}")
        self.action = action


class RecordNotFoundError(ConstituencyServiceError):
    """A referenced row does not exist"""
    status_code = 404

    def __init__(self, message: str, record_id: Optional[int] = None):
        super().__init__(message)
        self.record_id = record_id


class InvalidStateError(ConstituencyServiceError):
    """Operation is not allowed in the record's current state"""
    status_code = 409

    def __init__(self, message: str, current_status: Optional[str] = None):
        super().__init__(message)
        self.current_status = current_status


class InputValidationError(ConstituencyServiceError):
    """Request input is invalid"""
    status_code = 400


class CsvValidationError(InputValidationError):
    """CSV input failed structural validation before any row was processed"""

    def __init__(self, message: str, missing_columns: Optional[List[str]] = None):
        super().__init__(message)
        self.missing_columns = missing_columns or []


class GeocodingProviderError(ConstituencyServiceError):
    """The geocoding provider returned an error response"""
    status_code = 502

    def __init__(self, message: str, provider_status: Optional[int] = None):
        super().__init__(message)
        self.provider_status = provider_status


class DatabaseLockError(ConstituencyServiceError):
    """Database is locked error"""
    status_code = 503

    def __init__(self, message: str = "Database is locked", retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after
