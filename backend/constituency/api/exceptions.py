"""
API-level exceptions with error classification

Service code raises ``ConstituencyServiceError`` subclasses; these classes are
for conditions detected by the HTTP layer itself (request limits, health
checks). Both are rendered as an ``ActionResult`` failure body by the handlers
in ``constituency.main``.
"""
from typing import Optional, Dict, Any
import uuid


def new_request_id() -> str:
    """Short request ID for correlating a response with its log lines"""
    return str(uuid.uuid4())[:8]


class APIError(Exception):
    """Base API exception with error classification"""
    def __init__(
        self,
        message: str,
        status_code: int = 500,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        is_transient: bool = False,
        request_id: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code or self.__class__.__name__
        self.details = details or {}
        self.is_transient = is_transient  # True if retrying later might succeed
        self.request_id = request_id or new_request_id()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "request_id": self.request_id,
            "is_transient": self.is_transient
        }


class ValidationError(APIError):
    """Request rejected before reaching a service (400)"""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None, request_id: Optional[str] = None):
        super().__init__(
            message,
            status_code=400,
            code="VALIDATION_ERROR",
            details=details,
            is_transient=False,
            request_id=request_id
        )


class ServiceUnavailableError(APIError):
    """Temporarily unable to accept work (503)"""
    def __init__(self, message: str = "Service unavailable", details: Optional[Dict[str, Any]] = None, request_id: Optional[str] = None):
        super().__init__(
            message,
            status_code=503,
            code="SERVICE_UNAVAILABLE",
            details=details,
            is_transient=True,
            request_id=request_id
        )


class DatabaseError(APIError):
    """Database unreachable or failing (503)"""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None, is_transient: bool = True, request_id: Optional[str] = None):
        super().__init__(
            message,
            status_code=503,
            code="DATABASE_ERROR",
            details=details,
            is_transient=is_transient,
            request_id=request_id
        )
