from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from starlette.middleware.base import BaseHTTPMiddleware
from constituency.api.routes import spr_voters, geocoding, reference_data
from constituency.api.exceptions import APIError, DatabaseError, new_request_id
from constituency.api.security import limiter, log_security_event
from constituency.services.shared.exceptions import ConstituencyServiceError, DatabaseLockError
from constituency.db.database import engine, init_db
from constituency.lifecycle import setup_startup_tasks, setup_shutdown_handlers
from constituency.config import config
from constituency.utils.logging import configure_logging
import os
import logging
import asyncio

configure_logging()

logger = logging.getLogger(__name__)


class SuppressCancelledErrorFilter(logging.Filter):
    """Drop CancelledError noise from connection pool cleanup during shutdown"""
    def filter(self, record):
        if record.exc_info:
            exc_type = record.exc_info[0]
            if exc_type and issubclass(exc_type, asyncio.CancelledError):
                return False
        return True


logging.getLogger("sqlalchemy.pool").addFilter(SuppressCancelledErrorFilter())
logging.getLogger("constituency").setLevel(logging.DEBUG if config.LOG_LEVEL == "DEBUG" else logging.INFO)

app = FastAPI(
    title="Constituency Voter Management API",
    description="SPR voter imports, household matching, geocoding and reference data",
    version="1.0.0"
)

app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)


def failure_response(status_code: int, message: str, request_id: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": message, "data": None},
        headers={"X-Request-ID": request_id}
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    log_security_event("rate_limit", {
        "limit": str(exc.detail) if hasattr(exc, 'detail') else "unknown"
    }, request)
    return failure_response(429, "Rate limit exceeded. Please try again later.", new_request_id())


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["X-XSS-Protection"] = "1; mode=block"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if os.getenv("USE_HTTPS", "false").lower() == "true":
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        if request.method in ("POST", "DELETE") and request.url.path.startswith("/api/"):
            log_security_event("admin_operation", {
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
            }, request)

        return response


app.add_middleware(SecurityHeadersMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept", config.AUTH_EMAIL_HEADER],
    expose_headers=["X-Request-ID"],
)

app.include_router(spr_voters.router, prefix="/api/spr-voters", tags=["spr-voters"])
app.include_router(geocoding.router, prefix="/api/geocoding", tags=["geocoding"])
app.include_router(reference_data.router, prefix="/api/reference-data", tags=["reference-data"])


@app.on_event("startup")
async def startup_event():
    """Initialize database and recover background jobs"""
    logger.info("Starting application startup...")

    for warning in config.validate():
        logger.warning(f"Config warning: {warning}")

    await init_db()
    logger.info("Database initialization complete")

    await setup_startup_tasks()


@app.on_event("shutdown")
async def shutdown_event():
    await setup_shutdown_handlers()


@app.exception_handler(APIError)
async def api_error_handler(request: Request, exc: APIError):
    """Handle API-layer exceptions"""
    logger.error(
        f"API Error [{exc.request_id}]: {exc.code} - {exc.message}",
        extra={
            "request_id": exc.request_id,
            "error_code": exc.code,
            "status_code": exc.status_code,
            "is_transient": exc.is_transient,
            "path": request.url.path,
            "method": request.method,
            "details": exc.details
        }
    )
    return failure_response(exc.status_code, exc.message, exc.request_id)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies and parameters"""
    request_id = new_request_id()
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = f"Invalid request: {location}: {first.get('msg', 'invalid value')}" if first else "Invalid request"
    logger.warning(
        f"Request validation failed [{request_id}]: {message}",
        extra={"request_id": request_id, "status_code": 422, "path": request.url.path, "method": request.method}
    )
    return failure_response(422, message, request_id)


@app.exception_handler(ConstituencyServiceError)
async def service_error_handler(request: Request, exc: ConstituencyServiceError):
    """Handle service errors; each error class carries its HTTP status"""
    request_id = new_request_id()
    is_transient = isinstance(exc, DatabaseLockError)
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        f"Service Error [{request_id}]: {type(exc).__name__} - {exc.message}",
        extra={
            "request_id": request_id,
            "error_code": type(exc).__name__,
            "status_code": exc.status_code,
            "is_transient": is_transient,
            "path": request.url.path,
            "method": request.method
        }
    )
    return failure_response(exc.status_code, exc.message, request_id)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions (500)"""
    from sqlalchemy.exc import OperationalError, DatabaseError as SQLAlchemyDatabaseError

    request_id = new_request_id()
    status_code = 500
    error_message = "An internal server error occurred"

    if isinstance(exc, (OperationalError, SQLAlchemyDatabaseError)):
        status_code = 503
        error_message = "Database operation failed"
    elif isinstance(exc, ValueError):
        status_code = 400
        error_message = str(exc) or "Invalid input"

    logger.error(
        f"Unhandled exception [{request_id}]: {type(exc).__name__}: {exc}",
        exc_info=True,
        extra={
            "request_id": request_id,
            "status_code": status_code,
            "path": request.url.path,
            "method": request.method,
            "error_type": type(exc).__name__
        }
    )
    return failure_response(status_code, error_message, request_id)


@app.get("/")
async def root():
    return {"message": "Constituency Voter Management API", "version": "1.0.0"}


@app.get("/health")
async def health():
    """Basic health check endpoint"""
    return {"status": "healthy"}


@app.get("/health/database")
async def health_database():
    """Database health check with pool status"""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Database health check failed: {e}", exc_info=True)
        raise DatabaseError("Database is not reachable", details={"error_type": type(e).__name__})

    return {
        "status": "healthy",
        "database": "sqlite" if config.is_sqlite() else "postgresql" if config.is_postgres() else "other",
        "pool": engine.sync_engine.pool.status(),
    }
