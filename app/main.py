import logging
from contextlib import asynccontextmanager
from typing import Callable, Dict, Type

import sentry_sdk
import structlog
from app.core.logging_config import configure_logging

# Initialize production logging configuration
configure_logging()

_startup_logger = logging.getLogger(__name__)

# Initialize Sentry (no-op if SENTRY_DSN is empty)
from app.core.config import settings as _early_settings
if _early_settings.sentry_dsn:
    sentry_sdk.init(
        dsn=_early_settings.sentry_dsn,
        environment=_early_settings.environment,
        traces_sample_rate=0.1,
    )

from app.api.v1 import auth, onboarding
from app.core.config import settings
from app.core.exceptions import (
    AccountRejectedError,
    AuthenticationError,
    DomainException,
    ExternalServiceError,
    IncompleteSubmissionError,
    PersistenceError,
    SellerNotFoundError,
    UploadCancelledError,
    UploadFailedError,
    UploadTimeoutError,
    ValidationError,
)
from app.infrastructure.supabase_client import supabase_client
from app.middleware.trace_middleware import TraceMiddleware
from app.services.onboarding.session import onboarding_sessions
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request as StarletteRequest
from starlette.responses import Response as StarletteResponse

logger = structlog.get_logger()

limiter = auth.limiter


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifecycle"""
    _startup_logger.info("starting_application version=%s", settings.api_version)

    yield

    _startup_logger.info("shutting_down_application")
    # Abort transfers still running so their tasks don't outlive the loop
    onboarding_sessions.clear()


_is_production = settings.environment == "production"

app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    lifespan=lifespan,
    docs_url=None if _is_production else f"{settings.api_v1_prefix}/docs",
    redoc_url=None if _is_production else f"{settings.api_v1_prefix}/redoc",
    openapi_url=None if _is_production else f"{settings.api_v1_prefix}/openapi.json",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,  # Must be explicit list, no wildcards
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-Trace-Id"],
    expose_headers=["Content-Type", "X-Trace-Id"],
    max_age=600,
)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: StarletteRequest, call_next: Callable) -> StarletteResponse:
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Permissions-Policy"] = "camera=(), microphone=(), geolocation=()"
        if _is_production:
            response.headers["Strict-Transport-Security"] = "max-age=63072000; includeSubDomains"
        return response


app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(TraceMiddleware)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

app.include_router(auth.router, prefix=settings.api_v1_prefix)
app.include_router(onboarding.router, prefix=settings.api_v1_prefix)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions"""
    logger.warning(
        "http_exception",
        status_code=exc.status_code,
        detail=exc.detail,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": "HTTP_ERROR",
            "message": exc.detail,
            "status_code": exc.status_code,
        },
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle request body/query validation errors"""
    errors = [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]
    logger.warning("request_validation_error", errors=errors, path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "VALIDATION_ERROR",
            "message": "Request validation failed",
            "details": {"errors": errors},
        },
    )


# Most specific class first; the handler walks this in order
DOMAIN_STATUS_CODES: Dict[Type[DomainException], int] = {
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    AuthenticationError: status.HTTP_401_UNAUTHORIZED,
    AccountRejectedError: status.HTTP_403_FORBIDDEN,
    SellerNotFoundError: status.HTTP_404_NOT_FOUND,
    IncompleteSubmissionError: status.HTTP_409_CONFLICT,
    UploadCancelledError: status.HTTP_409_CONFLICT,
    UploadTimeoutError: status.HTTP_504_GATEWAY_TIMEOUT,
    UploadFailedError: status.HTTP_502_BAD_GATEWAY,
    PersistenceError: status.HTTP_503_SERVICE_UNAVAILABLE,
    ExternalServiceError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def status_code_for(exc: DomainException) -> int:
    for exc_type, status_code in DOMAIN_STATUS_CODES.items():
        if isinstance(exc, exc_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


@app.exception_handler(DomainException)
async def domain_exception_handler(request: Request, exc: DomainException):
    """Convert domain exceptions to HTTP responses"""
    status_code = status_code_for(exc)
    log = logger.error if status_code >= 500 else logger.warning
    log(
        "domain_error",
        error_code=exc.error_code,
        error=exc.message,
        status_code=status_code,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=status_code,
        content={
            "error": exc.error_code,
            "message": exc.message,
            "details": exc.details,
        },
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions"""
    logger.error(
        "unhandled_exception", error=str(exc), path=request.url.path, exc_info=exc
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "INTERNAL_SERVER_ERROR",
            "message": "An unexpected error occurred",
        },
    )


@app.get("/health")
async def health() -> JSONResponse:
    """Health check endpoint"""
    logger.info("healthcheck", status="ok")
    return JSONResponse({"status": "ok", "version": settings.api_version})


@app.get(f"{settings.api_v1_prefix}/health")
@limiter.limit(f"{settings.rate_limit_requests}/minute")
async def health_v1(request: Request) -> JSONResponse:
    """API v1 health check, includes the document store"""
    store = supabase_client.get_client_health()
    logger.info("healthcheck", status="ok", store=store["service_client"])
    return JSONResponse(
        {"status": "ok", "version": settings.api_version, "store": store}
    )
