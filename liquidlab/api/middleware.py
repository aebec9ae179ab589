"""
Custom middleware and exception handlers for the FastAPI application.
Provides request logging, rate limiting, security headers and error mapping.
"""

import time
from typing import Callable, Dict

from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.middleware.gzip import GZipMiddleware
from starlette.responses import JSONResponse

import structlog

from liquidlab.core.config import Settings
from liquidlab.core.exceptions import (
    LiquidLabException,
    NotFoundError,
    ValidationError,
    AuthenticationError,
    ExternalServiceError,
)
from liquidlab.utils.time import utc_now


logger = structlog.get_logger(__name__)


class LoggingMiddleware(BaseHTTPMiddleware):
    """Middleware for request/response logging."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process request and log details."""
        start_time = time.perf_counter()

        logger.info(
            "Request started",
            method=request.method,
            path=request.url.path,
            client_ip=request.client.host if request.client else None,
        )

        try:
            response = await call_next(request)
        except Exception as e:
            process_time = time.perf_counter() - start_time
            logger.error(
                "Request failed",
                method=request.method,
                path=request.url.path,
                error=str(e),
                process_time=process_time,
            )
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "success": False,
                    "error": "INTERNAL_SERVER_ERROR",
                    "message": "An internal server error occurred",
                    "timestamp": utc_now().isoformat()
                }
            )

        process_time = time.perf_counter() - start_time
        response.headers["X-Process-Time"] = str(process_time)

        logger.info(
            "Request completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            process_time=process_time,
        )
        return response


class RateLimitingMiddleware(BaseHTTPMiddleware):
    """Rate limiting middleware using in-memory storage."""

    def __init__(self, app: FastAPI, max_requests: int = 100, window_seconds: int = 60):
        super().__init__(app)
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.requests: Dict[str, list] = {}

    def _get_client_key(self, request: Request) -> str:
        """Get client identifier for rate limiting."""
        client_ip = request.client.host if request.client else "unknown"
        return f"ip:{client_ip}"

    def _prune(self, now: float) -> None:
        """Drop timestamps outside the window and clients with none left."""
        window_start = now - self.window_seconds
        for key in list(self.requests):
            recent = [req_time for req_time in self.requests[key] if req_time > window_start]
            if recent:
                self.requests[key] = recent
            else:
                del self.requests[key]

    def _is_rate_limited(self, client_key: str) -> bool:
        """Check if client is rate limited."""
        self._prune(time.time())
        return len(self.requests.get(client_key, [])) >= self.max_requests

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process request with rate limiting."""
        client_key = self._get_client_key(request)

        if self._is_rate_limited(client_key):
            logger.warning(
                "Rate limit exceeded",
                client_key=client_key,
                path=request.url.path,
                method=request.method
            )
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={
                    "success": False,
                    "error": "RATE_LIMIT_EXCEEDED",
                    "message": f"Rate limit exceeded. Max {self.max_requests} requests per {self.window_seconds} seconds",
                    "timestamp": utc_now().isoformat()
                },
                headers={
                    "X-RateLimit-Limit": str(self.max_requests),
                    "X-RateLimit-Window": str(self.window_seconds),
                    "Retry-After": str(self.window_seconds)
                }
            )

        self.requests.setdefault(client_key, []).append(time.time())
        response = await call_next(request)

        remaining = self.max_requests - len(self.requests.get(client_key, []))
        response.headers["X-RateLimit-Limit"] = str(self.max_requests)
        response.headers["X-RateLimit-Remaining"] = str(max(0, remaining))
        response.headers["X-RateLimit-Window"] = str(self.window_seconds)
        return response


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Middleware to add security headers."""

    def __init__(self, app: FastAPI, api_version: str):
        super().__init__(app)
        self.api_version = api_version

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Add security headers to response."""
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["X-API-Version"] = self.api_version
        return response


def status_for_exception(exc: LiquidLabException) -> int:
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    if isinstance(exc, ValidationError):
        return status.HTTP_400_BAD_REQUEST
    if isinstance(exc, AuthenticationError):
        return status.HTTP_401_UNAUTHORIZED
    if isinstance(exc, ExternalServiceError):
        return status.HTTP_502_BAD_GATEWAY
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def liquidlab_exception_handler(request: Request, exc: LiquidLabException) -> JSONResponse:
    """Render application exceptions as error envelopes."""
    status_code = status_for_exception(exc)
    log = logger.warning if status_code < 500 else logger.error
    log(
        "Request raised application error",
        path=request.url.path,
        error=exc.code,
        message=exc.message,
        status_code=status_code
    )

    headers = {"WWW-Authenticate": "Bearer"} if status_code == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": exc.code,
            "message": exc.message,
            "details": exc.details,
            "timestamp": utc_now().isoformat()
        },
        headers=headers
    )


def add_middleware(app: FastAPI, settings: Settings) -> None:
    """Add all middleware and exception handlers to the FastAPI app."""

    app.add_exception_handler(LiquidLabException, liquidlab_exception_handler)

    # CORS middleware (first to handle preflight requests)
    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.add_middleware(GZipMiddleware, minimum_size=1000)

    # Custom middleware (order matters - last added is executed first)
    app.add_middleware(SecurityHeadersMiddleware, api_version=settings.app_version)

    if settings.rate_limit_enabled:
        app.add_middleware(
            RateLimitingMiddleware,
            max_requests=settings.rate_limit_requests,
            window_seconds=settings.rate_limit_window
        )

    # Logging (should be last to capture all processing)
    app.add_middleware(LoggingMiddleware)

    logger.info("Middleware configured successfully")
