"""
Request-level protection for the admin API.

- slowapi limiter for the sign-in route
- per-email lockout after repeated failed sign-ins
- one middleware that stamps a request id, adds response security headers
  and logs failed or security-sensitive requests
- correlation ids for unexpected errors
"""

import logging
import time
import uuid
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Tuple

from fastapi import FastAPI, Request, Response, status
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.middleware.base import BaseHTTPMiddleware

from portal.core.config import get_settings
from portal.services.audit_log_service import RequestContext
from portal.utils.time import utcnow

logger = logging.getLogger(__name__)
settings = get_settings()


def get_client_ip(request: Request) -> str:
    """First hop of X-Forwarded-For when behind the proxy, else the socket peer."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return get_remote_address(request)


def get_request_context(request: Request) -> RequestContext:
    return RequestContext(
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("User-Agent"),
    )


limiter = Limiter(
    key_func=get_client_ip,
    storage_uri=settings.rate_limit_storage_uri,
    enabled=settings.rate_limit_enabled,
)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning(
        "Sign-in rate limit exceeded",
        extra={"client_ip": get_client_ip(request), "path": request.url.path, "limit": str(exc.detail)},
    )
    return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content={"error": "rate_limited", "message": "Too many sign-in attempts, try again later"},
        headers={"Retry-After": "60"},
    )


class AccountLockoutManager:
    """
    Locks an admin email after ``login_lockout_attempts`` failures inside
    ``login_attempt_window_minutes``. State is per process.
    """

    _failures: Dict[str, List[datetime]] = defaultdict(list)
    _locked_until: Dict[str, datetime] = {}

    @classmethod
    def record_failed_attempt(cls, email: str) -> Tuple[bool, Optional[int]]:
        """Returns (locked, lockout_seconds)."""
        config = get_settings()
        now = utcnow()
        window_start = now - timedelta(minutes=config.login_attempt_window_minutes)
        failures = [at for at in cls._failures[email] if at > window_start]
        failures.append(now)
        cls._failures[email] = failures

        if len(failures) < config.login_lockout_attempts:
            return False, None

        lockout = timedelta(minutes=config.login_lockout_minutes)
        cls._locked_until[email] = now + lockout
        logger.warning("Admin sign-in locked", extra={"email": email, "failures": len(failures)})
        return True, int(lockout.total_seconds())

    @classmethod
    def is_locked(cls, email: str) -> Tuple[bool, Optional[int]]:
        """Returns (locked, remaining_seconds). An elapsed lock is dropped."""
        until = cls._locked_until.get(email)
        if until is None:
            return False, None
        now = utcnow()
        if now >= until:
            del cls._locked_until[email]
            cls._failures.pop(email, None)
            return False, None
        return True, int((until - now).total_seconds())

    @classmethod
    def clear_attempts(cls, email: str) -> None:
        cls._failures.pop(email, None)
        cls._locked_until.pop(email, None)

    @classmethod
    def reset(cls) -> None:
        cls._failures.clear()
        cls._locked_until.clear()


class AdminRequestMiddleware(BaseHTTPMiddleware):
    """Request id, security headers and access logging for admin traffic."""

    SENSITIVE_PREFIXES = ("/api/admin/auth/", "/api/admin/impersonation/", "/api/admin/audit/")
    HEADERS = {
        "X-Frame-Options": "DENY",
        "X-Content-Type-Options": "nosniff",
        "Referrer-Policy": "no-referrer",
        "Cache-Control": "no-store",
    }

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
        request.state.request_id = request_id
        started = time.perf_counter()

        response = await call_next(request)

        log_extra = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": int((time.perf_counter() - started) * 1000),
            "client_ip": get_client_ip(request),
        }
        if response.status_code >= 500:
            logger.error("Admin request failed", extra=log_extra)
        elif response.status_code >= 400 or request.url.path.startswith(self.SENSITIVE_PREFIXES):
            logger.info("Admin request", extra=log_extra)

        response.headers.update(self.HEADERS)
        if settings.environment == "production":
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        response.headers["X-Request-ID"] = request_id
        return response


class ErrorReporter:
    """Logs unexpected errors under a short correlation id."""

    @classmethod
    def report_error(cls, error: Exception, context: Optional[dict] = None) -> str:
        correlation_id = uuid.uuid4().hex[:8]
        logger.error(
            "Unhandled error %s: %s",
            type(error).__name__,
            error,
            exc_info=error,
            extra={"correlation_id": correlation_id, **(context or {})},
        )
        return correlation_id


def setup_security_middleware(app: FastAPI) -> None:
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    app.add_middleware(AdminRequestMiddleware)
