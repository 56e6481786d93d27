"""
api/main.py -- FastAPI application entry point for Secure Blog auth.

Run with:  uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. log_requests          -- method, path, status, latency, client
  2. security_headers      -- nosniff, frame denial, referrer policy, CSP on
                              API paths, HSTS when cookies are Secure
  3. CORSMiddleware        -- CORS headers (credentials allowed for the cookie)
  4. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  5. rate_limit            -- per-client fixed-window limits from api.limiter;
                              runs before routing and body validation
  6. limit_body_size       -- 413 for a declared body over MAX_REQUEST_BYTES

Lifespan handles startup (user store, OTP manager, notifier, sweep task) and
shutdown (cancel sweep task, close DB) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, FieldError, HealthResponse
from api.routes.v1.admin import router as admin_router
from api.routes.v1.auth import router as auth_router
from auth.errors import AuthError, InternalError, PayloadTooLarge, RateLimited, ValidationError
from auth.notify import build_notifier
from auth.otp import OtpChallengeManager
from auth.store import UserStore
from core.config import get_settings

__version__ = "1.0.0"

_settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=_settings.log_level.upper(),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("secureblog.api")

# ---------------------------------------------------------------------------
# Background OTP sweep
# ---------------------------------------------------------------------------


async def _sweep_loop(app: FastAPI, interval: int) -> None:
    """Remove expired OTP challenges every `interval` seconds.

    Runs independently of verification traffic so abandoned registrations
    do not accumulate. sweep() takes the same lock as issue/verify.
    A failed sweep is logged and retried on the next tick; only
    task.cancel() (CancelledError) during shutdown ends the loop.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            app.state.otp.sweep()
        except Exception:
            logger.exception("OTP sweep failed; retrying in %ss", interval)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown. The sweep task starts last because it references app.state.otp.
    """
    logger.info("Secure Blog auth API starting up")
    app.state.user_store = UserStore(_settings.database_url)
    app.state.otp = OtpChallengeManager(ttl_seconds=_settings.otp_ttl_seconds, digits=_settings.otp_digits)
    app.state.notifier = build_notifier(_settings)
    app.state.sweep_task = asyncio.create_task(_sweep_loop(app, _settings.otp_sweep_interval_seconds))
    logger.info(
        "Auth initialized (otp_ttl=%ss, token_ttl=%ss, rate_limits=%s)",
        _settings.otp_ttl_seconds,
        _settings.token_expire_seconds,
        "on" if limiter.enabled else "off",
    )

    yield

    app.state.sweep_task.cancel()
    app.state.user_store.close()
    logger.info("Secure Blog auth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Secure Blog Auth API",
    description="Registration, email OTP verification, sessions and role-based access for Secure Blog.",
    version=__version__,
    lifespan=lifespan,
)

app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _error_response(status_code: int, detail: ErrorDetail) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=detail).model_dump(mode="json", exclude_none=True),
    )


def _auth_error_response(exc: AuthError) -> JSONResponse:
    resp = _error_response(exc.status_code, ErrorDetail(code=exc.error_code, message=exc.message, **exc.extra))
    if isinstance(exc, RateLimited):
        resp.headers["Retry-After"] = str(exc.retry_after)
    return resp


# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() and @app.middleware both wrap the current stack, so the
# LAST registration is the OUTERMOST layer. The body-size check and rate
# limiting are registered first so that CORS and security headers are still
# added to their 413 and 429 responses.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def limit_body_size(request: Request, call_next):
    """Refuse bodies whose Content-Length exceeds max_request_bytes (default 10 KiB).

    Every endpoint takes a small JSON document, so anything larger is
    rejected before it is read.
    """
    declared = request.headers.get("content-length")
    if declared is not None:
        try:
            size = int(declared)
        except ValueError:
            return _error_response(400, ErrorDetail(code="bad_request", message="Invalid Content-Length header."))
        if size > _settings.max_request_bytes:
            logger.warning("Rejected %d-byte body on %s %s", size, request.method, request.url.path)
            return _auth_error_response(PayloadTooLarge())
    return await call_next(request)


@app.middleware("http")
async def rate_limit(request: Request, call_next):
    """Reject over-quota clients before any route, dependency or body parsing runs.

    Exception handlers do not cover middleware, so the 429 is rendered here.
    """
    try:
        request.app.state.limiter.check(request)
    except RateLimited as exc:
        return _auth_error_response(exc)
    return await call_next(request)


app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)


_API_CSP = "default-src 'none'; frame-ancestors 'none'"


@app.middleware("http")
async def security_headers(request: Request, call_next):
    """Browser hardening headers on every response, including 4xx/5xx from inner layers.

    The CSP is only applied under /api/ so the interactive /docs page keeps
    loading its assets. HSTS is only sent when the deployment runs on HTTPS,
    which secure_cookies=true asserts.
    """
    response = await call_next(request)
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("Referrer-Policy", "no-referrer")
    response.headers.setdefault("Cross-Origin-Opener-Policy", "same-origin")
    response.headers.setdefault("Permissions-Policy", "camera=(), microphone=(), geolocation=(), payment=()")
    if request.url.path.startswith("/api/"):
        response.headers.setdefault("Content-Security-Policy", _API_CSP)
    if _settings.secure_cookies:
        response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
    return response


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(admin_router, prefix="/api/v1", tags=["Admin"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render every auth-domain failure with its stable error code."""
    return _auth_error_response(exc)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with one entry per failed field. Input values are not echoed back."""
    fields = [
        FieldError(
            field=".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            message=err.get("msg", "invalid"),
        )
        for err in exc.errors()
    ]
    return _error_response(
        ValidationError.status_code,
        ErrorDetail(code=ValidationError.error_code, message=ValidationError.default_message, fields=fields),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Structured error for framework-raised HTTP exceptions (404 route, 405 method, ...)."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error_response(exc.status_code, ErrorDetail(code=f"http_{exc.status_code}", message=str(exc.detail)))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for persistence, signing and other unexpected failures.

    The exception is logged with its traceback server side only. The client
    receives the generic internal_error message.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _auth_error_response(InternalError())


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py so it is always reachable regardless of router
# registration state. Exempt from rate limiting (see api/limiter.py).
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and database status."""
    try:
        request.app.state.user_store.ping()
        database = "ok"
    except SQLAlchemyError:
        logger.exception("Health check: database unreachable")
        database = "error"
    return HealthResponse(
        status="healthy" if database == "ok" else "degraded",
        version=__version__,
        components={"app": "ok", "database": database},
    )
