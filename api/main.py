"""
api/main.py -- FastAPI application entry point for CropKeeper.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. log_requests          -- method, path, status, latency, client
  2. security_headers      -- nosniff, frame-deny, referrer policy
  3. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  4. CORSMiddleware        -- credentialed CORS for the separately hosted frontend;
                              X-CSRF-Token allowed in and exposed out
  5. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  6. CsrfCookieMiddleware  -- issues the CSRF token on safe requests lacking one

Lifespan builds the auth services once and stores them on app.state:
  auth_config, identity_store, codec, cookie_policy, session_manager.
Route dependencies read them from there, never from module globals.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorResponse, HealthResponse
from api.routes.auth import router as auth_router
from auth.cookies import CookiePolicy
from auth.csrf import CSRF_HEADER, CsrfCookieMiddleware
from auth.errors import AuthError
from auth.session import SessionManager
from auth.store import IdentityStore
from auth.tokens import CredentialCodec
from core.config import get_settings

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("cropkeeper.api")

_settings = get_settings()


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


def init_auth_services(app: FastAPI, store: IdentityStore) -> None:
    """Wire the auth layer onto app.state.

    Shared by the real lifespan and the test lifespan so both build the
    services the same way from the same Settings.
    """
    config = get_settings().auth_config()
    codec = CredentialCodec(config)
    cookie_policy = CookiePolicy(config)
    app.state.auth_config = config
    app.state.identity_store = store
    app.state.codec = codec
    app.state.cookie_policy = cookie_policy
    app.state.session_manager = SessionManager(store, codec, cookie_policy)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the identity store on startup and close it on shutdown."""
    logger.info("CropKeeper API starting up (environment=%s)", _settings.environment)
    init_auth_services(app, IdentityStore(_settings.database_url))
    logger.info("Auth initialized")

    yield

    app.state.identity_store.close()
    logger.info("CropKeeper API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="CropKeeper API",
    description="Record keeping for plantings and harvests.",
    version=__version__,
    lifespan=lifespan,
    docs_url="/docs" if _settings.debug else None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() wraps the existing stack, so the LAST class added is the
# OUTERMOST. Registered here innermost-first.
# ---------------------------------------------------------------------------

app.add_middleware(CsrfCookieMiddleware)

app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[_settings.frontend_url],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", CSRF_HEADER],
    expose_headers=[CSRF_HEADER],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


@app.middleware("http")
async def security_headers(request: Request, call_next):
    """Add standard hardening headers to every response."""
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-XSS-Protection"] = "1; mode=block"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
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

app.include_router(auth_router, prefix="/api", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope:
#   {"error": message, "code": CODE, "details": [...] | null}
# ---------------------------------------------------------------------------


def _error(status_code: int, message: str, code: str | None = None, details: list | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=message, code=code, details=details).model_dump(),
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render any auth-layer failure with its own status and stable code."""
    response = _error(exc.status_code, exc.message, exc.code, exc.details)
    if exc.status_code == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(429, "Too many requests.", "RATE_LIMITED", [str(exc.detail)])
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with one {field, message} entry per failed constraint."""
    details = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            "message": err.get("msg", ""),
        }
        for err in exc.errors()
    ]
    return _error(400, "Invalid input data.", "VALIDATION_ERROR", details)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Wrap framework HTTP errors (404 route, 405 method) in the standard envelope."""
    return _error(exc.status_code, str(exc.detail), f"HTTP_{exc.status_code}")


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log with its traceback. The client
    receives a generic message, plus the exception text in details only when
    ENVIRONMENT=development.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    details = [str(exc)] if get_settings().is_development else None
    return _error(500, "Internal server error.", "INTERNAL_ERROR", details)


# ---------------------------------------------------------------------------
# Health endpoint
#
# No rate limit or auth -- load balancers must always reach it.
# ---------------------------------------------------------------------------


@app.get("/health", tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness, version, and environment."""
    return HealthResponse(
        version=__version__,
        timestamp=datetime.now(timezone.utc).isoformat(),
        environment=_settings.environment,
    )
