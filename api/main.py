"""
api/main.py -- FastAPI application entry point for MonoAuth.

Run with:  python main.py serve
           uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. log_requests      -- method, path, status, latency, client
  2. CORSMiddleware    -- adds CORS headers for the configured frontend origins,
                          including on 429s raised by the limiter below it
  3. SlowAPIMiddleware -- enforces default and per-route rate limits from api.limiter

Lifespan builds the shared UserStore, the mailer and the AuthService on
startup and disposes the store's engine on shutdown.

Every /api/auth and /api/user response, success or error, uses the
{code, message, data, errors?} envelope. The exception handlers below are
where errors get that shape. /api/health keeps its own flat HealthResponse.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import Envelope, HealthResponse
from api.routes.auth import router as auth_router
from api.routes.user import router as user_router
from auth.models import AuthError
from auth.service import AuthService
from auth.store import UserStore
from core.config import get_settings
from mailer.sender import build_mailer

_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("monoauth.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the store, mailer and orchestrator; tear the store down on exit."""
    logger.info("MonoAuth API starting up")
    app.state.user_store = UserStore(_settings.database_url)
    app.state.auth_service = AuthService(app.state.user_store, build_mailer(_settings), _settings)
    logger.info("Auth initialized (database=%s)", app.state.user_store.engine.url.render_as_string(hide_password=True))

    yield

    app.state.user_store.close()
    logger.info("MonoAuth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="MonoAuth API",
    description="Registration, email verification, OTP login, JWT sessions and password reset.",
    version=_VERSION,
    lifespan=lifespan,
)

# The last middleware added is the outermost. CORS must wrap SlowAPIMiddleware.
app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials="*" not in _settings.cors_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


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
app.include_router(user_router, prefix="/api", tags=["User"])


# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------


def _envelope(status_code: int, message: str, data=None, errors: dict | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=Envelope(code=status_code, message=message, data=data, errors=errors).to_content(),
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render an orchestrator business-rule failure."""
    return _envelope(exc.status_code, exc.message, exc.data)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 when a slowapi limit is exceeded. Retry-After is in seconds."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _envelope(429, "Too many requests")
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with per-field messages: {"email": ["value is not a valid email address: ..."]}."""
    errors: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path", "header")]
        field = ".".join(loc) or "body"
        errors.setdefault(field, []).append(err.get("msg", "Invalid value"))
    return _envelope(400, "Validation failed", errors=errors)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render HTTPException (dependencies, unknown routes) as the envelope.

    Dependencies raise with detail={"message": ...}; Starlette's own 404/405
    carry a plain string.
    """
    if exc.status_code == 404 and not isinstance(exc.detail, dict):
        return _envelope(404, "Endpoint not found")
    if isinstance(exc.detail, dict):
        return _envelope(exc.status_code, exc.detail.get("message", ""), exc.detail.get("data"))
    return _envelope(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors.

    The traceback goes to the log only, never into the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _envelope(500, "Internal Server Error")


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/health", include_in_schema=True, tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return API liveness, version and database reachability."""
    try:
        database = "ok" if request.app.state.user_store.ping() else "error"
    except Exception:
        logger.exception("Health check database ping failed")
        database = "error"
    return HealthResponse(version=_VERSION, components={"app": "ok", "database": database})
