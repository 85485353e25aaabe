"""
api/main.py -- FastAPI application entry point for Nano Admin.

Exposes the auth core over HTTP: the primary (bearer / refresh-cookie)
surface used by the admin panel, and the X-API-Key surface used by
integrations.

Run with:      uvicorn api.main:app --reload
               python main.py serve

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- Host header must match ALLOWED_HOSTS
  2. CORSMiddleware        -- CORS headers for the panel origin; credentials
                              allowed so the refresh cookie is sent
  3. SlowAPIMiddleware     -- per-route limits declared in api.limiter

Lifespan builds the collaborators (store, token issuer, notifier, flow
controller) on startup and closes the store on shutdown. Route handlers find
them on request.app.state.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.activity import router as activity_router
from api.routes.api_keys import router as api_keys_router
from api.routes.auth import router as auth_router
from api.routes.external import router as external_router
from api.routes.signup_keys import router as signup_keys_router
from api.routes.users import router as users_router
from auth.dependencies import get_current_user
from auth.errors import AuthError
from auth.models import User
from auth.service import AuthService
from auth.store import AccountStore
from auth.tokens import TokenIssuer
from core.config import get_settings
from mail.sender import build_notifier

VERSION = "1.0.0"

settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("nanoadmin.api")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the auth collaborators on startup, release them on shutdown.

    Startup order matters: the flow controller needs the store, the issuer
    and the notifier, so it is built last.
    """
    logger.info("Nano Admin API starting up")
    app.state.settings = settings
    app.state.store = AccountStore(settings.database_url) if settings.database_url else AccountStore()
    app.state.issuer = TokenIssuer(settings)
    app.state.notifier = build_notifier(settings)
    app.state.auth_service = AuthService(app.state.store, app.state.issuer, app.state.notifier)
    logger.info("Auth initialized (accounts present=%s)", app.state.store.has_users())

    yield

    app.state.store.close()
    logger.info("Nano Admin API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Nano Admin API",
    description="Accounts, e-mail verification, admin approval, sessions and API keys.",
    version=VERSION,
    lifespan=lifespan,
    # /docs and /redoc are re-registered below behind get_current_user.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-API-Key"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPIMiddleware reads the limiter from app.state.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request passes through this coroutine before reaching any route
# handler. Latency is measured around call_next.
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
app.include_router(users_router, prefix="/api", tags=["Users"])
app.include_router(api_keys_router, prefix="/api", tags=["API Keys"])
app.include_router(external_router, prefix="/api", tags=["External"])
app.include_router(signup_keys_router, prefix="/api", tags=["Signup Keys"])
app.include_router(activity_router, prefix="/api", tags=["Activity"])


# ---------------------------------------------------------------------------
# API documentation (authenticated)
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(user: User = Depends(get_current_user)):
    """Swagger UI for signed-in callers."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="Nano Admin API")


@app.get("/redoc", include_in_schema=False)
async def redoc(user: User = Depends(get_current_user)):
    """ReDoc for signed-in callers."""
    return get_redoc_html(openapi_url="/openapi.json", title="Nano Admin API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# One envelope for every failure: {"error": {"code", "message", "detail"}}.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render the auth core's error taxonomy (400/401/403/404/409/502)."""
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return _error(exc.status_code, exc.code, exc.message)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 with Retry-After in seconds."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 carrying only the first validation error's message."""
    errors = exc.errors()
    first = errors[0] if errors else {"msg": "Invalid request.", "loc": ()}
    message = str(first.get("msg", "Invalid request."))
    if message.startswith("Value error, "):
        message = message[len("Value error, ") :]
    else:
        loc = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path")]
        if loc:
            message = f"{loc[-1]}: {message}"
    return _error(400, "validation_error", message)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Structured envelope for framework-raised HTTP errors (404 route, 405 method, ...)."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Opaque 500. The traceback goes to the log, never to the client."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Registered on the app itself, outside the routers. No auth, no rate limit.
# ---------------------------------------------------------------------------


@app.get("/api/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness plus a database round-trip check."""
    store: AccountStore = request.app.state.store
    try:
        database = "ok" if store.ping() else "error"
    except SQLAlchemyError:
        logger.exception("Health check: database unreachable")
        database = "error"
    status = "healthy" if database == "ok" else "degraded"
    return HealthResponse(status=status, version=VERSION, components={"app": "ok", "database": database})
