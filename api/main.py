"""
api/main.py -- FastAPI application entry point for AgentPro.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. log_requests      -- one access-log line per request, 429s included
  2. rate_limit        -- fixed-window limiter, api / auth tiers by path
  3. security_headers  -- X-Frame-Options, CSP, nosniff, ...
  4. CORSMiddleware    -- CORS headers for allowed browser origins
  5. TrustedHostMiddleware -- rejects unexpected Host headers

Lifespan builds every shared resource (engine, stores, mailer, limiters,
access policy, reset manager) on app.state via init_state(), then starts the
background tasks. Tests swap the lifespan and call init_state() themselves
with their own engine and mailer.
"""

from __future__ import annotations

import asyncio
import json
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
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.errors import CONFLICT_MESSAGES, INTERNAL_ERROR_MESSAGE, conflict_field
from api.limiter import (
    RateLimiter,
    RateLimitPolicy,
    RateLimitTiers,
    ScheduledSweep,
    SweepOnSize,
    client_identifier,
    rate_limit_key,
)
from api.models import DbHealthResponse, HealthResponse
from api.routes.activities import router as activities_router
from api.routes.admin import router as admin_router
from api.routes.auth import router as auth_router
from api.routes.files import router as files_router
from api.routes.folders import router as folders_router
from api.routes.logos import router as logos_router
from api.routes.logs import router as logs_router
from api.routes.notifications import router as notifications_router
from api.routes.orphaned_clients import router as orphaned_clients_router
from api.routes.register import router as register_router
from api.routes.users import router as users_router
from auth.dependencies import get_current_user
from auth.models import User
from auth.passwords import basic_policy
from auth.reset import PasswordResetManager
from auth.scope import AccessPolicy
from auth.store import UserStore
from core.config import Settings, get_settings
from core.db import create_schema, make_engine
from core.mailer import Mailer, build_mailer
from documents.maintenance import AdminPasswordError, admin_seed
from documents.models import LogEntry, LogLevel
from documents.storage import LocalStorage
from documents.store import DocumentStore

VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("agentpro.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Application state
# ---------------------------------------------------------------------------


def init_state(app: FastAPI, settings: Settings, engine: Engine, mailer: Mailer | None = None) -> None:
    """Build every shared resource on app.state.

    Limiters are created here, per application, so two apps (or two test
    modules) never share counters.
    """
    create_schema(engine)
    app.state.settings = settings
    app.state.engine = engine
    app.state.user_store = UserStore(engine)
    app.state.document_store = DocumentStore(engine)
    app.state.storage = LocalStorage(settings.upload_dir)
    app.state.mailer = mailer if mailer is not None else build_mailer(settings)
    app.state.policy = AccessPolicy(legacy_activity_metadata=settings.activity_metadata_fallback)
    app.state.basic_policy = basic_policy(settings)
    app.state.reset_manager = PasswordResetManager(
        app.state.user_store,
        app.state.mailer,
        app.state.basic_policy,
        base_url=settings.app_base_url,
        ttl_seconds=settings.reset_token_ttl_seconds,
    )

    # Request-path limiter: api and auth tiers, swept when it grows too large.
    app.state.rate_tiers = RateLimitTiers(
        api=RateLimitPolicy("api", settings.api_rate_window_seconds, settings.api_rate_max_requests),
        auth=RateLimitPolicy("auth", settings.auth_rate_window_seconds, settings.auth_rate_max_requests),
    )
    app.state.api_limiter = RateLimiter(SweepOnSize(settings.rate_limit_sweep_threshold))

    # Standalone limiters: swept on a timer by tasks started in the lifespan.
    app.state.upload_policy = RateLimitPolicy(
        "upload", settings.upload_rate_window_seconds, settings.upload_rate_max_requests
    )
    app.state.upload_limiter = RateLimiter(ScheduledSweep(settings.rate_limit_sweep_interval_seconds))
    app.state.logs_policy = RateLimitPolicy("logs", settings.logs_rate_window_seconds, settings.logs_rate_max_requests)
    app.state.logs_limiter = RateLimiter(ScheduledSweep(settings.rate_limit_sweep_interval_seconds))


def seed_admin_if_missing(app: FastAPI) -> None:
    """Create the designated admin on first start when a password is configured."""
    store: UserStore = app.state.user_store
    if store.has_admin():
        return
    try:
        seed = admin_seed(app.state.settings)
    except AdminPasswordError as exc:
        logger.warning("No admin account and none seeded: %s", exc)
        return
    store.upsert_admin(seed.email, seed.name, seed.phone, seed.password_hash)
    logger.info("Seeded admin account %s", seed.email)


# ---------------------------------------------------------------------------
# Background tasks
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Delete expired or used reset tokens every hour.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(60 * 60)
        await run_in_threadpool(app.state.reset_manager.purge_stale)


def start_background_tasks(app: FastAPI) -> list[asyncio.Task]:
    tasks = [asyncio.create_task(_purge_loop(app))]
    for limiter in (app.state.upload_limiter, app.state.logs_limiter):
        tasks.append(asyncio.create_task(limiter.cleanup.run(limiter)))
    return tasks


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup: state, admin seed, background tasks. Shutdown: reverse order."""
    logger.info("AgentPro API starting up")
    engine = make_engine(_settings.database_url)
    init_state(app, _settings, engine)
    seed_admin_if_missing(app)
    app.state.tasks = start_background_tasks(app)

    yield

    for task in app.state.tasks:
        task.cancel()
    engine.dispose()
    logger.info("AgentPro API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="AgentPro API",
    description="Document portal for insurance agents and their clients.",
    version=VERSION,
    lifespan=lifespan,
    # Built-in /docs and /redoc are replaced below by auth-protected routes.
    docs_url=None,
    redoc_url=None,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

# ---------------------------------------------------------------------------
# Security headers
# ---------------------------------------------------------------------------


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["Permissions-Policy"] = "camera=(), microphone=(), geolocation=()"
    response.headers["Content-Security-Policy"] = "default-src 'self'; frame-ancestors 'none'"
    if not _settings.debug:
        response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response


# ---------------------------------------------------------------------------
# Rate limiting
#
# Tier is chosen by path (api/limiter.py RateLimitTiers). Exempt paths skip
# the limiter entirely and get no X-RateLimit-Remaining header.
# ---------------------------------------------------------------------------


def _record_denial(app_state, policy: RateLimitPolicy, identifier: str, path: str) -> None:
    app_state.document_store.add_log(
        LogEntry(
            message=f"Rate limit exceeded on {path}",
            level=LogLevel.WARNING,
            metadata=json.dumps({"tier": policy.name, "client": identifier}),
        )
    )


@app.middleware("http")
async def rate_limit(request: Request, call_next):
    policy = request.app.state.rate_tiers.select(request.url.path)
    if policy is None:
        return await call_next(request)

    identifier = client_identifier(request.headers)
    result = request.app.state.api_limiter.check(rate_limit_key(identifier, policy), policy)
    if result.limited:
        logger.warning("Rate limit exceeded (tier=%s client=%s path=%s)", policy.name, identifier, request.url.path)
        # One log row per client and window; repeat denials cost no DB write.
        if result.first_denial:
            await run_in_threadpool(_record_denial, request.app.state, policy, identifier, request.url.path)
        return JSONResponse(
            status_code=429,
            content={"error": "Too many requests", "message": "Please try again later"},
            headers={"Retry-After": str(policy.retry_after), "X-RateLimit-Remaining": "0"},
        )
    response = await call_next(request)
    response.headers["X-RateLimit-Remaining"] = str(result.remaining)
    return response


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
app.include_router(register_router, prefix="/api", tags=["Auth"])
app.include_router(users_router, prefix="/api", tags=["Users"])
app.include_router(logos_router, prefix="/api", tags=["Users"])
app.include_router(folders_router, prefix="/api", tags=["Folders"])
app.include_router(files_router, prefix="/api", tags=["Files"])
app.include_router(notifications_router, prefix="/api", tags=["Notifications"])
app.include_router(activities_router, prefix="/api", tags=["Activities"])
app.include_router(orphaned_clients_router, prefix="/api", tags=["Admin"])
app.include_router(admin_router, prefix="/api", tags=["Admin"])
app.include_router(logs_router, prefix="/api", tags=["Logs"])


@app.get("/docs", include_in_schema=False)
async def docs(user: User = Depends(get_current_user)):
    """Swagger UI -- requires authentication."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="AgentPro API")


@app.get("/redoc", include_in_schema=False)
async def redoc(user: User = Depends(get_current_user)):
    """ReDoc UI -- requires authentication."""
    return get_redoc_html(openapi_url="/openapi.json", title="AgentPro API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every error body is {"error": "<message>"}. Messages for validation and
# conflicts are specific; authorization failures are deliberately generic.
# ---------------------------------------------------------------------------


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)}, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 naming the first invalid field."""
    errors = exc.errors()
    if not errors:
        return JSONResponse(status_code=400, content={"error": "Invalid request"})
    first = errors[0]
    field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path"))
    message = f"{field}: {first.get('msg', 'invalid value')}" if field else first.get("msg", "Invalid request")
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    """A UNIQUE race slipped past ensure_unique(): still name the field."""
    field = conflict_field(exc)
    logger.warning("Integrity error on %s %s (field=%s)", request.method, request.url.path, field)
    message = CONFLICT_MESSAGES.get(field, INTERNAL_ERROR_MESSAGE)
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected errors. Details go to the log, never the client."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": INTERNAL_ERROR_MESSAGE})


# ---------------------------------------------------------------------------
# Health endpoints
#
# Defined here, not in a router, and exempt from rate limiting: load
# balancers and monitors must never be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/health", tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=VERSION)


@app.get("/api/health/db", tags=["Health"], response_model=DbHealthResponse)
def health_db(request: Request):
    """Round-trip the database. 503 when it is unreachable."""
    start = time.perf_counter()
    try:
        with request.app.state.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Database health check failed")
        return JSONResponse(
            status_code=503,
            content={"status": "error", "database": "disconnected", "latencyMs": 0},
        )
    ms = (time.perf_counter() - start) * 1000
    return DbHealthResponse(status="ok", database="connected", latency_ms=round(ms, 1))
