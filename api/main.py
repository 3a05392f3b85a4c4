"""
api/main.py -- FastAPI application entry point for the IOC registry.

Run with:      uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan opens the user store, the IOC store and the token service on
startup and disposes the database engines on shutdown.

Exception handlers are the boundary translator: every failure leaves the
process as {"error": "<code>", "message": "<text>"} with the matching status.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorResponse, HealthResponse
from api.routes.auth import router as auth_router
from api.routes.iocs import build_ioc_router
from auth.store import UserStore
from auth.tokens import TokenService
from core.config import get_settings
from core.errors import ServiceError
from ioc.models import IOCKind
from ioc.store import IOCStore

API_VERSION = "2.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("iocregistry.api")

# Fails here, at import, when SECRET_KEY is missing or too short.
settings = get_settings()
if settings.debug:
    logging.getLogger("iocregistry").setLevel(logging.DEBUG)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the stores and the token service; dispose the engines on exit.

    Both stores may point at the same database URL. Each keeps its own
    engine and creates only its own tables.
    """
    logger.info("IOC registry API starting up")
    app.state.user_store = UserStore(settings.database_url)
    app.state.ioc_store = IOCStore(settings.database_url)
    app.state.tokens = TokenService(settings.secret_key, settings.token_expire_seconds)
    logger.info("Database ready (%s)", app.state.ioc_store.engine.url.render_as_string(hide_password=True))

    yield

    app.state.ioc_store.close()
    app.state.user_store.close()
    logger.info("IOC registry API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="IOC Registry API",
    description="Threat-intelligence indicators of compromise: SHA256 hashes, URLs and IP:port pairs.",
    version=API_VERSION,
    lifespan=lifespan,
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
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


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
for _kind in IOCKind:
    app.include_router(build_ioc_router(_kind), prefix="/api", tags=[_kind.label])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    body = ErrorResponse(error=code, message=message, detail=detail).model_dump(exclude_none=True)
    response = JSONResponse(status_code=status_code, content=body)
    if status_code == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    return _error(exc.status_code, exc.code, exc.message)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 naming each offending field.

    Submitted values are not echoed back: a rejected body may contain a
    password.
    """
    problems = []
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        field = ".".join(loc) or "body"
        problems.append(f"{field}: {err.get('msg', 'invalid value')}")
    return _error(400, "validation_error", "; ".join(problems) or "Request validation failed.")


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    """Map database constraint failures: unique -> 409, anything else -> 400."""
    orig = exc.orig
    if getattr(orig, "pgcode", None) == "23505" or "unique" in str(orig).lower():
        return _error(409, "duplicate_entry", "A record with this value already exists.")
    logger.warning("Constraint failure on %s %s: %s", request.method, request.url.path, orig)
    return _error(400, "validation_error", "The record violates a data constraint.")


def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with Retry-After.

    Sync on purpose: SlowAPIMiddleware calls this handler directly.
    """
    retry_after = int(getattr(exc, "retry_after", None) or 60)
    response = _error(429, "rate_limited", "Too many requests.", detail=str(exc.detail))
    response.headers["Retry-After"] = str(retry_after)
    return response


app.add_exception_handler(RateLimitExceeded, rate_limit_handler)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Unknown routes (404), wrong methods (405) and any other HTTPException."""
    response = _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))
    for name, value in (exc.headers or {}).items():
        response.headers[name] = value
    return response


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors.

    The traceback goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Index and health
#
# Defined directly in main.py (not in a router) so they are always reachable.
# No rate limit: health checks from load balancers must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api", tags=["Health"])
def index() -> dict:
    """Describe the API and list its resource roots."""
    return {
        "message": "ThreatFox IOC API",
        "version": API_VERSION,
        "endpoints": {"auth": "/api/auth", **{k.resource: f"/api/{k.resource}" for k in IOCKind}},
    }


@app.get("/api/health", response_model=HealthResponse, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness plus a database round-trip check."""
    components = {"app": "ok"}
    try:
        request.app.state.user_store.ping()
        request.app.state.ioc_store.ping()
        components["database"] = "ok"
    except SQLAlchemyError:
        logger.exception("Health check: database unreachable")
        components["database"] = "error"
    status = "healthy" if components["database"] == "ok" else "degraded"
    return HealthResponse(status=status, version=API_VERSION, components=components)
