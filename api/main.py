"""
api/main.py -- FastAPI application entry point for EquipCare.

Exposes the maintenance engine's operations as HTTP triggers so an external
scheduler (or an operator) can run them without shell access to the host.

Run with:      uvicorn api.main:app

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan opens the CMMSStore once at startup, builds the engine components
around it, and disposes the connection pool at shutdown.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.escalations import router as escalations_router
from api.routes.v1.lifecycle import router as lifecycle_router
from api.routes.v1.notifications import router as notifications_router
from api.routes.v1.schedule import router as schedule_router
from cmms.store import CMMSStore
from core.config import get_settings
from core.errors import EquipCareError
from engine.services import build_services

API_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("equipcare.api")

# HTTP status per domain error code. Anything unlisted is a 400.
_ERROR_STATUS = {
    "asset_not_found": 404,
    "work_not_found": 404,
    "rule_not_found": 404,
    "duplicate_active_schedule": 409,
    "invalid_policy": 422,
    "store_unavailable": 503,
}


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


def attach_services(app: FastAPI, store: CMMSStore, transport=None) -> None:
    """Store the engine components on app.state, where the routes look them up."""
    services = build_services(store, get_settings(), transport)
    app.state.store = services.store
    app.state.sink = services.sink
    app.state.scheduler = services.scheduler
    app.state.escalation = services.escalation
    app.state.reminders = services.reminders
    app.state.lifecycle = services.lifecycle


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the store on startup and dispose it on shutdown.

    Everything before yield runs on startup; everything after yield runs on
    shutdown, even if a request handler raised.
    """
    logger.info("EquipCare API starting up")
    store = CMMSStore()
    attach_services(app, store)
    logger.info("Store initialized (%s)", store.engine.url.render_as_string(hide_password=True))

    yield

    store.close()
    logger.info("EquipCare API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="EquipCare API",
    description="Biomedical equipment maintenance scheduling, escalation and lifecycle triggers.",
    version=API_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=["localhost", "127.0.0.1", "*.localhost", "testserver"],
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1"],
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "X-API-Key"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

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

app.include_router(schedule_router, prefix="/api/v1", tags=["Scheduling"])
app.include_router(escalations_router, prefix="/api/v1", tags=["Escalation"])
app.include_router(notifications_router, prefix="/api/v1", tags=["Notifications"])
app.include_router(lifecycle_router, prefix="/api/v1", tags=["Lifecycle"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(EquipCareError)
async def domain_error_handler(request: Request, exc: EquipCareError) -> JSONResponse:
    """Map domain errors to HTTP statuses by their stable code."""
    status = _ERROR_STATUS.get(exc.code, 400)
    if status == 503:
        logger.error("Store unavailable on %s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=status,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=exc.message)).model_dump(),
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error and a Retry-After header."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with detail=ErrorDetail(...).model_dump().
    A dict detail is used directly as the error field.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined here (not in a router) so it is reachable without an API key and is
# never rate limited -- monitoring probes must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version and whether the database answers."""
    store: CMMSStore = request.app.state.store
    return HealthResponse(version=API_VERSION, database="ok" if store.ping() else "unavailable")
