"""
api/main.py -- FastAPI application factory for the campus services.

One codebase serves the Token, Evaluation and Grading systems; create_app()
builds the app for one of them from its resolved settings.

Run with:  uvicorn asgi:app --reload
           CAMPUS_SERVICE=grading uvicorn asgi:app

Middleware stack (outermost to innermost):
  1. CORSMiddleware    -- allows exactly the configured FRONTEND_URL origin
  2. SlowAPIMiddleware -- enforces per-route rate limits from api.limiter

Lifespan handles startup (required-key report, user store) and shutdown
(close the store) symmetrically. .env discovery happens in build_settings(),
before the app exists, because CORS needs FRONTEND_URL at construction time.
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
from starlette.exceptions import HTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.auth import router as auth_router
from auth.store import UserStore
from core.config import ServiceSettings, get_settings
from core.env import default_candidate_paths, load_sources, prefixed_keys, validate_required

VERSION = "0.3.0"

# Keys a service cannot run correctly without. DATABASE_URL is not listed:
# the store falls back to the PG* parts and finally to SQLite.
REQUIRED_KEYS = ("JWT_SECRET", "PORT", "FRONTEND_URL")

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("campus.api")


# ---------------------------------------------------------------------------
# Settings bootstrap
# ---------------------------------------------------------------------------


def build_settings(service: str = "evaluation") -> ServiceSettings:
    """Merge the service's .env candidates into the environment, then resolve settings.

    Runs once per process. get_settings() caches per service, so a second
    call returns the same instance without re-reading any file.
    """
    load_sources(default_candidate_paths(service))
    return get_settings(service)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the user store on startup and close it on shutdown.

    Missing required keys are reported, not fatal: every one of them has a
    development default. `python main.py check` is the gate that fails a
    deployment.
    """
    settings: ServiceSettings = app.state.settings
    logging.getLogger("campus").setLevel(settings.log_level.upper())
    logger.info("%s service starting up (%s)", settings.service, settings.environment)
    logger.info("Configuration: %s", settings.summary())

    prefix = settings.model_config["env_prefix"]
    check = validate_required(REQUIRED_KEYS, prefix)
    if not check:
        logger.warning("Missing environment variables, using defaults: %s", ", ".join(check.missing))
    found = prefixed_keys(prefix)
    if found:
        logger.info("Service-prefixed variables in use: %s", ", ".join(found))

    app.state.user_store = UserStore.from_settings(settings)
    logger.info("User store initialized")

    yield

    app.state.user_store.close()
    logger.info("%s service shutdown complete", settings.service)


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error and a Retry-After header."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(code="rate_limited", message="Too many requests.", detail=str(exc.detail))
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with a structured error when the request body fails validation."""
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


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for HTTP exceptions.

    Route handlers raise HTTPException with a {"code", "message"} dict as
    detail; that dict becomes the error field as-is.
    """
    if isinstance(exc.detail, dict):
        content = {"error": exc.detail}
    else:
        content = ErrorResponse(error=ErrorDetail(code=f"http_{exc.status_code}", message=str(exc.detail))).model_dump()
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected errors. The traceback goes to the log, never the response."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(error=ErrorDetail(code="internal_error", message="An unexpected error occurred.")).model_dump(),
    )


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------


def create_app(settings: ServiceSettings) -> FastAPI:
    """Build the FastAPI app for one service from its resolved settings.

    settings is stored on app.state; the lifespan, dependencies and routes
    all read it from there.
    """
    app = FastAPI(
        title=f"Campus {settings.service.title()} System API",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.limiter = limiter

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url.rstrip("/")],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
        allow_headers=["Content-Type", "Authorization"],
        max_age=3600,
    )
    app.add_middleware(SlowAPIMiddleware)

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

    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    app.include_router(auth_router, prefix="/api", tags=["Auth"])

    @app.get("/api/health", tags=["Health"])
    def health(request: Request) -> HealthResponse:
        """Return liveness plus a database probe. No auth, no rate limit."""
        db_ok = request.app.state.user_store.ping()
        return HealthResponse(
            service=settings.service,
            version=VERSION,
            components={"app": "ok", "database": "ok" if db_ok else "error"},
        )

    return app
