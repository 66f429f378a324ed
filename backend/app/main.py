"""FastAPI application (read-only notice API).

- Bearer-token authentication + per-token hourly rate limit
- Request-id propagation and structured access logs
- Database connection failures surface as 503, never as fabricated data
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from app.api.router import router as api_router
from app.core.config import Settings
from app.core.db import create_db_engine, create_session_factory
from app.core.env import env_int, load_env_if_present
from app.core.logging import ROOT_LOGGER_NAME, log_event
from app.security.rate_limit import InMemoryHourlyRateLimiter
import app.models as _models  # noqa: F401  (register all ORM models deterministically)


logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.api")
# Access logs are emitted by default.
logger.setLevel(logging.INFO)


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    if app.state.session_factory is not None:
        yield
        return

    settings = Settings.from_env()
    engine = create_db_engine(settings.database)
    app.state.session_factory = create_session_factory(engine)
    try:
        yield
    finally:
        app.state.session_factory = None
        engine.dispose()


def create_app(
    session_factory: Optional[sessionmaker[Session]] = None,
    *,
    rate_limit_per_hour: Optional[int] = None,
) -> FastAPI:
    """Without a session factory the engine is created from the environment at startup."""
    if rate_limit_per_hour is None:
        load_env_if_present()
        rate_limit_per_hour = env_int("API_RATE_LIMIT_PER_HOUR", 1000, minimum=1)

    app = FastAPI(
        title="Notice Ingestion API",
        version="1.0.0",
        openapi_url="/openapi.json",
        docs_url=None,
        redoc_url=None,
        description="Read-only access to ingested aeronautical notices.",
        lifespan=_lifespan,
    )
    app.state.session_factory = session_factory
    app.state.rate_limiter = InMemoryHourlyRateLimiter(limit_per_hour=rate_limit_per_hour)

    app.include_router(api_router)

    @app.middleware("http")
    async def request_id_and_access_log(request: Request, call_next: Callable):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        start = time.time()
        try:
            response = await call_next(request)
        except OperationalError:
            log_event(logger, "database_unavailable", level=logging.WARNING, request_id=request_id, path=request.url.path)
            return JSONResponse(
                status_code=503,
                content={"detail": "Service temporarily unavailable."},
                headers={"x-request-id": request_id},
            )
        except Exception:  # noqa: BLE001
            log_event(
                logger,
                "unhandled_error",
                level=logging.ERROR,
                exc_info=True,
                request_id=request_id,
                path=request.url.path,
            )
            return JSONResponse(
                status_code=500,
                content={"detail": "Internal error."},
                headers={"x-request-id": request_id},
            )

        duration_ms = int((time.time() - start) * 1000)
        response.headers["x-request-id"] = request_id

        # Structured access log (no tokens, no payloads).
        log_event(
            logger,
            "access",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            status_code=getattr(response, "status_code", None),
            duration_ms=duration_ms,
        )
        return response

    return app


app = create_app()
