"""FastAPI application factory.

Assembles CORS, the domain-error handler, all API routers, and the
notification retry poller that runs for the lifetime of the app.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from spraylog.api.deps import get_email_provider
from spraylog.api.routes.applications import router as applications_router
from spraylog.api.routes.health import router as health_router
from spraylog.api.routes.notifications import router as notifications_router
from spraylog.api.routes.reports import router as reports_router
from spraylog.api.routes.webhooks import router as webhooks_router
from spraylog.core.errors import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    ProviderError,
    RendererUnavailableError,
    ReportCancelledError,
    SpraylogError,
    UnsupportedJurisdictionError,
    ValidationError,
)
from spraylog.core.logging import setup_logging
from spraylog.core.settings import get_settings
from spraylog.db.session import get_session_factory, init_db
from spraylog.notification.dispatcher import NotificationDispatcher
from spraylog.notification.scheduler import poll_due_notifications

logger = logging.getLogger(__name__)

ERROR_STATUS: dict[type[SpraylogError], int] = {
    ConflictError: 409,
    ValidationError: 422,
    InvalidStateError: 409,
    ProviderError: 502,
    UnsupportedJurisdictionError: 422,
    NotFoundError: 404,
    ReportCancelledError: 408,
    RendererUnavailableError: 503,
}


def status_for(exc: SpraylogError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return 400


@asynccontextmanager
async def lifespan(_: FastAPI):
    setup_logging()
    settings = get_settings()
    if settings.auto_create_tables:
        init_db()
    task = None
    if settings.retry_poll_interval_seconds > 0:
        dispatcher = NotificationDispatcher.from_settings(get_email_provider(), settings)
        task = asyncio.create_task(poll_due_notifications(get_session_factory(), dispatcher))
    yield
    if task is not None:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


settings = get_settings()

app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    lifespan=lifespan,
)

# CORS: restrict origins in production via a fronting proxy
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SpraylogError)
async def spraylog_error_handler(_: Request, exc: SpraylogError) -> JSONResponse:
    status_code = status_for(exc)
    if status_code >= 500:
        logger.error("%s: %s", exc.code, exc.message)
    return JSONResponse(status_code=status_code, content={"detail": exc.to_dict()})


app.include_router(health_router)
app.include_router(applications_router)
app.include_router(notifications_router)
app.include_router(webhooks_router)
app.include_router(reports_router)
