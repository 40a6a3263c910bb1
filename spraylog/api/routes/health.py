"""GET /health: liveness plus a database round-trip."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from spraylog.api.deps import get_db, get_jurisdiction_registry
from spraylog.core.settings import get_settings
from spraylog.reports.registry import JurisdictionRegistry

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health", summary="Service and database health")
def health_check(
    db: Session = Depends(get_db),
    registry: JurisdictionRegistry = Depends(get_jurisdiction_registry),
) -> dict:
    settings = get_settings()
    try:
        db.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError as exc:
        logger.warning("Health check database probe failed: %s", type(exc).__name__)
        database = "unavailable"
    return {
        "status": "ok" if database == "ok" else "degraded",
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.app_env,
        "database": database,
        "email_provider": settings.email_provider,
        "jurisdictions": registry.codes(),
    }
