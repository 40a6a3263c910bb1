"""FastAPI dependency injection: sessions, tenant context and service factories."""
from __future__ import annotations

from collections.abc import Generator
from dataclasses import dataclass
from functools import lru_cache
from uuid import UUID

from fastapi import Depends, Header
from sqlalchemy.orm import Session, sessionmaker

from spraylog.db.session import get_session_factory as _default_session_factory
from spraylog.notification.dispatcher import NotificationDispatcher
from spraylog.notification.providers import EmailProvider, build_email_provider
from spraylog.reports.registry import JurisdictionRegistry


@dataclass(frozen=True)
class RequestContext:
    """Tenant and actor resolved by the auth layer in front of this API."""

    company_id: UUID
    user_id: UUID


def get_session_factory() -> sessionmaker:
    return _default_session_factory()


def get_db(factory: sessionmaker = Depends(get_session_factory)) -> Generator[Session, None, None]:
    """Yield a SQLAlchemy session; commit on success, rollback on error."""
    db = factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_request_context(
    x_company_id: UUID = Header(...),
    x_user_id: UUID = Header(...),
) -> RequestContext:
    return RequestContext(company_id=x_company_id, user_id=x_user_id)


@lru_cache(maxsize=1)
def get_email_provider() -> EmailProvider:
    """Return the provider selected by ``EMAIL_PROVIDER``."""
    return build_email_provider()


def get_dispatcher(provider: EmailProvider = Depends(get_email_provider)) -> NotificationDispatcher:
    return NotificationDispatcher.from_settings(provider)


@lru_cache(maxsize=1)
def get_jurisdiction_registry() -> JurisdictionRegistry:
    """Return the registry of built-in and configured jurisdictions."""
    return JurisdictionRegistry.default()
