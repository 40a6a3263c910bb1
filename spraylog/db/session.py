from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TypeVar

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from spraylog.core.errors import ConflictError
from spraylog.core.settings import get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

_engine = None
_session_factory = None


def get_engine():
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_engine(settings.database_url, pool_pre_ping=True)
    return _engine


def get_session_factory():
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(
            bind=get_engine(),
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            class_=Session,
        )
    return _session_factory


def init_db(engine=None) -> None:
    """Create any missing tables from the ORM metadata."""
    from spraylog.db import models  # noqa: F401  registers tables on Base.metadata
    from spraylog.db.base import Base

    Base.metadata.create_all(engine or get_engine())


def run_in_transaction(
    session_factory: Callable[[], Session],
    work: Callable[[Session], T],
    *,
    max_attempts: int = 3,
) -> T:
    """Run *work* in a fresh transaction, retrying the whole unit on conflict.

    Each attempt gets a new session; a ``ConflictError`` rolls the attempt
    back and starts over.  The last conflict propagates once *max_attempts*
    is exhausted.  Any other exception rolls back and propagates immediately.
    """
    for attempt in range(1, max_attempts + 1):
        db = session_factory()
        try:
            result = work(db)
            db.commit()
            return result
        except ConflictError:
            db.rollback()
            if attempt == max_attempts:
                logger.error("Transaction conflict persisted after %d attempts", attempt)
                raise
            logger.warning("Transaction conflict on attempt %d; retrying", attempt)
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()
    raise AssertionError("unreachable")
