"""Application audit trail: append-only, gap-free per application.

``record_change()`` writes one ``ApplicationHistory`` row per mutation in
the caller's transaction.  Sequence numbers are ``max(sequence) + 1`` read
inside that transaction; the ``(application_id, sequence)`` unique
constraint turns a lost race into ``ConflictError`` and the caller retries
the whole mutation.

History rows are immutable: a session guard refuses to flush updates or
deletes of history rows, and refuses to delete applications at all.

Safety: field values are never logged, only ids, sequence and action.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import date, datetime, timezone
from enum import Enum
from uuid import UUID

from sqlalchemy import event, func, inspect, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from spraylog.audit.events import (
    ACTION_CREATED,
    ACTION_UPDATED,
    IGNORED_FIELDS,
    VALID_ACTIONS,
)
from spraylog.core.errors import ConflictError, InvalidStateError, ValidationError
from spraylog.db.models import Application, ApplicationHistory

logger = logging.getLogger(__name__)

_SEQUENCE_CONSTRAINT_MARKERS = (
    "uq_application_history_sequence",
    "application_history.sequence",
)


# ---------------------------------------------------------------------------
# Snapshots and diffs
# ---------------------------------------------------------------------------

def _jsonable(value: object) -> object:
    # Timestamps are recorded as naive UTC so stored and in-memory values compare equal.
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    return value


def snapshot_application(application: Application) -> dict[str, object]:
    """Return the auditable column values of *application* as plain data."""
    mapper = inspect(Application)
    return {
        attr.key: _jsonable(getattr(application, attr.key))
        for attr in mapper.column_attrs
        if attr.key not in IGNORED_FIELDS
    }


def compute_diff(
    before: Mapping[str, object] | None,
    after: Mapping[str, object],
) -> dict[str, dict[str, object]]:
    """Field-level diff ``{field: {"old": ..., "new": ...}}``.

    For a creation (*before* is ``None``) every populated field is recorded
    with ``old=None``.
    """
    changes: dict[str, dict[str, object]] = {}
    for key in sorted(after):
        if key in IGNORED_FIELDS:
            continue
        new = _jsonable(after[key])
        if before is None:
            if new is not None:
                changes[key] = {"old": None, "new": new}
            continue
        old = _jsonable(before.get(key))
        if old != new:
            changes[key] = {"old": old, "new": new}
    return changes


# ---------------------------------------------------------------------------
# Recording
# ---------------------------------------------------------------------------

def _next_sequence(db_session: Session, application_id: UUID) -> int:
    stmt = select(func.max(ApplicationHistory.sequence)).where(
        ApplicationHistory.application_id == application_id
    )
    current = db_session.execute(stmt).scalar()
    return (current or 0) + 1


def _is_sequence_conflict(exc: IntegrityError) -> bool:
    message = str(exc.orig)
    return any(marker in message for marker in _SEQUENCE_CONSTRAINT_MARKERS)


def record_change(
    db_session: Session,
    before: Mapping[str, object] | None,
    after: Application,
    actor: str,
    reason: str | None = None,
    action: str | None = None,
) -> ApplicationHistory:
    """Persist the history entry describing *before* → *after*.

    *before* is the snapshot taken with :func:`snapshot_application` prior
    to the mutation, or ``None`` for a creation.  Flushes but does **not**
    commit: the application write and its history entry share the
    caller's transaction.

    Raises ``ConflictError`` when a concurrent writer already used the
    sequence number this transaction computed.
    """
    if not actor or not str(actor).strip():
        raise ValidationError("actor must be a non-empty string", entity_id=after.id)

    action = action or (ACTION_CREATED if before is None else ACTION_UPDATED)
    if action not in VALID_ACTIONS:
        raise ValidationError(
            f"Invalid history action {action!r}; must be one of {sorted(VALID_ACTIONS)}",
            entity_id=after.id,
        )

    changes = compute_diff(before, snapshot_application(after))
    if before is not None and not changes:
        raise ValidationError("No field changes to record", entity_id=after.id)

    if after.id is None:
        db_session.flush()

    sequence = _next_sequence(db_session, after.id)
    entry = ApplicationHistory(
        application_id=after.id,
        company_id=after.company_id,
        sequence=sequence,
        action=action,
        changes=changes,
        actor_id=str(actor),
        reason=reason,
        created_at=datetime.now(timezone.utc),
    )
    db_session.add(entry)
    try:
        db_session.flush()
    except IntegrityError as exc:
        if _is_sequence_conflict(exc):
            logger.warning(
                "History sequence conflict: application=%s sequence=%d", after.id, sequence
            )
            raise ConflictError(
                f"History sequence {sequence} already taken for application {after.id}",
                entity_id=after.id,
            ) from exc
        raise

    logger.info(
        "History recorded: application=%s sequence=%d action=%s actor=%s",
        after.id,
        sequence,
        action,
        actor,
    )
    return entry


def get_history(
    db_session: Session,
    company_id: UUID,
    application_id: UUID,
) -> list[ApplicationHistory]:
    """Return history for *application_id* within *company_id*, by sequence."""
    stmt = (
        select(ApplicationHistory)
        .where(
            ApplicationHistory.application_id == application_id,
            ApplicationHistory.company_id == company_id,
        )
        .order_by(ApplicationHistory.sequence.asc())
    )
    return list(db_session.execute(stmt).scalars().all())


# ---------------------------------------------------------------------------
# Immutability guard
# ---------------------------------------------------------------------------

@event.listens_for(Session, "before_flush")
def _guard_history_immutability(session: Session, flush_context, instances) -> None:
    for obj in session.deleted:
        if isinstance(obj, ApplicationHistory):
            raise InvalidStateError(
                "Application history entries cannot be deleted", entity_id=obj.id
            )
        if isinstance(obj, Application):
            raise InvalidStateError(
                "Applications cannot be deleted; void them instead",
                entity_id=obj.id,
                state=obj.status,
            )
    for obj in session.dirty:
        if isinstance(obj, ApplicationHistory) and session.is_modified(obj, include_collections=False):
            raise InvalidStateError(
                "Application history entries are immutable", entity_id=obj.id
            )
