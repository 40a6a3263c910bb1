"""Delivery-status reconciliation and manual resend.

Provider webhooks arrive at-least-once and possibly out of order, so every
transition here is idempotent: re-applying an event that already took
effect changes nothing.  Unknown provider message ids are foreign or stale
callbacks and are discarded, never raised.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy.orm import Session

from spraylog.core.errors import InvalidStateError, NotFoundError, ValidationError
from spraylog.db.models import (
    APPLICATION_VOIDED,
    Application,
    Customer,
    NOTIFICATION_DELIVERED,
    NOTIFICATION_FAILED,
    NOTIFICATION_PENDING,
    NOTIFICATION_SENT,
    NotificationLog,
)
from spraylog.db.repositories import NotificationLogRepository
from spraylog.notification.dispatcher import NotificationDispatcher, find_active_entry

logger = logging.getLogger(__name__)

EVENT_DELIVERED = "delivered"
EVENT_BOUNCED = "bounced"
EVENT_DROPPED = "dropped"

FAILURE_EVENTS = frozenset({EVENT_BOUNCED, EVENT_DROPPED, "bounce"})

_RECONCILABLE_STATUSES = (NOTIFICATION_SENT, NOTIFICATION_DELIVERED)


def _event_time(timestamp: datetime | int | float | None) -> datetime:
    if timestamp is None:
        return datetime.now(timezone.utc)
    if isinstance(timestamp, (int, float)):
        return datetime.fromtimestamp(timestamp, tz=timezone.utc)
    if timestamp.tzinfo is None:
        return timestamp.replace(tzinfo=timezone.utc)
    return timestamp


def normalize_provider_message_id(raw: str) -> str:
    """SendGrid suffixes event ids with ``.filterXXXX``; keep the stored part.

    SMTP Message-IDs contain dots of their own, so only that suffix is cut.
    """
    return raw.strip().split(".filter", 1)[0]


def apply_provider_event(
    db_session: Session,
    provider_message_id: str,
    event_type: str,
    timestamp: datetime | int | float | None = None,
    reason: str | None = None,
) -> NotificationLog | None:
    """Apply one delivery callback.  Flushes but does not commit.

    Returns the matching entry, or ``None`` when the id is unknown.
    """
    event_type = (event_type or "").lower()
    entry = NotificationLogRepository(db_session).get_by_provider_message_id(provider_message_id)
    if entry is None:
        logger.info("Ignoring %s event for unknown provider message %s", event_type, provider_message_id)
        return None

    if entry.status not in _RECONCILABLE_STATUSES:
        logger.info("Ignoring %s event for notification %s in status %s", event_type, entry.id, entry.status)
        return entry

    at = _event_time(timestamp)
    if event_type == EVENT_DELIVERED:
        if entry.status == NOTIFICATION_DELIVERED:
            logger.debug("Duplicate delivered event for notification %s", entry.id)
            return entry
        entry.status = NOTIFICATION_DELIVERED
        entry.delivered_at = at
        logger.info("Notification %s delivered", entry.id)
    elif event_type in FAILURE_EVENTS:
        entry.status = NOTIFICATION_FAILED
        entry.failed_at = at
        entry.failure_reason = reason or f"Provider reported {event_type}"
        entry.next_attempt_at = None
        logger.warning("Notification %s %s by provider", entry.id, event_type)
    else:
        logger.debug("Ignoring %s event for notification %s", event_type, entry.id)
        return entry

    db_session.flush()
    return entry


def resend(
    db_session: Session,
    company_id: UUID,
    entry_id: UUID,
    actor: str,
    dispatcher: NotificationDispatcher,
) -> NotificationLog:
    """Re-open a failed notification and attempt it again now.

    The attempt counter keeps counting across resends; the entry gets a
    fresh retry budget.  Commits through the dispatcher.
    """
    entry = NotificationLogRepository(db_session).get(company_id, entry_id)
    if entry is None:
        raise NotFoundError(f"Notification {entry_id} not found", entity_id=entry_id)
    if entry.status != NOTIFICATION_FAILED:
        raise InvalidStateError(
            f"Only failed notifications can be resent; notification {entry_id} is {entry.status}",
            entity_id=entry_id,
            state=entry.status,
        )

    application = db_session.get(Application, entry.application_id)
    if application is None or application.status == APPLICATION_VOIDED:
        raise InvalidStateError(
            f"Application {entry.application_id} is voided; notification cannot be resent",
            entity_id=entry_id,
            state=entry.status,
        )

    other = find_active_entry(db_session, entry.application_id)
    if other is not None and other.id != entry.id:
        raise InvalidStateError(
            f"Notification {other.id} is already active for this application",
            entity_id=entry_id,
            state=entry.status,
        )

    customer = db_session.get(Customer, entry.customer_id)
    if customer is None or not customer.email:
        raise ValidationError(
            f"Customer for notification {entry_id} has no email address",
            entity_id=entry_id,
            state=entry.status,
        )

    entry.customer_name = customer.name
    entry.email = customer.email
    entry.status = NOTIFICATION_PENDING
    entry.cycle_start_attempt = entry.attempt_count
    entry.resend_count += 1
    entry.last_resent_by = actor
    entry.next_attempt_at = dispatcher.now()
    entry.failure_reason = None
    entry.claimed_at = None
    db_session.commit()
    logger.info("Notification %s resent by %s (resend %d)", entry.id, actor, entry.resend_count)

    return dispatcher.attempt(db_session, entry)
