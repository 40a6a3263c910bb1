"""Notification dispatcher: pending → sent, or failed with scheduled retry.

One ``NotificationLog`` row is one delivery lineage for an application.
Each delivery attempt is *claimed* with a conditional UPDATE that is
committed before the provider is called, so two workers can never run the
same attempt.  Failed attempts store ``next_attempt_at`` (exponential
backoff, base delay doubling per attempt) instead of sleeping; a poller
(:mod:`spraylog.notification.scheduler`) fires due retries.

    pending ──send ok──▶ sent ──webhook──▶ delivered
       │                    └──bounce/drop──▶ failed (terminal)
       └──send error──▶ failed ──retry due──▶ pending ...
                          └── attempts exhausted ──▶ failed (terminal, resendable)

The dispatcher commits: once after the claim, once after the outcome.
Call it after the Application write has committed.

Safety: recipient addresses are never logged, only entry/application ids.
"""
from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from uuid import UUID

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from spraylog.core.errors import ProviderError
from spraylog.core.settings import Settings, get_settings
from spraylog.db.models import (
    APPLICATION_VOIDED,
    Application,
    Company,
    Customer,
    NOTIFICATION_FAILED,
    NOTIFICATION_PENDING,
    NOTIFICATION_SENT,
    NotificationLog,
)
from spraylog.notification.composer import (
    DEFAULT_TEMPLATE_DIR,
    NOTICE_SUBJECT,
    compose_application_notice,
)
from spraylog.notification.providers import EmailProvider

logger = logging.getLogger(__name__)

_MAX_REASON_LENGTH = 1000

CLAIMABLE_STATUSES = (NOTIFICATION_PENDING, NOTIFICATION_FAILED)


def active_clause():
    """SQL condition for a non-terminal entry."""
    return or_(
        NotificationLog.status.in_((NOTIFICATION_PENDING, NOTIFICATION_SENT)),
        and_(
            NotificationLog.status == NOTIFICATION_FAILED,
            NotificationLog.next_attempt_at.is_not(None),
        ),
    )


def find_active_entry(db_session: Session, application_id: UUID) -> NotificationLog | None:
    stmt = select(NotificationLog).where(
        NotificationLog.application_id == application_id,
        active_clause(),
    )
    return db_session.execute(stmt).scalars().first()


def cancel_scheduled_attempts(
    db_session: Session,
    application_id: UUID,
    reason: str,
    now: datetime | None = None,
) -> int:
    """Stop queued or scheduled attempts for *application_id*.

    Entries already sent or delivered are left as they are.  Flushes but
    does not commit.  Returns the number of entries cancelled.
    """
    now = now or datetime.now(timezone.utc)
    stmt = select(NotificationLog).where(
        NotificationLog.application_id == application_id,
        NotificationLog.status.in_(CLAIMABLE_STATUSES),
        NotificationLog.next_attempt_at.is_not(None),
    )
    entries = list(db_session.execute(stmt).scalars().all())
    for entry in entries:
        entry.status = NOTIFICATION_FAILED
        entry.next_attempt_at = None
        entry.failed_at = entry.failed_at or now
        entry.failure_reason = reason
        logger.info("Notification %s cancelled: %s", entry.id, reason)
    db_session.flush()
    return len(entries)


class NotificationDispatcher:
    """Compose, send and schedule retries for application notices."""

    def __init__(
        self,
        provider: EmailProvider,
        *,
        max_attempts: int = 3,
        backoff_base_seconds: int = 60,
        stale_claim_seconds: int = 600,
        template_dir: str | Path = DEFAULT_TEMPLATE_DIR,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.provider = provider
        self.max_attempts = max_attempts
        self.backoff_base_seconds = backoff_base_seconds
        self.stale_claim_seconds = stale_claim_seconds
        self.template_dir = template_dir
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @classmethod
    def from_settings(cls, provider: EmailProvider, settings: Settings | None = None) -> NotificationDispatcher:
        settings = settings or get_settings()
        return cls(
            provider,
            max_attempts=settings.notification_max_attempts,
            backoff_base_seconds=settings.notification_backoff_base_seconds,
            stale_claim_seconds=settings.stale_claim_seconds,
        )

    def now(self) -> datetime:
        return self._clock()

    # -- policy -------------------------------------------------------------

    def backoff_delay(self, cycle_attempt: int) -> timedelta:
        """Delay after the *cycle_attempt*-th failure: base, 2×base, 4×base…"""
        return timedelta(seconds=self.backoff_base_seconds * (2 ** (cycle_attempt - 1)))

    # -- entry creation -----------------------------------------------------

    def _eligible(self, customer: Customer, application: Application) -> bool:
        if not customer.notify_by_email:
            logger.info("Customer %s opted out of email; application %s not notified", customer.id, application.id)
            return False
        if not customer.email:
            logger.info("Customer %s has no email; application %s not notified", customer.id, application.id)
            return False
        if application.status == APPLICATION_VOIDED:
            logger.info("Application %s is voided; not notified", application.id)
            return False
        return True

    def _create_entry(
        self,
        db_session: Session,
        application: Application,
        customer: Customer,
    ) -> NotificationLog:
        entry = NotificationLog(
            company_id=application.company_id,
            application_id=application.id,
            customer_id=customer.id,
            customer_name=customer.name,
            email=customer.email,
            subject=NOTICE_SUBJECT,
            status=NOTIFICATION_PENDING,
            attempt_count=0,
            cycle_start_attempt=0,
            next_attempt_at=self._clock(),
        )
        db_session.add(entry)
        try:
            db_session.flush()
        except IntegrityError:
            # Another transaction opened the lineage first.
            db_session.rollback()
            existing = find_active_entry(db_session, application.id)
            if existing is None:
                raise
            logger.info("Notification for application %s already active (%s)", application.id, existing.id)
            return existing
        logger.info("Notification %s queued for application %s", entry.id, application.id)
        return entry

    def enqueue(
        self,
        db_session: Session,
        application: Application,
        customer: Customer,
    ) -> NotificationLog | None:
        """Queue a notice for the poller without sending.  Flushes only."""
        if not self._eligible(customer, application):
            return None
        existing = find_active_entry(db_session, application.id)
        if existing is not None:
            return existing
        return self._create_entry(db_session, application, customer)

    def dispatch(
        self,
        db_session: Session,
        application: Application,
        customer: Customer,
    ) -> NotificationLog | None:
        """Create the notice and make the first attempt now.

        Returns ``None`` when the customer has not opted in.  When a
        non-terminal entry already exists for the application it is
        returned unchanged, with no second lineage and no second send.
        """
        if not self._eligible(customer, application):
            return None
        existing = find_active_entry(db_session, application.id)
        if existing is not None:
            logger.info("Notification %s already active for application %s", existing.id, application.id)
            return existing
        entry = self._create_entry(db_session, application, customer)
        db_session.commit()
        return self.attempt(db_session, entry)

    # -- attempts -----------------------------------------------------------

    def _claim(self, db_session: Session, entry: NotificationLog, now: datetime) -> bool:
        seen = entry.attempt_count
        stmt = (
            update(NotificationLog)
            .where(
                NotificationLog.id == entry.id,
                NotificationLog.status.in_(CLAIMABLE_STATUSES),
                NotificationLog.next_attempt_at.is_not(None),
                NotificationLog.attempt_count == seen,
            )
            .values(
                attempt_count=seen + 1,
                status=NOTIFICATION_PENDING,
                next_attempt_at=None,
                claimed_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        claimed = db_session.execute(stmt).rowcount == 1
        db_session.commit()
        db_session.refresh(entry)
        return claimed

    def _record_success(self, entry: NotificationLog, provider_message_id: str, now: datetime) -> None:
        entry.status = NOTIFICATION_SENT
        entry.sent_at = now
        entry.provider_message_id = provider_message_id
        entry.failure_reason = None
        entry.claimed_at = None
        logger.info("Notification %s sent (attempt %d)", entry.id, entry.attempt_count)

    def _record_failure(self, entry: NotificationLog, reason: str, now: datetime) -> None:
        entry.status = NOTIFICATION_FAILED
        entry.failed_at = now
        entry.failure_reason = reason[:_MAX_REASON_LENGTH]
        entry.claimed_at = None
        cycle_attempts = entry.attempt_count - entry.cycle_start_attempt
        if cycle_attempts < self.max_attempts:
            entry.next_attempt_at = now + self.backoff_delay(cycle_attempts)
            logger.warning(
                "Notification %s attempt %d failed; retry %d of %d scheduled",
                entry.id,
                entry.attempt_count,
                cycle_attempts + 1,
                self.max_attempts,
            )
        else:
            entry.next_attempt_at = None
            logger.error(
                "Notification %s failed after %d attempts; manual resend required",
                entry.id,
                entry.attempt_count,
            )

    def attempt(self, db_session: Session, entry: NotificationLog) -> NotificationLog:
        """Claim and run one delivery attempt for *entry*.

        A voided application cancels the attempt instead.  If another
        worker already claimed this attempt the entry is returned as-is.
        """
        db_session.refresh(entry)
        application = db_session.get(Application, entry.application_id)
        if application is None or application.status == APPLICATION_VOIDED:
            cancel_scheduled_attempts(db_session, entry.application_id, "Application voided", now=self._clock())
            db_session.commit()
            db_session.refresh(entry)
            return entry

        now = self._clock()
        if not self._claim(db_session, entry, now):
            logger.info("Notification %s attempt already claimed elsewhere", entry.id)
            return entry

        customer = db_session.get(Customer, entry.customer_id)
        company = db_session.get(Company, application.company_id)
        try:
            message = compose_application_notice(
                application,
                customer,
                company=company,
                applicator=application.applicator,
                template_dir=self.template_dir,
            )
        except Exception as exc:
            logger.error("Notification %s could not be composed: %s", entry.id, exc)
            self._record_failure(entry, f"Could not compose notice: {exc}", self._clock())
            db_session.commit()
            return entry

        try:
            provider_message_id = self.provider.send(entry.email, message.subject, message.html_body)
        except ProviderError as exc:
            self._record_failure(entry, str(exc), self._clock())
        else:
            self._record_success(entry, provider_message_id, self._clock())

        db_session.commit()
        return entry

    # -- polling ------------------------------------------------------------

    def recover_stale_claims(self, db_session: Session) -> int:
        """Treat attempts claimed long ago and never finished as failures."""
        now = self._clock()
        cutoff = now - timedelta(seconds=self.stale_claim_seconds)
        stmt = select(NotificationLog).where(
            NotificationLog.status == NOTIFICATION_PENDING,
            NotificationLog.next_attempt_at.is_(None),
            NotificationLog.claimed_at.is_not(None),
            NotificationLog.claimed_at < cutoff,
        )
        entries = list(db_session.execute(stmt).scalars().all())
        for entry in entries:
            self._record_failure(entry, "Delivery attempt interrupted", now)
        if entries:
            db_session.commit()
        return len(entries)

    def due_entry_ids(self, db_session: Session, limit: int = 50) -> list[UUID]:
        stmt = (
            select(NotificationLog.id)
            .where(
                NotificationLog.status.in_(CLAIMABLE_STATUSES),
                NotificationLog.next_attempt_at.is_not(None),
                NotificationLog.next_attempt_at <= self._clock(),
            )
            .order_by(NotificationLog.next_attempt_at.asc(), NotificationLog.id)
            .limit(limit)
        )
        return list(db_session.execute(stmt).scalars().all())

    def process_due(self, db_session: Session, limit: int = 50) -> int:
        """Fire every attempt whose ``next_attempt_at`` has passed.

        Returns the number of entries processed.
        """
        recovered = self.recover_stale_claims(db_session)
        if recovered:
            logger.warning("Recovered %d interrupted notification attempts", recovered)

        processed = 0
        for entry_id in self.due_entry_ids(db_session, limit=limit):
            entry = db_session.get(NotificationLog, entry_id)
            if entry is None:
                continue
            self.attempt(db_session, entry)
            processed += 1
        return processed
