"""Tests for spraylog/notification/reconciler.py: webhooks and manual resend."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from conftest import FlakyProvider, make_application, naive
from spraylog.applications.service import void_application
from spraylog.core.errors import InvalidStateError, NotFoundError, ValidationError
from spraylog.db.models import (
    NOTIFICATION_DELIVERED,
    NOTIFICATION_FAILED,
    NOTIFICATION_SENT,
)
from spraylog.notification.dispatcher import NotificationDispatcher
from spraylog.notification.reconciler import (
    apply_provider_event,
    normalize_provider_message_id,
    resend,
)


@pytest.fixture()
def application(db_session, company, applicator, customer, chemical):
    return make_application(db_session, company, applicator, customer, chemical)


@pytest.fixture()
def sent_entry(db_session, clock, customer, application):
    dispatcher = NotificationDispatcher(FlakyProvider(), clock=clock)
    return dispatcher.dispatch(db_session, application, customer)


def _exhaust(db_session, clock, dispatcher, application, customer):
    """Dispatch and let every retry fail; returns the terminal entry."""
    entry = dispatcher.dispatch(db_session, application, customer)
    for delay in (60, 120):
        clock.advance(delay)
        dispatcher.process_due(db_session)
    db_session.refresh(entry)
    assert entry.is_terminal
    return entry


# ===========================================================================
# apply_provider_event
# ===========================================================================

class TestProviderEvents:
    def test_delivered_marks_entry(self, db_session, sent_entry):
        at = datetime(2026, 3, 1, 9, 31, tzinfo=timezone.utc)
        entry = apply_provider_event(db_session, sent_entry.provider_message_id, "delivered", at)
        db_session.commit()

        assert entry.status == NOTIFICATION_DELIVERED
        assert naive(entry.delivered_at) == datetime(2026, 3, 1, 9, 31)

    def test_duplicate_delivered_is_noop(self, db_session, sent_entry):
        first = datetime(2026, 3, 1, 9, 31, tzinfo=timezone.utc)
        apply_provider_event(db_session, sent_entry.provider_message_id, "delivered", first)
        db_session.commit()
        entry = apply_provider_event(
            db_session, sent_entry.provider_message_id, "delivered", first + timedelta(hours=1)
        )
        db_session.commit()

        assert entry.status == NOTIFICATION_DELIVERED
        assert naive(entry.delivered_at) == datetime(2026, 3, 1, 9, 31)

    def test_epoch_timestamps_accepted(self, db_session, sent_entry):
        entry = apply_provider_event(db_session, sent_entry.provider_message_id, "delivered", 1772357400 + 120)
        assert naive(entry.delivered_at) == datetime(2026, 3, 1, 9, 32)

    def test_unknown_message_id_ignored(self, db_session, sent_entry):
        assert apply_provider_event(db_session, "not-ours", "delivered") is None
        db_session.refresh(sent_entry)
        assert sent_entry.status == NOTIFICATION_SENT

    @pytest.mark.parametrize("event", ["bounced", "bounce", "dropped", "Dropped"])
    def test_failure_events_are_terminal(self, db_session, sent_entry, event):
        entry = apply_provider_event(
            db_session, sent_entry.provider_message_id, event, reason="550 mailbox unavailable"
        )
        db_session.commit()

        assert entry.status == NOTIFICATION_FAILED
        assert entry.failure_reason == "550 mailbox unavailable"
        assert entry.next_attempt_at is None
        assert entry.is_terminal

    def test_bounce_after_delivered_fails_entry(self, db_session, sent_entry):
        apply_provider_event(db_session, sent_entry.provider_message_id, "delivered")
        entry = apply_provider_event(db_session, sent_entry.provider_message_id, "bounced")
        assert entry.status == NOTIFICATION_FAILED
        assert entry.failure_reason == "Provider reported bounced"

    def test_late_delivered_after_bounce_ignored(self, db_session, sent_entry):
        apply_provider_event(db_session, sent_entry.provider_message_id, "bounced")
        entry = apply_provider_event(db_session, sent_entry.provider_message_id, "delivered")
        assert entry.status == NOTIFICATION_FAILED
        assert entry.delivered_at is None

    def test_engagement_events_ignored(self, db_session, sent_entry):
        entry = apply_provider_event(db_session, sent_entry.provider_message_id, "open")
        assert entry.status == NOTIFICATION_SENT

    def test_normalize_strips_filter_suffix(self):
        assert normalize_provider_message_id("14c5d75ce93.filter0001p3las1-1234-5F1A-1.0") == "14c5d75ce93"
        assert normalize_provider_message_id("  abc  ") == "abc"
        assert normalize_provider_message_id("1772357400.4242.99@mail.greenway.example") == (
            "1772357400.4242.99@mail.greenway.example"
        )


# ===========================================================================
# resend
# ===========================================================================

class TestResend:
    def test_resend_starts_a_fresh_cycle(self, db_session, clock, company, customer, application):
        provider = FlakyProvider(failures=3)
        dispatcher = NotificationDispatcher(provider, clock=clock)
        entry = _exhaust(db_session, clock, dispatcher, application, customer)
        assert entry.attempt_count == 3

        result = resend(db_session, company.id, entry.id, "office-manager", dispatcher)

        assert result.id == entry.id
        assert result.status == NOTIFICATION_SENT
        assert result.attempt_count == 4
        assert result.cycle_start_attempt == 3
        assert result.resend_count == 1
        assert result.last_resent_by == "office-manager"
        assert result.provider_message_id == "msg-4"

    def test_failed_resend_gets_full_retry_budget(self, db_session, clock, company, customer, application):
        provider = FlakyProvider(failures=10)
        dispatcher = NotificationDispatcher(provider, clock=clock)
        entry = _exhaust(db_session, clock, dispatcher, application, customer)

        result = resend(db_session, company.id, entry.id, "office-manager", dispatcher)
        assert result.status == NOTIFICATION_FAILED
        assert result.attempt_count == 4
        assert naive(result.next_attempt_at) == naive(clock() + timedelta(seconds=60))

    def test_resend_uses_current_customer_email(self, db_session, clock, company, customer, application):
        dispatcher = NotificationDispatcher(FlakyProvider(failures=3), clock=clock)
        entry = _exhaust(db_session, clock, dispatcher, application, customer)
        customer.email = "new-board@maplecourt.example"
        db_session.commit()

        result = resend(db_session, company.id, entry.id, "office-manager", dispatcher)
        assert result.email == "new-board@maplecourt.example"

    @pytest.mark.parametrize("event", [None, "delivered"])
    def test_resend_of_non_failed_entry_rejected(self, db_session, clock, company, sent_entry, event):
        if event:
            apply_provider_event(db_session, sent_entry.provider_message_id, event)
            db_session.commit()
        dispatcher = NotificationDispatcher(FlakyProvider(), clock=clock)

        with pytest.raises(InvalidStateError) as exc_info:
            resend(db_session, company.id, sent_entry.id, "office-manager", dispatcher)
        assert exc_info.value.state == sent_entry.status

    def test_resend_for_voided_application_rejected(
        self, db_session, clock, company, applicator, customer, application
    ):
        dispatcher = NotificationDispatcher(FlakyProvider(failures=3), clock=clock)
        entry = _exhaust(db_session, clock, dispatcher, application, customer)
        void_application(db_session, company_id=company.id, application_id=application.id, actor_id=applicator.id)
        db_session.commit()

        with pytest.raises(InvalidStateError):
            resend(db_session, company.id, entry.id, "office-manager", dispatcher)

    def test_resend_without_email_rejected(self, db_session, clock, company, customer, application):
        dispatcher = NotificationDispatcher(FlakyProvider(failures=3), clock=clock)
        entry = _exhaust(db_session, clock, dispatcher, application, customer)
        customer.email = None
        db_session.commit()

        with pytest.raises(ValidationError):
            resend(db_session, company.id, entry.id, "office-manager", dispatcher)
        db_session.refresh(entry)
        assert entry.status == NOTIFICATION_FAILED
        assert entry.resend_count == 0

    def test_resend_rejected_while_another_lineage_is_active(
        self, db_session, clock, company, customer, application
    ):
        dispatcher = NotificationDispatcher(FlakyProvider(failures=4), clock=clock)
        old = _exhaust(db_session, clock, dispatcher, application, customer)
        newer = dispatcher.dispatch(db_session, application, customer)
        assert newer.id != old.id
        assert not newer.is_terminal

        with pytest.raises(InvalidStateError):
            resend(db_session, company.id, old.id, "office-manager", dispatcher)

    def test_resend_of_unknown_entry_not_found(self, db_session, clock, company):
        dispatcher = NotificationDispatcher(FlakyProvider(), clock=clock)
        with pytest.raises(NotFoundError):
            resend(db_session, company.id, uuid4(), "office-manager", dispatcher)

    def test_resend_scoped_to_company(self, db_session, clock, company, other_company, customer, application):
        dispatcher = NotificationDispatcher(FlakyProvider(failures=3), clock=clock)
        entry = _exhaust(db_session, clock, dispatcher, application, customer)
        with pytest.raises(NotFoundError):
            resend(db_session, other_company.id, entry.id, "office-manager", dispatcher)
