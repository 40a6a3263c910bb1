"""Tests for spraylog/audit/trail.py: snapshots, diffs, recording, immutability."""
from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from conftest import make_application
from spraylog.audit.events import ACTION_CREATED, ACTION_UPDATED, IGNORED_FIELDS
from spraylog.audit.trail import (
    compute_diff,
    get_history,
    record_change,
    snapshot_application,
)
from spraylog.core.errors import InvalidStateError, ValidationError


# ===========================================================================
# compute_diff
# ===========================================================================

class TestComputeDiff:
    def test_creation_records_every_populated_field(self):
        diff = compute_diff(None, {"amount": 2.0, "unit": "gal", "notes": None})
        assert diff == {
            "amount": {"old": None, "new": 2.0},
            "unit": {"old": None, "new": "gal"},
        }

    def test_update_records_only_changed_fields(self):
        before = {"amount": 2.0, "unit": "gal", "notes": None}
        after = {"amount": 3.0, "unit": "gal", "notes": "windy"}
        assert compute_diff(before, after) == {
            "amount": {"old": 2.0, "new": 3.0},
            "notes": {"old": None, "new": "windy"},
        }

    def test_ignored_fields_never_appear(self):
        before = {"id": "a", "updated_at": "x", "amount": 1.0}
        after = {"id": "b", "updated_at": "y", "amount": 1.0}
        assert compute_diff(before, after) == {}

    def test_aware_and_naive_utc_timestamps_compare_equal(self):
        aware = datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)
        naive = datetime(2026, 3, 1, 9, 30)
        assert compute_diff({"application_date": naive}, {"application_date": aware}) == {}

    def test_uuid_values_serialised_as_strings(self):
        old, new = uuid4(), uuid4()
        diff = compute_diff({"customer_id": old}, {"customer_id": new})
        assert diff == {"customer_id": {"old": str(old), "new": str(new)}}


# ===========================================================================
# snapshot_application
# ===========================================================================

class TestSnapshot:
    def test_snapshot_excludes_bookkeeping_columns(self, db_session, company, applicator, customer, chemical):
        app = make_application(db_session, company, applicator, customer, chemical)
        snap = snapshot_application(app)
        assert not IGNORED_FIELDS & snap.keys()
        assert snap["chemical_name"] == "Roundup Pro Concentrate"
        assert snap["customer_id"] == str(customer.id)


# ===========================================================================
# record_change
# ===========================================================================

class TestRecordChange:
    def test_creation_gets_sequence_one(self, db_session, company, applicator, customer, chemical):
        app = make_application(db_session, company, applicator, customer, chemical)
        history = get_history(db_session, company.id, app.id)
        assert len(history) == 1
        assert history[0].sequence == 1
        assert history[0].action == ACTION_CREATED
        assert history[0].actor_id == str(applicator.id)
        assert history[0].changes["amount"] == {"old": None, "new": 1.5}

    def test_update_gets_next_sequence(self, db_session, company, applicator, customer, chemical):
        app = make_application(db_session, company, applicator, customer, chemical)
        before = snapshot_application(app)
        app.amount = 4.0
        db_session.flush()
        entry = record_change(db_session, before, app, actor="user-2", reason="typo")
        db_session.commit()

        assert entry.sequence == 2
        assert entry.action == ACTION_UPDATED
        assert entry.changes == {"amount": {"old": 1.5, "new": 4.0}}
        assert entry.reason == "typo"

    def test_blank_actor_rejected(self, db_session, company, applicator, customer, chemical):
        app = make_application(db_session, company, applicator, customer, chemical)
        before = snapshot_application(app)
        app.amount = 9.0
        with pytest.raises(ValidationError):
            record_change(db_session, before, app, actor="  ")

    def test_update_without_changes_rejected(self, db_session, company, applicator, customer, chemical):
        app = make_application(db_session, company, applicator, customer, chemical)
        with pytest.raises(ValidationError):
            record_change(db_session, snapshot_application(app), app, actor="user-1")

    def test_unknown_action_rejected(self, db_session, company, applicator, customer, chemical):
        app = make_application(db_session, company, applicator, customer, chemical)
        before = snapshot_application(app)
        app.amount = 2.0
        with pytest.raises(ValidationError):
            record_change(db_session, before, app, actor="user-1", action="deleted")

    def test_history_scoped_to_company(self, db_session, company, other_company, applicator, customer, chemical):
        app = make_application(db_session, company, applicator, customer, chemical)
        assert get_history(db_session, other_company.id, app.id) == []


# ===========================================================================
# Immutability guard
# ===========================================================================

class TestImmutability:
    def test_history_entry_cannot_be_modified(self, db_session, company, applicator, customer, chemical):
        app = make_application(db_session, company, applicator, customer, chemical)
        entry = get_history(db_session, company.id, app.id)[0]
        entry.reason = "rewritten"
        with pytest.raises(InvalidStateError):
            db_session.flush()
        db_session.rollback()

    def test_history_entry_cannot_be_deleted(self, db_session, company, applicator, customer, chemical):
        app = make_application(db_session, company, applicator, customer, chemical)
        entry = get_history(db_session, company.id, app.id)[0]
        db_session.delete(entry)
        with pytest.raises(InvalidStateError):
            db_session.flush()
        db_session.rollback()

    def test_application_cannot_be_deleted(self, db_session, company, applicator, customer, chemical):
        app = make_application(db_session, company, applicator, customer, chemical)
        db_session.delete(app)
        with pytest.raises(InvalidStateError):
            db_session.flush()
        db_session.rollback()
