"""Application write path: create, update and void.

Every mutation goes through :func:`spraylog.audit.trail.record_change` in
the same transaction.  Functions flush but do not commit; wrap them in
:func:`spraylog.db.session.run_in_transaction` (or a request-scoped
session) so a ``ConflictError`` retries the whole unit of work.

Notification dispatch is the caller's job, after the create commits.
"""
from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from uuid import UUID

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from spraylog.audit.events import ACTION_VOIDED, FROZEN_FIELDS
from spraylog.audit.trail import record_change, snapshot_application
from spraylog.core.errors import ConflictError, InvalidStateError, NotFoundError, ValidationError
from spraylog.db.models import (
    APPLICATION_COMPLETED,
    APPLICATION_VOIDED,
    Application,
    ApplicationHistory,
    Chemical,
    Customer,
)
from spraylog.db.repositories import (
    ApplicationRepository,
    ChemicalRepository,
    CustomerRepository,
    UserRepository,
)
from spraylog.notification.dispatcher import cancel_scheduled_attempts

logger = logging.getLogger(__name__)

OPTIONAL_FIELDS: frozenset[str] = frozenset({
    "target_pest_name",
    "application_method",
    "area_treated",
    "area_unit",
    "latitude",
    "longitude",
    "temperature",
    "humidity",
    "wind_speed",
    "wind_direction",
    "weather_condition",
    "label_photo_url",
    "before_photo_url",
    "after_photo_url",
    "notes",
    "reentry_interval",
    "customer_consent",
})

EDITABLE_FIELDS: frozenset[str] = OPTIONAL_FIELDS | frozenset({
    "customer_id",
    "chemical_id",
    "amount",
    "unit",
    "application_date",
})

REQUIRED_FIELDS: frozenset[str] = EDITABLE_FIELDS - OPTIONAL_FIELDS | {"customer_consent"}


@dataclass
class MutationResult:
    """An application after a write, plus the history entry it produced."""

    application: Application
    history_entry: ApplicationHistory | None

    @property
    def changed(self) -> bool:
        return self.history_entry is not None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _as_utc(value: datetime | date) -> datetime:
    if not isinstance(value, datetime):
        value = datetime.combine(value, time.min)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _validate_values(values: Mapping[str, object]) -> None:
    amount = values.get("amount")
    if amount is not None and amount <= 0:
        raise ValidationError("amount must be a positive number")
    humidity = values.get("humidity")
    if humidity is not None and not 0 <= humidity <= 100:
        raise ValidationError("humidity must be between 0 and 100")
    latitude = values.get("latitude")
    if latitude is not None and not -90 <= latitude <= 90:
        raise ValidationError("latitude must be between -90 and 90")
    longitude = values.get("longitude")
    if longitude is not None and not -180 <= longitude <= 180:
        raise ValidationError("longitude must be between -180 and 180")


def _load_customer(db_session: Session, company_id: UUID, customer_id: UUID) -> Customer:
    customer = CustomerRepository(db_session).get(company_id, customer_id)
    if customer is None:
        raise NotFoundError(f"Customer {customer_id} not found", entity_id=customer_id)
    return customer


def _load_chemical(db_session: Session, company_id: UUID, chemical_id: UUID) -> Chemical:
    chemical = ChemicalRepository(db_session).get(company_id, chemical_id)
    if chemical is None:
        raise NotFoundError(f"Chemical {chemical_id} not found", entity_id=chemical_id)
    return chemical


def _flush_mutation(db_session: Session, application: Application) -> None:
    """Write *application*, failing if another writer changed it since it was read."""
    try:
        db_session.flush()
    except StaleDataError as exc:
        logger.warning("Concurrent write detected: application=%s", application.id)
        raise ConflictError(
            f"Application {application.id} was changed by another writer",
            entity_id=application.id,
            state=application.status,
        ) from exc


def get_application(db_session: Session, company_id: UUID, application_id: UUID) -> Application:
    application = ApplicationRepository(db_session).get(company_id, application_id)
    if application is None:
        raise NotFoundError(f"Application {application_id} not found", entity_id=application_id)
    return application


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------

def create_application(
    db_session: Session,
    *,
    company_id: UUID,
    actor_id: UUID,
    customer_id: UUID,
    chemical_id: UUID,
    amount: float,
    unit: str,
    application_date: datetime | date,
    applicator_id: UUID | None = None,
    reason: str | None = None,
    **optional: object,
) -> MutationResult:
    """Create an application and its ``created`` history entry (sequence 1).

    The applicator defaults to the acting user.  Chemical and customer
    details are copied onto the row and never follow later edits.
    """
    unknown = set(optional) - OPTIONAL_FIELDS
    if unknown:
        raise ValidationError(f"Unknown application fields: {sorted(unknown)}")
    _validate_values({"amount": amount, **optional})
    if not unit or not unit.strip():
        raise ValidationError("unit is required")

    applicator_id = applicator_id or actor_id
    if UserRepository(db_session).get(company_id, applicator_id) is None:
        raise NotFoundError(f"Applicator {applicator_id} not found", entity_id=applicator_id)
    customer = _load_customer(db_session, company_id, customer_id)
    chemical = _load_chemical(db_session, company_id, chemical_id)

    application = ApplicationRepository(db_session).create(
        company_id=company_id,
        applicator_id=applicator_id,
        customer_id=customer.id,
        chemical_id=chemical.id,
        chemical_name=chemical.name,
        epa_number=chemical.epa_number,
        customer_name=customer.name,
        customer_address=customer.full_address,
        amount=amount,
        unit=unit,
        application_date=_as_utc(application_date),
        status=APPLICATION_COMPLETED,
        **optional,
    )
    entry = record_change(db_session, None, application, actor=str(actor_id), reason=reason)
    logger.info("Application created: id=%s company=%s", application.id, company_id)
    return MutationResult(application=application, history_entry=entry)


def update_application(
    db_session: Session,
    *,
    company_id: UUID,
    application_id: UUID,
    actor_id: UUID,
    changes: Mapping[str, object],
    reason: str | None = None,
) -> MutationResult:
    """Apply *changes* and record the field-level diff.

    Returns ``history_entry=None`` when nothing actually changed.
    """
    frozen = set(changes) & FROZEN_FIELDS
    if frozen:
        raise ValidationError(f"Fields cannot be changed: {sorted(frozen)}", entity_id=application_id)
    unknown = set(changes) - EDITABLE_FIELDS
    if unknown:
        raise ValidationError(f"Unknown application fields: {sorted(unknown)}", entity_id=application_id)
    cleared = sorted(k for k in set(changes) & REQUIRED_FIELDS if changes[k] is None)
    if cleared:
        raise ValidationError(f"Fields cannot be cleared: {cleared}", entity_id=application_id)
    _validate_values(changes)

    application = get_application(db_session, company_id, application_id)
    if application.status == APPLICATION_VOIDED:
        raise InvalidStateError(
            f"Application {application_id} is voided and cannot be edited",
            entity_id=application_id,
            state=application.status,
        )

    before = snapshot_application(application)
    values = dict(changes)
    if "application_date" in values and values["application_date"] is not None:
        values["application_date"] = _as_utc(values["application_date"])

    chemical_id = values.get("chemical_id")
    if chemical_id is not None and chemical_id != application.chemical_id:
        chemical = _load_chemical(db_session, company_id, chemical_id)
        values["chemical_name"] = chemical.name
        values["epa_number"] = chemical.epa_number

    customer_id = values.get("customer_id")
    if customer_id is not None and customer_id != application.customer_id:
        customer = _load_customer(db_session, company_id, customer_id)
        values["customer_name"] = customer.name
        values["customer_address"] = customer.full_address

    for key, value in values.items():
        setattr(application, key, value)

    if snapshot_application(application) == before:
        logger.info("Application %s update had no effective changes", application_id)
        return MutationResult(application=application, history_entry=None)

    _flush_mutation(db_session, application)
    entry = record_change(db_session, before, application, actor=str(actor_id), reason=reason)
    return MutationResult(application=application, history_entry=entry)


def void_application(
    db_session: Session,
    *,
    company_id: UUID,
    application_id: UUID,
    actor_id: UUID,
    reason: str | None = None,
) -> MutationResult:
    """Mark an application voided.  Earlier history rows are left untouched.

    Scheduled notification retries for the application are cancelled;
    notifications already sent or delivered keep their status.
    """
    application = get_application(db_session, company_id, application_id)
    if application.status == APPLICATION_VOIDED:
        raise InvalidStateError(
            f"Application {application_id} is already voided",
            entity_id=application_id,
            state=application.status,
        )

    before = snapshot_application(application)
    application.status = APPLICATION_VOIDED
    _flush_mutation(db_session, application)
    entry = record_change(
        db_session, before, application, actor=str(actor_id), reason=reason, action=ACTION_VOIDED
    )
    cancelled = cancel_scheduled_attempts(db_session, application.id, reason="Application voided")
    logger.info("Application voided: id=%s cancelled_notifications=%d", application_id, cancelled)
    return MutationResult(application=application, history_entry=entry)
