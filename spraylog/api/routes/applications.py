"""Application routes.

POST  /applications                 : log an application (then notify the customer)
GET   /applications                 : list applications
GET   /applications/{id}            : get one application
PATCH /applications/{id}            : edit an application (audited)
POST  /applications/{id}/void       : void an application (audited)
GET   /applications/{id}/history    : audit trail, by sequence
"""
from __future__ import annotations

import logging
from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import Session, sessionmaker

from spraylog.api.deps import (
    RequestContext,
    get_db,
    get_dispatcher,
    get_request_context,
    get_session_factory,
)
from spraylog.api.routes.notifications import serialize_notification
from spraylog.applications.service import (
    MutationResult,
    create_application,
    get_application,
    update_application,
    void_application,
)
from spraylog.audit.trail import get_history
from spraylog.core.settings import get_settings
from spraylog.db.models import Application, ApplicationHistory, Customer
from spraylog.db.repositories import ApplicationRepository
from spraylog.db.session import run_in_transaction
from spraylog.notification.dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/applications", tags=["applications"])


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class _OptionalFields(BaseModel):
    model_config = ConfigDict(extra="forbid")

    target_pest_name: str | None = None
    application_method: str | None = None
    area_treated: float | None = None
    area_unit: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    temperature: float | None = None
    humidity: float | None = None
    wind_speed: float | None = None
    wind_direction: str | None = None
    weather_condition: str | None = None
    label_photo_url: str | None = None
    before_photo_url: str | None = None
    after_photo_url: str | None = None
    notes: str | None = None
    reentry_interval: str | None = None
    customer_consent: bool = False


class CreateApplicationBody(_OptionalFields):
    customer_id: UUID
    chemical_id: UUID
    amount: float
    unit: str
    application_date: datetime
    applicator_id: UUID | None = None
    reason: str | None = None


class UpdateApplicationBody(_OptionalFields):
    customer_id: UUID | None = None
    chemical_id: UUID | None = None
    amount: float | None = None
    unit: str | None = None
    application_date: datetime | None = None
    reason: str | None = None


class VoidApplicationBody(BaseModel):
    reason: str | None = None


_REQUIRED_CREATE_FIELDS = {
    "customer_id",
    "chemical_id",
    "amount",
    "unit",
    "application_date",
    "applicator_id",
    "reason",
}


# ---------------------------------------------------------------------------
# Serializers
# ---------------------------------------------------------------------------

def _iso(value) -> str | None:
    return value.isoformat() if value else None


def serialize_application(app: Application) -> dict:
    return {
        "id": str(app.id),
        "company_id": str(app.company_id),
        "applicator_id": str(app.applicator_id),
        "customer_id": str(app.customer_id),
        "chemical_id": str(app.chemical_id),
        "chemical_name": app.chemical_name,
        "epa_number": app.epa_number,
        "customer_name": app.customer_name,
        "customer_address": app.customer_address,
        "amount": app.amount,
        "unit": app.unit,
        "application_date": _iso(app.application_date),
        "target_pest_name": app.target_pest_name,
        "application_method": app.application_method,
        "area_treated": app.area_treated,
        "area_unit": app.area_unit,
        "latitude": app.latitude,
        "longitude": app.longitude,
        "temperature": app.temperature,
        "humidity": app.humidity,
        "wind_speed": app.wind_speed,
        "wind_direction": app.wind_direction,
        "weather_condition": app.weather_condition,
        "label_photo_url": app.label_photo_url,
        "before_photo_url": app.before_photo_url,
        "after_photo_url": app.after_photo_url,
        "notes": app.notes,
        "reentry_interval": app.reentry_interval,
        "customer_consent": app.customer_consent,
        "status": app.status,
        "version": app.version,
    }


def serialize_history(entry: ApplicationHistory) -> dict:
    return {
        "id": str(entry.id),
        "sequence": entry.sequence,
        "action": entry.action,
        "changes": entry.changes,
        "actor_id": entry.actor_id,
        "reason": entry.reason,
        "created_at": _iso(entry.created_at),
    }


def _mutation_payload(result: MutationResult) -> dict:
    return {
        "application": serialize_application(result.application),
        "history_entry": serialize_history(result.history_entry) if result.history_entry else None,
    }


# ---------------------------------------------------------------------------
# Notification hand-off (after commit)
# ---------------------------------------------------------------------------

def _notify(
    factory: sessionmaker,
    dispatcher: NotificationDispatcher,
    company_id: UUID,
    application_id: UUID,
) -> dict | None:
    """Dispatch or queue the customer notice for a committed application.

    The application is already committed; a failure here is logged and
    reported as ``None`` rather than failing the request.
    """
    db = factory()
    try:
        application = get_application(db, company_id, application_id)
        customer = db.get(Customer, application.customer_id)
        if get_settings().notification_dispatch_mode == "queued":
            entry = dispatcher.enqueue(db, application, customer)
            db.commit()
        else:
            entry = dispatcher.dispatch(db, application, customer)
        return serialize_notification(entry) if entry is not None else None
    except Exception:
        db.rollback()
        logger.exception("Notification hand-off failed for application %s", application_id)
        return None
    finally:
        db.close()


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

@router.post("", status_code=201, summary="Log a pesticide application")
def create(
    body: CreateApplicationBody,
    ctx: RequestContext = Depends(get_request_context),
    factory: sessionmaker = Depends(get_session_factory),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    optional = body.model_dump(exclude_unset=True, exclude=_REQUIRED_CREATE_FIELDS)

    def work(db: Session) -> dict:
        result = create_application(
            db,
            company_id=ctx.company_id,
            actor_id=ctx.user_id,
            customer_id=body.customer_id,
            chemical_id=body.chemical_id,
            amount=body.amount,
            unit=body.unit,
            application_date=body.application_date,
            applicator_id=body.applicator_id,
            reason=body.reason,
            **optional,
        )
        return _mutation_payload(result)

    payload = run_in_transaction(factory, work)
    payload["notification"] = _notify(factory, dispatcher, ctx.company_id, UUID(payload["application"]["id"]))
    return payload


@router.get("", summary="List applications")
def list_applications(
    customer_id: UUID | None = None,
    applicator_id: UUID | None = None,
    limit: int = 100,
    offset: int = 0,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    apps = ApplicationRepository(db).list(
        ctx.company_id,
        limit=min(limit, 500),
        offset=offset,
        customer_id=customer_id,
        applicator_id=applicator_id,
    )
    return [serialize_application(a) for a in apps]


@router.get("/{application_id}", summary="Get an application")
def get_one(
    application_id: UUID,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    return serialize_application(get_application(db, ctx.company_id, application_id))


@router.patch("/{application_id}", summary="Edit an application")
def update(
    application_id: UUID,
    body: UpdateApplicationBody,
    ctx: RequestContext = Depends(get_request_context),
    factory: sessionmaker = Depends(get_session_factory),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    changes = body.model_dump(exclude_unset=True, exclude={"reason"})

    def work(db: Session) -> dict:
        result = update_application(
            db,
            company_id=ctx.company_id,
            application_id=application_id,
            actor_id=ctx.user_id,
            changes=changes,
            reason=body.reason,
        )
        return _mutation_payload(result)

    payload = run_in_transaction(factory, work)
    payload["notification"] = None
    if payload["history_entry"] is not None and get_settings().notify_on_update:
        payload["notification"] = _notify(factory, dispatcher, ctx.company_id, application_id)
    return payload


@router.post("/{application_id}/void", summary="Void an application")
def void(
    application_id: UUID,
    body: VoidApplicationBody,
    ctx: RequestContext = Depends(get_request_context),
    factory: sessionmaker = Depends(get_session_factory),
):
    def work(db: Session) -> dict:
        result = void_application(
            db,
            company_id=ctx.company_id,
            application_id=application_id,
            actor_id=ctx.user_id,
            reason=body.reason,
        )
        return _mutation_payload(result)

    return run_in_transaction(factory, work)


@router.get("/{application_id}/history", summary="Get the audit trail for an application")
def history(
    application_id: UUID,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    get_application(db, ctx.company_id, application_id)
    return [serialize_history(e) for e in get_history(db, ctx.company_id, application_id)]
