"""Notification log routes.

GET  /notifications                : list delivery log entries
GET  /notifications/{id}           : get one entry
POST /notifications/{id}/resend    : manual resend of a failed entry
"""
from __future__ import annotations

import logging
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from spraylog.api.deps import RequestContext, get_db, get_dispatcher, get_request_context
from spraylog.db.models import NotificationLog
from spraylog.db.repositories import NotificationLogRepository
from spraylog.notification.dispatcher import NotificationDispatcher
from spraylog.notification.reconciler import resend

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["notifications"])


def _iso(value) -> str | None:
    return value.isoformat() if value else None


def serialize_notification(entry: NotificationLog) -> dict:
    return {
        "id": str(entry.id),
        "application_id": str(entry.application_id),
        "customer_id": str(entry.customer_id),
        "customer_name": entry.customer_name,
        "email": entry.email,
        "subject": entry.subject,
        "status": entry.status,
        "attempt_count": entry.attempt_count,
        "resend_count": entry.resend_count,
        "next_attempt_at": _iso(entry.next_attempt_at),
        "sent_at": _iso(entry.sent_at),
        "delivered_at": _iso(entry.delivered_at),
        "failed_at": _iso(entry.failed_at),
        "failure_reason": entry.failure_reason,
        "is_terminal": entry.is_terminal,
        "created_at": _iso(entry.created_at),
    }


@router.get("", summary="List notification log entries")
def list_notifications(
    application_id: UUID | None = None,
    customer_id: UUID | None = None,
    status: str | None = None,
    limit: int = 100,
    offset: int = 0,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    entries = NotificationLogRepository(db).list(
        ctx.company_id,
        limit=min(limit, 500),
        offset=offset,
        application_id=application_id,
        customer_id=customer_id,
        status=status,
    )
    return [serialize_notification(e) for e in entries]


@router.get("/{notification_id}", summary="Get a notification log entry")
def get_notification(
    notification_id: UUID,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
):
    entry = NotificationLogRepository(db).get(ctx.company_id, notification_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="Notification not found")
    return serialize_notification(entry)


@router.post("/{notification_id}/resend", summary="Resend a failed notification")
def resend_notification(
    notification_id: UUID,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    entry = resend(db, ctx.company_id, notification_id, actor=str(ctx.user_id), dispatcher=dispatcher)
    return serialize_notification(entry)
