"""Inbound delivery-provider callbacks.

POST /webhooks/email-events accepts a single event or a batch of events,
in SendGrid's event webhook shape (``sg_message_id``) or the plain
``provider_message_id`` form.
Authenticity of the callback is checked upstream.  Always answers 200 so
the provider does not redeliver events that were deliberately ignored.
"""
from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, Body, Depends
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from spraylog.api.deps import get_db
from spraylog.notification.reconciler import apply_provider_event, normalize_provider_message_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


class ProviderEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    provider_message_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("provider_message_id", "sg_message_id"),
    )
    event: str
    timestamp: datetime | int | None = None
    reason: str | None = None


@router.post("/email-events", summary="Apply delivery-provider events")
def receive_email_events(
    payload: ProviderEvent | list[ProviderEvent] = Body(...),
    db: Session = Depends(get_db),
):
    events = payload if isinstance(payload, list) else [payload]
    applied = 0
    ignored = 0
    for ev in events:
        if not ev.provider_message_id:
            ignored += 1
            continue
        entry = apply_provider_event(
            db,
            normalize_provider_message_id(ev.provider_message_id),
            ev.event,
            ev.timestamp,
            ev.reason,
        )
        if entry is None:
            ignored += 1
        else:
            applied += 1
    logger.info("Email events processed: matched=%d ignored=%d", applied, ignored)
    return {"received": len(events), "matched": applied, "ignored": ignored}
