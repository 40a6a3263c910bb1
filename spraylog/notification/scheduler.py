"""Retry poller: fires notification attempts whose backoff has elapsed.

Retries are persisted as ``next_attempt_at`` on the entry, so a restart
loses nothing: the next poll picks up whatever is due.  Several pollers may
run at once; the claim in :class:`NotificationDispatcher` keeps each attempt
single-owner.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable

from sqlalchemy.orm import Session

from spraylog.core.settings import get_settings
from spraylog.notification.dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)


def run_once(
    session_factory: Callable[[], Session],
    dispatcher: NotificationDispatcher,
    batch_size: int | None = None,
) -> int:
    """Process one batch of due notifications in a fresh session."""
    batch_size = batch_size or get_settings().retry_batch_size
    db = session_factory()
    try:
        processed = dispatcher.process_due(db, limit=batch_size)
    except Exception:
        db.rollback()
        logger.exception("Notification retry batch failed")
        raise
    finally:
        db.close()
    if processed:
        logger.info("Processed %d due notifications", processed)
    return processed


async def poll_due_notifications(
    session_factory: Callable[[], Session],
    dispatcher: NotificationDispatcher,
    interval_seconds: float | None = None,
) -> None:
    """Periodically process due notifications until cancelled."""
    settings = get_settings()
    interval = interval_seconds if interval_seconds is not None else settings.retry_poll_interval_seconds
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(run_once, session_factory, dispatcher, settings.retry_batch_size)
        except Exception:
            logger.warning("Retry poll failed; next poll in %ss", interval)


def run_forever(
    session_factory: Callable[[], Session],
    dispatcher: NotificationDispatcher,
    interval_seconds: float | None = None,
    stop_event: threading.Event | None = None,
) -> None:
    """Blocking poll loop for a standalone worker process."""
    settings = get_settings()
    interval = interval_seconds if interval_seconds is not None else settings.retry_poll_interval_seconds
    stop_event = stop_event or threading.Event()
    logger.info("Retry worker started (interval=%ss)", interval)
    while not stop_event.is_set():
        try:
            run_once(session_factory, dispatcher, settings.retry_batch_size)
        except Exception:
            logger.warning("Retry batch failed; next batch in %ss", interval)
        stop_event.wait(interval)
    logger.info("Retry worker stopped")
