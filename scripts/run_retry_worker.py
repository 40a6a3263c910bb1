#!/usr/bin/env python3
"""Standalone notification retry worker.

Polls for notifications whose retry is due and attempts them.  Safe to run
alongside the API's in-process poller and alongside other workers.

Usage:
    python scripts/run_retry_worker.py             # poll forever
    python scripts/run_retry_worker.py --once      # process one batch and exit
"""
from __future__ import annotations

import argparse
import signal
import threading

from spraylog.core.logging import setup_logging
from spraylog.core.settings import get_settings
from spraylog.db.session import get_session_factory
from spraylog.notification.dispatcher import NotificationDispatcher
from spraylog.notification.providers import build_email_provider
from spraylog.notification.scheduler import run_forever, run_once


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--once", action="store_true", help="process one batch and exit")
    parser.add_argument("--interval", type=float, default=None, help="seconds between polls")
    parser.add_argument("--log-level", default=None, help="overrides LOG_LEVEL")
    args = parser.parse_args()

    setup_logging(args.log_level)
    settings = get_settings()
    dispatcher = NotificationDispatcher.from_settings(build_email_provider(settings), settings)
    factory = get_session_factory()

    if args.once:
        processed = run_once(factory, dispatcher, settings.retry_batch_size)
        print(f"Processed {processed} due notifications.")
        return

    stop = threading.Event()
    signal.signal(signal.SIGTERM, lambda *_: stop.set())
    signal.signal(signal.SIGINT, lambda *_: stop.set())
    run_forever(factory, dispatcher, interval_seconds=args.interval, stop_event=stop)


if __name__ == "__main__":
    main()
