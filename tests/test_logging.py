import logging

from spraylog.core.logging import PIISafeFilter, setup_logging
from spraylog.core.settings import get_settings


def test_pii_filter_redacts_email_and_phone(caplog):
    logger = logging.getLogger("test.pii")
    logger.setLevel(logging.INFO)
    logger.filters = []
    logger.addFilter(PIISafeFilter())

    with caplog.at_level(logging.INFO, logger="test.pii"):
        logger.info("Notify board@maplecourt.example or call (555) 123-4567")

    assert "board@maplecourt.example" not in caplog.text
    assert "123-4567" not in caplog.text
    assert "[REDACTED]" in caplog.text


def test_pii_filter_redacts_args(caplog):
    logger = logging.getLogger("test.args")
    logger.setLevel(logging.INFO)
    logger.filters = []
    logger.addFilter(PIISafeFilter())

    with caplog.at_level(logging.INFO, logger="test.args"):
        logger.info("Sending to %s", "board@maplecourt.example")

    assert "board@maplecourt.example" not in caplog.text


def test_pii_filter_redacts_credentials(caplog):
    logger = logging.getLogger("test.secret")
    logger.setLevel(logging.INFO)
    logger.filters = []
    logger.addFilter(PIISafeFilter())

    with caplog.at_level(logging.INFO, logger="test.secret"):
        logger.info("misconfigured api_key=SG.abc123 for relay")

    assert "SG.abc123" not in caplog.text
    assert "api_key=[REDACTED]" in caplog.text


def test_setup_logging_uses_configured_level(monkeypatch):
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    monkeypatch.setenv("LOG_LEVEL", "debug")
    get_settings.cache_clear()
    try:
        setup_logging()
        assert root.level == logging.DEBUG
        assert any(
            isinstance(f, PIISafeFilter) for handler in root.handlers for f in handler.filters
        )
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
        get_settings.cache_clear()


def test_pii_filter_redacts_street_address(caplog):
    logger = logging.getLogger("test.address")
    logger.setLevel(logging.INFO)
    logger.filters = []
    logger.addFilter(PIISafeFilter())

    with caplog.at_level(logging.INFO, logger="test.address"):
        logger.info("Treated 12 Maple Ct for application 42")

    assert "Maple Ct" not in caplog.text
    assert "application 42" in caplog.text


def test_setup_logging_level_override_and_quiet_loggers(monkeypatch):
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    monkeypatch.setenv("LOG_LEVEL", "info")
    get_settings.cache_clear()
    try:
        setup_logging("warning")
        assert root.level == logging.WARNING
        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("httpx").propagate is False
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
        get_settings.cache_clear()
