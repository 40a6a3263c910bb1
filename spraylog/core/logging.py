import logging
import logging.config
import re

# Customer contact details that end up in provider errors and request dumps.
CONTACT_PATTERNS = [
    re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}"),
    re.compile(r"\b(?:\+1[-.\s]?)?(?:\(?\d{3}\)?[-.\s]?)\d{3}[-.\s]?\d{4}\b"),
    re.compile(
        r"\b\d{1,6}\s+(?:[A-Z][A-Za-z]*\s+){1,3}"
        r"(?:St|Street|Ave|Avenue|Rd|Road|Ct|Court|Ln|Lane|Dr|Drive|Blvd|Way|Pl|Place)\b\.?"
    ),
]

# key=value secrets: the key is kept, the value is replaced.
CREDENTIAL_PATTERN = re.compile(
    r"(?i)((?:smtp_password|sendgrid_api_key|api_key|authorization)\s*[=:]\s*(?:bearer\s+)?)([^,\s]+)"
)

REDACTED = "[REDACTED]"

# Chatty third-party loggers kept at WARNING regardless of LOG_LEVEL.
QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore")


class PIISafeFilter(logging.Filter):
    """Redact customer contact details and credentials from log records."""

    def _sanitize(self, value: object) -> object:
        if not isinstance(value, str):
            return value

        redacted = CREDENTIAL_PATTERN.sub(rf"\1{REDACTED}", value)
        for pattern in CONTACT_PATTERNS:
            redacted = pattern.sub(REDACTED, redacted)
        return redacted

    def filter(self, record: logging.LogRecord) -> bool:
        record.msg = self._sanitize(record.msg)

        if isinstance(record.args, tuple):
            record.args = tuple(self._sanitize(item) for item in record.args)
        elif isinstance(record.args, dict):
            record.args = {key: self._sanitize(value) for key, value in record.args.items()}

        return True


def setup_logging(level: str | None = None) -> None:
    """Configure root logging for the API process or the retry worker.

    *level* overrides ``LOG_LEVEL`` (the worker's ``--log-level`` flag).
    """
    from spraylog.core.settings import get_settings

    settings = get_settings()
    quiet = {
        name: {"handlers": ["console"], "level": "WARNING", "propagate": False}
        for name in QUIET_LOGGERS
    }
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {
                "pii_safe": {
                    "()": "spraylog.core.logging.PIISafeFilter",
                }
            },
            "formatters": {
                "default": {
                    "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
                }
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "default",
                    "filters": ["pii_safe"],
                }
            },
            "loggers": {
                "": {
                    "handlers": ["console"],
                    "level": (level or settings.log_level).upper(),
                },
                **quiet,
            },
        }
    )
