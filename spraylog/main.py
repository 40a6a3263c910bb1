"""ASGI entrypoint: ``uvicorn spraylog.main:app``."""
from spraylog.api.main import app

__all__ = ["app"]
