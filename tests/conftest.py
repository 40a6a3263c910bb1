from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import spraylog.audit.trail  # noqa: F401  registers the history immutability guard
from spraylog.core.errors import ProviderError
from spraylog.db.base import Base
from spraylog.db.models import Chemical, Company, Customer, User
from spraylog.notification.providers import LoggingEmailProvider
from spraylog.reports.loader import load_all_jurisdictions
from spraylog.reports.registry import JurisdictionRegistry


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest.fixture()
def engine():
    """In-memory SQLite engine with all tables created."""
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


# ---------------------------------------------------------------------------
# Reference data
# ---------------------------------------------------------------------------

@pytest.fixture()
def company(db_session) -> Company:
    company = Company(
        name="Greenway Lawn & Pest",
        email="office@greenway.example",
        phone="555-0100",
        license_number="B-40112",
        license_state="CA",
    )
    db_session.add(company)
    db_session.commit()
    return company


@pytest.fixture()
def applicator(db_session, company) -> User:
    user = User(
        company_id=company.id,
        first_name="Dana",
        last_name="Ortiz",
        license_number="12345",
        license_state="CA",
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture()
def customer(db_session, company) -> Customer:
    customer = Customer(
        company_id=company.id,
        name="Maple Court HOA",
        email="board@maplecourt.example",
        address="12 Maple Ct",
        city="Fresno",
        state="CA",
        zip_code="93650",
        notify_by_email=True,
    )
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture()
def chemical(db_session) -> Chemical:
    chemical = Chemical(company_id=None, name="Roundup Pro Concentrate", epa_number="524-529")
    db_session.add(chemical)
    db_session.commit()
    return chemical


@pytest.fixture()
def other_company(db_session) -> Company:
    company = Company(name="Elsewhere Pest Control")
    db_session.add(company)
    db_session.commit()
    return company


# ---------------------------------------------------------------------------
# Notification helpers
# ---------------------------------------------------------------------------

class FakeClock:
    """Controllable UTC clock for backoff tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current = self.current + timedelta(seconds=seconds)


class FlakyProvider:
    """Fails the first *failures* sends, then accepts."""

    def __init__(self, failures: int = 0) -> None:
        self.failures = failures
        self.calls = 0
        self.sent: list[str] = []

    def send(self, to: str, subject: str, html_body: str) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise ProviderError(f"451 temporary failure (call {self.calls})")
        provider_message_id = f"msg-{self.calls}"
        self.sent.append(provider_message_id)
        return provider_message_id


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def provider() -> LoggingEmailProvider:
    return LoggingEmailProvider()


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------

@pytest.fixture()
def api_provider() -> FlakyProvider:
    return FlakyProvider()


@pytest.fixture()
def client(session_factory, api_provider, monkeypatch: pytest.MonkeyPatch) -> TestClient:
    """TestClient wired to the in-memory database and a scripted provider."""
    monkeypatch.setenv("DATABASE_URL", "sqlite+pysqlite:///:memory:")
    monkeypatch.setenv("RETRY_POLL_INTERVAL_SECONDS", "0")
    monkeypatch.setenv("EMAIL_PROVIDER", "log")

    from spraylog.core.settings import get_settings

    get_settings.cache_clear()

    from spraylog.api import deps
    from spraylog.api.main import app

    app.dependency_overrides[deps.get_session_factory] = lambda: session_factory
    app.dependency_overrides[deps.get_email_provider] = lambda: api_provider
    app.dependency_overrides[deps.get_jurisdiction_registry] = lambda: JurisdictionRegistry(
        load_all_jurisdictions()
    )
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c
    root.handlers[:] = saved_handlers
    root.setLevel(saved_level)
    app.dependency_overrides.clear()
    get_settings.cache_clear()


def naive(value: datetime | None) -> datetime | None:
    """SQLite returns naive UTC; compare on that basis."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def make_application(db_session, company, applicator, customer, chemical, **overrides):
    """Create and commit an application through the audited write path."""
    from spraylog.applications.service import create_application

    values = {
        "amount": 1.5,
        "unit": "gal",
        "application_date": datetime(2026, 3, 1, 9, 30, tzinfo=timezone.utc),
    }
    values.update(overrides)
    result = create_application(
        db_session,
        company_id=company.id,
        actor_id=applicator.id,
        customer_id=customer.id,
        chemical_id=chemical.id,
        **values,
    )
    db_session.commit()
    return result.application
