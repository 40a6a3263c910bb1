"""Compliance report assembly: grouped, ordered, reproducible.

``generate()`` turns completed applications for a company and date range
into a ``ComplianceReport``: groups chosen by the jurisdiction's grouping
key, groups ordered by that key, entries within a group ordered by
application time then id.  Identical data always yields an identical
report; the render timestamp is not part of it.

Read-only: takes no locks and commits nothing.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from uuid import UUID

from sqlalchemy import select, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from spraylog.core.errors import NotFoundError, ReportCancelledError, ValidationError
from spraylog.db.models import APPLICATION_COMPLETED, Application, User
from spraylog.db.repositories import CompanyRepository, CustomerRepository, UserRepository
from spraylog.reports.jurisdiction import GroupKey, Jurisdiction
from spraylog.reports.registry import JurisdictionRegistry

logger = logging.getLogger(__name__)

_QUERY_CANCELED_SQLSTATE = "57014"


# ---------------------------------------------------------------------------
# Report structure
# ---------------------------------------------------------------------------

@dataclass
class ReportRow:
    application_id: str
    application_date: datetime
    fields: list[tuple[str, str]]
    photos: list[tuple[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "application_id": self.application_id,
            "application_date": self.application_date.isoformat(),
            "fields": [{"label": label, "value": value} for label, value in self.fields],
            "photos": [{"label": label, "url": url} for label, url in self.photos],
        }


@dataclass
class ReportGroup:
    key: str
    label: str
    detail: str | None
    rows: list[ReportRow] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "label": self.label,
            "detail": self.detail,
            "rows": [r.to_dict() for r in self.rows],
        }


@dataclass
class ComplianceReport:
    jurisdiction: Jurisdiction
    company_name: str
    date_from: date
    date_to: date
    customer_id: str | None = None
    applicator_id: str | None = None
    groups: list[ReportGroup] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.groups

    @property
    def application_count(self) -> int:
        return sum(len(g.rows) for g in self.groups)

    def to_dict(self) -> dict:
        return {
            "state": self.jurisdiction.code,
            "jurisdiction": self.jurisdiction.title,
            "company_name": self.company_name,
            "date_from": self.date_from.isoformat(),
            "date_to": self.date_to.isoformat(),
            "customer_id": self.customer_id,
            "applicator_id": self.applicator_id,
            "application_count": self.application_count,
            "groups": [g.to_dict() for g in self.groups],
        }


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _as_date(value: date | datetime) -> date:
    return value.date() if isinstance(value, datetime) else value


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _check_cancelled(cancel_event: threading.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise ReportCancelledError("Report generation cancelled")


def _apply_statement_timeout(db_session: Session, timeout_ms: int | None) -> None:
    if not timeout_ms or db_session.get_bind().dialect.name != "postgresql":
        return
    db_session.execute(text(f"SET LOCAL statement_timeout = {int(timeout_ms)}"))


def _order_groups(
    buckets: dict[str, tuple[GroupKey, list[ReportRow]]],
) -> list[ReportGroup]:
    groups: list[ReportGroup] = []
    for group_key, rows in sorted(buckets.values(), key=lambda item: item[0].sort_key):
        rows.sort(key=lambda r: (_utc(r.application_date), r.application_id))
        groups.append(ReportGroup(key=group_key.key, label=group_key.label, detail=group_key.detail, rows=rows))
    return groups


# ---------------------------------------------------------------------------
# generate
# ---------------------------------------------------------------------------

def generate(
    db_session: Session,
    company_id: UUID,
    state: str,
    date_from: date | datetime,
    date_to: date | datetime,
    customer_id: UUID | None = None,
    applicator_id: UUID | None = None,
    *,
    registry: JurisdictionRegistry | None = None,
    statement_timeout_ms: int | None = None,
    cancel_event: threading.Event | None = None,
) -> ComplianceReport:
    """Assemble the compliance report for *state* over an inclusive date range.

    Raises
    ------
    UnsupportedJurisdictionError
        Malformed or unknown *state*; raised before any query runs.
    ValidationError
        ``date_from`` is after ``date_to``.
    NotFoundError
        A customer/applicator filter does not belong to the company.
    ReportCancelledError
        *cancel_event* was set or the statement timeout fired.
    """
    registry = registry or JurisdictionRegistry.default()
    jurisdiction = registry.get(state)

    start_day, end_day = _as_date(date_from), _as_date(date_to)
    if start_day > end_day:
        raise ValidationError(f"date_from {start_day} is after date_to {end_day}")

    _check_cancelled(cancel_event)

    company = CompanyRepository(db_session).get(company_id)
    if company is None:
        raise NotFoundError(f"Company {company_id} not found", entity_id=company_id)
    if customer_id is not None and CustomerRepository(db_session).get(company_id, customer_id) is None:
        raise NotFoundError(f"Customer {customer_id} not found", entity_id=customer_id)
    if applicator_id is not None and UserRepository(db_session).get(company_id, applicator_id) is None:
        raise NotFoundError(f"Applicator {applicator_id} not found", entity_id=applicator_id)

    range_start = datetime.combine(start_day, time.min, tzinfo=timezone.utc)
    range_end = datetime.combine(end_day + timedelta(days=1), time.min, tzinfo=timezone.utc)

    stmt = (
        select(Application, User)
        .join(User, Application.applicator_id == User.id)
        .where(
            Application.company_id == company_id,
            Application.status == APPLICATION_COMPLETED,
            Application.application_date >= range_start,
            Application.application_date < range_end,
        )
    )
    if customer_id is not None:
        stmt = stmt.where(Application.customer_id == customer_id)
    if applicator_id is not None:
        stmt = stmt.where(Application.applicator_id == applicator_id)
    stmt = stmt.order_by(Application.application_date.asc(), Application.id)

    buckets: dict[str, tuple[GroupKey, list[ReportRow]]] = {}
    try:
        _apply_statement_timeout(db_session, statement_timeout_ms)
        for application, applicator in db_session.execute(stmt):
            _check_cancelled(cancel_event)
            group_key = jurisdiction.group_key(application, applicator)
            row = ReportRow(
                application_id=str(application.id),
                application_date=application.application_date,
                fields=jurisdiction.field_values(application, applicator),
                photos=jurisdiction.photos(application),
            )
            bucket = buckets.setdefault(group_key.key, (group_key, []))
            bucket[1].append(row)
    except OperationalError as exc:
        if getattr(exc.orig, "sqlstate", None) == _QUERY_CANCELED_SQLSTATE:
            raise ReportCancelledError(
                f"Report query exceeded {statement_timeout_ms} ms", state=jurisdiction.code
            ) from exc
        raise

    report = ComplianceReport(
        jurisdiction=jurisdiction,
        company_name=company.name,
        date_from=start_day,
        date_to=end_day,
        customer_id=str(customer_id) if customer_id else None,
        applicator_id=str(applicator_id) if applicator_id else None,
        groups=_order_groups(buckets),
    )
    logger.info(
        "Report assembled: company=%s state=%s groups=%d applications=%d",
        company_id,
        jurisdiction.code,
        len(report.groups),
        report.application_count,
    )
    return report
