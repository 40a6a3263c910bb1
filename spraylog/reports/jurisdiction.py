"""Jurisdiction dataclass and the field/grouping catalog it draws from.

A Jurisdiction declares how one state's compliance report is assembled:
which grouping key to use, which fields every entry must show (in order),
and whether photos are embedded.  Adding a state is a new YAML file, never
a new branch.  Built-in jurisdictions live in ``reports/jurisdictions/``.
"""
from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from spraylog.db.models import Application, User

_STATE_CODE = re.compile(r"^[A-Z]{2}$")

NOT_RECORDED = "Not recorded"


# ---------------------------------------------------------------------------
# Value formatting
# ---------------------------------------------------------------------------

def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_datetime(value: datetime) -> str:
    """e.g. ``Jan 15, 2024 2:30 PM`` (UTC)."""
    value = _utc(value)
    hour = value.strftime("%I").lstrip("0") or "12"
    return f"{value.strftime('%b')} {value.day}, {value.year} {hour}:{value.strftime('%M %p')}"


def format_number(value: float) -> str:
    return f"{value:g}"


def format_weather(app: Application) -> str:
    parts: list[str] = []
    if app.temperature is not None:
        parts.append(f"{format_number(app.temperature)}F")
    if app.humidity is not None:
        parts.append(f"{format_number(app.humidity)}% humidity")
    if app.wind_speed is not None:
        wind = f"Wind {format_number(app.wind_speed)}mph"
        if app.wind_direction:
            wind += f" {app.wind_direction}"
        parts.append(wind)
    if app.weather_condition:
        parts.append(app.weather_condition)
    return ", ".join(parts) if parts else NOT_RECORDED


def format_applicator(applicator: User) -> str:
    name = applicator.full_name
    if applicator.license_number and applicator.license_state:
        return f"{name} (License: {applicator.license_state}-{applicator.license_number})"
    if applicator.license_number:
        return f"{name} (License: {applicator.license_number})"
    return name


def _area(app: Application) -> str:
    if app.area_treated is None:
        return NOT_RECORDED
    return f"{format_number(app.area_treated)} {app.area_unit or ''}".strip()


def _chemical(app: Application) -> str:
    if app.epa_number:
        return f"{app.chemical_name} (EPA# {app.epa_number})"
    return app.chemical_name


def _yes_no(flag: bool) -> str:
    return "Yes" if flag else "No"


# ---------------------------------------------------------------------------
# Field catalog: name -> (label, formatter)
# ---------------------------------------------------------------------------

FieldFormatter = Callable[[Application, User], str]

FIELDS: dict[str, tuple[str, FieldFormatter]] = {
    "application_date": ("Date", lambda app, _: format_datetime(app.application_date)),
    "chemical": ("Chemical", lambda app, _: _chemical(app)),
    "amount": ("Amount", lambda app, _: f"{format_number(app.amount)} {app.unit}"),
    "applicator": ("Applicator", lambda _, user: format_applicator(user)),
    "weather": ("Weather", lambda app, _: format_weather(app)),
    "target_pest": ("Target Pest", lambda app, _: app.target_pest_name or NOT_RECORDED),
    "location": ("Location", lambda app, _: ", ".join(p for p in (app.customer_name, app.customer_address) if p)),
    "application_method": ("Application Method", lambda app, _: app.application_method or NOT_RECORDED),
    "area_treated": ("Area Treated", lambda app, _: _area(app)),
    "area_size": ("Area Size", lambda app, _: _area(app)),
    "customer_consent": ("Customer Consent", lambda app, _: _yes_no(app.customer_consent)),
    "property_owner_consent": ("Property Owner Consent", lambda app, _: _yes_no(app.customer_consent)),
    "reentry_interval": ("Re-entry Interval", lambda app, _: app.reentry_interval or NOT_RECORDED),
    "notes": ("Notes", lambda app, _: app.notes or NOT_RECORDED),
}

PHOTO_FIELDS: tuple[tuple[str, str], ...] = (
    ("label_photo_url", "Product Label"),
    ("before_photo_url", "Before"),
    ("after_photo_url", "After"),
)


# ---------------------------------------------------------------------------
# Grouping keys: name -> fn(app, applicator) -> GroupKey
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class GroupKey:
    key: str
    sort_key: tuple
    label: str
    detail: str | None = None


def _by_customer(app: Application, _: User) -> GroupKey:
    return GroupKey(
        key=str(app.customer_id),
        sort_key=(app.customer_name.casefold(), str(app.customer_id)),
        label=f"Customer: {app.customer_name}",
        detail=app.customer_address or None,
    )


def _by_date(app: Application, _: User) -> GroupKey:
    day = _utc(app.application_date).date()
    return GroupKey(
        key=day.isoformat(),
        sort_key=(day.isoformat(),),
        label=f"Date: {day.strftime('%A, %B')} {day.day}, {day.year}",
    )


def _by_applicator(_: Application, user: User) -> GroupKey:
    return GroupKey(
        key=str(user.id),
        sort_key=(user.last_name.casefold(), user.first_name.casefold(), str(user.id)),
        label=f"Applicator: {format_applicator(user)}",
    )


GROUPING_KEYS: dict[str, Callable[[Application, User], GroupKey]] = {
    "customer": _by_customer,
    "date": _by_date,
    "applicator": _by_applicator,
}


# ---------------------------------------------------------------------------
# Jurisdiction
# ---------------------------------------------------------------------------

@dataclass
class Jurisdiction:
    """Compliance report policy for one state."""

    code: str
    name: str
    agency: str
    group_by: str
    required_fields: list[str]
    embed_photos: bool = False
    extra: dict = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.code = self.code.strip().upper()
        if not _STATE_CODE.match(self.code):
            raise ValueError(f"Jurisdiction code must be a two-letter state code: {self.code!r}")
        if self.group_by not in GROUPING_KEYS:
            raise ValueError(f"{self.code}: unknown group_by {self.group_by!r}")
        unknown = [f for f in self.required_fields if f not in FIELDS]
        if unknown:
            raise ValueError(f"{self.code}: unknown required fields: {unknown}")

    @property
    def title(self) -> str:
        return f"{self.name} ({self.agency})"

    def group_key(self, app: Application, applicator: User) -> GroupKey:
        return GROUPING_KEYS[self.group_by](app, applicator)

    def field_values(self, app: Application, applicator: User) -> list[tuple[str, str]]:
        """Return ``(label, value)`` pairs in declared order."""
        values = []
        for name in self.required_fields:
            label, formatter = FIELDS[name]
            values.append((label, formatter(app, applicator)))
        return values

    def photos(self, app: Application) -> list[tuple[str, str]]:
        if not self.embed_photos:
            return []
        return [(label, getattr(app, attr)) for attr, label in PHOTO_FIELDS if getattr(app, attr)]


def is_valid_state_code(code: object) -> bool:
    return isinstance(code, str) and bool(_STATE_CODE.match(code.strip().upper()))
