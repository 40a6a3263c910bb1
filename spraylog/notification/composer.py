"""Customer notice composition.

Renders ``templates/application_email.html`` with ``string.Template``.
Values come from the Application snapshot plus the Customer, applicator and
Company as they are at send time.  Every substituted value is HTML-escaped.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from html import escape
from pathlib import Path
from string import Template

from spraylog.db.models import Application, Company, Customer, User

DEFAULT_TEMPLATE_DIR = Path(__file__).parent / "templates"
NOTICE_SUBJECT = "Pesticide Application Notice"

_ROW = (
    '<tr><td style="padding: 12px 0; border-bottom: 1px solid #e5e7eb;">'
    '<strong style="color: #374151;">$label</strong><br>'
    '<span style="color: #6b7280;">$value</span></td></tr>'
)


@dataclass
class ComposedMessage:
    subject: str
    html_body: str


def _load_template(template_dir: str | Path, name: str = "application_email.html") -> str:
    path = Path(template_dir) / name
    if not path.is_file():
        raise FileNotFoundError(f"No email template {name!r} in {template_dir}")
    return path.read_text(encoding="utf-8")


def format_notice_date(value: datetime) -> str:
    """``Sunday, March 1, 2026 at 9:30 AM``."""
    hour = value.strftime("%I").lstrip("0") or "12"
    return f"{value.strftime('%A, %B')} {value.day}, {value.year} at {hour}:{value.strftime('%M %p')}"


def _weather(application: Application) -> str | None:
    parts: list[str] = []
    if application.temperature is not None:
        parts.append(f"Temperature: {application.temperature:g}°F")
    if application.humidity is not None:
        parts.append(f"Humidity: {application.humidity:g}%")
    if application.wind_speed is not None:
        direction = f" {application.wind_direction}" if application.wind_direction else ""
        parts.append(f"Wind: {application.wind_speed:g} mph{direction}")
    if application.weather_condition:
        parts.append(f"Conditions: {application.weather_condition}")
    return " | ".join(parts) or None


def _applicator_line(applicator: User | None) -> str | None:
    if applicator is None:
        return None
    line = applicator.full_name
    if applicator.license_number and applicator.license_state:
        line += f" (License: {applicator.license_state} #{applicator.license_number})"
    return line


def _detail_rows(application: Application, applicator: User | None) -> str:
    area = None
    if application.area_treated is not None and application.area_unit:
        area = f"{application.area_treated:g} {application.area_unit}"
    rows = [
        ("Application Date", format_notice_date(application.application_date)),
        ("Product Applied", application.chemical_name),
        ("Amount Applied", f"{application.amount:g} {application.unit}"),
        ("Target Pest", application.target_pest_name),
        ("Application Method", application.application_method),
        ("Area Treated", area),
        ("Applied By", _applicator_line(applicator)),
        ("Weather Conditions", _weather(application)),
        ("Re-entry Interval", application.reentry_interval),
        ("Notes", application.notes),
    ]
    row = Template(_ROW)
    return "\n".join(
        row.substitute(label=escape(label), value=escape(str(value)))
        for label, value in rows
        if value
    )


def _company_contact(company: Company | None) -> str:
    if company is None:
        return ""
    parts = [company.phone, company.email]
    if company.license_number and company.license_state:
        parts.append(f"License: {company.license_state} #{company.license_number}")
    return "<br>".join(escape(part) for part in parts if part)


def compose_application_notice(
    application: Application,
    customer: Customer,
    company: Company | None = None,
    applicator: User | None = None,
    template_dir: str | Path = DEFAULT_TEMPLATE_DIR,
) -> ComposedMessage:
    """Render the customer notice for *application*."""
    template_html = _load_template(template_dir)
    body = Template(template_html).safe_substitute(
        customer_name=escape(customer.name),
        property_address=escape(customer.full_address or application.customer_address),
        detail_rows=_detail_rows(application, applicator),
        company_name=escape(company.name) if company is not None else "",
        company_contact=_company_contact(company),
    )
    return ComposedMessage(subject=NOTICE_SUBJECT, html_body=body)
