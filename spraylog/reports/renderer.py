"""Compliance report rendering: HTML via string.Template, PDF via WeasyPrint.

Layout only: grouping and ordering come from the assembled report.  The
``generated_at`` stamp is injectable so two renders of the same report
can be compared byte for byte.
"""
from __future__ import annotations

import html
import logging
from datetime import date, datetime, timezone
from pathlib import Path
from string import Template

from spraylog.core.errors import RendererUnavailableError
from spraylog.reports.assembler import ComplianceReport, ReportGroup, ReportRow
from spraylog.reports.jurisdiction import format_datetime

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"

EMPTY_MESSAGE = "No applications found for the specified date range and filters."


def _load_template(template_dir: Path) -> str:
    path = template_dir / "report.html"
    if not path.is_file():
        raise FileNotFoundError(f"No report.html in {template_dir}")
    return path.read_text(encoding="utf-8")


def _format_day(value: date) -> str:
    return f"{value.strftime('%b')} {value.day}, {value.year}"


def _render_row(row: ReportRow) -> str:
    items = "".join(
        f"<dt>{html.escape(label)}:</dt><dd>{html.escape(value)}</dd>" for label, value in row.fields
    )
    photos = ""
    if row.photos:
        images = "".join(
            f'<img src="{html.escape(url, quote=True)}" alt="{html.escape(label, quote=True)}">'
            for label, url in row.photos
        )
        photos = f'<div class="photos">{images}</div>'
    return f'<div class="entry"><dl>{items}</dl>{photos}</div>'


def _render_group(group: ReportGroup) -> str:
    detail = f"<span>{html.escape(group.detail)}</span>" if group.detail else ""
    header = f'<div class="group-header"><strong>{html.escape(group.label.upper())}</strong>{detail}</div>'
    rows = "\n".join(_render_row(r) for r in group.rows)
    return f'<section class="group">{header}\n{rows}</section>'


def render_html(
    report: ComplianceReport,
    generated_at: datetime | None = None,
    template_dir: str | Path = DEFAULT_TEMPLATE_DIR,
) -> str:
    generated_at = generated_at or datetime.now(timezone.utc)
    if report.is_empty:
        body = f'<p class="empty">{EMPTY_MESSAGE}</p>'
    else:
        body = "\n".join(_render_group(g) for g in report.groups)

    return Template(_load_template(Path(template_dir))).safe_substitute(
        company_name=html.escape(report.company_name),
        jurisdiction=html.escape(report.jurisdiction.title),
        date_range=f"{_format_day(report.date_from)} - {_format_day(report.date_to)}",
        generated_at=format_datetime(generated_at),
        body=body,
    )


def render_pdf(
    report: ComplianceReport,
    generated_at: datetime | None = None,
    template_dir: str | Path = DEFAULT_TEMPLATE_DIR,
) -> bytes:
    """Render *report* to PDF bytes."""
    html_content = render_html(report, generated_at=generated_at, template_dir=template_dir)

    try:
        import weasyprint  # lazy import: optional dependency
    except (ImportError, OSError) as exc:
        logger.error("PDF rendering unavailable: %s", exc)
        raise RendererUnavailableError(
            "PDF rendering requires WeasyPrint; install spraylog[pdf] or request format=html"
        ) from exc

    pdf = weasyprint.HTML(string=html_content).write_pdf()
    logger.info(
        "Rendered %s report PDF (%d applications, %d bytes)",
        report.jurisdiction.code,
        report.application_count,
        len(pdf),
    )
    return pdf


def report_filename(report: ComplianceReport) -> str:
    return f"report-{report.jurisdiction.code}-{report.date_from.isoformat()}-{report.date_to.isoformat()}.pdf"
