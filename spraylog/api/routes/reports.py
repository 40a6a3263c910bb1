"""Compliance report routes.

POST /reports/generate       : assemble a state report (PDF, HTML or JSON)
GET  /reports/jurisdictions  : list supported states
"""
from __future__ import annotations

import logging
from datetime import date
from typing import Literal
from uuid import UUID

from fastapi import APIRouter, Depends
from fastapi.responses import HTMLResponse, Response
from pydantic import BaseModel
from sqlalchemy.orm import Session

from spraylog.api.deps import RequestContext, get_db, get_jurisdiction_registry, get_request_context
from spraylog.core.settings import get_settings
from spraylog.reports.assembler import generate
from spraylog.reports.registry import JurisdictionRegistry
from spraylog.reports.renderer import render_html, render_pdf, report_filename

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reports", tags=["reports"])


class GenerateReportBody(BaseModel):
    state: str
    date_from: date
    date_to: date
    customer_id: UUID | None = None
    applicator_id: UUID | None = None
    format: Literal["pdf", "html", "json"] = "pdf"


@router.post("/generate", summary="Generate a state compliance report")
def generate_report(
    body: GenerateReportBody,
    ctx: RequestContext = Depends(get_request_context),
    db: Session = Depends(get_db),
    registry: JurisdictionRegistry = Depends(get_jurisdiction_registry),
):
    report = generate(
        db,
        ctx.company_id,
        body.state,
        body.date_from,
        body.date_to,
        customer_id=body.customer_id,
        applicator_id=body.applicator_id,
        registry=registry,
        statement_timeout_ms=get_settings().report_statement_timeout_ms,
    )
    if body.format == "json":
        return report.to_dict()
    if body.format == "html":
        return HTMLResponse(render_html(report))

    return Response(
        content=render_pdf(report),
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{report_filename(report)}"'},
    )


@router.get("/jurisdictions", summary="List supported report jurisdictions")
def list_jurisdictions(registry: JurisdictionRegistry = Depends(get_jurisdiction_registry)):
    return [
        {
            "code": j.code,
            "name": j.name,
            "agency": j.agency,
            "group_by": j.group_by,
            "required_fields": list(j.required_fields),
            "embed_photos": j.embed_photos,
        }
        for j in registry.list_all()
    ]
