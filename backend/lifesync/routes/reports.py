"""
LifeSync Backend: Report Route Handlers
=========================================

What:  POST /api/reports/generate (on-demand generation) and
       GET /api/reports/{id} (read back a report).
How:   Thin handlers: extract identity, body and Idempotency-Key, delegate to
       ReportOrchestrator / ReportStore, format the response. Errors are
       rendered by the global exception handlers in main.py.
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, Response, status

from lifesync.dependencies import get_current_user_id, get_report_orchestrator, get_report_store
from lifesync.exceptions import NotFoundError
from lifesync.schemas.report import ErrorResponse, GeneratedReport, GenerateReportRequest
from lifesync.services.report_orchestrator import ReportOrchestrator
from lifesync.services.report_store import ReportStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/reports", tags=["Reports"])


@router.post(
    "/generate",
    response_model=GeneratedReport,
    status_code=status.HTTP_201_CREATED,
    responses={
        201: {"description": "Report generated (or replayed for a repeated Idempotency-Key)"},
        400: {"description": "Invalid request", "model": ErrorResponse},
        401: {"description": "Missing or invalid caller identity"},
        409: {"description": "Weekly limit reached or categories not authorized", "model": ErrorResponse},
        502: {"description": "LLM provider misbehaved", "model": ErrorResponse},
        503: {"description": "LLM provider unavailable or rate limited", "model": ErrorResponse},
        504: {"description": "LLM provider timed out", "model": ErrorResponse},
    },
    summary="Generate an on-demand report",
    description=(
        "Generates a report over the caller's recent notes in 1-3 of their active "
        "categories. Limited to a few on-demand reports per local week. Send an "
        "Idempotency-Key header to make retries safe: a repeated key returns the "
        "original report without consuming quota."
    ),
)
async def generate_report(
    body: GenerateReportRequest,
    response: Response,
    user_id: UUID = Depends(get_current_user_id),
    idempotency_key: Optional[str] = Header(
        default=None,
        alias="Idempotency-Key",
        min_length=1,
        max_length=255,
    ),
    orchestrator: ReportOrchestrator = Depends(get_report_orchestrator),
) -> GeneratedReport:
    report = await orchestrator.generate_report(
        user_id,
        body.include_categories,
        idempotency_key=idempotency_key,
    )
    response.headers["Location"] = f"/api/reports/{report.id}"
    return report


@router.get(
    "/{report_id}",
    response_model=GeneratedReport,
    responses={404: {"description": "Report not found", "model": ErrorResponse}},
    summary="Get a report",
)
async def get_report(
    report_id: UUID,
    response: Response,
    user_id: UUID = Depends(get_current_user_id),
    report_store: ReportStore = Depends(get_report_store),
) -> GeneratedReport:
    report = await report_store.get_report(user_id, report_id)
    if report is None:
        raise NotFoundError(resource="Report", resource_id=str(report_id))
    # Reports are append-only
    response.headers["Cache-Control"] = "private, max-age=3600"
    return GeneratedReport.model_validate(report)
