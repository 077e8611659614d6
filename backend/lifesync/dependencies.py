"""
LifeSync Backend: FastAPI Dependencies
========================================

What:  Request-scoped wiring: caller identity, the process-wide gateway and
       idempotency store (kept on app.state), and a ReportOrchestrator built
       around the request's database session.
Who:   Injected into route handlers with Depends(...).

Caller identity:
    Session issuance lives in the upstream authentication layer, which
    forwards the authenticated user as `X-User-ID`. A missing or malformed
    header is answered with 401.
"""

import uuid
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from lifesync.config import settings
from lifesync.database import get_db_session
from lifesync.services.chat_gateway import ChatCompletionGateway
from lifesync.services.idempotency_store import IdempotencyStore
from lifesync.services.note_reader import NoteReader
from lifesync.services.quota_guard import QuotaGuard
from lifesync.services.report_orchestrator import ReportOrchestrator
from lifesync.services.report_store import ReportStore
from lifesync.services.user_context_service import UserContextService


async def get_current_user_id(
    x_user_id: Optional[str] = Header(default=None, alias="X-User-ID"),
) -> uuid.UUID:
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    try:
        return uuid.UUID(x_user_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user identity",
        )


def get_gateway(request: Request) -> ChatCompletionGateway:
    return request.app.state.gateway


def get_idempotency_store(request: Request) -> IdempotencyStore:
    return request.app.state.idempotency_store


def get_report_store(db: AsyncSession = Depends(get_db_session)) -> ReportStore:
    return ReportStore(db)


def get_report_orchestrator(
    db: AsyncSession = Depends(get_db_session),
    gateway: ChatCompletionGateway = Depends(get_gateway),
    idempotency_store: IdempotencyStore = Depends(get_idempotency_store),
) -> ReportOrchestrator:
    report_store = ReportStore(db)
    return ReportOrchestrator(
        gateway=gateway,
        user_context=UserContextService(db),
        quota_guard=QuotaGuard(report_store, limit=settings.weekly_report_limit),
        note_reader=NoteReader(db),
        report_store=report_store,
        idempotency_store=idempotency_store,
        model=settings.openrouter_model,
        temperature=settings.report_temperature,
        max_tokens=settings.report_max_tokens,
        notes_limit=settings.report_notes_limit,
    )
