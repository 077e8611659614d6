"""
LifeSync Backend: On-Demand Report Orchestrator
=================================================

What:  The top-level use case behind POST /api/reports/generate.
How:   A linear state machine; each transition is logged with the user id.

    Start
      → IdempotencyChecked   replay a prior report for the same key (no quota used)
      → CategoriesValidated  requested ⊆ authorized active categories
      → QuotaChecked         weekly on-demand limit in the user's timezone
      → Generated            recent notes + system prompt → LLM (structured output)
      → Persisted            report committed
      → Done                 idempotency key recorded (best effort)
    Failed(kind) is reachable from every step; the error propagates with its
    original kind.

Who:   Built per request by `get_report_orchestrator` around the request's
       database session, with the process-wide gateway and idempotency store.

Cancellation:
    If the inbound request is cancelled while the LLM call is in flight,
    CancelledError propagates from the gateway and nothing is persisted.
"""

import asyncio
import logging
import uuid
from typing import Iterable, List, Optional

from lifesync.exceptions import (
    InvalidCategoriesError,
    InvalidRequestError,
    LifeSyncError,
    SchemaInvalidError,
)
from lifesync.models.report import GENERATED_BY_ON_DEMAND
from lifesync.schemas.report import GeneratedReport, ReportContent
from lifesync.services.idempotency_store import IdempotencyStore
from lifesync.services.llm_base import ChatMessage, CompletionOptions, LLMService
from lifesync.services.note_reader import NoteExcerpt, NoteReader
from lifesync.services.quota_guard import QuotaGuard
from lifesync.services.report_store import ReportStore
from lifesync.services.user_context_service import UserContextService

logger = logging.getLogger(__name__)

PROMPT_VERSION = "v1.0"

SYSTEM_PROMPT = """You are a thoughtful personal reflection assistant. You receive a user's
recent journal notes grouped by life category and write a concise weekly report.

Instructions:
1. Summarize the main themes of each category in a few sentences
2. Point out recurring patterns, progress and tensions between categories
3. Finish with two or three gentle, concrete suggestions for the coming week
4. Write in the same language as the notes; do not invent events
5. Return a JSON object with two fields:
   - "html": the report as an HTML fragment using only <h2>, <h3>, <p>, <ul>, <li>, <strong>, <em>
   - "text_version": the same report as plain text"""


class ReportOrchestrator:
    def __init__(
        self,
        gateway: LLMService,
        user_context: UserContextService,
        quota_guard: QuotaGuard,
        note_reader: NoteReader,
        report_store: ReportStore,
        idempotency_store: Optional[IdempotencyStore] = None,
        model: str = "openai/gpt-4o-mini",
        temperature: float = 0.7,
        max_tokens: int = 4000,
        notes_limit: int = 100,
    ):
        self.gateway = gateway
        self.user_context = user_context
        self.quota_guard = quota_guard
        self.note_reader = note_reader
        self.report_store = report_store
        self.idempotency_store = idempotency_store
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.notes_limit = notes_limit

    def _transition(self, state: str, user_id: uuid.UUID, **fields) -> None:
        logger.info(
            "Report generation → %s",
            state,
            extra={"state": state, "user_id": str(user_id), **fields},
        )

    async def generate_report(
        self,
        user_id: uuid.UUID,
        requested_category_ids: Iterable[uuid.UUID],
        idempotency_key: Optional[str] = None,
    ) -> GeneratedReport:
        """
        Generate (or replay) an on-demand report.

        Raises:
            InvalidCategoriesError: A requested category is missing, inactive
                or not among the user's active categories.
            WeeklyLimitExceededError: The weekly on-demand limit is used up.
            LLMServiceError: Any gateway failure, kind unchanged.
            PersistenceFailedError: The report could not be saved.
        """
        self._transition("Start", user_id, has_idempotency_key=idempotency_key is not None)
        try:
            return await self._run(user_id, list(requested_category_ids), idempotency_key)
        except LifeSyncError as e:
            logger.warning(
                "Report generation → Failed(%s): %s",
                e.kind.value,
                e.message,
                extra={"state": "Failed", "kind": e.kind.value, "user_id": str(user_id)},
            )
            raise
        except asyncio.CancelledError:
            logger.info(
                "Report generation cancelled; nothing persisted",
                extra={"state": "Cancelled", "user_id": str(user_id)},
            )
            raise

    async def _run(
        self,
        user_id: uuid.UUID,
        requested: List[uuid.UUID],
        idempotency_key: Optional[str],
    ) -> GeneratedReport:
        # ── IdempotencyChecked ────────────────────────────────────────────
        if idempotency_key and self.idempotency_store is not None:
            replayed = await self._replay(user_id, idempotency_key)
            if replayed is not None:
                self._transition("Done", user_id, replayed=True, report_id=str(replayed.id))
                return replayed
        self._transition("IdempotencyChecked", user_id)

        # ── CategoriesValidated ───────────────────────────────────────────
        category_ids = list(dict.fromkeys(requested))
        if not category_ids:
            raise InvalidRequestError(
                message="At least one category is required",
                errors=["requested_category_ids must not be empty"],
            )
        context = await self.user_context.get_authorization_context(user_id)
        invalid = [cid for cid in category_ids if cid not in context.categories]
        if invalid:
            raise InvalidCategoriesError(invalid)
        self._transition("CategoriesValidated", user_id, categories=len(category_ids))

        # ── QuotaChecked ──────────────────────────────────────────────────
        quota = await self.quota_guard.check_and_count(user_id, context.timezone)
        self._transition("QuotaChecked", user_id, used=quota.count, limit=quota.limit)

        # ── Generated ─────────────────────────────────────────────────────
        notes = await self.note_reader.fetch_recent_notes(
            user_id, category_ids, limit=self.notes_limit
        )
        names = {cid: context.categories[cid] for cid in category_ids}
        # No pooled connection is held across the LLM call
        await self.report_store.close_read_transaction()
        completion = await self.gateway.complete(
            self.model,
            [
                ChatMessage(role="system", content=SYSTEM_PROMPT),
                ChatMessage(role="user", content=build_user_prompt(notes, names)),
            ],
            CompletionOptions(
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                response_schema=ReportContent,
            ),
        )
        content = completion.parsed
        if not isinstance(content, ReportContent):
            raise SchemaInvalidError(errors=["completion carried no ReportContent"])
        self._transition(
            "Generated", user_id, notes=len(notes), tokens=completion.usage.total_tokens
        )

        # ── Persisted ─────────────────────────────────────────────────────
        report = await self.report_store.create_report(
            user_id=user_id,
            generated_by=GENERATED_BY_ON_DEMAND,
            categories_snapshot=[{"id": str(cid), "name": names[cid]} for cid in category_ids],
            html=content.html,
            text_version=content.text_version,
            llm_model=completion.model or self.model,
            system_prompt_version=PROMPT_VERSION,
        )
        self._transition("Persisted", user_id, report_id=str(report.id))

        # ── Done (idempotency bookkeeping is best effort) ─────────────────
        if idempotency_key and self.idempotency_store is not None:
            outcome = await self.idempotency_store.record(user_id, idempotency_key, report.id)
            if not outcome.ok:
                logger.warning(
                    "Idempotency key not recorded for report %s: %s",
                    report.id,
                    outcome.error,
                    extra={"user_id": str(user_id)},
                )

        self._transition("Done", user_id, report_id=str(report.id))
        return GeneratedReport.model_validate(report)

    async def _replay(self, user_id: uuid.UUID, key: str) -> Optional[GeneratedReport]:
        report_id = await self.idempotency_store.find(user_id, key)
        if report_id is None:
            return None
        report = await self.report_store.get_report(user_id, report_id)
        if report is None:
            logger.info(
                "Idempotency key points at a missing or deleted report; generating anew",
                extra={"user_id": str(user_id), "report_id": str(report_id)},
            )
            outcome = await self.idempotency_store.forget(user_id, key)
            if not outcome.ok:
                logger.warning(
                    "Stale idempotency key not dropped: %s",
                    outcome.error,
                    extra={"user_id": str(user_id)},
                )
            return None
        logger.info(
            "Idempotent replay of report %s",
            report_id,
            extra={"user_id": str(user_id)},
        )
        return GeneratedReport.model_validate(report)


def build_user_prompt(notes: List[NoteExcerpt], names: dict) -> str:
    """Render notes newest first, each tagged with its category name."""
    header = "Categories: " + ", ".join(names.values())
    if not notes:
        return header + "\n\nThe user wrote no notes in these categories recently."

    lines = [header, "", "Notes (newest first):"]
    for note in notes:
        stamp = note.created_at.strftime("%Y-%m-%d") if note.created_at else "undated"
        category = names.get(note.category_id, "Uncategorized")
        title = f" {note.title}" if note.title else ""
        lines.append(f"[{stamp}] ({category}){title}")
        lines.append(note.content.strip())
        lines.append("---")
    return "\n".join(lines)
