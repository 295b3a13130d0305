from __future__ import annotations

import logging
from typing import Any, Callable, List

from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from suggestion_relay.core.database import SessionLocal
from suggestion_relay.services.errors import RelayError
from suggestion_relay.services.lindy_trigger import DEFAULT_QUESTION_ID, TriggerResult, trigger_suggestions
from suggestion_relay.services.suggestion_bridge import (
    AwaitOutcome,
    SessionFactory,
    SuggestionBridge,
    SuggestionsReady,
    build_bridge,
)

logger = logging.getLogger(__name__)

GENERATION_FAILED_MESSAGE = "AI suggestions could not be generated. You may continue without them."

TriggerFn = Callable[..., TriggerResult]


class SuggestionGeneration:
    """State a UI view binds to: ``suggestions``, ``is_loading``, ``error``.

    Every failure (trigger, store read, subscription) ends up as the same
    ``error`` message; the underlying cause is only logged. Running out of
    polling attempts is reported as ``still_processing`` with no error.
    """

    def __init__(
        self,
        business_id: str,
        question_id: str = DEFAULT_QUESTION_ID,
        *,
        bridge: SuggestionBridge | None = None,
        session_factory: SessionFactory = SessionLocal,
        trigger: TriggerFn = trigger_suggestions,
    ) -> None:
        self.business_id = business_id
        self.question_id = question_id
        self._bridge = bridge or build_bridge(session_factory=session_factory)
        self._session_factory = session_factory
        self._trigger = trigger

        self.suggestions: List[dict[str, Any]] = []
        self.is_loading = False
        self.error: str | None = None
        self.status = "idle"
        self.simulated = False

    def _run_trigger(self) -> TriggerResult:
        db = self._session_factory()
        try:
            return self._trigger(db, self.business_id, self.question_id)
        finally:
            db.close()

    def _fail(self, cause: str) -> None:
        logger.warning(
            "Suggestion generation failed business_id=%s question_id=%s cause=%s",
            self.business_id,
            self.question_id,
            cause,
        )
        self.error = GENERATION_FAILED_MESSAGE
        self.status = "failed"
        self.is_loading = False

    def apply(self, outcome: AwaitOutcome) -> None:
        self.is_loading = False
        if isinstance(outcome, SuggestionsReady):
            self.suggestions = list(outcome.suggestions)
            self.status = "ready"
            return
        self.status = "still_processing"

    async def trigger_generation(self, *, wait: bool = True) -> "SuggestionGeneration":
        self.is_loading = True
        self.error = None
        self.status = "loading"

        try:
            result = await run_in_threadpool(self._run_trigger)
        except (RelayError, SQLAlchemyError) as exc:
            self._fail(str(exc))
            return self

        if not result.success:
            self._fail(result.error or "trigger failed")
            return self

        self.simulated = result.simulated
        if not wait:
            return self

        try:
            outcome = await self._bridge.await_suggestions(self.business_id, self.question_id)
        except (RelayError, SQLAlchemyError) as exc:
            self._fail(str(exc))
            return self

        self.apply(outcome)
        return self

    def snapshot(self) -> dict[str, Any]:
        return {
            "business_id": self.business_id,
            "question_id": self.question_id,
            "status": self.status,
            "is_loading": self.is_loading,
            "suggestions": list(self.suggestions),
            "error": self.error,
            "simulated": self.simulated,
        }
