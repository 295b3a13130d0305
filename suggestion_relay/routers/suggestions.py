from __future__ import annotations

import json
import logging
from typing import Any, AsyncGenerator, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.orm import Session
from sse_starlette.sse import EventSourceResponse
from starlette.concurrency import run_in_threadpool

from suggestion_relay.core.database import get_db
from suggestion_relay.deps import get_session_factory, get_suggestion_bridge
from suggestion_relay.schemas.suggestions import (
    AwaitSuggestionsRead,
    GenerationRequest,
    GenerationStateRead,
    Suggestion,
    SuggestionsRead,
    TriggerRead,
)
from suggestion_relay.services.change_feed import ResponseChangeFeed, response_feed
from suggestion_relay.services.errors import BusinessNotFound, GenerationInProgress, SuggestionsReadError
from suggestion_relay.services.generation import GENERATION_FAILED_MESSAGE, SuggestionGeneration
from suggestion_relay.services.lindy_store import WAITING_MESSAGE, fetch_latest_suggestions
from suggestion_relay.services.lindy_trigger import trigger_suggestions
from suggestion_relay.services.suggestion_bridge import (
    SessionFactory,
    SuggestionBridge,
    SuggestionsReady,
    build_bridge,
    read_current,
)

router = APIRouter(prefix="/api/businesses/{business_id}/suggestions", tags=["suggestions"])
logger = logging.getLogger(__name__)

PING_INTERVAL_SECONDS = 15.0


def _normalize_question_id(question_id: str) -> str:
    normalized = question_id.strip().upper()
    if not normalized or len(normalized) > 32:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid question_id")
    return normalized


def _to_suggestions(items: List[Dict[str, Any]]) -> List[Suggestion]:
    return [Suggestion(**item) for item in items]


@router.get("/{question_id}", response_model=SuggestionsRead)
def get_suggestions(business_id: str, question_id: str, db: Session = Depends(get_db)):
    question_id = _normalize_question_id(question_id)
    lookup = fetch_latest_suggestions(db, business_id, question_id)
    if lookup.error:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=GENERATION_FAILED_MESSAGE)
    return SuggestionsRead(
        available=lookup.found,
        business_id=business_id,
        question_id=question_id,
        suggestions=_to_suggestions(lookup.suggestions),
        conversation_id=lookup.conversation_id,
        created_at=lookup.created_at,
        message=lookup.message,
    )


@router.post("/{question_id}/trigger", response_model=TriggerRead)
def trigger(business_id: str, question_id: str, db: Session = Depends(get_db)):
    question_id = _normalize_question_id(question_id)
    try:
        result = trigger_suggestions(db, business_id, question_id)
    except BusinessNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Business not found")
    except GenerationInProgress:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Generation already in progress")
    return TriggerRead(
        success=result.success,
        simulated=result.simulated,
        business_id=result.business_id,
        question_id=result.question_id,
        status_code=result.status_code,
        message=result.message,
        error=result.error,
        lindy_response=result.response_payload,
    )


@router.get("/{question_id}/await", response_model=AwaitSuggestionsRead)
async def await_suggestions(
    business_id: str,
    question_id: str,
    strategy: Optional[Literal["poll", "subscribe"]] = Query(None),
    session_factory: SessionFactory = Depends(get_session_factory),
    bridge: SuggestionBridge = Depends(get_suggestion_bridge),
):
    question_id = _normalize_question_id(question_id)
    if strategy:
        bridge = build_bridge(strategy, session_factory=session_factory)
    try:
        outcome = await bridge.await_suggestions(business_id, question_id)
    except SuggestionsReadError:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=GENERATION_FAILED_MESSAGE)

    if isinstance(outcome, SuggestionsReady):
        return AwaitSuggestionsRead(
            status="ready",
            business_id=business_id,
            question_id=question_id,
            suggestions=_to_suggestions(outcome.suggestions),
            attempts=outcome.attempts,
        )
    return AwaitSuggestionsRead(
        status="still_processing",
        business_id=business_id,
        question_id=question_id,
        attempts=outcome.attempts,
        message=outcome.message,
    )


@router.post("/{question_id}/generate", response_model=GenerationStateRead)
async def generate(
    business_id: str,
    question_id: str,
    body: Optional[GenerationRequest] = None,
    session_factory: SessionFactory = Depends(get_session_factory),
    bridge: SuggestionBridge = Depends(get_suggestion_bridge),
):
    question_id = _normalize_question_id(question_id)
    generation = SuggestionGeneration(
        business_id,
        question_id,
        bridge=bridge,
        session_factory=session_factory,
    )
    await generation.trigger_generation(wait=body.wait if body else True)
    state = generation.snapshot()
    state["suggestions"] = _to_suggestions(state["suggestions"])
    return GenerationStateRead(**state)


def _suggestions_event(response_id: int | None, suggestions: List[Dict[str, Any]]) -> dict:
    return {
        "event": "suggestions",
        "data": json.dumps({"response_id": response_id, "suggestions": suggestions}),
    }


async def _event_stream(
    request: Request,
    business_id: str,
    question_id: str,
    *,
    session_factory: SessionFactory,
    feed: ResponseChangeFeed,
    ping_seconds: float = PING_INTERVAL_SECONDS,
) -> AsyncGenerator[dict, None]:
    async with feed.subscribe(business_id, question_id) as subscription:
        lookup = await run_in_threadpool(read_current, session_factory, business_id, question_id)
        if lookup.error:
            yield {"event": "error", "data": json.dumps({"error": GENERATION_FAILED_MESSAGE})}
            return
        last_sent_id = None
        if lookup.found:
            last_sent_id = lookup.response_id
            yield _suggestions_event(lookup.response_id, lookup.suggestions)
        else:
            yield {"event": "waiting", "data": json.dumps({"message": WAITING_MESSAGE})}

        while True:
            if await request.is_disconnected():
                logger.info("Suggestions stream closed by client business_id=%s question_id=%s", business_id, question_id)
                break
            event = await subscription.next_event(timeout=ping_seconds)
            if event is None:
                # outro worker pode ter gravado sem passar por este feed
                lookup = await run_in_threadpool(read_current, session_factory, business_id, question_id)
                if lookup.found and not lookup.error and lookup.response_id != last_sent_id:
                    last_sent_id = lookup.response_id
                    yield _suggestions_event(lookup.response_id, lookup.suggestions)
                else:
                    yield {"event": "ping", "data": "{}"}
                continue
            if event.response_id == last_sent_id:
                continue
            last_sent_id = event.response_id
            yield _suggestions_event(event.response_id, event.suggestions)


@router.get("/{question_id}/stream")
async def stream_suggestions(
    request: Request,
    business_id: str,
    question_id: str,
    session_factory: SessionFactory = Depends(get_session_factory),
) -> EventSourceResponse:
    question_id = _normalize_question_id(question_id)
    return EventSourceResponse(
        _event_stream(
            request,
            business_id,
            question_id,
            session_factory=session_factory,
            feed=response_feed,
        ),
        media_type="text/event-stream",
    )
