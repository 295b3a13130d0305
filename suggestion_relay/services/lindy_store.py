from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from suggestion_relay.core.clock import Clock, system_clock
from suggestion_relay.core.metrics import request_metrics
from suggestion_relay.models.lindy_request_log import LindyRequestLog
from suggestion_relay.models.lindy_response import LindyResponse
from suggestion_relay.services.change_feed import ResponseChangeFeed, ResponseInserted, response_feed
from suggestion_relay.services.errors import StorageError
from suggestion_relay.services.payloads import load_json, safe_json, sanitize_payload

logger = logging.getLogger(__name__)

RESPONSE_ROLE = "external-agent"
WAITING_MESSAGE = "Waiting for AI suggestions..."


@dataclass
class SuggestionLookup:
    found: bool
    business_id: str
    question_id: str
    suggestions: List[dict[str, Any]] = field(default_factory=list)
    response_id: int | None = None
    conversation_id: str | None = None
    created_at: datetime | None = None
    message: str | None = None
    error: str | None = None


def decode_suggestions(raw: str | None) -> List[dict[str, Any]]:
    if not raw:
        return []
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("lindy_responses.suggestions_json is not valid JSON")
        return []
    return [item for item in data if isinstance(item, dict)] if isinstance(data, list) else []


def record_request_log(
    db: Session,
    *,
    business_id: str | None,
    question_id: str | None,
    direction: str,
    endpoint: str,
    payload: Any,
    success: bool,
    response_status: int | None = None,
    response_body: Any = None,
    error_message: str | None = None,
    processing_time_ms: int | None = None,
    method: str = "POST",
    clock: Clock | None = None,
) -> LindyRequestLog:
    entry = LindyRequestLog(
        business_id=business_id,
        question_id=question_id,
        direction=direction,
        endpoint=endpoint,
        method=method,
        payload_json=safe_json(sanitize_payload(payload)),
        response_status=response_status,
        response_body_json=safe_json(response_body),
        success=success,
        error_message=error_message,
        processing_time_ms=processing_time_ms,
        created_at=(clock or system_clock).now(),
    )
    db.add(entry)
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception(
            "Failed to write Lindy request log",
            extra={"business_id": business_id, "direction": direction},
        )
        raise
    request_metrics.observe_lindy(
        direction=direction,
        question_id=question_id,
        success=success,
        status_code=response_status,
        business_id=business_id,
    )
    return entry


def store_response(
    db: Session,
    *,
    business_id: str,
    question_id: str,
    content: dict[str, Any],
    suggestions: List[dict[str, Any]],
    idempotency_key: str,
    clock: Clock | None = None,
    feed: ResponseChangeFeed | None = None,
) -> LindyResponse:
    row = LindyResponse(
        business_id=business_id,
        question_id=question_id,
        role=RESPONSE_ROLE,
        content_json=json.dumps(content, ensure_ascii=False, default=str),
        suggestions_json=json.dumps(suggestions, ensure_ascii=False),
        idempotency_key=idempotency_key,
        created_at=(clock or system_clock).now(),
    )
    db.add(row)
    try:
        db.commit()
        db.refresh(row)
    except SQLAlchemyError as exc:
        db.rollback()
        raise StorageError(business_id, question_id, str(exc)) from exc

    (feed or response_feed).publish(
        ResponseInserted(
            response_id=row.id,
            business_id=business_id,
            question_id=question_id,
            suggestions=list(suggestions),
            created_at=row.created_at,
        )
    )
    return row


def response_exists(db: Session, idempotency_key: str) -> bool:
    return (
        db.query(LindyResponse.id)
        .filter(LindyResponse.idempotency_key == idempotency_key)
        .first()
        is not None
    )


def fetch_latest_suggestions(db: Session, business_id: str, question_id: str) -> SuggestionLookup:
    """Most recent response for the pair; "nothing yet" is a normal result, not an error."""
    try:
        row = (
            db.query(LindyResponse)
            .filter(
                LindyResponse.business_id == business_id,
                LindyResponse.question_id == question_id,
            )
            .order_by(LindyResponse.created_at.desc(), LindyResponse.id.desc())
            .first()
        )
    except SQLAlchemyError as exc:
        logger.exception("Failed to read Lindy suggestions for %s/%s", business_id, question_id)
        return SuggestionLookup(
            found=False,
            business_id=business_id,
            question_id=question_id,
            message=WAITING_MESSAGE,
            error=str(exc),
        )

    if row is None:
        logger.info("No Lindy suggestions yet for business=%s question=%s", business_id, question_id)
        return SuggestionLookup(
            found=False,
            business_id=business_id,
            question_id=question_id,
            message=WAITING_MESSAGE,
        )

    content = load_json(row.content_json, default={}) or {}
    conversation_id = None
    if isinstance(content, dict):
        conversation_id = content.get("conversation_id") or content.get("conversationId")

    return SuggestionLookup(
        found=True,
        business_id=business_id,
        question_id=question_id,
        suggestions=decode_suggestions(row.suggestions_json),
        response_id=row.id,
        conversation_id=str(conversation_id) if conversation_id else None,
        created_at=row.created_at,
    )


def list_recent_responses(db: Session, *, business_id: Optional[str] = None, limit: int = 20) -> List[LindyResponse]:
    query = db.query(LindyResponse)
    if business_id:
        query = query.filter(LindyResponse.business_id == business_id)
    return query.order_by(LindyResponse.created_at.desc(), LindyResponse.id.desc()).limit(limit).all()


def list_request_logs(
    db: Session,
    *,
    business_id: Optional[str] = None,
    direction: Optional[str] = None,
    limit: int = 50,
) -> List[LindyRequestLog]:
    query = db.query(LindyRequestLog)
    if business_id:
        query = query.filter(LindyRequestLog.business_id == business_id)
    if direction:
        query = query.filter(LindyRequestLog.direction == direction)
    return query.order_by(LindyRequestLog.created_at.desc(), LindyRequestLog.id.desc()).limit(limit).all()
