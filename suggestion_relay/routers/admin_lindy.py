from __future__ import annotations

from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from suggestion_relay.core.config import IS_PROD
from suggestion_relay.core.database import get_db
from suggestion_relay.deps import require_admin_token
from suggestion_relay.models.lindy_request_log import LindyRequestLog
from suggestion_relay.models.lindy_response import LindyResponse
from suggestion_relay.schemas.suggestions import (
    LindyResponseRead,
    RequestLogRead,
    SimulateCallbackRequest,
    Suggestion,
)
from suggestion_relay.services.lindy_simulation import simulate_callback
from suggestion_relay.services.lindy_store import (
    decode_suggestions,
    fetch_latest_suggestions,
    list_recent_responses,
    list_request_logs,
)
from suggestion_relay.services.payloads import load_json

router = APIRouter(
    prefix="/api/admin/lindy",
    tags=["admin-lindy"],
    dependencies=[Depends(require_admin_token)],
)


def _response_read(row: LindyResponse) -> LindyResponseRead:
    content = load_json(row.content_json)
    return LindyResponseRead(
        id=row.id,
        business_id=row.business_id,
        question_id=row.question_id,
        role=row.role,
        idempotency_key=row.idempotency_key,
        suggestions=[Suggestion(**item) for item in decode_suggestions(row.suggestions_json)],
        content=content if isinstance(content, dict) else None,
        created_at=row.created_at,
    )


def _log_read(row: LindyRequestLog) -> RequestLogRead:
    return RequestLogRead(
        id=row.id,
        business_id=row.business_id,
        question_id=row.question_id,
        direction=row.direction,
        endpoint=row.endpoint,
        method=row.method,
        payload=load_json(row.payload_json),
        response_status=row.response_status,
        response_body=load_json(row.response_body_json),
        success=bool(row.success),
        error_message=row.error_message,
        processing_time_ms=row.processing_time_ms,
        created_at=row.created_at,
    )


@router.get("/responses", response_model=List[LindyResponseRead])
def list_responses(
    business_id: Optional[str] = None,
    limit: int = Query(20, ge=1, le=200),
    db: Session = Depends(get_db),
):
    rows = list_recent_responses(db, business_id=business_id, limit=limit)
    return [_response_read(row) for row in rows]


@router.get("/logs", response_model=List[RequestLogRead])
def list_logs(
    business_id: Optional[str] = None,
    direction: Optional[Literal["incoming", "outgoing"]] = None,
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    rows = list_request_logs(db, business_id=business_id, direction=direction, limit=limit)
    return [_log_read(row) for row in rows]


@router.post("/simulate-callback")
def simulate(payload: SimulateCallbackRequest, db: Session = Depends(get_db)):
    if IS_PROD:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Simulation disabled in production")

    question_id = payload.question_id.strip().upper()
    outcome = simulate_callback(db, payload.business_id, question_id)
    if outcome.status_code != 200:
        raise HTTPException(status_code=outcome.status_code, detail=outcome.body.get("error", "Simulation failed"))

    lookup = fetch_latest_suggestions(db, payload.business_id, question_id)
    return {
        "success": outcome.stored,
        "business_id": payload.business_id,
        "question_id": question_id,
        "webhook_response": outcome.body,
        "suggestions": lookup.suggestions,
    }
