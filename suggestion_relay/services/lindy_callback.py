from __future__ import annotations

import hashlib
import hmac
import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Mapping

from sqlalchemy.orm import Session

from suggestion_relay.core.clock import Clock, system_clock
from suggestion_relay.core.config import (
    LINDY_GUARD_CONCURRENT_TRIGGERS,
    LINDY_IDEMPOTENCY_STRATEGY,
    LINDY_SIGNATURE_POLICY,
    LINDY_WEBHOOK_SECRET,
)
from suggestion_relay.services.errors import MalformedCallback, SignatureRejected, StorageError
from suggestion_relay.services.inflight_guard import InflightGuard, inflight_guard
from suggestion_relay.services.lindy_store import record_request_log, response_exists, store_response

logger = logging.getLogger(__name__)

SIGNATURE_HEADERS = ("x-lindy-signature", "x-webhook-signature")
_SUGGESTIONS_READY = re.compile(r"^(q\d+)_suggestions_ready$", re.IGNORECASE)


@dataclass(frozen=True)
class SuggestionType:
    type_tag: str
    question_id: str
    suggestions_field: str


@dataclass
class CallbackOutcome:
    status_code: int
    body: dict[str, Any]
    stored: bool = False
    business_id: str | None = None
    question_id: str | None = None
    log_id: int | None = None


def verify_signature(raw_body: bytes, signature: str | None, secret: str | None) -> bool:
    if not signature or not secret:
        return False
    provided = signature.strip()
    if provided.lower().startswith("sha256="):
        provided = provided[len("sha256="):]
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(provided.lower().encode("utf-8"), digest.encode("utf-8"))


def unwrap_payload(payload: Any) -> Any:
    """Accept ``{type, ...}`` or a proxy envelope ``{method, body: {type, ...}}``."""
    if not isinstance(payload, dict) or "body" not in payload:
        return payload
    body = payload.get("body")
    if isinstance(body, str):
        try:
            body = json.loads(body)
        except json.JSONDecodeError:
            return payload
    return body if isinstance(body, dict) else payload


def classify(data: Any) -> SuggestionType | None:
    if not isinstance(data, dict):
        return None
    type_tag = data.get("type")
    if not isinstance(type_tag, str):
        return None
    match = _SUGGESTIONS_READY.match(type_tag.strip())
    if not match:
        return None
    slot = match.group(1).lower()
    return SuggestionType(type_tag=type_tag.strip(), question_id=slot.upper(), suggestions_field=f"{slot}_suggestions")


def _coerce_confidence(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        return None
    if 0.0 <= confidence <= 1.0:
        return confidence
    return None


def extract_suggestions(items: list[Any]) -> list[dict[str, Any]]:
    suggestions: list[dict[str, Any]] = []
    for item in items:
        if isinstance(item, str):
            text, confidence, rationale = item, None, None
        elif isinstance(item, dict):
            text = item.get("suggestion") or item.get("text")
            confidence = _coerce_confidence(item.get("confidence"))
            rationale = item.get("rationale") or item.get("reasoning")
        else:
            continue
        if not isinstance(text, str) or not text.strip():
            logger.debug("Skipping suggestion without text: %r", item)
            continue
        suggestions.append(
            {
                "text": text.strip(),
                "confidence": confidence,
                "rationale": str(rationale) if rationale else None,
            }
        )
    return suggestions


def _required_fields(kind: SuggestionType, data: dict[str, Any]) -> tuple[str, list[Any]]:
    project_id = data.get("project_id")
    if not isinstance(project_id, str) or not project_id.strip():
        raise MalformedCallback("project_id is required")
    items = data.get(kind.suggestions_field)
    if not isinstance(items, list):
        raise MalformedCallback(f"{kind.suggestions_field} must be a list")
    return project_id.strip(), items


def build_idempotency_key(kind: SuggestionType, business_id: str, data: dict[str, Any], *, clock: Clock) -> str:
    """Timestamp keys (default) do not detect redeliveries; ``content`` keys do."""
    prefix = kind.question_id.lower()
    if LINDY_IDEMPOTENCY_STRATEGY == "content":
        reference = data.get("conversation_id") or data.get("conversationId") or data.get("request_id")
        basis = str(reference) if reference else json.dumps(data, sort_keys=True, ensure_ascii=False, default=str)
        digest = hashlib.sha256(f"{kind.type_tag}|{business_id}|{basis}".encode("utf-8")).hexdigest()
        return f"{prefix}-{business_id}-{digest[:32]}"
    return f"{prefix}-{business_id}-{clock.now_ms()}"


def _elapsed_ms(start: float) -> int:
    return int(round((time.perf_counter() - start) * 1000))


def _signature_header(headers: Mapping[str, str]) -> str | None:
    for name in SIGNATURE_HEADERS:
        value = headers.get(name)
        if value:
            return value
    return None


def _check_signature(raw_body: bytes, signature: str | None) -> None:
    if not signature or not LINDY_WEBHOOK_SECRET:
        logger.info("Lindy webhook without signature verification")
        return
    if verify_signature(raw_body, signature, LINDY_WEBHOOK_SECRET):
        logger.info("Lindy webhook signature verified")
        return
    if LINDY_SIGNATURE_POLICY == "strict":
        logger.warning("Invalid Lindy webhook signature: rejecting (strict policy)")
        raise SignatureRejected()
    logger.warning("Invalid Lindy webhook signature: proceeding anyway")


def handle_callback(
    db: Session,
    *,
    raw_body: bytes,
    headers: Mapping[str, str],
    endpoint: str,
    clock: Clock | None = None,
    guard: InflightGuard | None = None,
) -> CallbackOutcome:
    clock = clock or system_clock
    start = time.perf_counter()

    try:
        payload = json.loads(raw_body.decode("utf-8") or "null")
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        logger.warning("Lindy webhook with invalid JSON body: %s", exc)
        log_entry = record_request_log(
            db,
            business_id=None,
            question_id=None,
            direction="incoming",
            endpoint=endpoint,
            payload={"raw": raw_body[:2000].decode("utf-8", errors="replace")},
            response_status=400,
            success=False,
            error_message=f"invalid JSON: {exc}",
            processing_time_ms=_elapsed_ms(start),
            clock=clock,
        )
        return CallbackOutcome(status_code=400, body={"error": "Invalid JSON payload"}, log_id=log_entry.id)

    data = unwrap_payload(payload)
    business_id = data.get("project_id") if isinstance(data, dict) else None
    business_id = business_id if isinstance(business_id, str) else None

    try:
        _check_signature(raw_body, _signature_header(headers))
    except SignatureRejected as exc:
        log_entry = record_request_log(
            db,
            business_id=business_id,
            question_id=None,
            direction="incoming",
            endpoint=endpoint,
            payload=data,
            response_status=exc.status_code,
            success=False,
            error_message=exc.reason,
            processing_time_ms=_elapsed_ms(start),
            clock=clock,
        )
        return CallbackOutcome(status_code=exc.status_code, body={"error": "Invalid signature"}, log_id=log_entry.id)

    kind = classify(data)
    if kind is None:
        type_tag = data.get("type") if isinstance(data, dict) else None
        logger.info("Lindy webhook received without handler for type=%s", type_tag)
        body = {"received": True, "message": "not processed"}
        log_entry = record_request_log(
            db,
            business_id=business_id,
            question_id=None,
            direction="incoming",
            endpoint=endpoint,
            payload=data,
            response_status=200,
            response_body=body,
            success=True,
            error_message=f"unhandled type: {type_tag}",
            processing_time_ms=_elapsed_ms(start),
            clock=clock,
        )
        return CallbackOutcome(status_code=200, body=body, business_id=business_id, log_id=log_entry.id)

    return _store_suggestions(
        db,
        kind=kind,
        data=data,
        endpoint=endpoint,
        start=start,
        clock=clock,
        guard=guard or inflight_guard,
    )


def _store_suggestions(
    db: Session,
    *,
    kind: SuggestionType,
    data: dict[str, Any],
    endpoint: str,
    start: float,
    clock: Clock,
    guard: InflightGuard,
) -> CallbackOutcome:
    raw_business_id = data.get("project_id")
    try:
        business_id, items = _required_fields(kind, data)
    except MalformedCallback as exc:
        logger.warning("Malformed Lindy callback type=%s: %s", kind.type_tag, exc.reason)
        log_entry = record_request_log(
            db,
            business_id=raw_business_id if isinstance(raw_business_id, str) else None,
            question_id=kind.question_id,
            direction="incoming",
            endpoint=endpoint,
            payload=data,
            response_status=exc.status_code,
            success=False,
            error_message=exc.reason,
            processing_time_ms=_elapsed_ms(start),
            clock=clock,
        )
        return CallbackOutcome(status_code=exc.status_code, body={"error": exc.reason}, log_id=log_entry.id)

    suggestions = extract_suggestions(items)
    idempotency_key = build_idempotency_key(kind, business_id, data, clock=clock)

    if LINDY_IDEMPOTENCY_STRATEGY == "content" and response_exists(db, idempotency_key):
        logger.info("Duplicate Lindy callback ignored key=%s", idempotency_key)
        body = {"received": True, "stored": False, "suggestions_count": len(suggestions), "duplicate": True}
        log_entry = record_request_log(
            db,
            business_id=business_id,
            question_id=kind.question_id,
            direction="incoming",
            endpoint=endpoint,
            payload=data,
            response_status=200,
            response_body=body,
            success=True,
            processing_time_ms=_elapsed_ms(start),
            clock=clock,
        )
        return CallbackOutcome(
            status_code=200,
            body=body,
            business_id=business_id,
            question_id=kind.question_id,
            log_id=log_entry.id,
        )

    try:
        store_response(
            db,
            business_id=business_id,
            question_id=kind.question_id,
            content=data,
            suggestions=suggestions,
            idempotency_key=idempotency_key,
            clock=clock,
        )
    except StorageError as exc:
        logger.exception("Failed to store Lindy suggestions business_id=%s", business_id)
        log_entry = record_request_log(
            db,
            business_id=business_id,
            question_id=kind.question_id,
            direction="incoming",
            endpoint=endpoint,
            payload=data,
            response_status=500,
            success=False,
            error_message=str(exc),
            processing_time_ms=_elapsed_ms(start),
            clock=clock,
        )
        return CallbackOutcome(
            status_code=500,
            body={"error": "Storage failed"},
            business_id=business_id,
            question_id=kind.question_id,
            log_id=log_entry.id,
        )

    if LINDY_GUARD_CONCURRENT_TRIGGERS:
        guard.release(business_id=business_id, question_id=kind.question_id)

    body = {"received": True, "stored": True, "suggestions_count": len(suggestions)}
    logger.info(
        "Stored Lindy suggestions business_id=%s question_id=%s count=%s",
        business_id,
        kind.question_id,
        len(suggestions),
    )
    log_entry = record_request_log(
        db,
        business_id=business_id,
        question_id=kind.question_id,
        direction="incoming",
        endpoint=endpoint,
        payload=data,
        response_status=200,
        response_body=body,
        success=True,
        processing_time_ms=_elapsed_ms(start),
        clock=clock,
    )
    return CallbackOutcome(
        status_code=200,
        body=body,
        stored=True,
        business_id=business_id,
        question_id=kind.question_id,
        log_id=log_entry.id,
    )
