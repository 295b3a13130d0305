from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any

import httpx
from sqlalchemy.orm import Session

from suggestion_relay.core.clock import Clock
from suggestion_relay.core.config import (
    LINDY_CALLBACK_URL,
    LINDY_GUARD_CONCURRENT_TRIGGERS,
    LINDY_OUTBOUND_TIMEOUT_SECONDS,
    LINDY_SUPPRESS_OUTBOUND,
    LINDY_WEBHOOK_URL,
)
from suggestion_relay.models.business import Business
from suggestion_relay.services.errors import BusinessNotFound, GenerationInProgress
from suggestion_relay.services.inflight_guard import InflightGuard, inflight_guard
from suggestion_relay.services.lindy_store import record_request_log

logger = logging.getLogger(__name__)

DEFAULT_QUESTION_ID = "Q7"
SUPPRESSED_ENDPOINT = "suppressed://lindy"
PROCESSING_MESSAGE = "Lindy is processing your business data. Suggestions will arrive shortly."
SUPPRESSED_MESSAGE = "Outbound delivery suppressed: no request was sent to Lindy"


@dataclass
class TriggerResult:
    success: bool
    business_id: str
    question_id: str
    simulated: bool = False
    status_code: int | None = None
    message: str | None = None
    error: str | None = None
    response_payload: dict[str, Any] | None = None
    log_id: int | None = None


def _file_reference(item: Any) -> str | None:
    if item is None:
        return None
    if isinstance(item, dict):
        ref = item.get("url") or item.get("name")
        return str(ref) if ref else None
    return str(item)


def normalize_files(value: Any) -> list[str]:
    """Coerce ``files_uploaded`` (list, JSON string or empty) into a list of strings.

    Never raises: malformed values degrade to ``[]`` with a warning.
    """
    if value is None:
        return []

    items: Any = value
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return []
        try:
            items = json.loads(text)
        except json.JSONDecodeError:
            logger.warning("Invalid JSON in files_uploaded, using empty list")
            return []

    if not isinstance(items, (list, tuple)):
        logger.warning("files_uploaded is not a list (got %s), using empty list", type(items).__name__)
        return []

    files: list[str] = []
    for item in items:
        ref = _file_reference(item)
        if ref:
            files.append(ref)
    return files


def build_payload(business: Business, files: list[str], *, callback_url: str) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "project_id": business.id,
        "business_name": business.name,
        "website": business.website_url or None,
        "website_context": business.website_context or None,
        "industry": business.industry or None,
        "business_type": business.business_type or None,
        "linkedin": business.linkedin_url or None,
        "files": files,
        "callback_url": callback_url,
    }
    # campos opcionais vazios não vão para o Lindy
    return {key: value for key, value in payload.items() if value is not None}


def _parse_response_body(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {"raw": response.text}
    return data if isinstance(data, dict) else {"data": data}


def _elapsed_ms(start: float) -> int:
    return int(round((time.perf_counter() - start) * 1000))


def trigger_suggestions(
    db: Session,
    business_id: str,
    question_id: str = DEFAULT_QUESTION_ID,
    *,
    client: httpx.Client | None = None,
    clock: Clock | None = None,
    guard: InflightGuard | None = None,
) -> TriggerResult:
    """Send one generation request to Lindy and log the attempt.

    Results arrive later through the inbound webhook; the HTTP response here
    only tells whether Lindy accepted the job. Nothing is retried.
    """
    business = db.query(Business).filter(Business.id == business_id).first()
    if not business:
        logger.warning("Lindy trigger: business not found business_id=%s", business_id)
        raise BusinessNotFound(business_id)

    payload = build_payload(business, normalize_files(business.files_uploaded), callback_url=LINDY_CALLBACK_URL)

    if LINDY_SUPPRESS_OUTBOUND:
        logger.warning(
            "Lindy trigger suppressed; no request sent business_id=%s question_id=%s",
            business_id,
            question_id,
        )
        log_entry = record_request_log(
            db,
            business_id=business_id,
            question_id=question_id,
            direction="outgoing",
            endpoint=LINDY_WEBHOOK_URL or SUPPRESSED_ENDPOINT,
            payload=payload,
            response_body={"simulated": True},
            success=True,
            processing_time_ms=0,
            clock=clock,
        )
        return TriggerResult(
            success=True,
            simulated=True,
            business_id=business_id,
            question_id=question_id,
            message=SUPPRESSED_MESSAGE,
            log_id=log_entry.id,
        )

    guard = guard or inflight_guard
    if LINDY_GUARD_CONCURRENT_TRIGGERS and not guard.try_acquire(business_id=business_id, question_id=question_id):
        logger.info("Lindy trigger rejected: generation in flight business_id=%s", business_id)
        raise GenerationInProgress(business_id, question_id)

    try:
        result = _deliver(db, business_id, question_id, payload, client=client, clock=clock)
    except Exception:
        # nenhum callback vai chegar para liberar o par
        if LINDY_GUARD_CONCURRENT_TRIGGERS:
            guard.release(business_id=business_id, question_id=question_id)
        raise
    if not result.success and LINDY_GUARD_CONCURRENT_TRIGGERS:
        guard.release(business_id=business_id, question_id=question_id)
    return result


def _deliver(
    db: Session,
    business_id: str,
    question_id: str,
    payload: dict[str, Any],
    *,
    client: httpx.Client | None,
    clock: Clock | None,
) -> TriggerResult:
    url = LINDY_WEBHOOK_URL
    if not url:
        error = "LINDY_WEBHOOK_URL is not configured"
        logger.error("Lindy trigger failed: %s", error)
        log_entry = record_request_log(
            db,
            business_id=business_id,
            question_id=question_id,
            direction="outgoing",
            endpoint="",
            payload=payload,
            success=False,
            error_message=error,
            processing_time_ms=0,
            clock=clock,
        )
        return TriggerResult(
            success=False, business_id=business_id, question_id=question_id, error=error, log_id=log_entry.id
        )

    logger.info("Triggering Lindy business_id=%s question_id=%s", business_id, question_id)
    start = time.perf_counter()
    try:
        if client is None:
            with httpx.Client(timeout=LINDY_OUTBOUND_TIMEOUT_SECONDS) as owned_client:
                response = owned_client.post(url, json=payload)
        else:
            response = client.post(url, json=payload)
    except httpx.HTTPError as exc:
        processing_time = _elapsed_ms(start)
        logger.error("Lindy webhook unreachable business_id=%s error=%s", business_id, exc)
        log_entry = record_request_log(
            db,
            business_id=business_id,
            question_id=question_id,
            direction="outgoing",
            endpoint=url,
            payload=payload,
            success=False,
            error_message=str(exc) or exc.__class__.__name__,
            processing_time_ms=processing_time,
            clock=clock,
        )
        return TriggerResult(
            success=False,
            business_id=business_id,
            question_id=question_id,
            error=f"Lindy webhook unreachable: {exc.__class__.__name__}",
            log_id=log_entry.id,
        )

    processing_time = _elapsed_ms(start)

    if not response.is_success:
        body_text = response.text
        logger.error("Lindy webhook failed status=%s body=%s", response.status_code, body_text)
        log_entry = record_request_log(
            db,
            business_id=business_id,
            question_id=question_id,
            direction="outgoing",
            endpoint=url,
            payload=payload,
            response_status=response.status_code,
            success=False,
            error_message=body_text,
            processing_time_ms=processing_time,
            clock=clock,
        )
        return TriggerResult(
            success=False,
            business_id=business_id,
            question_id=question_id,
            status_code=response.status_code,
            error=f"Lindy webhook returned {response.status_code}",
            log_id=log_entry.id,
        )

    data = _parse_response_body(response)
    logger.info("Lindy triggered business_id=%s status=%s", business_id, response.status_code)
    log_entry = record_request_log(
        db,
        business_id=business_id,
        question_id=question_id,
        direction="outgoing",
        endpoint=url,
        payload=payload,
        response_status=response.status_code,
        response_body=data,
        success=True,
        processing_time_ms=processing_time,
        clock=clock,
    )
    return TriggerResult(
        success=True,
        business_id=business_id,
        question_id=question_id,
        status_code=response.status_code,
        message=PROCESSING_MESSAGE,
        response_payload=data,
        log_id=log_entry.id,
    )
