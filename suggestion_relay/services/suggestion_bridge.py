"""Ways for a caller to wait until Lindy suggestions are stored.

Two backends share one call, ``await_suggestions(business_id, question_id)``:

* ``PollingBridge`` re-reads the store up to ``max_attempts`` times, sleeping
  ``delay_ms`` after every empty read. Total wait is about
  ``max_attempts * delay_ms``; there is no separate wall-clock deadline.
* ``SubscriptionBridge`` listens on the response change feed and gives up
  after ``timeout_seconds``. It reads the current state right after
  subscribing, and again every ``recheck_seconds`` without an event and at
  the deadline: the feed only carries rows stored by this process, so rows
  written by another worker are picked up by those re-reads.

Both return ``SuggestionsReady`` or ``StillWaiting``. Exhaustion is not an
error; store read failures raise ``SuggestionsReadError``.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Protocol, Union

from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import run_in_threadpool

from suggestion_relay.core.config import (
    SUGGESTIONS_BRIDGE,
    SUGGESTIONS_POLL_DELAY_MS,
    SUGGESTIONS_POLL_MAX_ATTEMPTS,
    SUGGESTIONS_SUBSCRIBE_RECHECK_SECONDS,
    SUGGESTIONS_SUBSCRIBE_TIMEOUT_SECONDS,
)
from suggestion_relay.core.database import SessionLocal
from suggestion_relay.services.change_feed import ResponseChangeFeed, response_feed
from suggestion_relay.services.errors import SuggestionsReadError
from suggestion_relay.services.lindy_store import SuggestionLookup, fetch_latest_suggestions

logger = logging.getLogger(__name__)

STILL_PROCESSING_MESSAGE = "AI is still processing. You can continue and suggestions will appear when ready."

SessionFactory = Union[sessionmaker, Callable[[], Session]]


@dataclass(frozen=True)
class SuggestionsReady:
    business_id: str
    question_id: str
    suggestions: List[dict[str, Any]] = field(default_factory=list)
    response_id: int | None = None
    attempts: int | None = None
    status: str = "ready"


@dataclass(frozen=True)
class StillWaiting:
    business_id: str
    question_id: str
    attempts: int | None = None
    waited_ms: int = 0
    message: str = STILL_PROCESSING_MESSAGE
    status: str = "still_processing"


AwaitOutcome = Union[SuggestionsReady, StillWaiting]


class SuggestionBridge(Protocol):
    async def await_suggestions(self, business_id: str, question_id: str) -> AwaitOutcome:
        ...


def read_current(session_factory: SessionFactory, business_id: str, question_id: str) -> SuggestionLookup:
    db = session_factory()
    try:
        return fetch_latest_suggestions(db, business_id, question_id)
    finally:
        db.close()


async def _read(session_factory: SessionFactory, business_id: str, question_id: str) -> SuggestionLookup:
    lookup = await run_in_threadpool(read_current, session_factory, business_id, question_id)
    if lookup.error:
        raise SuggestionsReadError(business_id, question_id, lookup.error)
    return lookup


class PollingBridge:
    def __init__(
        self,
        *,
        session_factory: SessionFactory = SessionLocal,
        max_attempts: int = SUGGESTIONS_POLL_MAX_ATTEMPTS,
        delay_ms: int = SUGGESTIONS_POLL_DELAY_MS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._session_factory = session_factory
        self.max_attempts = max(1, int(max_attempts))
        self.delay_ms = max(0, int(delay_ms))
        self._sleep = sleep

    async def await_suggestions(self, business_id: str, question_id: str) -> AwaitOutcome:
        start = time.perf_counter()
        for attempt in range(1, self.max_attempts + 1):
            logger.debug("Polling Lindy suggestions attempt %s/%s", attempt, self.max_attempts)
            lookup = await _read(self._session_factory, business_id, question_id)
            if lookup.found and lookup.suggestions:
                logger.info("Lindy suggestions received after %s attempt(s)", attempt)
                return SuggestionsReady(
                    business_id=business_id,
                    question_id=question_id,
                    suggestions=lookup.suggestions,
                    response_id=lookup.response_id,
                    attempts=attempt,
                )
            await self._sleep(self.delay_ms / 1000)

        waited_ms = int((time.perf_counter() - start) * 1000)
        logger.info(
            "Polling exhausted for business_id=%s question_id=%s waited_ms=%s",
            business_id,
            question_id,
            waited_ms,
        )
        return StillWaiting(
            business_id=business_id,
            question_id=question_id,
            attempts=self.max_attempts,
            waited_ms=waited_ms,
        )


class SubscriptionBridge:
    def __init__(
        self,
        *,
        session_factory: SessionFactory = SessionLocal,
        feed: ResponseChangeFeed = response_feed,
        timeout_seconds: float = SUGGESTIONS_SUBSCRIBE_TIMEOUT_SECONDS,
        recheck_seconds: float = SUGGESTIONS_SUBSCRIBE_RECHECK_SECONDS,
    ) -> None:
        self._session_factory = session_factory
        self._feed = feed
        self.timeout_seconds = max(0.0, float(timeout_seconds))
        self.recheck_seconds = max(0.01, float(recheck_seconds))

    async def _ready_from_store(self, business_id: str, question_id: str) -> SuggestionsReady | None:
        lookup = await _read(self._session_factory, business_id, question_id)
        if not (lookup.found and lookup.suggestions):
            return None
        return SuggestionsReady(
            business_id=business_id,
            question_id=question_id,
            suggestions=lookup.suggestions,
            response_id=lookup.response_id,
        )

    async def await_suggestions(self, business_id: str, question_id: str) -> AwaitOutcome:
        loop = asyncio.get_running_loop()
        start = loop.time()
        deadline = start + self.timeout_seconds

        async with self._feed.subscribe(business_id, question_id) as subscription:
            ready = await self._ready_from_store(business_id, question_id)
            if ready:
                return ready

            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    break
                event = await subscription.next_event(timeout=min(remaining, self.recheck_seconds))
                if event is None:
                    # linhas gravadas por outro worker não passam por este feed
                    ready = await self._ready_from_store(business_id, question_id)
                    if ready:
                        logger.info("Lindy suggestions found on recheck for business_id=%s", business_id)
                        return ready
                    continue
                if event.suggestions:
                    logger.info("Lindy suggestions pushed for business_id=%s", business_id)
                    return SuggestionsReady(
                        business_id=business_id,
                        question_id=question_id,
                        suggestions=list(event.suggestions),
                        response_id=event.response_id,
                    )

            ready = await self._ready_from_store(business_id, question_id)
            if ready:
                return ready

        return StillWaiting(
            business_id=business_id,
            question_id=question_id,
            waited_ms=int((loop.time() - start) * 1000),
        )


def build_bridge(
    kind: str | None = None,
    *,
    session_factory: SessionFactory = SessionLocal,
    feed: ResponseChangeFeed = response_feed,
) -> SuggestionBridge:
    selected = (kind or SUGGESTIONS_BRIDGE).strip().lower()
    if selected == "subscribe":
        return SubscriptionBridge(session_factory=session_factory, feed=feed)
    if selected == "poll":
        return PollingBridge(session_factory=session_factory)
    raise ValueError(f"Unknown suggestions bridge: {kind}")
