"""In-process fan-out of newly stored Lindy responses.

Subscribers register for one (business_id, question_id) pair and receive
``ResponseInserted`` events on an asyncio queue bound to their own event
loop. ``publish`` may be called from any thread (sync route handlers run
in the threadpool), so delivery goes through ``call_soon_threadsafe``.
"""
from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from threading import Lock
from typing import Any, AsyncIterator, DefaultDict, List

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResponseInserted:
    response_id: int
    business_id: str
    question_id: str
    suggestions: List[dict[str, Any]] = field(default_factory=list)
    created_at: datetime | None = None


class Subscription:
    def __init__(self, loop: asyncio.AbstractEventLoop, business_id: str, question_id: str) -> None:
        self.business_id = business_id
        self.question_id = question_id
        self._loop = loop
        self._queue: asyncio.Queue[ResponseInserted] = asyncio.Queue()

    def deliver(self, event: ResponseInserted) -> None:
        self._loop.call_soon_threadsafe(self._queue.put_nowait, event)

    async def next_event(self, timeout: float | None = None) -> ResponseInserted | None:
        try:
            if timeout is None:
                return await self._queue.get()
            return await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None


class ResponseChangeFeed:
    def __init__(self) -> None:
        self._subscriptions: DefaultDict[tuple[str, str], List[Subscription]] = defaultdict(list)
        self._lock = Lock()

    def publish(self, event: ResponseInserted) -> None:
        key = (event.business_id, event.question_id)
        with self._lock:
            subscriptions = list(self._subscriptions.get(key, []))
        if not subscriptions:
            logger.debug("ResponseChangeFeed: no subscribers for %s/%s", *key)
            return
        for subscription in subscriptions:
            try:
                subscription.deliver(event)
            except RuntimeError:
                # loop do assinante já foi fechado
                logger.exception("ResponseChangeFeed delivery failed for %s/%s", *key)

    @asynccontextmanager
    async def subscribe(self, business_id: str, question_id: str) -> AsyncIterator[Subscription]:
        subscription = Subscription(asyncio.get_running_loop(), business_id, question_id)
        key = (business_id, question_id)
        with self._lock:
            self._subscriptions[key].append(subscription)
        logger.debug("ResponseChangeFeed: subscribed %s/%s", business_id, question_id)
        try:
            yield subscription
        finally:
            with self._lock:
                remaining = [item for item in self._subscriptions.get(key, []) if item is not subscription]
                if remaining:
                    self._subscriptions[key] = remaining
                else:
                    self._subscriptions.pop(key, None)
            logger.debug("ResponseChangeFeed: unsubscribed %s/%s", business_id, question_id)

    def subscriber_count(self, business_id: str | None = None, question_id: str | None = None) -> int:
        with self._lock:
            if business_id is None:
                return sum(len(subscriptions) for subscriptions in self._subscriptions.values())
            return len(self._subscriptions.get((business_id, question_id), []))


response_feed = ResponseChangeFeed()
