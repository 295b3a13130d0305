import asyncio
import time

import pytest

from suggestion_relay.services.errors import SuggestionsReadError
from suggestion_relay.services.change_feed import ResponseChangeFeed
from suggestion_relay.services.lindy_store import SuggestionLookup, store_response
from suggestion_relay.services import suggestion_bridge
from suggestion_relay.services.suggestion_bridge import (
    STILL_PROCESSING_MESSAGE,
    PollingBridge,
    StillWaiting,
    SubscriptionBridge,
    SuggestionsReady,
    build_bridge,
)


def _store(session_factory, feed, clock, texts):
    db = session_factory()
    try:
        store_response(
            db,
            business_id="biz-1",
            question_id="Q7",
            content={"type": "q7_suggestions_ready"},
            suggestions=[{"text": text, "confidence": None, "rationale": None} for text in texts],
            idempotency_key=f"q7-biz-1-{clock.now_ms()}",
            clock=clock,
            feed=feed,
        )
    finally:
        db.close()


def test_polling_returns_ready_when_response_exists(session_factory, feed, clock):
    _store(session_factory, feed, clock, ["A", "B"])
    bridge = PollingBridge(session_factory=session_factory, max_attempts=3, delay_ms=10)

    outcome = asyncio.run(bridge.await_suggestions("biz-1", "Q7"))

    assert isinstance(outcome, SuggestionsReady)
    assert [item["text"] for item in outcome.suggestions] == ["A", "B"]
    assert outcome.attempts == 1


def test_polling_is_bounded_when_nothing_arrives(session_factory):
    bridge = PollingBridge(session_factory=session_factory, max_attempts=3, delay_ms=100)

    start = time.perf_counter()
    outcome = asyncio.run(bridge.await_suggestions("biz-1", "Q7"))
    elapsed = time.perf_counter() - start

    assert isinstance(outcome, StillWaiting)
    assert outcome.message == STILL_PROCESSING_MESSAGE
    assert outcome.attempts == 3
    assert 0.3 <= elapsed < 2.0


def test_polling_picks_up_late_response(session_factory, feed, clock):
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)
        if len(sleeps) == 2:
            _store(session_factory, feed, clock, ["late"])

    bridge = PollingBridge(session_factory=session_factory, max_attempts=5, delay_ms=2000, sleep=fake_sleep)

    outcome = asyncio.run(bridge.await_suggestions("biz-1", "Q7"))

    assert isinstance(outcome, SuggestionsReady)
    assert outcome.attempts == 3
    assert sleeps == [2.0, 2.0]


def test_polling_raises_on_store_failure(session_factory, monkeypatch):
    def broken_read(_factory, business_id, question_id):
        return SuggestionLookup(found=False, business_id=business_id, question_id=question_id, error="db down")

    monkeypatch.setattr(suggestion_bridge, "read_current", broken_read)
    bridge = PollingBridge(session_factory=session_factory, max_attempts=2, delay_ms=0)

    with pytest.raises(SuggestionsReadError):
        asyncio.run(bridge.await_suggestions("biz-1", "Q7"))


def test_subscription_receives_pushed_response(session_factory, feed, clock):
    bridge = SubscriptionBridge(session_factory=session_factory, feed=feed, timeout_seconds=5)

    async def scenario():
        task = asyncio.create_task(bridge.await_suggestions("biz-1", "Q7"))
        while feed.subscriber_count("biz-1", "Q7") == 0:
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.05)
        _store(session_factory, feed, clock, ["pushed"])
        return await task

    outcome = asyncio.run(scenario())

    assert isinstance(outcome, SuggestionsReady)
    assert outcome.suggestions[0]["text"] == "pushed"
    assert feed.subscriber_count("biz-1", "Q7") == 0


def test_subscription_returns_existing_response_immediately(session_factory, feed, clock):
    _store(session_factory, feed, clock, ["already there"])
    bridge = SubscriptionBridge(session_factory=session_factory, feed=feed, timeout_seconds=5)

    outcome = asyncio.run(bridge.await_suggestions("biz-1", "Q7"))

    assert isinstance(outcome, SuggestionsReady)
    assert outcome.suggestions[0]["text"] == "already there"
    assert feed.subscriber_count() == 0


def test_subscription_times_out_and_unsubscribes(session_factory, feed):
    bridge = SubscriptionBridge(session_factory=session_factory, feed=feed, timeout_seconds=0.1)

    outcome = asyncio.run(bridge.await_suggestions("biz-1", "Q7"))

    assert isinstance(outcome, StillWaiting)
    assert feed.subscriber_count() == 0


def test_subscription_unsubscribes_when_cancelled(session_factory, feed):
    bridge = SubscriptionBridge(session_factory=session_factory, feed=feed, timeout_seconds=30)

    async def scenario():
        task = asyncio.create_task(bridge.await_suggestions("biz-1", "Q7"))
        while feed.subscriber_count("biz-1", "Q7") == 0:
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())

    assert feed.subscriber_count() == 0


def test_subscription_ignores_other_pairs(session_factory, feed, clock):
    bridge = SubscriptionBridge(session_factory=session_factory, feed=feed, timeout_seconds=0.3)

    async def scenario():
        task = asyncio.create_task(bridge.await_suggestions("biz-1", "Q8"))
        while feed.subscriber_count("biz-1", "Q8") == 0:
            await asyncio.sleep(0.01)
        _store(session_factory, feed, clock, ["for Q7"])
        return await task

    outcome = asyncio.run(scenario())

    assert isinstance(outcome, StillWaiting)


def test_build_bridge_selects_strategy(session_factory, feed):
    assert isinstance(build_bridge("poll", session_factory=session_factory, feed=feed), PollingBridge)
    assert isinstance(build_bridge("subscribe", session_factory=session_factory, feed=feed), SubscriptionBridge)
    with pytest.raises(ValueError):
        build_bridge("carrier-pigeon", session_factory=session_factory, feed=feed)


def test_subscription_finds_row_stored_by_another_worker(session_factory, feed, clock):
    other_worker_feed = ResponseChangeFeed()
    bridge = SubscriptionBridge(session_factory=session_factory, feed=feed, timeout_seconds=2, recheck_seconds=0.05)

    async def scenario():
        task = asyncio.create_task(bridge.await_suggestions("biz-1", "Q7"))
        while feed.subscriber_count("biz-1", "Q7") == 0:
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.05)
        _store(session_factory, other_worker_feed, clock, ["from another worker"])
        return await task

    outcome = asyncio.run(scenario())

    assert isinstance(outcome, SuggestionsReady)
    assert outcome.suggestions[0]["text"] == "from another worker"
    assert feed.subscriber_count() == 0


def test_subscription_rereads_store_at_deadline(session_factory, feed, clock):
    other_worker_feed = ResponseChangeFeed()
    bridge = SubscriptionBridge(session_factory=session_factory, feed=feed, timeout_seconds=0.3, recheck_seconds=10)

    async def scenario():
        task = asyncio.create_task(bridge.await_suggestions("biz-1", "Q7"))
        while feed.subscriber_count("biz-1", "Q7") == 0:
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.05)
        _store(session_factory, other_worker_feed, clock, ["late row"])
        return await task

    outcome = asyncio.run(scenario())

    assert isinstance(outcome, SuggestionsReady)
    assert outcome.suggestions[0]["text"] == "late row"
