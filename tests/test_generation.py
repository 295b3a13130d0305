import asyncio
from functools import partial

import httpx

from suggestion_relay.models.lindy_request_log import LindyRequestLog
from suggestion_relay.services import lindy_trigger
from suggestion_relay.services.errors import BusinessNotFound, SuggestionsReadError
from suggestion_relay.services.generation import GENERATION_FAILED_MESSAGE, SuggestionGeneration
from suggestion_relay.services.inflight_guard import InMemoryInflightGuard
from suggestion_relay.services.lindy_trigger import TriggerResult, trigger_suggestions
from suggestion_relay.services.suggestion_bridge import StillWaiting, SuggestionsReady


class _StaticBridge:
    def __init__(self, outcome):
        self.outcome = outcome
        self.calls = 0

    async def await_suggestions(self, business_id, question_id):
        self.calls += 1
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


def _ok_trigger(_db, business_id, question_id, **_kwargs):
    return TriggerResult(success=True, business_id=business_id, question_id=question_id)


def test_ready_outcome_populates_suggestions(session_factory):
    bridge = _StaticBridge(SuggestionsReady(business_id="biz-1", question_id="Q7", suggestions=[{"text": "A"}]))
    generation = SuggestionGeneration("biz-1", bridge=bridge, session_factory=session_factory, trigger=_ok_trigger)

    asyncio.run(generation.trigger_generation())

    assert generation.status == "ready"
    assert generation.is_loading is False
    assert generation.error is None
    assert generation.suggestions == [{"text": "A"}]


def test_still_processing_is_not_an_error(session_factory):
    bridge = _StaticBridge(StillWaiting(business_id="biz-1", question_id="Q7", attempts=10))
    generation = SuggestionGeneration("biz-1", bridge=bridge, session_factory=session_factory, trigger=_ok_trigger)

    asyncio.run(generation.trigger_generation())

    assert generation.status == "still_processing"
    assert generation.error is None
    assert generation.is_loading is False
    assert generation.suggestions == []


def test_trigger_failure_sets_normalized_error(session_factory):
    def failing_trigger(_db, business_id, question_id, **_kwargs):
        return TriggerResult(success=False, business_id=business_id, question_id=question_id, error="Lindy webhook returned 500")

    bridge = _StaticBridge(StillWaiting(business_id="biz-1", question_id="Q7"))
    generation = SuggestionGeneration("biz-1", bridge=bridge, session_factory=session_factory, trigger=failing_trigger)

    asyncio.run(generation.trigger_generation())

    assert generation.status == "failed"
    assert generation.error == GENERATION_FAILED_MESSAGE
    assert generation.is_loading is False
    assert bridge.calls == 0


def test_missing_business_sets_normalized_error(session_factory):
    def missing_trigger(_db, business_id, question_id, **_kwargs):
        raise BusinessNotFound(business_id)

    generation = SuggestionGeneration(
        "ghost",
        bridge=_StaticBridge(StillWaiting(business_id="ghost", question_id="Q7")),
        session_factory=session_factory,
        trigger=missing_trigger,
    )

    asyncio.run(generation.trigger_generation())

    assert generation.error == GENERATION_FAILED_MESSAGE


def test_bridge_failure_sets_normalized_error(session_factory):
    bridge = _StaticBridge(SuggestionsReadError("biz-1", "Q7", "db down"))
    generation = SuggestionGeneration("biz-1", bridge=bridge, session_factory=session_factory, trigger=_ok_trigger)

    asyncio.run(generation.trigger_generation())

    assert generation.status == "failed"
    assert generation.error == GENERATION_FAILED_MESSAGE


def test_no_wait_returns_after_trigger(session_factory):
    bridge = _StaticBridge(StillWaiting(business_id="biz-1", question_id="Q7"))
    generation = SuggestionGeneration("biz-1", bridge=bridge, session_factory=session_factory, trigger=_ok_trigger)

    asyncio.run(generation.trigger_generation(wait=False))

    assert bridge.calls == 0
    assert generation.is_loading is True
    assert generation.status == "loading"


def test_suppressed_trigger_is_flagged_simulated(session_factory, business, monkeypatch):
    monkeypatch.setattr(lindy_trigger, "LINDY_SUPPRESS_OUTBOUND", True)
    calls = []
    client = httpx.Client(transport=httpx.MockTransport(lambda request: calls.append(request) or httpx.Response(200)))
    bridge = _StaticBridge(StillWaiting(business_id="biz-1", question_id="Q7"))
    generation = SuggestionGeneration(
        "biz-1",
        bridge=bridge,
        session_factory=session_factory,
        trigger=partial(trigger_suggestions, client=client),
    )

    asyncio.run(generation.trigger_generation())

    assert generation.simulated is True
    assert generation.error is None
    assert calls == []


def test_concurrent_generations_each_call_lindy(session_factory, business):
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={})

    client = httpx.Client(transport=httpx.MockTransport(handler))
    trigger = partial(trigger_suggestions, client=client)

    def build():
        return SuggestionGeneration(
            "biz-1",
            bridge=_StaticBridge(StillWaiting(business_id="biz-1", question_id="Q7")),
            session_factory=session_factory,
            trigger=trigger,
        )

    async def scenario():
        await asyncio.gather(build().trigger_generation(), build().trigger_generation())

    asyncio.run(scenario())

    assert len(calls) == 2
    db = session_factory()
    try:
        assert db.query(LindyRequestLog).filter(LindyRequestLog.direction == "outgoing").count() == 2
    finally:
        db.close()


def test_guard_turns_second_concurrent_generation_into_error(session_factory, business, monkeypatch):
    monkeypatch.setattr(lindy_trigger, "LINDY_GUARD_CONCURRENT_TRIGGERS", True)
    guard = InMemoryInflightGuard(ttl_seconds=60)
    client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(200, json={})))
    trigger = partial(trigger_suggestions, client=client, guard=guard)

    first = SuggestionGeneration(
        "biz-1",
        bridge=_StaticBridge(StillWaiting(business_id="biz-1", question_id="Q7")),
        session_factory=session_factory,
        trigger=trigger,
    )
    second = SuggestionGeneration(
        "biz-1",
        bridge=_StaticBridge(StillWaiting(business_id="biz-1", question_id="Q7")),
        session_factory=session_factory,
        trigger=trigger,
    )

    asyncio.run(first.trigger_generation())
    asyncio.run(second.trigger_generation())

    assert first.error is None
    assert second.error == GENERATION_FAILED_MESSAGE
