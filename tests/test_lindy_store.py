import json

import pytest
from sqlalchemy.exc import OperationalError

from suggestion_relay.core.clock import FakeClock
from suggestion_relay.services.errors import StorageError
from suggestion_relay.services.lindy_store import (
    WAITING_MESSAGE,
    fetch_latest_suggestions,
    list_request_logs,
    record_request_log,
    store_response,
)


def _store(db, feed, clock, texts, *, business_id="biz-1", question_id="Q7", content=None):
    return store_response(
        db,
        business_id=business_id,
        question_id=question_id,
        content=content or {"type": f"{question_id.lower()}_suggestions_ready"},
        suggestions=[{"text": text, "confidence": None, "rationale": None} for text in texts],
        idempotency_key=f"{question_id.lower()}-{business_id}-{clock.now_ms()}",
        clock=clock,
        feed=feed,
    )


def test_latest_response_wins(db, feed, clock):
    _store(db, feed, clock, ["old"])
    clock.advance(seconds=30)
    _store(db, feed, clock, ["new"])

    lookup = fetch_latest_suggestions(db, "biz-1", "Q7")

    assert lookup.found is True
    assert [item["text"] for item in lookup.suggestions] == ["new"]


def test_insert_order_does_not_override_created_at(db, feed):
    late = FakeClock()
    late.advance(seconds=60)
    early = FakeClock()

    _store(db, feed, late, ["later"])
    _store(db, feed, early, ["earlier"])

    lookup = fetch_latest_suggestions(db, "biz-1", "Q7")

    assert [item["text"] for item in lookup.suggestions] == ["later"]


def test_same_instant_falls_back_to_insert_order(db, feed, clock):
    _store(db, feed, clock, ["first"])
    _store(db, feed, clock, ["second"])

    lookup = fetch_latest_suggestions(db, "biz-1", "Q7")

    assert [item["text"] for item in lookup.suggestions] == ["second"]


def test_nothing_yet_is_not_an_error(db):
    lookup = fetch_latest_suggestions(db, "biz-1", "Q7")

    assert lookup.found is False
    assert lookup.error is None
    assert lookup.suggestions == []
    assert lookup.message == WAITING_MESSAGE


def test_lookup_is_scoped_to_pair(db, feed, clock):
    _store(db, feed, clock, ["q8 only"], question_id="Q8")
    _store(db, feed, clock, ["other business"], business_id="biz-2")

    assert fetch_latest_suggestions(db, "biz-1", "Q7").found is False
    assert fetch_latest_suggestions(db, "biz-1", "Q8").suggestions[0]["text"] == "q8 only"


def test_conversation_id_is_read_from_content(db, feed, clock):
    _store(db, feed, clock, ["a"], content={"conversation_id": "conv-9"})

    lookup = fetch_latest_suggestions(db, "biz-1", "Q7")

    assert lookup.conversation_id == "conv-9"


def test_store_publishes_to_feed_subscribers(db, feed, clock):
    published = []
    feed.publish = published.append

    row = _store(db, feed, clock, ["a"])

    assert len(published) == 1
    assert published[0].response_id == row.id
    assert published[0].suggestions[0]["text"] == "a"


def test_request_log_masks_sensitive_fields(db, clock):
    entry = record_request_log(
        db,
        business_id="biz-1",
        question_id="Q7",
        direction="outgoing",
        endpoint="https://lindy.test/webhook",
        payload={"project_id": "biz-1", "api_key": "abc123", "nested": {"token": "t"}},
        success=True,
        clock=clock,
    )

    stored = json.loads(entry.payload_json)
    assert stored["project_id"] == "biz-1"
    assert stored["api_key"] != "abc123"
    assert stored["nested"]["token"] != "t"
    assert entry.created_at is not None


def test_list_request_logs_filters_by_direction(db, clock):
    for direction in ("outgoing", "incoming", "incoming"):
        record_request_log(
            db,
            business_id="biz-1",
            question_id="Q7",
            direction=direction,
            endpoint="x",
            payload={},
            success=True,
            clock=clock,
        )
        clock.advance(seconds=1)

    assert len(list_request_logs(db, business_id="biz-1", direction="incoming")) == 2
    assert len(list_request_logs(db, direction="outgoing")) == 1
    assert len(list_request_logs(db, business_id="biz-2")) == 0


def test_failed_commit_raises_storage_error_without_publishing(db, feed, clock, monkeypatch):
    published = []
    monkeypatch.setattr(feed, "publish", published.append)

    def failing_commit():
        raise OperationalError("INSERT INTO lindy_responses", {}, Exception("disk full"))

    monkeypatch.setattr(db, "commit", failing_commit)

    with pytest.raises(StorageError) as excinfo:
        _store(db, feed, clock, ["lost"])

    assert isinstance(excinfo.value.__cause__, OperationalError)
    assert excinfo.value.question_id == "Q7"
    assert published == []
    assert fetch_latest_suggestions(db, "biz-1", "Q7").found is False
