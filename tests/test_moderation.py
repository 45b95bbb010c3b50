"""
Tests for the moderation state machine and its events
"""

import itertools
import threading

import pytest

from event_log import EventLog
from moderation import (
    APPROVED, ALL_CLEARED, DELETED, PENDING_ADDED, REJECTED, SECTION_CLEARED,
    ModerationEngine, NotFound, UnknownSection, coerce_id,
)
from schemas import MessageStatus
from sections import SectionRegistry
from store import MessageStore


@pytest.fixture
def engine():
    counter = itertools.count(1)
    store = MessageStore(SectionRegistry(), id_factory=lambda: next(counter))
    return ModerationEngine(store, EventLog(capacity=50))


@pytest.fixture
def events(engine):
    seen = []
    engine.subscribe(lambda event, payload: seen.append((event, payload)))
    return seen


def test_submit_publishes_pending_and_logs(engine, events):
    msg = engine.submit("section2", "Ada", "hello")

    assert events == [(PENDING_ADDED, {"section": "section2", "message": msg.to_wire()})]
    entry = engine.log.recent(1)[0]
    assert entry.type == "new-message"
    assert entry.data == {"section": "section2", "author": "Ada", "textLength": 5}


def test_approve_transitions_and_publishes_full_message(engine, events):
    msg = engine.submit("section2", "Ada", "hello")
    engine.approve("section2", msg.id)

    assert msg.status == MessageStatus.approved
    event, payload = events[-1]
    assert event == APPROVED
    assert payload["section"] == "section2"
    assert payload["message"]["text"] == "hello"
    assert payload["message"]["status"] == "approved"


def test_approve_is_idempotent(engine, events):
    msg = engine.submit("section1", "Ada", "hi")
    engine.approve("section1", msg.id)
    engine.approve("section1", str(msg.id))

    assert [e for e, _ in events].count(APPROVED) == 1
    assert len(engine.store.all_messages()) == 1
    assert engine.store.find("section1", msg.id).status == MessageStatus.approved
    assert [e.type for e in engine.log.recent(10)].count("approve") == 1


def test_approve_missing_raises(engine):
    with pytest.raises(NotFound):
        engine.approve("section1", 999)
    with pytest.raises(UnknownSection):
        engine.approve("nope", 1)
    with pytest.raises(NotFound):
        engine.approve("section1", "abc")


@pytest.mark.parametrize("action,event", [("reject", REJECTED), ("delete", DELETED)])
def test_removal_hides_message(engine, events, action, event):
    msg = engine.submit("section3", "Ada", "idea")
    getattr(engine, action)("section3", msg.id)

    assert engine.store.find("section3", msg.id) is None
    assert engine.store.all_messages() == []
    assert events[-1] == (event, {"section": "section3", "id": msg.id})


def test_delete_works_on_approved_messages(engine):
    msg = engine.submit("section1", "Ada", "hi")
    engine.approve("section1", msg.id)
    engine.delete("section1", msg.id)
    assert engine.store.find("section1", msg.id) is None


def test_bulk_approve_partial_success(engine, events):
    a = engine.submit("section1", "Ada", "a")
    c = engine.submit("section2", "Ada", "c")
    events.clear()

    count = engine.bulk_approve([("section1", a.id), ("section1", 12345), ("section2", c.id)])

    assert count == 2
    assert [e for e, _ in events] == [APPROVED, APPROVED]
    assert engine.log.recent(1)[0].type == "approve-bulk"
    assert engine.log.recent(1)[0].data == {"count": 2}


def test_bulk_reject_skips_unknown_sections(engine, events):
    a = engine.submit("section1", "Ada", "a")
    events.clear()

    count = engine.bulk_reject([("section1", a.id), ("ghost", a.id), ("section1", "x")])

    assert count == 1
    assert events == [(REJECTED, {"section": "section1", "id": a.id})]


def test_clear_section_emits_one_event(engine, events):
    engine.submit("section1", "Ada", "a")
    engine.submit("section1", "Ada", "b")
    engine.submit("section2", "Ada", "c")
    events.clear()

    assert engine.clear_section("section1") == 2
    assert events == [(SECTION_CLEARED, {"section": "section1"})]
    assert engine.store.counts()["section2"] == 1


def test_clear_section_unknown(engine):
    with pytest.raises(UnknownSection):
        engine.clear_section("section6")


def test_clear_all(engine, events):
    engine.submit("section1", "Ada", "a")
    engine.submit("section5", "Ada", "b")
    events.clear()

    assert engine.clear_all() == 2
    assert events == [(ALL_CLEARED, {})]
    assert engine.log.recent(1)[0].data == {"count": 2}


def test_failing_listener_does_not_break_mutation(engine, events):
    def boom(event, payload):
        raise RuntimeError("gone")

    engine.subscribe(boom)
    msg = engine.submit("section1", "Ada", "still stored")
    assert engine.store.find("section1", msg.id) is msg
    assert events[-1][0] == PENDING_ADDED


def test_coerce_id():
    assert coerce_id(5) == 5
    assert coerce_id(" 17 ") == 17
    assert coerce_id("x") is None
    assert coerce_id(True) is None
    assert coerce_id(None) is None


def test_bulk_approve_counts_only_transitions(engine, events):
    a = engine.submit("section1", "Ada", "a")
    c = engine.submit("section2", "Ada", "c")
    engine.approve("section1", a.id)
    events.clear()

    count = engine.bulk_approve([("section1", a.id), ("section1", 999), ("section2", c.id)])

    assert count == 1
    assert [e for e, _ in events] == [APPROVED]
    assert events[0][1]["message"]["id"] == c.id


def test_integral_float_ids_match():
    assert coerce_id(3.0) == 3
    assert coerce_id(3.5) is None


def test_concurrent_submissions_hold_cap_and_unique_ids():
    store = MessageStore(SectionRegistry(), capacity=10)
    engine = ModerationEngine(store, EventLog(capacity=50))
    seen = []
    engine.subscribe(lambda event, payload: seen.append(payload["message"]["id"]))

    def worker(n):
        for i in range(50):
            engine.submit("section1", f"w{n}", f"m{i}")

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(seen) == 400
    assert len(set(seen)) == 400
    assert store.counts()["section1"] == 10
    stored = [m.id for _, m in store.all_messages()]
    assert stored == sorted(seen)[-10:]
