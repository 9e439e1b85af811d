import hashlib

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from faie.db.models import Feedback
from faie.models.schemas import FeedbackItem, Source
from faie.services import dedup
from faie.services.dedup import content_key, fingerprint, store_feedback

from conftest import load


def test_fingerprint_is_truncated_sha256_of_source_and_content():
    expected = hashlib.sha256("support:hello".encode("utf-8")).hexdigest()[:16]
    assert fingerprint("hello", "support") == expected
    assert fingerprint("hello", "support") == fingerprint("hello", "support")
    assert fingerprint("hello", "slack") != fingerprint("hello", "support")
    assert len(fingerprint("ünïcode ✓", "github")) == 16


def test_content_key_ignores_source():
    assert content_key("same text") == content_key("same text")
    assert content_key("same text") != content_key("other text")


def test_store_twice_returns_duplicate_with_original_id(engine):
    item = FeedbackItem(source=Source.SUPPORT, content="Checkout is down", external_id="ticket-1")
    with Session(engine) as session:
        first = store_feedback(session, item, '{"ticket_id": "1"}')
        second = store_feedback(session, item, '{"ticket_id": "1"}')

    assert first.status == "accepted"
    assert second.status == "duplicate"
    assert second.id == first.id

    with Session(engine) as session:
        assert session.scalar(select(func.count(Feedback.id))) == 1


def test_accepted_record_is_unprocessed(engine):
    item = FeedbackItem(source=Source.SLACK, content="Love the new dashboard", timestamp=1000)
    with Session(engine) as session:
        outcome = store_feedback(session, item, '{"raw": true}')

    row = load(engine, outcome.id)
    assert row.processed_at is None
    assert row.processing_error is None
    assert row.retry_count == 0
    assert row.sentiment is None and row.urgency is None and row.tags is None
    assert row.raw_json == '{"raw": true}'
    assert row.content_hash == fingerprint("Love the new dashboard", "slack")
    assert row.timestamp == 1000


def test_lost_insert_race_resolves_to_duplicate(engine, monkeypatch):
    item = FeedbackItem(source=Source.SUPPORT, content="Race me")
    with Session(engine) as session:
        winner = store_feedback(session, item, "{}")

    # the pre-insert lookup misses, the unique constraint catches it
    calls = {"n": 0}
    real = dedup.find_by_hash

    def flaky_lookup(session, h):
        calls["n"] += 1
        return None if calls["n"] == 1 else real(session, h)

    monkeypatch.setattr("faie.services.dedup.find_by_hash", flaky_lookup)
    with Session(engine) as session:
        outcome = store_feedback(session, item, "{}")

    assert outcome.status == "duplicate"
    assert outcome.id == winner.id
