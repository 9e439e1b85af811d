from __future__ import annotations

import hashlib
import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from faie.db.models import Feedback
from faie.models.schemas import FeedbackItem, IngestOutcome
from faie.tools.utils import now_ms

logger = logging.getLogger(__name__)

# 64 bits of SHA-256. Collisions are negligible at feedback volumes; this is
# an idempotency key, not a security boundary.
FINGERPRINT_LENGTH = 16


def _digest(data: str) -> str:
    return hashlib.sha256(data.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]


def fingerprint(content: str, source: str) -> str:
    return _digest(f"{source}:{content}")


def content_key(content: str) -> str:
    """Source-independent digest: the same text from two channels shares a key."""
    return _digest(content)


def find_by_hash(session: Session, content_hash: str) -> int | None:
    return session.scalar(select(Feedback.id).where(Feedback.content_hash == content_hash))


def store_feedback(session: Session, item: FeedbackItem, raw_json: str) -> IngestOutcome:
    """
    Insert an unprocessed record unless its fingerprint is already stored.
    Commits on accept. A concurrent insert of the same content loses on the
    unique constraint and resolves to the winner's id.
    """
    source = item.source.value
    h = fingerprint(item.content, source)

    existing = find_by_hash(session, h)
    if existing is not None:
        return IngestOutcome(id=existing, status="duplicate")

    row = Feedback(
        source=source,
        external_id=item.external_id,
        title=item.title,
        content=item.content,
        author=item.author,
        url=item.url,
        timestamp=item.timestamp,
        received_at=now_ms(),
        metadata_json=item.metadata,
        raw_json=raw_json,
        content_hash=h,
        content_key=content_key(item.content),
        retry_count=0,
    )
    session.add(row)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        existing = find_by_hash(session, h)
        if existing is None:
            raise
        logger.info("Concurrent duplicate for hash %s resolved to %s", h, existing)
        return IngestOutcome(id=existing, status="duplicate")

    return IngestOutcome(id=row.id, status="accepted")
