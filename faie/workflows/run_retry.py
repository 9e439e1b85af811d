from __future__ import annotations

import logging
from pathlib import Path

from sqlalchemy import select
from sqlalchemy.orm import Session

from faie.config.settings import Settings, get_settings
from faie.db.models import Feedback
from faie.services.enrichment import EnrichmentEngine, run_supervised
from faie.tools.lock import RunLock
from faie.tools.utils import now_ms

logger = logging.getLogger(__name__)


def select_stranded(session: Session, s: Settings, now: int | None = None) -> list[tuple[int, str]]:
    """Never processed and never failed, older than the grace period (e.g. lost on a crash)."""
    now = now if now is not None else now_ms()
    cutoff = now - s.retry_grace_minutes * 60 * 1000
    rows = session.execute(
        select(Feedback.id, Feedback.content)
        .where(Feedback.processed_at.is_(None))
        .where(Feedback.processing_error.is_(None))
        .where(Feedback.received_at <= cutoff)
        .order_by(Feedback.id)
        .limit(s.retry_batch_size)
    ).all()
    return [(r.id, r.content) for r in rows]


def select_failed(session: Session, s: Settings) -> list[tuple[int, str]]:
    rows = session.execute(
        select(Feedback.id, Feedback.content)
        .where(Feedback.processing_error.is_not(None))
        .where(Feedback.retry_count < s.max_retries)
        .where(Feedback.processed_at.is_(None))
        .order_by(Feedback.id)
        .limit(s.retry_batch_size)
    ).all()
    return [(r.id, r.content) for r in rows]


def list_dead_letters(session: Session, s: Settings) -> list[Feedback]:
    """Records that used up their retry budget and need a human."""
    return list(
        session.scalars(
            select(Feedback)
            .where(Feedback.processed_at.is_(None))
            .where(Feedback.processing_error.is_not(None))
            .where(Feedback.retry_count >= s.max_retries)
            .order_by(Feedback.id)
        )
    )


def retry_pending(enricher: EnrichmentEngine, settings: Settings | None = None) -> dict:
    """
    Re-run enrichment for stranded and failed records, one at a time.
    A failing item bumps its own retry_count and the batch moves on.
    """
    s = settings or get_settings()

    with Session(enricher.engine) as session:
        stranded = select_stranded(session, s)
        failed = select_failed(session, s)

    seen = {fid for fid, _ in stranded}
    batch = stranded + [(fid, content) for fid, content in failed if fid not in seen]
    batch = batch[: s.retry_batch_size]
    logger.info("Retrying %d items (%d stranded, %d failed)", len(batch), len(stranded), len(failed))

    succeeded = 0
    for feedback_id, content in batch:
        if run_supervised(enricher, feedback_id, content):
            succeeded += 1
            logger.info("Retry succeeded for feedback %s", feedback_id)
        else:
            logger.warning("Retry failed for feedback %s", feedback_id)

    return {
        "stranded": len(stranded),
        "failed": len(failed),
        "attempted": len(batch),
        "succeeded": succeeded,
    }


def run_retry(enricher: EnrichmentEngine, settings: Settings | None = None) -> dict:
    """Scheduled entry point: one locked retry pass."""
    s = settings or get_settings()
    with RunLock(Path(s.data_dir) / "retry.lock"):
        return retry_pending(enricher, s)
