from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any

import requests
from sqlalchemy import update
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from faie.config.settings import Settings, get_settings
from faie.db.models import Feedback
from faie.errors import EnrichmentFailure
from faie.services import ledger
from faie.services.alerts import AlertDispatcher
from faie.services.classifiers import (
    DEFAULT_SENTIMENT,
    DEFAULT_SENTIMENT_SCORE,
    DEFAULT_TAGS,
    DEFAULT_URGENCY,
    Classifier,
)
from faie.services.vector_index import VectorIndex
from faie.tools.utils import now_ms

logger = logging.getLogger(__name__)

# transport errors that mean the inference backend itself is down
_UNREACHABLE = (requests.ConnectionError, requests.Timeout)


@dataclass
class EnrichmentResult:
    sentiment: str
    sentiment_score: float
    urgency: int
    tags: list[str]
    embedding: list[float] | None = None
    failures: dict[str, BaseException] = field(default_factory=dict)


def _settle(name: str, fut: Future, default: Any, failures: dict[str, BaseException]) -> Any:
    exc = fut.exception()
    if exc is not None:
        logger.warning("%s analysis failed, using default: %s", name, exc)
        failures[name] = exc
        return default
    return fut.result()


class EnrichmentEngine:
    def __init__(
        self,
        engine: Engine,
        classifier: Classifier | None = None,
        vector_index: VectorIndex | None = None,
        alerts: AlertDispatcher | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.engine = engine
        self.settings = settings or get_settings()
        self.classifier = classifier or Classifier()
        self.vector_index = vector_index or VectorIndex(engine, self.settings.data_dir)
        self.alerts = alerts or AlertDispatcher(engine, settings=self.settings)

    def analyze(self, content: str) -> EnrichmentResult:
        """
        Run the four analyses concurrently and wait for all of them.
        A failed analysis degrades to its default. Raises EnrichmentFailure
        only when every text classifier found the backend unreachable.
        """
        c = self.classifier
        with ThreadPoolExecutor(max_workers=4, thread_name_prefix="classify") as pool:
            f_sent = pool.submit(c.classify_sentiment, content)
            f_urg = pool.submit(c.score_urgency, content)
            f_tags = pool.submit(c.extract_tags, content)
            f_emb = pool.submit(c.embed, content)
            wait([f_sent, f_urg, f_tags, f_emb])

        failures: dict[str, BaseException] = {}
        sentiment, score = _settle(
            "sentiment", f_sent, (DEFAULT_SENTIMENT, DEFAULT_SENTIMENT_SCORE), failures
        )
        urgency = _settle("urgency", f_urg, DEFAULT_URGENCY, failures)
        tags = _settle("tags", f_tags, list(DEFAULT_TAGS), failures)
        embedding = _settle("embedding", f_emb, None, failures)

        text_failures = [failures.get(n) for n in ("sentiment", "urgency", "tags")]
        if all(isinstance(e, _UNREACHABLE) for e in text_failures):
            raise EnrichmentFailure(0, f"inference backend unreachable: {text_failures[0]}")

        return EnrichmentResult(
            sentiment=sentiment,
            sentiment_score=score,
            urgency=urgency,
            tags=tags,
            embedding=embedding,
            failures=failures,
        )

    def enrich(self, feedback_id: int, content: str) -> EnrichmentResult | None:
        """
        Enrich one stored record. Returns None when the record was already
        processed (by an earlier run or a concurrent worker).
        """
        with Session(self.engine) as session:
            row = session.get(Feedback, feedback_id)
            if row is None:
                raise EnrichmentFailure(feedback_id, "record not found")
            if row.processed_at is not None:
                logger.info("Feedback %s already processed, skipping", feedback_id)
                return None

        logger.info("Processing feedback %s...", feedback_id)
        try:
            result = self.analyze(content)
        except EnrichmentFailure as e:
            raise EnrichmentFailure(feedback_id, e.message) from e

        logger.info(
            "AI analysis complete for %s: sentiment=%s urgency=%s tags=%s has_embedding=%s",
            feedback_id, result.sentiment, result.urgency, result.tags, result.embedding is not None,
        )

        # enrichment fields and theme means commit together, once per record
        with Session(self.engine) as session:
            res = session.execute(
                update(Feedback)
                .where(Feedback.id == feedback_id)
                .where(Feedback.processed_at.is_(None))
                .values(
                    sentiment=result.sentiment,
                    sentiment_score=result.sentiment_score,
                    urgency=result.urgency,
                    tags=result.tags,
                    processed_at=now_ms(),
                    processing_error=None,
                )
            )
            if res.rowcount == 0:
                session.rollback()
                logger.info("Feedback %s was processed concurrently, discarding result", feedback_id)
                return None
            ledger.merge_all(session, result.tags, result.sentiment_score, result.urgency)
            session.commit()

        self._index_embedding(feedback_id, result)

        if result.urgency >= self.settings.alert_urgency_threshold:
            try:
                self.alerts.maybe_alert(feedback_id, content, result.urgency)
            except Exception:
                logger.exception("Alert check failed for %s", feedback_id)

        logger.info("Processing complete for %s", feedback_id)
        return result

    def _index_embedding(self, feedback_id: int, result: EnrichmentResult) -> None:
        if result.embedding is None:
            logger.info("No embedding for %s", feedback_id)
            return
        try:
            self.vector_index.upsert(
                feedback_id,
                result.embedding,
                {
                    "urgency": result.urgency,
                    "sentiment": result.sentiment,
                    "tags": ",".join(result.tags),
                },
            )
            logger.info("Embedding stored for %s", feedback_id)
        except Exception:
            # vector index is a side channel; the record write stands
            logger.exception("Vector upsert failed for %s", feedback_id)


def record_failure(engine: Engine, feedback_id: int, message: str) -> None:
    with Session(engine) as session:
        session.execute(
            update(Feedback)
            .where(Feedback.id == feedback_id)
            .where(Feedback.processed_at.is_(None))
            .values(
                processing_error=message[:2000],
                retry_count=Feedback.retry_count + 1,
            )
        )
        session.commit()


def run_supervised(enricher: EnrichmentEngine, feedback_id: int, content: str) -> bool:
    """Enrich and, on any failure, write the error back to the record. True on success."""
    try:
        enricher.enrich(feedback_id, content)
        return True
    except Exception as e:
        logger.exception("Processing failed for feedback %s", feedback_id)
        try:
            record_failure(enricher.engine, feedback_id, str(e) or e.__class__.__name__)
        except Exception:
            logger.exception("Could not record failure for feedback %s", feedback_id)
        return False


class BackgroundEnricher:
    """
    Detached enrichment on a worker pool. Submitting never blocks on
    inference; shutdown(wait=True) drains queued work before exit.
    """

    def __init__(self, enricher: EnrichmentEngine, max_workers: int = 4) -> None:
        self.enricher = enricher
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="enrich")

    def submit(self, feedback_id: int, content: str) -> Future:
        return self._pool.submit(run_supervised, self.enricher, feedback_id, content)

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)
