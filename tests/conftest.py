from __future__ import annotations

import pytest
from sqlalchemy.orm import Session

from faie.config.settings import Settings
from faie.db.database import build_engine, init_db
from faie.db.models import Feedback
from faie.models.schemas import FeedbackItem, Source
from faie.services.alerts import AlertDispatcher
from faie.services.dedup import store_feedback
from faie.services.enrichment import EnrichmentEngine


class FakeClassifier:
    """Canned classifier results; `fail` maps method name -> exception, `fail_on` fails every call for given contents."""

    def __init__(
        self,
        sentiment=("negative", 0.9),
        urgency=10,
        tags=("billing", "payments"),
        embedding=(0.1, 0.2, 0.3, 0.4),
        fail=None,
        fail_on=None,
    ):
        self.sentiment = sentiment
        self.urgency = urgency
        self.tags = list(tags)
        self.embedding = list(embedding) if embedding is not None else None
        self.fail = dict(fail or {})
        self.fail_on = dict(fail_on or {})
        self.calls: list[str] = []

    def _maybe_fail(self, name, text):
        self.calls.append(name)
        if text in self.fail_on:
            raise self.fail_on[text]
        if name in self.fail:
            raise self.fail[name]

    def classify_sentiment(self, text):
        self._maybe_fail("sentiment", text)
        return self.sentiment

    def score_urgency(self, text):
        self._maybe_fail("urgency", text)
        return self.urgency

    def extract_tags(self, text):
        self._maybe_fail("tags", text)
        return list(self.tags)

    def embed(self, text):
        self._maybe_fail("embedding", text)
        return self.embedding


class FakeNotifier:
    def __init__(self, error: Exception | None = None):
        self.sent: list[str] = []
        self.error = error

    def send(self, text: str) -> None:
        if self.error is not None:
            raise self.error
        self.sent.append(text)


class FakeVectorIndex:
    def __init__(self, error: Exception | None = None):
        self.upserts: list[tuple[int, list[float], dict]] = []
        self.error = error

    def upsert(self, feedback_id, vector, metadata):
        if self.error is not None:
            raise self.error
        self.upserts.append((feedback_id, vector, metadata))


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite:///{tmp_path}/faie.db",
        log_file=str(tmp_path / "faie.log"),
        data_dir=str(tmp_path / "data"),
        dashboard_url="https://dash.example.com",
        support_api_key="support-key",
        github_webhook_secret="gh-secret",
        slack_signing_secret="slack-secret",
        retry_grace_minutes=0,
    )


@pytest.fixture
def engine(settings):
    eng = build_engine(settings.database_url)
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def classifier() -> FakeClassifier:
    return FakeClassifier()


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def vector_index() -> FakeVectorIndex:
    return FakeVectorIndex()


@pytest.fixture
def enricher(engine, settings, classifier, notifier, vector_index) -> EnrichmentEngine:
    return EnrichmentEngine(
        engine,
        classifier=classifier,
        vector_index=vector_index,
        alerts=AlertDispatcher(engine, notifier=notifier, settings=settings),
        settings=settings,
    )


@pytest.fixture
def store(engine):
    """Insert a feedback row and return its id."""

    def _store(content: str, source: Source = Source.SUPPORT, **kw) -> int:
        item = FeedbackItem(source=source, content=content, **kw)
        with Session(engine) as session:
            return store_feedback(session, item, "{}").id

    return _store


def load(engine, feedback_id: int) -> Feedback:
    with Session(engine) as session:
        row = session.get(Feedback, feedback_id)
        session.expunge(row)
        return row


