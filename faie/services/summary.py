from __future__ import annotations

import logging
from collections import Counter

from sqlalchemy import case, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from faie.config.settings import Settings, get_settings
from faie.db.models import Feedback
from faie.errors import SinkFailure
from faie.services.telegram_delivery import TelegramNotifier, render_daily_summary
from faie.tools.utils import now_ms

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000
URGENT_SUMMARY_THRESHOLD = 8


def build_daily_summary(session: Session, since: int | None = None) -> dict:
    since = since if since is not None else now_ms() - DAY_MS

    total, avg_sentiment, urgent_count = session.execute(
        select(
            func.count(Feedback.id),
            func.avg(Feedback.sentiment_score),
            func.sum(case((Feedback.urgency >= URGENT_SUMMARY_THRESHOLD, 1), else_=0)),
        ).where(Feedback.timestamp > since)
    ).one()

    # tags are a JSON column; count them here rather than with a dialect-specific json function
    counter: Counter[str] = Counter()
    for tags in session.scalars(
        select(Feedback.tags).where(Feedback.timestamp > since).where(Feedback.tags.is_not(None))
    ):
        counter.update(tags or [])

    urgent = session.execute(
        select(Feedback.id, Feedback.title, Feedback.content, Feedback.urgency)
        .where(Feedback.urgency >= URGENT_SUMMARY_THRESHOLD)
        .where(Feedback.timestamp > since)
        .order_by(Feedback.urgency.desc(), Feedback.timestamp.desc())
        .limit(3)
    ).all()

    return {
        "since": since,
        "total": int(total or 0),
        "avg_sentiment": float(avg_sentiment) if avg_sentiment is not None else None,
        "urgent_count": int(urgent_count or 0),
        "themes": [{"theme": t, "count": n} for t, n in counter.most_common(5)],
        "urgent_items": [
            {"id": r.id, "title": r.title, "content": r.content, "urgency": r.urgency}
            for r in urgent
        ],
    }


def send_daily_summary(engine: Engine, notifier: TelegramNotifier | None = None, settings: Settings | None = None) -> dict:
    s = settings or get_settings()
    notifier = notifier or TelegramNotifier(s)

    with Session(engine) as session:
        summary = build_daily_summary(session)

    try:
        notifier.send(render_daily_summary(summary, s.dashboard_url))
        logger.info("Daily summary sent")
    except SinkFailure as e:
        logger.error("Failed to send daily summary: %s", e)

    return summary
