from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from faie.db.database import dialect_insert
from faie.db.models import Theme
from faie.tools.utils import now_ms


def merge(session: Session, tag: str, sentiment_score: float, urgency: float, now: int | None = None) -> None:
    """
    Fold one item's scores into the running means for tag.

    One INSERT ... ON CONFLICT DO UPDATE statement: the SET expressions read
    the pre-update row, so the mean uses the old count n:
        avg' = (avg * n + x) / (n + 1)
    Concurrent merges on the same tag serialize in the database.
    Does not commit.
    """
    now = now if now is not None else now_ms()
    x_s = float(sentiment_score)
    x_u = float(urgency)

    t = Theme.__table__
    insert = dialect_insert(session)
    stmt = insert(t).values(
        theme_name=tag,
        count=1,
        avg_sentiment=x_s,
        avg_urgency=x_u,
        first_seen=now,
        last_seen=now,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[t.c.theme_name],
        set_={
            "count": t.c["count"] + 1,
            "avg_sentiment": (t.c.avg_sentiment * t.c["count"] + x_s) / (t.c["count"] + 1),
            "avg_urgency": (t.c.avg_urgency * t.c["count"] + x_u) / (t.c["count"] + 1),
            "last_seen": now,
        },
    )
    session.execute(stmt)


def merge_all(session: Session, tags: list[str], sentiment_score: float, urgency: float) -> None:
    now = now_ms()
    for tag in tags:
        merge(session, tag, sentiment_score, urgency, now=now)


def get_theme(session: Session, tag: str) -> Theme | None:
    return session.get(Theme, tag)


def list_themes(session: Session, limit: int = 20) -> list[Theme]:
    return list(
        session.scalars(
            select(Theme).order_by(Theme.count.desc(), Theme.last_seen.desc()).limit(limit)
        )
    )
