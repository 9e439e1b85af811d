from __future__ import annotations

import logging

from sqlalchemy import and_, or_, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from faie.config.settings import Settings, get_settings
from faie.db.database import dialect_insert
from faie.db.models import AlertClaim, Feedback
from faie.errors import SinkFailure
from faie.services.telegram_delivery import TelegramNotifier, render_alert
from faie.tools.utils import now_ms

logger = logging.getLogger(__name__)


class AlertDispatcher:
    """
    Push notification for critical feedback, at most one per content within
    the alert window. Among processed records sharing a content key the
    earliest processed one (ties broken by id) alerts; the alert_claims row
    for the content key decides races between workers.
    """

    def __init__(self, engine: Engine, notifier: TelegramNotifier | None = None, settings: Settings | None = None) -> None:
        self.engine = engine
        self.settings = settings or get_settings()
        self.notifier = notifier or TelegramNotifier(self.settings)

    @property
    def window_ms(self) -> int:
        return self.settings.alert_window_hours * 60 * 60 * 1000

    def _earlier_alert(self, session: Session, me: Feedback, processed_at: int) -> int | None:
        s = self.settings
        window_start = processed_at - self.window_ms
        stmt = (
            select(Feedback.id)
            .where(Feedback.content_key == me.content_key)
            .where(Feedback.id != me.id)
            .where(Feedback.processed_at.is_not(None))
            .where(Feedback.urgency >= s.alert_urgency_threshold)
            .where(Feedback.processed_at > window_start)
            .where(
                or_(
                    Feedback.processed_at < processed_at,
                    and_(Feedback.processed_at == processed_at, Feedback.id < me.id),
                )
            )
            .limit(1)
        )
        return session.scalar(stmt)

    def _claim(self, session: Session, me: Feedback, processed_at: int) -> bool:
        """
        Take the alert slot for this content. Succeeds when no claim exists or
        the existing one is older than the window; a claim stamped later than
        processed_at (commit order inverted, clock skew) also blocks.
        """
        t = AlertClaim.__table__
        insert = dialect_insert(session)
        stmt = insert(t).values(content_key=me.content_key, feedback_id=me.id, alerted_at=processed_at)
        stmt = stmt.on_conflict_do_update(
            index_elements=[t.c.content_key],
            set_={"feedback_id": me.id, "alerted_at": processed_at},
            where=t.c.alerted_at <= processed_at - self.window_ms,
        )
        res = session.execute(stmt)
        session.commit()
        return res.rowcount == 1

    def maybe_alert(self, feedback_id: int, content: str, urgency: int) -> bool:
        """Returns True when a notification went out."""
        if urgency < self.settings.alert_urgency_threshold:
            return False

        with Session(self.engine) as session:
            me = session.get(Feedback, feedback_id)
            if me is None:
                logger.warning("Alert check for unknown feedback %s", feedback_id)
                return False
            processed_at = me.processed_at or now_ms()
            earlier = self._earlier_alert(session, me, processed_at)
            if earlier is not None:
                logger.info("Skipping duplicate urgent alert for %s (already raised by %s)", feedback_id, earlier)
                return False
            if not self._claim(session, me, processed_at):
                logger.info("Skipping duplicate urgent alert for %s (content already alerted)", feedback_id)
                return False

        text = render_alert(feedback_id, content, urgency, self.settings.dashboard_url)
        try:
            self.notifier.send(text)
        except SinkFailure as e:
            logger.error("Failed to send urgent alert for %s: %s", feedback_id, e)
            return False

        logger.info("Urgent alert sent for %s (urgency %s)", feedback_id, urgency)
        return True
