from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Mapping

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from faie.config.settings import Settings, get_settings
from faie.errors import AuthError, ValidationError
from faie.models.schemas import FeedbackItem, Ignored, IngestOutcome, Source
from faie.services.auth import authenticate
from faie.services.dedup import store_feedback
from faie.services.enrichment import BackgroundEnricher
from faie.services.normalizer import normalize

logger = logging.getLogger(__name__)


@dataclass
class WebhookResponse:
    status_code: int
    body: dict = field(default_factory=dict)


def ingest_item(engine: Engine, item: FeedbackItem, raw_json: str, background: BackgroundEnricher) -> IngestOutcome:
    """Store, schedule enrichment, return. Never waits for inference."""
    with Session(engine) as session:
        outcome = store_feedback(session, item, raw_json)

    if outcome.status == "accepted":
        background.submit(outcome.id, item.content)
        logger.info("Accepted %s feedback %s", item.source.value, outcome.id)
    else:
        logger.info("Duplicate %s feedback, existing id %s", item.source.value, outcome.id)
    return outcome


def _github_event(headers: Mapping[str, str]) -> str | None:
    for k, v in headers.items():
        if k.lower() == "x-github-event":
            return v
    return None


def handle_webhook(
    source: str,
    body: bytes,
    headers: Mapping[str, str],
    background: BackgroundEnricher,
    event: str | None = None,
    settings: Settings | None = None,
) -> WebhookResponse:
    """
    Ingestion entry point for one webhook delivery.

    202 accepted, 200 duplicate/ignored, 400 validation, 401 auth, 500 storage failure.
    """
    s = settings or get_settings()
    try:
        try:
            Source(source)
        except ValueError as e:
            raise ValidationError(f"unknown source '{source}'") from e

        authenticate(source, body, headers, s)

        try:
            payload = json.loads(body)
        except ValueError as e:
            raise ValidationError("body is not valid JSON") from e

        if source == Source.GITHUB.value and event is None:
            event = _github_event(headers)

        parsed = normalize(source, payload, event)
        if isinstance(parsed, Ignored):
            if parsed.challenge is not None:
                return WebhookResponse(200, {"challenge": parsed.challenge})
            logger.info("Ignored %s event: %s", source, parsed.reason)
            return WebhookResponse(200, {"status": "ignored", "reason": parsed.reason})

        outcome = ingest_item(background.enricher.engine, parsed, body.decode("utf-8", errors="replace"), background)
        return WebhookResponse(202 if outcome.status == "accepted" else 200, outcome.model_dump())

    except AuthError as e:
        logger.warning("Rejected %s webhook: %s", source, e)
        return WebhookResponse(401, {"error": "unauthorized"})
    except ValidationError as e:
        logger.warning("Invalid %s webhook: %s", source, e)
        return WebhookResponse(400, {"error": str(e)})
    except Exception:
        logger.exception("Error storing %s feedback", source)
        return WebhookResponse(500, {"error": "internal server error"})
