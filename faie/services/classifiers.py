from __future__ import annotations

import re
from typing import Any, Literal

from pydantic import BaseModel, Field
from faie.services.ollama_client import OllamaClient
from faie.tools.utils import truncate_to_tokens


# Values used whenever a classifier fails or returns garbage.
DEFAULT_SENTIMENT = "neutral"
DEFAULT_SENTIMENT_SCORE = 0.5
DEFAULT_URGENCY = 5
DEFAULT_TAGS = ["general"]

MAX_TAGS = 5
MAX_TAG_LENGTH = 50


class SentimentEval(BaseModel):
    sentiment: Literal["positive", "negative", "neutral"]
    score: float = Field(ge=0.0, le=1.0)


SENTIMENT_SYSTEM = """You are a sentiment classifier for product feedback.
Return ONLY valid JSON matching this schema:
{
  "sentiment": "positive" | "negative" | "neutral",
  "score": 0.0-1.0 confidence
}
"""

URGENCY_SYSTEM = """You are a product feedback classifier. Rate urgency from 1-10:
- 9-10: Critical bugs, production outages, data loss, security issues
- 7-8: Major bugs, significant performance issues, broken features
- 5-6: Minor bugs, feature requests from customers, usability issues
- 3-4: Enhancement requests, nice-to-haves, documentation
- 1-2: Questions, praise, general feedback

Respond with ONLY a single integer from 1-10.
"""

TAGS_SYSTEM = """Extract 2-4 product themes/tags from the feedback.
Return ONLY a JSON array of lowercase strings.
Example: ["authentication", "performance", "ui-ux"]

Common themes: authentication, performance, ui-ux, billing,
api, documentation, mobile, deployment, security, integration,
database, search, notifications, analytics, export
"""

_INT_RE = re.compile(r"^\s*(-?\d+)")


def coerce_sentiment(raw: Any) -> tuple[str, float]:
    """Lower-case the label and validate; raises pydantic.ValidationError on bad output."""
    if isinstance(raw, dict) and isinstance(raw.get("sentiment"), str):
        raw = {**raw, "sentiment": raw["sentiment"].strip().lower()}
    ev = SentimentEval.model_validate(raw)
    return ev.sentiment, ev.score


def coerce_urgency(raw: Any) -> int:
    """Anything that is not an integer in [1, 10] becomes DEFAULT_URGENCY."""
    if isinstance(raw, bool):
        return DEFAULT_URGENCY
    if isinstance(raw, int):
        value = raw
    else:
        m = _INT_RE.match(str(raw or ""))
        if not m:
            return DEFAULT_URGENCY
        value = int(m.group(1))
    if value < 1 or value > 10:
        return DEFAULT_URGENCY
    return value


def coerce_tags(raw: Any) -> list[str]:
    """1-5 unique lowercase tags in first-seen order, else DEFAULT_TAGS."""
    if not isinstance(raw, list):
        return list(DEFAULT_TAGS)

    tags: list[str] = []
    for t in raw:
        if not isinstance(t, str):
            continue
        t = t.strip().lower()
        if not t or len(t) > MAX_TAG_LENGTH or t in tags:
            continue
        tags.append(t)

    return tags[:MAX_TAGS] or list(DEFAULT_TAGS)


class Classifier:
    """The four analyses run over one feedback text. Each method may raise."""

    def __init__(self, ollama: OllamaClient | None = None) -> None:
        self.ollama = ollama or OllamaClient()

    def classify_sentiment(self, text: str) -> tuple[str, float]:
        raw = self.ollama.chat_json(SENTIMENT_SYSTEM, truncate_to_tokens(text, 512))
        return coerce_sentiment(raw)

    def score_urgency(self, text: str) -> int:
        raw = self.ollama.chat(URGENCY_SYSTEM, truncate_to_tokens(text, 1000))
        return coerce_urgency(raw)

    def extract_tags(self, text: str) -> list[str]:
        try:
            raw = self.ollama.chat_json(TAGS_SYSTEM, truncate_to_tokens(text, 1000))
        except ValueError:
            # model answered, just not with JSON
            return list(DEFAULT_TAGS)
        return coerce_tags(raw)

    def embed(self, text: str) -> list[float] | None:
        vec = self.ollama.embed(truncate_to_tokens(text, 512))
        return vec or None
