from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from faie.tools.utils import now_ms


class Source(str, Enum):
    GITHUB = "github"
    SLACK = "slack"
    SUPPORT = "support"


class FeedbackItem(BaseModel):
    source: Source
    external_id: str | None = None
    title: str | None = None
    content: str
    author: str | None = None
    url: str | None = None
    timestamp: int = Field(default_factory=now_ms)  # epoch millis
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("content")
    @classmethod
    def _content_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("content must not be empty")
        return v


class Ignored(BaseModel):
    """A well-formed event the pipeline does not store (bot messages, unsupported GitHub events)."""
    reason: str
    challenge: str | None = None


class IngestOutcome(BaseModel):
    id: int
    status: str  # "accepted" or "duplicate"
