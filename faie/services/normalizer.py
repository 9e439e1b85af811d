from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Any, Callable

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from faie.errors import ValidationError
from faie.models.schemas import FeedbackItem, Ignored, Source
from faie.tools.utils import now_ms

logger = logging.getLogger(__name__)


# ---------------------------
# Source payload shapes
# ---------------------------

class _Payload(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)


class SupportTicket(_Payload):
    ticket_id: str | int = Field(validation_alias=AliasChoices("ticket_id", "ticketId"))
    description: str = Field(min_length=1)
    subject: str | None = None
    customer_email: str | None = Field(
        default=None, validation_alias=AliasChoices("customer_email", "customerEmail")
    )
    created_at: str | int | float | None = Field(
        default=None, validation_alias=AliasChoices("created_at", "createdAt")
    )
    priority: str | None = None
    customer_tier: str | None = Field(
        default=None, validation_alias=AliasChoices("customer_tier", "customerTier")
    )
    tags: list[str] | None = None


class GitHubUser(_Payload):
    login: str | None = None


class GitHubIssue(_Payload):
    number: int
    title: str = ""
    body: str | None = None
    html_url: str | None = None
    user: GitHubUser | None = None
    created_at: str | None = None
    state: str | None = None


class GitHubComment(_Payload):
    id: int
    body: str = Field(min_length=1)
    html_url: str | None = None
    user: GitHubUser | None = None
    created_at: str | None = None


class GitHubRepository(_Payload):
    full_name: str | None = None


class GitHubIssueEvent(_Payload):
    action: str | None = None
    issue: GitHubIssue
    repository: GitHubRepository | None = None


class GitHubCommentEvent(_Payload):
    action: str | None = None
    issue: GitHubIssue | None = None
    comment: GitHubComment
    repository: GitHubRepository | None = None


class SlackMessageEvent(_Payload):
    type: str
    subtype: str | None = None
    bot_id: str | None = None
    text: str | None = None
    user: str | None = None
    ts: str | None = None
    channel: str | None = None


class SlackEnvelope(_Payload):
    type: str
    challenge: str | None = None
    team_id: str | None = None
    event_id: str | None = None
    event: SlackMessageEvent | None = None


# ---------------------------
# Helpers
# ---------------------------

def _parse(model: type[BaseModel], raw: dict, source: str) -> Any:
    try:
        return model.model_validate(raw)
    except PydanticValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise ValidationError(f"{source} payload missing or invalid fields: {fields}") from e


def _parse_timestamp(value: str | int | float | None) -> int:
    """ISO-8601 string or epoch millis -> epoch millis; receipt time when absent or unreadable."""
    if value is None or value == "":
        return now_ms()
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            logger.warning("Non-finite timestamp %r, using receipt time", value)
            return now_ms()
        return int(value)
    try:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Unreadable timestamp %r, using receipt time", value)
        return now_ms()
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def _login(user: GitHubUser | None) -> str | None:
    return user.login if user else None


# ---------------------------
# Per-source parsers
# ---------------------------

def normalize_support(raw: dict, event: str | None = None) -> FeedbackItem:
    t: SupportTicket = _parse(SupportTicket, raw, "support")
    return FeedbackItem(
        source=Source.SUPPORT,
        external_id=f"ticket-{t.ticket_id}",
        title=t.subject,
        content=t.description,
        author=t.customer_email,
        timestamp=_parse_timestamp(t.created_at),
        metadata={
            "priority": t.priority,
            "customer_tier": t.customer_tier,
            "tags": t.tags,
        },
    )


def _github_issue(raw: dict) -> FeedbackItem:
    ev: GitHubIssueEvent = _parse(GitHubIssueEvent, raw, "github")
    issue = ev.issue
    content = issue.body or issue.title
    if not content.strip():
        raise ValidationError("github issue has neither body nor title")
    return FeedbackItem(
        source=Source.GITHUB,
        external_id=f"issue-{issue.number}",
        title=issue.title or None,
        content=content,
        author=_login(issue.user),
        url=issue.html_url,
        timestamp=_parse_timestamp(issue.created_at),
        metadata={
            "event": "issues",
            "action": ev.action,
            "state": issue.state,
            "repository": ev.repository.full_name if ev.repository else None,
        },
    )


def _github_comment(raw: dict) -> FeedbackItem:
    ev: GitHubCommentEvent = _parse(GitHubCommentEvent, raw, "github")
    c = ev.comment
    return FeedbackItem(
        source=Source.GITHUB,
        external_id=f"comment-{c.id}",
        title=ev.issue.title if ev.issue else None,
        content=c.body,
        author=_login(c.user),
        url=c.html_url,
        timestamp=_parse_timestamp(c.created_at),
        metadata={
            "event": "issue_comment",
            "action": ev.action,
            "issue_number": ev.issue.number if ev.issue else None,
            "repository": ev.repository.full_name if ev.repository else None,
        },
    )


_GITHUB_EVENTS: dict[str, Callable[[dict], FeedbackItem]] = {
    "issues": _github_issue,
    "issue_comment": _github_comment,
}


def normalize_github(raw: dict, event: str | None = None) -> FeedbackItem | Ignored:
    if not event:
        raise ValidationError("github delivery without an event type")
    parser = _GITHUB_EVENTS.get(event)
    if parser is None:
        return Ignored(reason=f"github event '{event}' not supported")
    return parser(raw)


def normalize_slack(raw: dict, event: str | None = None) -> FeedbackItem | Ignored:
    env: SlackEnvelope = _parse(SlackEnvelope, raw, "slack")

    if env.type == "url_verification":
        return Ignored(reason="url_verification", challenge=env.challenge)
    if env.type != "event_callback" or env.event is None:
        return Ignored(reason=f"slack envelope '{env.type}' not supported")

    msg = env.event
    if msg.type != "message":
        return Ignored(reason=f"slack event '{msg.type}' not supported")
    if msg.subtype or msg.bot_id:
        return Ignored(reason=f"slack message subtype '{msg.subtype or 'bot_message'}' dropped")

    if not msg.text or not msg.text.strip():
        raise ValidationError("slack message has no text")
    if not msg.ts:
        raise ValidationError("slack message has no ts")
    try:
        ts_value = float(msg.ts)
    except ValueError as e:
        raise ValidationError(f"slack ts {msg.ts!r} is not numeric") from e
    if not math.isfinite(ts_value):
        raise ValidationError(f"slack ts {msg.ts!r} is out of range")
    try:
        ts_ms = int(ts_value * 1000)
    except OverflowError as e:
        raise ValidationError(f"slack ts {msg.ts!r} is out of range") from e

    return FeedbackItem(
        source=Source.SLACK,
        external_id=msg.ts,
        content=msg.text,
        author=msg.user,
        timestamp=ts_ms,
        metadata={
            "channel": msg.channel,
            "team_id": env.team_id,
            "event_id": env.event_id,
        },
    )


_PARSERS: dict[Source, Callable[[dict, str | None], FeedbackItem | Ignored]] = {
    Source.SUPPORT: normalize_support,
    Source.GITHUB: normalize_github,
    Source.SLACK: normalize_slack,
}


def normalize(source_kind: str, raw_payload: Any, event: str | None = None) -> FeedbackItem | Ignored:
    """
    Map a source-specific webhook payload onto a FeedbackItem.

    Returns Ignored for well-formed events that are accepted but not stored.
    Raises ValidationError when required fields are missing.
    """
    try:
        source = Source(source_kind)
    except ValueError as e:
        raise ValidationError(f"unknown source '{source_kind}'") from e

    if not isinstance(raw_payload, dict):
        raise ValidationError(f"{source.value} payload must be a JSON object")

    try:
        return _PARSERS[source](raw_payload, event)
    except PydanticValidationError as e:
        # FeedbackItem rejected the mapped fields (blank content)
        raise ValidationError(f"{source.value} payload has no usable content") from e
