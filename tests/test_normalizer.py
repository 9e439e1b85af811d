import pytest

from faie.errors import ValidationError
from faie.models.schemas import FeedbackItem, Ignored, Source
from faie.services.normalizer import normalize


def test_support_ticket_maps_to_feedback_item():
    item = normalize("support", {
        "ticket_id": "T1",
        "description": "Payment processing failing for ALL customers",
        "subject": "Payments down",
        "customer_email": "ops@acme.io",
        "created_at": "2024-05-01T12:00:00Z",
        "priority": "high",
        "customer_tier": "enterprise",
    })
    assert isinstance(item, FeedbackItem)
    assert item.source == Source.SUPPORT
    assert item.external_id == "ticket-T1"
    assert item.content == "Payment processing failing for ALL customers"
    assert item.title == "Payments down"
    assert item.author == "ops@acme.io"
    assert item.timestamp == 1714564800000
    assert item.metadata["priority"] == "high"
    assert item.metadata["customer_tier"] == "enterprise"


def test_support_accepts_camel_case_fields():
    item = normalize("support", {"ticketId": 42, "description": "Export is slow", "createdAt": 1700000000000})
    assert item.external_id == "ticket-42"
    assert item.timestamp == 1700000000000


def test_support_defaults_timestamp_to_receipt_time(monkeypatch):
    monkeypatch.setattr("faie.services.normalizer.now_ms", lambda: 123)
    item = normalize("support", {"ticket_id": "T2", "description": "hi"})
    assert item.timestamp == 123


@pytest.mark.parametrize("payload", [
    {"description": "no ticket id"},
    {"ticket_id": "T3"},
    {"ticket_id": "T3", "description": ""},
    {"ticket_id": "T3", "description": "   "},
])
def test_support_missing_fields_raise_validation_error(payload):
    with pytest.raises(ValidationError):
        normalize("support", payload)


def test_github_issue_uses_body_then_title():
    payload = {
        "action": "opened",
        "issue": {
            "number": 7,
            "title": "Login broken",
            "body": "SSO redirects loop forever",
            "html_url": "https://github.com/acme/app/issues/7",
            "user": {"login": "octocat"},
            "created_at": "2024-05-01T12:00:00Z",
        },
        "repository": {"full_name": "acme/app"},
    }
    item = normalize("github", payload, event="issues")
    assert item.content == "SSO redirects loop forever"
    assert item.external_id == "issue-7"
    assert item.author == "octocat"
    assert item.url == "https://github.com/acme/app/issues/7"
    assert item.metadata["repository"] == "acme/app"

    payload["issue"]["body"] = None
    item = normalize("github", payload, event="issues")
    assert item.content == "Login broken"


def test_github_comment():
    item = normalize("github", {
        "action": "created",
        "issue": {"number": 7, "title": "Login broken"},
        "comment": {"id": 99, "body": "Same here on Safari", "user": {"login": "dev"}},
    }, event="issue_comment")
    assert item.content == "Same here on Safari"
    assert item.external_id == "comment-99"
    assert item.metadata["issue_number"] == 7


def test_github_unsupported_event_is_ignored():
    out = normalize("github", {"zen": "Keep it logically awesome."}, event="ping")
    assert isinstance(out, Ignored)
    assert "not supported" in out.reason


def test_github_comment_without_body_is_invalid():
    with pytest.raises(ValidationError):
        normalize("github", {"comment": {"id": 1, "body": ""}}, event="issue_comment")


def test_github_requires_event_name():
    with pytest.raises(ValidationError):
        normalize("github", {"issue": {"number": 1, "title": "x"}})


def test_slack_message():
    item = normalize("slack", {
        "type": "event_callback",
        "team_id": "T0",
        "event": {"type": "message", "text": "The app crashes on upload", "user": "U1", "ts": "1714564800.000200", "channel": "C1"},
    })
    assert item.source == Source.SLACK
    assert item.content == "The app crashes on upload"
    assert item.timestamp == 1714564800000
    assert item.author == "U1"
    assert item.metadata["channel"] == "C1"


@pytest.mark.parametrize("event", [
    {"type": "message", "subtype": "message_changed", "ts": "1.0"},
    {"type": "message", "bot_id": "B1", "text": "beep", "ts": "1.0"},
    {"type": "reaction_added", "ts": "1.0"},
])
def test_slack_non_plain_messages_are_dropped(event):
    out = normalize("slack", {"type": "event_callback", "event": event})
    assert isinstance(out, Ignored)


def test_slack_url_verification_returns_challenge():
    out = normalize("slack", {"type": "url_verification", "challenge": "abc"})
    assert isinstance(out, Ignored)
    assert out.challenge == "abc"


def test_slack_message_without_text_is_invalid():
    with pytest.raises(ValidationError):
        normalize("slack", {"type": "event_callback", "event": {"type": "message", "ts": "1.0"}})


def test_unknown_source_and_non_object_payload():
    with pytest.raises(ValidationError):
        normalize("email", {})
    with pytest.raises(ValidationError):
        normalize("support", ["not", "a", "dict"])


@pytest.mark.parametrize("ts", ["1e400", "inf", "-inf", "nan", "1e306"])
def test_slack_out_of_range_ts_is_invalid(ts):
    with pytest.raises(ValidationError):
        normalize("slack", {
            "type": "event_callback",
            "event": {"type": "message", "text": "hello", "user": "U1", "ts": ts},
        })


def test_non_finite_support_timestamp_uses_receipt_time(monkeypatch):
    monkeypatch.setattr("faie.services.normalizer.now_ms", lambda: 123)
    item = normalize("support", {"ticket_id": "T1", "description": "x", "created_at": float("inf")})
    assert item.timestamp == 123
