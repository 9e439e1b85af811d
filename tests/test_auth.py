import hashlib
import hmac
import time

import pytest

from faie.errors import AuthError
from faie.services.auth import authenticate, verify_signature


def _sign(secret: str, data: bytes) -> str:
    return hmac.new(secret.encode(), data, hashlib.sha256).hexdigest()


def test_verify_signature():
    body = b'{"a": 1}'
    assert verify_signature(body, _sign("s3cret", body), "s3cret")
    assert not verify_signature(body, _sign("other", body), "s3cret")
    assert not verify_signature(body, "", "s3cret")
    assert not verify_signature(body, _sign("", body), "")


def test_support_api_key(settings):
    authenticate("support", b"{}", {"X-API-Key": "support-key"}, settings)
    with pytest.raises(AuthError):
        authenticate("support", b"{}", {"x-api-key": "nope"}, settings)
    with pytest.raises(AuthError):
        authenticate("support", b"{}", {}, settings)


def test_missing_secret_rejects(settings):
    s = settings.model_copy(update={"support_api_key": ""})
    with pytest.raises(AuthError):
        authenticate("support", b"{}", {"x-api-key": ""}, s)


def test_github_signature(settings):
    body = b'{"issue": {}}'
    good = {"X-Hub-Signature-256": "sha256=" + _sign("gh-secret", body)}
    authenticate("github", body, good, settings)
    with pytest.raises(AuthError):
        authenticate("github", body + b" ", good, settings)
    with pytest.raises(AuthError):
        authenticate("github", body, {}, settings)


def test_slack_signature_and_replay_window(settings):
    body = b'{"type": "event_callback"}'
    ts = str(int(time.time()))
    sig = "v0=" + _sign("slack-secret", f"v0:{ts}:".encode() + body)
    authenticate("slack", body, {"X-Slack-Request-Timestamp": ts, "X-Slack-Signature": sig}, settings)

    old = str(int(time.time()) - 600)
    old_sig = "v0=" + _sign("slack-secret", f"v0:{old}:".encode() + body)
    with pytest.raises(AuthError):
        authenticate("slack", body, {"X-Slack-Request-Timestamp": old, "X-Slack-Signature": old_sig}, settings)


def test_non_ascii_credentials_are_rejected(settings):
    with pytest.raises(AuthError):
        authenticate("support", b"{}", {"x-api-key": "clé"}, settings)

    body = b'{"issue": {}}'
    with pytest.raises(AuthError):
        authenticate("github", body, {"X-Hub-Signature-256": "sha256=é"}, settings)

    assert not verify_signature(body, "ünïcode", "s3cret")
