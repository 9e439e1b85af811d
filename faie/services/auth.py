from __future__ import annotations

import hashlib
import hmac
import time
from typing import Mapping

from faie.config.settings import Settings, get_settings
from faie.errors import AuthError

SLACK_REPLAY_WINDOW_SECONDS = 300


def verify_signature(payload: bytes, signature: str, secret: str) -> bool:
    """Constant-time check of a hex HMAC-SHA256 signature over payload."""
    if not signature or not secret:
        return False
    expected = hmac.new(secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))


def _header(headers: Mapping[str, str], name: str) -> str:
    # header names are case-insensitive on the wire
    wanted = name.lower()
    for k, v in headers.items():
        if k.lower() == wanted:
            return v or ""
    return ""


def _check_support(body: bytes, headers: Mapping[str, str], s: Settings) -> None:
    provided = _header(headers, "x-api-key")
    if not s.support_api_key or not provided:
        raise AuthError("missing support API key")
    if not hmac.compare_digest(provided.encode("utf-8"), s.support_api_key.encode("utf-8")):
        raise AuthError("invalid support API key")


def _check_github(body: bytes, headers: Mapping[str, str], s: Settings) -> None:
    sig = _header(headers, "x-hub-signature-256")
    if not sig.startswith("sha256="):
        raise AuthError("missing github signature")
    if not verify_signature(body, sig[len("sha256="):], s.github_webhook_secret):
        raise AuthError("invalid github signature")


def _check_slack(body: bytes, headers: Mapping[str, str], s: Settings) -> None:
    ts = _header(headers, "x-slack-request-timestamp")
    sig = _header(headers, "x-slack-signature")
    if not ts or not sig.startswith("v0="):
        raise AuthError("missing slack signature")
    try:
        ts_value = int(ts)
    except ValueError as e:
        raise AuthError("invalid slack timestamp") from e
    if abs(int(time.time()) - ts_value) > SLACK_REPLAY_WINDOW_SECONDS:
        raise AuthError("stale slack request")
    base = f"v0:{ts}:".encode("utf-8") + body
    if not verify_signature(base, sig[len("v0="):], s.slack_signing_secret):
        raise AuthError("invalid slack signature")


_CHECKS = {
    "support": _check_support,
    "github": _check_github,
    "slack": _check_slack,
}


def authenticate(source: str, body: bytes, headers: Mapping[str, str], settings: Settings | None = None) -> None:
    """Raise AuthError unless the request carries a valid credential for its source."""
    s = settings or get_settings()
    check = _CHECKS.get(source)
    if check is None:
        raise AuthError(f"no credential scheme for source '{source}'")
    check(body, headers, s)
