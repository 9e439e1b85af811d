from __future__ import annotations

import logging
import re
from typing import Any

import requests

from faie.config.settings import Settings, get_settings
from faie.errors import SinkFailure
from faie.tools.utils import excerpt
from urllib.parse import quote

logger = logging.getLogger(__name__)

# ---------------------------
# MarkdownV2 escaping helpers
# ---------------------------

def mdv2_escape(text: Any) -> str:
    if text is None:
        return ""
    # Escape Telegram MarkdownV2 special chars
    return re.sub(r"([_\*\[\]\(\)~`>#+\-=|{}\.!\\])", r"\\\1", str(text))


def fmt_link(title: str, url: str) -> str:
    safe_title = mdv2_escape(title)
    # Inside (...) only ) and \ need escaping; encode the rest of the unsafe chars.
    safe_url = quote(str(url), safe=":/?&=#+%.-_~")
    safe_url = safe_url.replace("\\", "\\\\").replace(")", "\\)")
    return f"[{safe_title}]({safe_url})"


# ---------------------------
# Rendering
# ---------------------------

def priority_label(urgency: int) -> str:
    # urgency 10 -> P0
    return f"P{10 - int(urgency)}"


def render_alert(feedback_id: int, content: str, urgency: int, dashboard_url: str) -> str:
    lines: list[str] = []
    lines.append(f"🚨 *Critical Feedback Alert \\({priority_label(urgency)}\\)*")
    lines.append("")
    lines.append("*Content:*")
    lines.append(mdv2_escape(excerpt(content, 500)))
    lines.append("")
    lines.append(f"*Urgency:* {mdv2_escape(f'{urgency}/10')}")
    lines.append(f"*Feedback ID:* {feedback_id}")
    lines.append("")
    lines.append(fmt_link("View in Dashboard", f"{dashboard_url.rstrip('/')}/feedback/{feedback_id}"))
    return "\n".join(lines)


def sentiment_emoji(score: float) -> str:
    if score > 0.6:
        return "😊"
    if score > 0.4:
        return "😐"
    return "😞"


def render_daily_summary(summary: dict, dashboard_url: str) -> str:
    total = summary.get("total", 0)
    score = summary.get("avg_sentiment")
    score = 0.5 if score is None else float(score)
    urgent_count = summary.get("urgent_count", 0)
    themes = summary.get("themes", []) or []
    urgent = summary.get("urgent_items", []) or []

    lines: list[str] = []
    lines.append("📊 *Daily Feedback Summary*")
    lines.append("")
    lines.append(f"*Total Feedback:* {total}")
    lines.append(f"*Sentiment:* {sentiment_emoji(score)} {score * 100:.0f}%")
    lines.append(f"*Critical Issues:* {urgent_count}")
    lines.append("")

    lines.append("🏷️ *Top Themes:*")
    if themes:
        for i, t in enumerate(themes, start=1):
            lines.append(mdv2_escape(f"{i}. {t['theme']} ({t['count']} mentions)"))
    else:
        lines.append("None")
    lines.append("")

    lines.append("🚨 *Urgent Items:*")
    if urgent:
        for i, u in enumerate(urgent, start=1):
            label = u.get("title") or (u.get("content") or "")[:100]
            lines.append(mdv2_escape(f"{i}. [{priority_label(u['urgency'])}] {label}"))
    else:
        lines.append("None")
    lines.append("")

    lines.append(fmt_link("Open Dashboard", dashboard_url))
    return "\n".join(lines)


# ---------------------------
# Sender
# ---------------------------

class TelegramNotifier:
    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()

    def send(self, text: str) -> None:
        """Post one message. Raises SinkFailure on transport or API errors."""
        s = self.settings
        if not s.telegram_enabled:
            logger.info("Telegram disabled, dropping message (%d chars)", len(text))
            return

        url = f"https://api.telegram.org/bot{s.telegram_bot_token}/sendMessage"
        payload = {
            "chat_id": s.telegram_chat_id,
            "text": text,
            "parse_mode": s.telegram_parse_mode,
            "disable_web_page_preview": True,
        }
        try:
            r = requests.post(url, json=payload, timeout=30)
        except requests.RequestException as e:
            raise SinkFailure(f"telegram unreachable: {e}") from e

        if not r.ok:
            try:
                detail = r.json()
            except ValueError:
                detail = r.text
            raise SinkFailure(f"telegram error {r.status_code}: {detail}")
