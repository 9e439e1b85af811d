from __future__ import annotations

import time


def now_ms() -> int:
    return int(time.time() * 1000)


def truncate_to_tokens(text: str, max_tokens: int) -> str:
    # rough estimate: 1 token ~ 4 characters
    max_chars = max_tokens * 4
    return text[:max_chars] if len(text) > max_chars else text


def excerpt(text: str, limit: int = 500) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + "..."
