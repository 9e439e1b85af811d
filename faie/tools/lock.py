from __future__ import annotations

from pathlib import Path
import os
import time

LOCK_PATH = Path("data/retry.lock")


class RunLock:
    """Lock file that keeps two scheduled retry runs from overlapping."""

    def __init__(self, path: Path | str = LOCK_PATH, timeout_seconds: int = 30 * 60):
        self.path = Path(path)
        self.timeout_seconds = timeout_seconds

    def __enter__(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)

        if self.path.exists():
            age = time.time() - self.path.stat().st_mtime
            if age < self.timeout_seconds:
                raise RuntimeError("Another retry run is already in progress (lock exists).")
            # stale lock
            self.path.unlink(missing_ok=True)

        self.path.write_text(str(os.getpid()), encoding="utf-8")
        return self

    def __exit__(self, exc_type, exc, tb):
        self.path.unlink(missing_ok=True)
