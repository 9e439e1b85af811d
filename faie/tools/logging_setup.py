from __future__ import annotations

import logging
from pathlib import Path
from faie.config.settings import get_settings


def setup_logging() -> None:
    s = get_settings()
    log_path = s.log_file

    Path(log_path).parent.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=getattr(logging, s.log_level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(threadName)s | %(name)s | %(message)s",
        handlers=[
            logging.FileHandler(log_path, encoding="utf-8"),
            logging.StreamHandler(),
        ],
    )
    # request-level chatter from the HTTP clients
    logging.getLogger("urllib3").setLevel(logging.WARNING)
