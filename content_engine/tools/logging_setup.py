from __future__ import annotations

import logging
from pathlib import Path
from content_engine.config.settings import Settings, get_settings


def setup_logging(settings: Settings | None = None) -> None:
    s = settings or get_settings()
    log_path = s.log_file

    Path(log_path).parent.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=getattr(logging, s.log_level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        handlers=[
            logging.FileHandler(log_path, encoding="utf-8"),
            logging.StreamHandler(),
        ],
    )
    # request-level chatter from the HTTP stack
    logging.getLogger("urllib3").setLevel(logging.WARNING)
