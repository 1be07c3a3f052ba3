from __future__ import annotations

import logging

from .settings import get_settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str | None = None) -> None:
    """Root logger format and level from LOG_LEVEL."""
    level_name = (level or get_settings().log_level).upper()
    logging.basicConfig(level=getattr(logging, level_name, logging.INFO), format=LOG_FORMAT, force=True)
    # per-request lines from httpx are noise at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
