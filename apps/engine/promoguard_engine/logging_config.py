"""Logging setup for the engine and worker processes."""

import logging
import sys

from promoguard_engine.settings import Settings, get_settings

JSON_FORMAT = (
    '{"time": "%(asctime)s", "level": "%(levelname)s", '
    '"message": "%(message)s", "module": "%(name)s"}'
)
TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(settings: Settings | None = None) -> None:
    """Install a single stdout handler on the root logger."""
    settings = settings or get_settings()
    fmt = JSON_FORMAT if settings.log_format.lower() == "json" else TEXT_FORMAT
    logging.basicConfig(
        level=settings.log_level.upper(),
        format=fmt,
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
