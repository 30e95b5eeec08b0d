"""Logging setup for applications embedding the delegation coordinator."""

import logging
from typing import Optional

from kestrel_delegation.core.settings import get_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging once.

    Args:
        level: Log level name. Defaults to settings.log_level.
    """
    level_name = (level or get_settings().log_level).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format=LOG_FORMAT,
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)
