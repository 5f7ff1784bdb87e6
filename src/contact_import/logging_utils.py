from __future__ import annotations

import logging
import os
from typing import Optional, Tuple

from .config_loader import PipelineConfig

LOG_LEVEL_ENV = "CONTACT_IMPORT_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def level_from_name(level_name: Optional[str]) -> Tuple[int, bool]:
    """Return the numeric level for ``level_name`` and whether the name was recognised."""
    normalized = (level_name or "").strip().upper()
    if normalized.isdigit():
        return int(normalized), True
    value = logging.getLevelName(normalized)
    if isinstance(value, int):
        return value, True
    return logging.INFO, False


def effective_level_name(config: PipelineConfig, level_override: Optional[str] = None) -> str:
    """
    Pick the level name; the first one set wins:

    1. ``CONTACT_IMPORT_LOG_LEVEL`` environment variable
    2. ``level_override`` (the ``--log-level`` flag)
    3. ``logging.level`` from the YAML config
    4. ``WARNING``
    """
    return os.getenv(LOG_LEVEL_ENV) or level_override or config.logging.level or "WARNING"


def configure_logging(config: PipelineConfig, level_override: Optional[str] = None) -> int:
    level_name = effective_level_name(config, level_override)
    level_value, known = level_from_name(level_name)

    root_logger = logging.getLogger()
    if root_logger.handlers:
        root_logger.setLevel(level_value)
    else:
        logging.basicConfig(level=level_value, format=LOG_FORMAT)
    if not known:
        logging.getLogger(__name__).warning("Unknown log level %r; using INFO", level_name)
    return level_value
