"""Logging initialization."""

from __future__ import annotations

import logging
import os
from typing import Optional, Union

from .config import ENV_LOG_LEVEL


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
DEFAULT_LOG_LEVEL = "WARNING"


def configure_logging(level: Optional[Union[int, str]] = None) -> None:
    """Configure the root logger once, at process entry.

    The level comes from *level* if given, else ``TAURI_MCP_LOG_LEVEL``.
    Log output goes to stderr; stdout is left to the program.
    """

    if level is None:
        level = os.getenv(ENV_LOG_LEVEL) or DEFAULT_LOG_LEVEL

    if isinstance(level, str):
        level = level.strip().upper()
        resolved = logging.getLevelName(level)
        if not isinstance(resolved, int):
            raise ValueError(f"not a logging level: {level!r}")
        level = resolved

    logging.basicConfig(level=level, format=LOG_FORMAT)


__all__ = ["configure_logging"]
