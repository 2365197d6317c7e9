"""Logging helpers.

Diagnostics always go to standard error: standard output carries the event
stream.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional, Union

_LOGGING_CONFIGURED = False


def configure_logging(level: Union[int, str] = logging.WARNING) -> None:
    global _LOGGING_CONFIGURED
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        level = resolved if isinstance(resolved, int) else logging.WARNING
    if not _LOGGING_CONFIGURED:
        logging.basicConfig(
            level=level,
            stream=sys.stderr,
            format="[%(asctime)s] %(levelname)s %(name)s - %(message)s",
        )
        _LOGGING_CONFIGURED = True
    logging.getLogger("launch_deployer").setLevel(level)


def get_logger(name: Optional[str] = None) -> logging.Logger:
    if not _LOGGING_CONFIGURED:
        configure_logging()
    return logging.getLogger(name)
