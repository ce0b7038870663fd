"""Logging setup shared by the entry points."""

from __future__ import annotations

import logging
import sys
from typing import Optional

DEFAULT_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"


def configure_logging(level=logging.INFO, format: Optional[str] = None) -> None:
    """Configure the root logger once; leaves existing configuration alone."""
    if logging.getLogger().handlers:
        return
    if isinstance(level, str):
        level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format=format or DEFAULT_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    # aioice/aiortc are chatty at INFO
    logging.getLogger("aioice").setLevel(max(level, logging.WARNING))
