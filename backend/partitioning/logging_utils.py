"""Logging helpers for the tile-grid engine."""

from __future__ import annotations

import logging
import os


def configure_logging(level: int | str | None = None) -> None:
    """Configure default logging if no handlers are present."""
    root = logging.getLogger()
    if root.handlers:
        return
    if level is None:
        level = (os.getenv("TILEGRID_LOG_LEVEL") or "INFO").strip().upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
