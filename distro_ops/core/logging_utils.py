"""Process-level logging setup (loguru)."""

from __future__ import annotations

import sys

from loguru import logger

from .settings import settings

_CONFIGURED_LEVEL: str | None = None


def configure_logging(*, level: str | None = None) -> None:
    """Configure the stderr sink once per level."""
    global _CONFIGURED_LEVEL
    resolved = (level or settings.log_level).upper()
    if resolved == _CONFIGURED_LEVEL:
        return

    logger.remove()
    logger.add(
        sys.stderr,
        level=resolved,
        format=settings.log_format,
        backtrace=False,
        diagnose=False,
    )
    _CONFIGURED_LEVEL = resolved
