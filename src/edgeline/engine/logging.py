"""Logging helpers for the edge engine."""

from __future__ import annotations

import logging
from typing import Iterable

AUDIT_LOGGER_NAME = "edgeline.engine.audit"


def configure_logging(level: int | str = logging.INFO, handlers: Iterable[logging.Handler] | None = None) -> None:
    """Configure root logging for command line runs and batch refreshes.

    Edge and ticket computations log their per-line devig diagnostics at
    ``DEBUG`` and their summary counts at ``INFO``; this helper gives
    embedding applications a consistent format in one call.
    """

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=list(handlers) if handlers else None,
    )


def audit_logger() -> logging.Logger:
    """Return the logger used for structured persistence events."""

    return logging.getLogger(AUDIT_LOGGER_NAME)
