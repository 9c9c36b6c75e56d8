"""Centralized logging helpers.

Provides a single ``configure_logging`` entry point plus the small helpers
every module uses to attach structured context to DEBUG traces without
paying for it when DEBUG is disabled.
"""

from __future__ import annotations

import logging
import os
import time
from typing import Any, Dict, Optional

from constants import Constants


def configure_logging(level: Optional[str] = None) -> None:
    """Configure the root logger once per process.

    The level comes from ``level`` when given, otherwise from the
    ``NODEPACK_LOG_LEVEL`` environment variable, defaulting to INFO.
    Unknown level names fall back to INFO rather than raising.
    """
    name = (level or os.environ.get(Constants.ENV_LOG_LEVEL) or "INFO").upper()
    level_value = getattr(logging, name, None)
    if not isinstance(level_value, int):
        level_value = logging.INFO

    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(Constants.LOG_FORMAT))
        root.addHandler(handler)
    root.setLevel(level_value)


def is_debug_enabled(logger: logging.Logger) -> bool:
    """Return True when ``logger`` would emit DEBUG records."""
    return logger.isEnabledFor(logging.DEBUG)


def extra_context(**fields: Any) -> Dict[str, Any]:
    """Build an ``extra=`` payload for structured log records.

    ``None`` values are dropped so call sites can pass optional fields
    unconditionally.
    """
    return {k: v for k, v in fields.items() if v is not None}


class Timer:
    """Context manager measuring wall-clock duration of a block."""

    def __init__(self) -> None:
        self._start = 0.0
        self._end: Optional[float] = None

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        self._end = None
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self._end = time.perf_counter()

    def duration_ms(self) -> float:
        """Elapsed milliseconds, measured up to now while still running."""
        end = self._end if self._end is not None else time.perf_counter()
        return round((end - self._start) * 1000.0, 3)
