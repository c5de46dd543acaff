"""
Error logging helpers shared by the API, the rollup ticker and scripts.
"""

from __future__ import annotations

import logging
from typing import Callable, TypeVar

T = TypeVar("T")


def _format_extra(extra: dict | None) -> str:
    if not extra:
        return ""
    parts = [f"{key}={value}" for key, value in extra.items() if value is not None]
    return f" {' '.join(parts)}" if parts else ""


def exception_summary(exc: BaseException) -> str:
    """``Type: first line of message``, short enough for a report row."""
    lines = str(exc).strip().splitlines()
    if not lines:
        return type(exc).__name__
    return f"{type(exc).__name__}: {lines[0]}"


def log_exception(logger: logging.Logger, msg: str, *, extra: dict | None = None, exc: Exception | None = None) -> None:
    """
    Log an exception with context and its stack trace.
    """
    suffix = _format_extra(extra)
    if exc is not None:
        logger.error("%s%s: %s", msg, suffix, exc, exc_info=exc)
        return
    logger.exception("%s%s", msg, suffix)


def guarded_call(
    name: str,
    fn: Callable[[], T],
    *,
    fallback: T | None = None,
    logger: logging.Logger | None = None,
    context: dict | None = None,
) -> T | None:
    """
    Run ``fn``; on failure log it and return ``fallback`` so a loop can carry on.
    """
    try:
        return fn()
    except Exception as exc:
        if logger:
            log_exception(logger, f"{name} failed", extra=context, exc=exc)
        return fallback
