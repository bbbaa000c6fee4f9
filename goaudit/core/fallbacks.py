"""Helpers for best-effort paths that log instead of raising."""

from __future__ import annotations

import logging


def log_best_effort_failure(
    logger: logging.Logger,
    action: str,
    exc: BaseException,
    *,
    level: int = logging.DEBUG,
) -> None:
    """Log a failed best-effort action with a uniform message shape."""
    logger.log(
        level,
        "Best-effort %s failed: %s: %s",
        action,
        type(exc).__name__,
        exc,
        exc_info=level >= logging.WARNING,
    )


__all__ = ["log_best_effort_failure"]
