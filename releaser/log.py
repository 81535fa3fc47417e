"""
log.py

Responsibility: Configure Loguru once for the CLI.

Parallel jobs log through the same logger; each record carries the platform
label in its `target` extra so interleaved lines can be told apart.
"""

from __future__ import annotations

import sys

from loguru import logger

_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[target]}</cyan> | <level>{message}</level>"
)


def setup_logging(*, level: str = "INFO", colorize: bool | None = None) -> None:
    """Replace Loguru's default sink with a single stderr sink.

    Every record carries a ``target`` extra (the platform label, or ``-`` for
    pipeline-wide messages) so interleaved output from parallel jobs stays readable.
    """

    logger.remove()
    logger.configure(extra={"target": "-"})
    logger.add(
        sys.stderr,
        level=level.upper(),
        format=_FORMAT,
        colorize=colorize,
        backtrace=False,
        diagnose=False,
    )
    logger.debug("Logging configured at {}", level.upper())


__all__ = ["setup_logging"]
