"""Loguru logging for the assistant.

Every record carries the conversation it belongs to (``-`` outside a turn),
and six-digit patient identifiers are masked before any sink sees them, so
clinical identifiers never reach log files or a log shipper.
"""

from __future__ import annotations

import logging
import re
import sys

from loguru import logger

_INTERCEPTED = ("uvicorn", "uvicorn.access", "uvicorn.error", "fastapi")

# Letters count as word characters so digit runs inside UUIDs are left alone.
_PATIENT_IDENTIFIER = re.compile(r"(?<![0-9A-Za-z])\d{6}(?![0-9A-Za-z])")
MASK = "******"

TEXT_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<magenta>conv={extra[conversation]}</magenta> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)


def mask_identifiers(text: str) -> str:
    return _PATIENT_IDENTIFIER.sub(MASK, text)


def _keep(record) -> None:
    pass


def _redact(record) -> None:
    record["message"] = mask_identifiers(record["message"])


class InterceptHandler(logging.Handler):
    """Send uvicorn/fastapi stdlib records through loguru (and its redaction)."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back  # type: ignore[assignment]
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(*, level: str = "INFO", json: bool = False, redact: bool = True) -> None:
    """Install the stderr sink.

    Args:
        level: Minimum log level.
        json: One JSON object per record instead of coloured text.
        redact: Mask patient identifiers in messages. Only turn off locally.
    """
    logger.remove()
    logger.configure(extra={"conversation": "-"}, patcher=_redact if redact else _keep)

    if json:
        logger.add(sys.stderr, level=level, serialize=True)
    else:
        logger.add(sys.stderr, level=level, format=TEXT_FORMAT, colorize=True)

    intercept = InterceptHandler()
    for name in _INTERCEPTED:
        stdlib_logger = logging.getLogger(name)
        stdlib_logger.handlers = [intercept]
        stdlib_logger.propagate = False

    logging.root.handlers = [intercept]
    logging.root.setLevel(logging.DEBUG)
