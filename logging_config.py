"""
logging_config.py -- Centralized logging for the car rental API

Sets up Loguru as the single logging backend and intercepts Python's
stdlib logging so pymongo and uvicorn records flow through the same sinks.

- JSON lines in production, colored human-readable lines in development
- Level comes from LOG_LEVEL (settings.log_level)

Called by: main.py (at import)
Depends on: config.py
"""

import logging
import sys

from loguru import logger

from config import settings


def setup_logging() -> None:
    """Configure Loguru and intercept stdlib logging."""
    logger.remove()

    log_level = settings.log_level.upper()

    if settings.production:
        logger.add(sys.stdout, level=log_level, format="{message}", serialize=True)
    else:
        logger.add(
            sys.stdout,
            level=log_level,
            format=(
                "<green>{time:HH:mm:ss}</green> | "
                "<level>{level: <8}</level> | "
                "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
                "{message}"
            ),
            colorize=True,
        )

    logging.basicConfig(handlers=[_InterceptHandler()], level=0, force=True)

    for noisy in ("pymongo", "uvicorn.access"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logger.info("Logging configured (level={}, production={})", log_level, settings.production)


class _InterceptHandler(logging.Handler):
    """Route stdlib logging records to Loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Skip frames from stdlib logging internals
        frame, depth = logging.currentframe(), 0
        while frame and (depth == 0 or frame.f_code.co_filename == logging.__file__):
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())
