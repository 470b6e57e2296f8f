"""
logging_config.py — Centralized Logging Configuration for Planner CRM

Sets up Loguru as the single logging backend. Intercepts Python's stdlib
logging module so all existing getLogger() calls automatically route
through Loguru with structured output and log rotation.

Business Rules:
- All logs go through Loguru (no direct print())
- JSON format in production for machine parsing
- Human-readable format in development
- Log rotation: 50MB files, 7-day retention

Called by: plannercrm/main.py (on startup)
Depends on: plannercrm/config.py (for log_level, app_url)
"""

import logging
import os
import sys

from loguru import logger

from .config import settings


def _is_production() -> bool:
    return settings.app_url.startswith("https://") and "localhost" not in settings.app_url


def setup_logging() -> None:
    """Configure Loguru and intercept stdlib logging.

    Call once at app startup, before any other imports that log.
    """
    logger.remove()

    log_level = settings.log_level.upper()
    is_production = _is_production()

    if is_production:
        # Production: JSON lines to stdout (container runtime captures these)
        logger.add(sys.stdout, level=log_level, format="{message}", serialize=True)
        log_dir = os.getenv("LOG_DIR")
        if log_dir:
            logger.add(
                os.path.join(log_dir, "plannercrm.log"),
                level=log_level,
                rotation="50 MB",
                retention="7 days",
                compression="gz",
                serialize=True,
            )
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

    # Intercept stdlib logging → route through Loguru
    logging.basicConfig(handlers=[_InterceptHandler()], level=0, force=True)

    for noisy in ("httpx", "httpcore", "uvicorn.access", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logger.info("Logging configured", level=log_level, production=is_production)


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

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )
