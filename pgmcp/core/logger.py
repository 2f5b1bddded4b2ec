"""Logging with Loguru."""

import logging
import sys
from types import FrameType
from typing import Optional

from loguru import logger

__all__ = ["setup_structured_logging", "InterceptHandler"]


class InterceptHandler(logging.Handler):
    """Redirect standard logging records (asyncpg, asyncio) into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        # Get corresponding Loguru level if it exists
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Find caller from where originated the logged message
        frame: Optional[FrameType] = logging.currentframe()
        depth = 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_structured_logging(
    level: str = "INFO", json_format: bool = False, log_file: Optional[str] = None
) -> None:
    """
    Setup Loguru logging.

    Console output goes to stderr; stdout belongs to whatever protocol
    adapter embeds this process.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: Serialize records as JSON lines
        log_file: Optional path of a rotating log file
    """
    # Remove default handler
    logger.remove()

    if json_format:
        logger.add(sys.stderr, level=level, serialize=True)
    else:
        console_format = (
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
            "<level>{message}</level>"
        )
        logger.add(sys.stderr, format=console_format, level=level, colorize=True)

    if log_file:
        logger.add(
            log_file,
            level=level,
            rotation="10 MB",  # Rotate when file reaches 10MB
            retention="30 days",
            compression="zip",
            serialize=json_format,
        )

    # Intercept all standard logging
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)
    logging.root.setLevel(getattr(logging, level))
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    logger.debug(f"Logging initialized (level={level}, json={json_format})")
