"""Loguru sink setup."""

import sys
from typing import Optional

from loguru import logger

from .config import LoggingConfig


LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def configure_logging(config: LoggingConfig, level: Optional[str] = None) -> None:
    """Replace the default sink with stderr plus an optional rotating file."""
    logger.remove()
    logger.add(sys.stderr, format=LOG_FORMAT, level=level or config.level)

    if config.file is not None:
        path = config.file.expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            path,
            rotation=config.rotation,
            retention=config.retention,
            level="DEBUG",
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function} - {message}",
        )
