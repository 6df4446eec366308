"""Logging configuration for the Tilapios sync service."""

from pathlib import Path
import sys

from loguru import logger


def configure_logging(log_dir: str = "logs", level: str = "DEBUG") -> None:
    """Configure loguru logger with file output and rotation."""
    # Create logs directory if it doesn't exist
    logs_dir = Path(log_dir)
    logs_dir.mkdir(parents=True, exist_ok=True)

    # Remove default handler (console only)
    logger.remove()

    # Add console handler with colorization
    logger.add(
        sink=sys.stdout,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        level=level,
        colorize=True,
    )

    # Add file handler with rotation
    logger.add(
        sink=logs_dir / "tilapios_{time:YYYY-MM-DD}.log",
        format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
        level=level,
        rotation="00:00",  # Rotate at midnight
        retention="30 days",
        compression="zip",
        enqueue=True,
    )

    # Sync failures that were not absorbed end up here
    logger.add(
        sink=logs_dir / "tilapios_errors_{time:YYYY-MM-DD}.log",
        format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
        level="ERROR",
        rotation="00:00",
        retention="90 days",
        compression="zip",
        enqueue=True,
    )

    logger.info("Logging configured: console + file output enabled")
