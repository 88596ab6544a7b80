"""
Loguru sink configuration.

Components log through ``loguru.logger`` (usually a ``bind()``-ed child passed
in by the application); this module only decides where records go.
"""

import sys
from pathlib import Path

from loguru import logger

from market_broadcast.config import PROJECT_ROOT, LoggingConfig


CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[component]}</cyan> | "
    "<level>{message}</level>"
)


def configure_logging(config: LoggingConfig) -> None:
    """
    Replace loguru's default sink with a console sink and an optional
    rotating JSON file sink.

    Args:
        config (LoggingConfig): Level, file path, rotation and retention
    """
    logger.remove()
    logger.configure(extra={"component": "app"})

    logger.add(sys.stderr, level=config.level, format=CONSOLE_FORMAT)

    if config.file:
        log_path = Path(config.file)
        if not log_path.is_absolute():
            log_path = PROJECT_ROOT / log_path
        log_path.parent.mkdir(parents=True, exist_ok=True)

        logger.add(
            log_path,
            level=config.level,
            rotation=config.rotation,
            retention=config.retention,
            serialize=True,
            enqueue=True,
        )

    logger.debug(f"Logging configured (level={config.level}, file={config.file})")
