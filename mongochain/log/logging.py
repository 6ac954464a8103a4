"""
Logging setup for mongochain.

Every module imports ``logger`` from here and passes structured context as
keyword arguments (``event_type=...``, ``migration_id=...``); loguru captures
them into ``record["extra"]``.
"""

import sys

from loguru import logger

from mongochain.core.config import settings

HUMAN_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan> - <level>{message}</level>"
)


def configure_logging(log_level: str | None = None, json_logs: bool | None = None) -> None:
    """
    Replace the default loguru sink with one configured from settings.

    Args:
        log_level: Minimum level to emit (defaults to the settings value).
        json_logs: Emit serialized JSON records instead of human-readable lines.
    """
    config = settings.logging_config
    level = (log_level or config["log_level"]).upper()
    serialize = config["json_logs"] if json_logs is None else json_logs

    logger.remove()
    if serialize:
        logger.add(sys.stderr, level=level, serialize=True)
    else:
        logger.add(sys.stderr, level=level, format=HUMAN_FORMAT, colorize=True)

    logger.debug(
        "Logging configured",
        event_type="logging_configured",
        level=level,
        json_logs=serialize,
    )


__all__ = ["logger", "configure_logging"]
