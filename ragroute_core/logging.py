"""
Centralized logging configuration for ragroute.
Initializes loguru and intercepts standard library logging.
"""

import logging
import sys

from loguru import logger

from ragroute_core.config import settings

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)

# Client libraries that log through the stdlib and get noisy at INFO
CHATTY_LOGGERS = ("httpx", "httpcore", "openai", "qdrant_client", "sentence_transformers")


class InterceptHandler(logging.Handler):
    """
    Forward standard library log records to loguru.
    See: https://loguru.readthedocs.io/en/stable/overview.html#entirely-compatible-with-standard-logging
    """

    def emit(self, record):
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Walk back to the frame that issued the logging call
        frame, depth = logging.currentframe(), 2
        while frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def setup_logging(level: str | None = None, serialize: bool | None = None) -> None:
    """
    Configure loguru as the single log sink for the process.

    Args:
        level: Minimum level for the stdout sink (defaults to LOG_LEVEL).
        serialize: Emit JSON lines instead of the coloured format
            (defaults to LOG_SERIALIZE).
    """
    level = level or settings.LOG_LEVEL
    serialize = settings.LOG_SERIALIZE if serialize is None else serialize

    logger.remove()

    if serialize:
        logger.add(sys.stdout, level=level, serialize=True)
    else:
        logger.add(sys.stdout, format=LOG_FORMAT, level=level, colorize=True)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    for name in CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.info(f"Logging initialized with Loguru (level={level}, serialize={serialize}).")
