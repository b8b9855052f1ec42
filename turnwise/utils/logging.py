"""Logging setup for the runtime and its outer surfaces."""

import logging
import os
import sys

from pydantic import BaseModel, Field

QUIET_LOGGERS = ("anthropic", "httpx", "httpcore", "uvicorn.access")


class LogConfig(BaseModel):
    """Logging configuration.

    ``level`` applies to the ``turnwise`` loggers; ``library_level`` to the
    SDK and HTTP loggers in ``QUIET_LOGGERS``.
    """

    level: str = "INFO"
    library_level: str = "WARNING"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    date_format: str = "%Y-%m-%d %H:%M:%S"
    quiet_loggers: list[str] = Field(default_factory=lambda: list(QUIET_LOGGERS))

    @classmethod
    def from_env(cls) -> "LogConfig":
        """Read ``LOG_LEVEL``, ``LOG_LIBRARY_LEVEL`` and ``LOG_FORMAT``."""
        defaults = cls()
        return cls(
            level=os.getenv("LOG_LEVEL", defaults.level),
            library_level=os.getenv("LOG_LIBRARY_LEVEL", defaults.library_level),
            format=os.getenv("LOG_FORMAT", defaults.format),
        )


def setup_logging(config: LogConfig | None = None) -> None:
    """Configure the root handler and the levels of runtime and library loggers."""
    config = config or LogConfig.from_env()

    logging.basicConfig(
        level=config.level.upper(),
        format=config.format,
        datefmt=config.date_format,
        stream=sys.stdout,
        force=True,
    )
    logging.getLogger("turnwise").setLevel(config.level.upper())
    for name in config.quiet_loggers:
        logging.getLogger(name).setLevel(config.library_level.upper())


def get_logger(name: str, level: str | None = None) -> logging.Logger:
    """Get a module logger.

    Without an explicit ``level`` the logger inherits from the ``turnwise``
    package logger, so ``setup_logging`` controls every module at once.

    Args:
        name: Module name (typically __name__)
        level: Explicit level for this logger only
    """
    logger = logging.getLogger(name)
    if level:
        logger.setLevel(level.upper())
    return logger
