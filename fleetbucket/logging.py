"""
Structured Logging
==================

Centralized logging configuration using structlog for structured JSON logging.
"""

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

import structlog

# Global flag to track if logging has been setup
_logging_initialized = False


class LogManager:
    """
    Centralized logging configuration using structlog.

    Library modules only call ``structlog.get_logger``; applications call
    :meth:`setup` once to decide where the JSON records go.
    """

    @staticmethod
    def setup(log_level: str = "INFO", log_dir: Optional[str] = None) -> None:
        """
        Initialize structured JSON logging (idempotent).

        Configures the root logger at ``log_level`` writing to stderr and, when
        ``log_dir`` is given, to rotating ``fleetbucket.log`` (10 MB, 5 backups)
        and ``errors.log`` (10 MB, 3 backups, ERROR only) files. Configures
        structlog to render JSON through the standard library so both APIs end
        up in the same handlers.
        """
        global _logging_initialized

        if _logging_initialized:
            return

        level = getattr(logging, log_level.upper(), logging.INFO)

        logging.basicConfig(level=level, format="%(message)s")

        if log_dir is not None:
            directory = Path(log_dir)
            directory.mkdir(parents=True, exist_ok=True)

            main_handler = RotatingFileHandler(
                directory / "fleetbucket.log",
                maxBytes=10_485_760,
                backupCount=5,
            )
            main_handler.setLevel(level)

            error_handler = RotatingFileHandler(
                directory / "errors.log",
                maxBytes=10_485_760,
                backupCount=3,
            )
            error_handler.setLevel(logging.ERROR)

            root_logger = logging.getLogger()
            root_logger.addHandler(main_handler)
            root_logger.addHandler(error_handler)

        structlog.configure(
            processors=[
                structlog.stdlib.filter_by_level,
                structlog.stdlib.add_logger_name,
                structlog.stdlib.add_log_level,
                structlog.stdlib.PositionalArgumentsFormatter(),
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.UnicodeDecoder(),
                structlog.processors.JSONRenderer(),
            ],
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )

        _logging_initialized = True

        logger = structlog.get_logger(__name__)
        logger.info("logging_initialized", log_dir=log_dir, level=log_level)

    @staticmethod
    def get_logger(bucket: str, **context):
        """Return a logger bound to ``bucket`` plus any extra context, setting up logging on first use."""
        if not _logging_initialized:
            LogManager.setup()

        return structlog.get_logger("fleetbucket").bind(bucket=bucket, **context)
