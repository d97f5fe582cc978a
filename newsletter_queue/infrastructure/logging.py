"""Logging configuration for the AI newsletter generation queue."""

import logging
import logging.config
import sys

import structlog
from rich.logging import RichHandler

from newsletter_queue.infrastructure.config import get_logs_dir


def setup_logging(
    level: str = "INFO",
    format_type: str = "structured",
    log_file: bool = False,
) -> structlog.stdlib.BoundLogger:
    """Set up structured logging with rich console output.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_type: Log format type ("structured" or "text")
        log_file: Whether to log to file

    Returns:
        Configured structlog logger
    """
    log_level = getattr(logging, level.upper())

    timestamper = structlog.processors.TimeStamper(fmt="ISO")

    shared_processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        timestamper,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if format_type == "structured":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=shared_processors + [renderer],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handlers = []

    if format_type == "text":
        rich_handler = RichHandler(
            rich_tracebacks=True,
            show_path=False,
            show_time=False,  # timestamp comes from the processors
        )
        rich_handler.setLevel(log_level)
        handlers.append(rich_handler)
    else:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(log_level)
        handlers.append(console_handler)

    if log_file:
        log_file_path = get_logs_dir() / "newsletter_queue.log"

        file_handler = logging.FileHandler(log_file_path)
        file_handler.setLevel(logging.DEBUG)
        if format_type == "structured":
            file_formatter = logging.Formatter('%(message)s')
        else:
            file_formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
        file_handler.setFormatter(file_formatter)
        handlers.append(file_handler)

    logging.basicConfig(
        level=log_level,
        handlers=handlers,
        format="%(message)s",
        force=True,
    )

    # Suppress noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    logger = structlog.get_logger("newsletter_queue")
    logger.info("Logging configured", level=level, format=format_type)

    return logger


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


class LoggerMixin:
    """Mixin class to add logger to any class."""

    @property
    def logger(self) -> structlog.stdlib.BoundLogger:
        """Get logger instance for this class."""
        if not hasattr(self, "_logger"):
            self._logger = get_logger(self.__class__.__name__)
        return self._logger


def bind_queue_item(logger: structlog.stdlib.BoundLogger, item) -> structlog.stdlib.BoundLogger:
    """Bind the identifiers of a queue item so every event carries them."""
    return logger.bind(
        queue_item_id=item.id,
        newsletter_id=str(item.newsletter_id),
        section_number=item.section_number,
        section_type=item.section_type,
    )
