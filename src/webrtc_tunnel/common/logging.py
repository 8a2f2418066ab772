"""Structured logging setup for the tunnel engine."""

import logging
import sys

import structlog
from structlog.typing import Processor

# Third-party loggers that are chatty at INFO/DEBUG during negotiation
NOISY_LOGGERS = ("aioice", "aiortc", "socketio", "engineio")


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    log_file: str | None = None,
    quiet_libraries: bool = True,
) -> None:
    """Configure structured logging for the tunnel process.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: If True, render log events as JSON lines
        log_file: Optional file path that receives a plain-text copy of the logs
        quiet_libraries: Raise the WebRTC/Socket.IO library loggers to WARNING
    """
    log_level = getattr(logging, level.upper())

    root_logger = logging.getLogger()
    root_logger.handlers = []
    root_logger.setLevel(log_level)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(console_handler)

    if quiet_libraries:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(log_level)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        root_logger.addHandler(file_handler)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a configured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)  # type: ignore[no-any-return]
