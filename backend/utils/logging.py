"""
Structured logging setup using structlog.

This module configures structured logging for the application with JSON output
in production and human-readable format in development.
"""

import logging
import sys
from typing import Any, Optional

import structlog

from config import settings


def setup_logging(level: str = None) -> None:
    """
    Configure structured logging for the application.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL); defaults to config
    """
    level = level or settings.log_level

    # Configure stdlib logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper()),
    )

    # Configure structlog
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            # Use JSON in production, pretty print in development
            structlog.processors.JSONRenderer() if level.upper() == "INFO" else structlog.dev.ConsoleRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = None) -> Any:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (optional)

    Returns:
        Structured logger instance
    """
    return structlog.get_logger(name)


def log_chat_event(
    event_type: str,
    thread_id: Optional[str] = None,
    user_id: Optional[str] = None,
    **kwargs
) -> None:
    """
    Log a conversation-related event with structured data.

    Args:
        event_type: Type of chat event
        thread_id: Thread identifier (optional)
        user_id: Acting user identifier (optional)
        **kwargs: Additional context
    """
    logger = get_logger("chat")
    logger.info(
        f"Chat {event_type}",
        event_type=event_type,
        thread_id=thread_id,
        user_id=user_id,
        **kwargs
    )


def log_poll_event(poller: str, tick: int, applied: bool, **kwargs) -> None:
    """
    Log the outcome of one poll tick.

    Args:
        poller: Name of the repeating task ("messages" or "threads")
        tick: Ticket number of the tick
        applied: Whether the fetched result replaced local state
        **kwargs: Additional context
    """
    logger = get_logger("poll")
    logger.debug(
        f"Poll {poller}",
        poller=poller,
        tick=tick,
        applied=applied,
        **kwargs
    )


def log_backend_event(operation: str, success: bool, duration: float = None, **kwargs) -> None:
    """
    Log a backend gateway call with structured data.

    Args:
        operation: Gateway operation name
        success: Whether the call succeeded
        duration: Call duration in seconds (optional)
        **kwargs: Additional context
    """
    logger = get_logger("backend")
    logger.info(
        f"Backend {operation}",
        operation=operation,
        success=success,
        duration=duration,
        **kwargs
    )
