"""Structured logging setup for Reviewsync."""

import atexit
import structlog
from pathlib import Path
from typing import Any, Optional, TextIO
import os


_log_stream: Optional[TextIO] = None


def close_log_file() -> None:
    """Close the log file opened by configure_logging, if any."""
    global _log_stream
    if _log_stream is not None and not _log_stream.closed:
        _log_stream.close()
    _log_stream = None


atexit.register(close_log_file)


def configure_logging() -> None:
    """
    Configure structlog for JSON logging to ~/.cache/reviewsync/logs/reviewsync.log.

    Log level can be controlled via REVIEWSYNC_LOG_LEVEL environment variable:
    - Set to "DEBUG" to see request URLs, token fetches and upsert documents
    - Defaults to "INFO" if not set

    Log levels:
    - DEBUG: Request/response details, serialized upsert payloads
    - INFO: Forms opened, saves, submissions, token acquisition
    - WARNING: Partial loads, CSRF rejections that trigger a retry, blocked edits
    - ERROR: Transport failures, rejected saves

    Example:
        # Enable debug logging
        export REVIEWSYNC_LOG_LEVEL=DEBUG
        reviewsync show 1234 5678

        # View logs with jq for readability:
        tail -f ~/.cache/reviewsync/logs/reviewsync.log | jq .
    """
    log_dir = Path.home() / ".cache" / "reviewsync" / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "reviewsync.log"

    log_level = os.environ.get("REVIEWSYNC_LOG_LEVEL", "INFO").upper()

    valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR"]
    if log_level not in valid_levels:
        log_level = "INFO"

    # Loggers cached on first use hold this handle; reuse it across calls.
    global _log_stream
    if _log_stream is None or _log_stream.closed:
        _log_stream = open(log_file, "a")

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.WriteLoggerFactory(file=_log_stream),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> Any:
    """
    Get a structured logger instance.

    Args:
        name: Logger name (typically __name__ of calling module)

    Returns:
        Structured logger instance

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("form_opened", form_data_id=5678, sections=6)
    """
    return structlog.get_logger(name)


def token_preview(token: str | None) -> str | None:
    """Return a short, log-safe prefix of a CSRF token."""
    if not token:
        return None
    return token[:6] + "..."
