"""Structured logging with correlation IDs for birdwatcher.

Two kinds of output are produced:

- Application events through structlog (console or JSON), e.g.
  ``logger.info("service_starting", listen="0.0.0.0:29184")``.
- Access log lines through a plain, timestamp-prefixed stdlib logger
  (``birdwatcher.query``), one line per HTTP request:
  ``2024/01/01 12:00:00 QUERY: 10.0.0.1 - - [...] "GET /status HTTP/1.1" 200 312``

Usage:
    from birdwatcher.observability import get_logger, configure_logging

    configure_logging(level="INFO", format="json")
    logger = get_logger(__name__)
    logger.info("backend_selected", address_family="6")
"""

import io
import logging
import logging.handlers
import sys
import uuid
from contextvars import ContextVar
from pathlib import Path
from typing import IO, Optional

import structlog
from structlog.types import EventDict, Processor


QUERY_LOGGER_NAME = "birdwatcher.query"
QUERY_LOG_FORMAT = "%(asctime)s QUERY: %(message)s"
QUERY_LOG_DATEFMT = "%Y/%m/%d %H:%M:%S"

# Context variable for correlation ID tracking
correlation_id_var: ContextVar[Optional[str]] = ContextVar(
    "correlation_id", default=None
)


def add_correlation_id(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add correlation ID to log entries.

    Args:
        logger: Logger instance
        method_name: Name of the logging method
        event_dict: Event dictionary to modify

    Returns:
        Modified event dictionary with correlation_id
    """
    correlation_id = correlation_id_var.get()
    if correlation_id:
        event_dict["correlation_id"] = correlation_id
    return event_dict


def add_log_level(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add log level to event dictionary."""
    if method_name == "warn":
        # structlog uses "warn" but we want "warning" for consistency
        method_name = "warning"
    event_dict["level"] = method_name
    return event_dict


def configure_logging(
    level: str = "INFO",
    format: str = "console",
    log_file: Optional[Path] = None,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
) -> None:
    """Configure structured logging for birdwatcher.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format: Output format ("json" or "console")
        log_file: Optional path for file logging with rotation
        max_bytes: Maximum size of log file before rotation
        backup_count: Number of backup files to keep

    Example:
        >>> configure_logging(level="DEBUG", format="console")
        >>> configure_logging(level="INFO", format="json", log_file=Path("/var/log/birdwatcher.log"))
    """
    logging_level = getattr(logging, level.upper(), logging.INFO)

    handlers = []

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging_level)
    handlers.append(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            filename=str(log_file),
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(logging_level)
        handlers.append(file_handler)

    # Clear existing handlers to allow reconfiguration
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(logging_level)
    for handler in handlers:
        handler.setFormatter(logging.Formatter("%(message)s"))
        root_logger.addHandler(handler)

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        add_correlation_id,
        add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if format == "json":
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=shared_processors + [renderer],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


class _LineFormatter(logging.Formatter):
    """Formatter that ends every record with exactly one newline.

    Access log lines usually arrive newline-terminated already; the handler
    is created with an empty terminator so those are written as-is.
    """

    def format(self, record: logging.LogRecord) -> str:
        text = super().format(record)
        return text if text.endswith("\n") else text + "\n"


def configure_query_logger(stream: Optional[IO[str]] = None) -> logging.Logger:
    """Create the timestamp-prefixed logger used for access log lines.

    The logger writes to ``stream`` (stdout by default, switched to UTF-8
    with ``surrogateescape`` so non-UTF-8 request bytes are written back
    unchanged), does not propagate to the root logger and is reset on
    every call so repeated startups in one process do not stack handlers.

    Returns:
        The ``birdwatcher.query`` stdlib logger
    """
    query_logger = logging.getLogger(QUERY_LOGGER_NAME)
    query_logger.handlers.clear()
    query_logger.setLevel(logging.INFO)
    query_logger.propagate = False

    if stream is None:
        stream = sys.stdout
        if isinstance(stream, io.TextIOWrapper):
            # access lines may carry raw request bytes that are not UTF-8
            stream.reconfigure(encoding="utf-8", errors="surrogateescape")

    handler = logging.StreamHandler(stream)
    handler.terminator = ""
    handler.setFormatter(_LineFormatter(QUERY_LOG_FORMAT, datefmt=QUERY_LOG_DATEFMT))
    query_logger.addHandler(handler)
    return query_logger


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog BoundLogger
    """
    return structlog.get_logger(name)


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Set correlation ID for request tracing.

    Args:
        correlation_id: Correlation ID (auto-generated if None)

    Returns:
        The correlation ID that was set
    """
    if correlation_id is None:
        correlation_id = f"req-{uuid.uuid4().hex[:12]}"
    correlation_id_var.set(correlation_id)
    return correlation_id


def clear_correlation_id() -> None:
    """Clear correlation ID from context."""
    correlation_id_var.set(None)


def get_correlation_id() -> Optional[str]:
    """Get current correlation ID."""
    return correlation_id_var.get()


# Initialize with default configuration until the config file is read
try:
    configure_logging(level="INFO", format="console")
except Exception:
    # If configuration fails, fall back to basic logging
    logging.basicConfig(level=logging.INFO)


__all__ = [
    "QUERY_LOGGER_NAME",
    "configure_logging",
    "configure_query_logger",
    "get_logger",
    "set_correlation_id",
    "clear_correlation_id",
    "get_correlation_id",
]
