"""Logging infrastructure for birdwatcher.

Components:
    - logging: structlog application logging and the access (query) logger

Usage:
    from birdwatcher.observability import get_logger

    logger = get_logger(__name__)
    logger.info("router_built", routes=12)
"""

from birdwatcher.observability.logging import (
    clear_correlation_id,
    configure_logging,
    configure_query_logger,
    get_correlation_id,
    get_logger,
    set_correlation_id,
)

__all__ = [
    "clear_correlation_id",
    "configure_logging",
    "configure_query_logger",
    "get_correlation_id",
    "get_logger",
    "set_correlation_id",
]
