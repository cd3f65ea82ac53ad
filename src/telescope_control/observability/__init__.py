"""Observability module for telescope-control.

Provides structured logging and routing of slot-scoped records into
per-slot server log files.

Example:
    from telescope_control.observability import get_logger, LogContext

    logger = get_logger(__name__)

    logger.info("Registry ready")

    with LogContext(slot=1):
        logger.info("Transport connected", host="localhost", port=10001)
"""

from telescope_control.observability.logging import (
    LogContext,
    SlotLogHandler,
    SlotStream,
    StructuredLogger,
    configure_logging,
    get_logger,
    reset_logging,
)

__all__ = [
    "LogContext",
    "SlotLogHandler",
    "SlotStream",
    "StructuredLogger",
    "configure_logging",
    "get_logger",
    "reset_logging",
]
