"""Observability for indi-autodetect.

Structured logging and operation statistics.

Example:
    from indi_autodetect.observability import get_logger, LogContext

    logger = get_logger(__name__)

    logger.info("Scanner started")

    with LogContext(device_id="03c3:294a", operation="setup"):
        logger.info("Installing driver", package="indi-asi")

Statistics Example:
    from indi_autodetect.observability import OperationStats

    stats = OperationStats()
    supervisor = ControlServerSupervisor(..., stats=stats)

    stats.get_summary("start").p95_duration_ms
"""

from indi_autodetect.observability.logging import (
    LogContext,
    StructuredLogger,
    configure_logging,
    get_logger,
    reset_logging,
)
from indi_autodetect.observability.stats import (
    OperationStats,
    OperationSummary,
)

__all__ = [
    # Logging
    "LogContext",
    "StructuredLogger",
    "configure_logging",
    "get_logger",
    "reset_logging",
    # Statistics
    "OperationStats",
    "OperationSummary",
]
