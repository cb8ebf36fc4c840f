"""
Observability Module for the Separation Service

Provides:
- Structured logging with correlation IDs
- Metrics collection (operations, processing times)
"""

from core.observability.metrics import (
    MetricsCollector,
    get_metrics,
    record_operation_started,
    record_operation_completed,
    record_operation_failed,
    record_processing_time,
)

from core.observability.logging import (
    get_logger,
    configure_logging,
    CorrelationContext,
    with_correlation,
)

__all__ = [
    # Metrics
    "MetricsCollector",
    "get_metrics",
    "record_operation_started",
    "record_operation_completed",
    "record_operation_failed",
    "record_processing_time",
    # Logging
    "get_logger",
    "configure_logging",
    "CorrelationContext",
    "with_correlation",
]
