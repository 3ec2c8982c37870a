"""
Observability Module for the Delivery Service

Provides:
- Structured logging with correlation IDs
- Metrics collection (cycles, deliveries, session health, processing times)
"""

from core.observability.metrics import (
    MetricsCollector,
    get_metrics,
    record_delivery_outcome,
    record_probe,
    record_state_change,
    record_reconnection,
    record_processing_time,
)

from core.observability.logging import (
    configure_logging,
    get_logger,
    CorrelationContext,
    with_correlation,
)

__all__ = [
    # Metrics
    "MetricsCollector",
    "get_metrics",
    "record_delivery_outcome",
    "record_probe",
    "record_state_change",
    "record_reconnection",
    "record_processing_time",
    # Logging
    "configure_logging",
    "get_logger",
    "CorrelationContext",
    "with_correlation",
]
