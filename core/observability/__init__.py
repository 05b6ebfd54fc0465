"""
Observability Module for the Component Library Import Pipeline

Provides:
- Structured logging with correlation IDs
- Metrics collection (match tiers, finalize outcomes, processing times)
"""

from core.observability.metrics import (
    MetricsCollector,
    get_metrics,
    record_match_result,
    record_semantic_failure,
    record_import_completed,
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
    "record_match_result",
    "record_semantic_failure",
    "record_import_completed",
    "record_processing_time",
    # Logging
    "get_logger",
    "configure_logging",
    "CorrelationContext",
    "with_correlation",
]
