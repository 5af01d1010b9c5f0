"""
Monitoring Module

Observability for the signal streaming service.

Components:
- Prometheus metrics collection
- Structured logging with JSON format
"""

from .metrics import SignalMetrics, create_metrics_router
from .structured_logger import StructuredLogger, setup_service_logger

__all__ = [
    "SignalMetrics",
    "create_metrics_router",
    "StructuredLogger",
    "setup_service_logger",
]
