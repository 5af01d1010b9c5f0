"""
Prometheus Metrics Module

Provides Prometheus metrics for the signal streaming service: scheduler
ticks, strategy evaluations, deliveries and subscription counts.
"""

from dataclasses import dataclass
from typing import Optional

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
    CollectorRegistry,
    generate_latest,
    CONTENT_TYPE_LATEST
)
from fastapi import APIRouter, Response


@dataclass
class SignalMetrics:
    """
    Signal service Prometheus metrics

    Usage:
        metrics = SignalMetrics(service_name="signal_stream")

        metrics.record_evaluation("combined", "success")
        metrics.record_delivery("delivered")
        metrics.tick_duration.observe(1.2)
    """

    service_name: str
    registry: Optional[CollectorRegistry] = None

    def __post_init__(self):
        """Initialize Prometheus metrics"""
        if self.registry is None:
            self.registry = CollectorRegistry()

        # Service info
        self.service_info = Info(
            'service',
            'Service information',
            registry=self.registry
        )

        # Scheduler metrics
        self.ticks_total = Counter(
            'signal_ticks_total',
            'Total scheduler ticks',
            registry=self.registry
        )

        self.tick_duration = Histogram(
            'signal_tick_duration_seconds',
            'Scheduler tick duration',
            buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0],
            registry=self.registry
        )

        # Evaluation metrics
        self.evaluations_total = Counter(
            'signal_evaluations_total',
            'Total strategy evaluations',
            ['strategy', 'outcome'],
            registry=self.registry
        )

        # Delivery metrics
        self.deliveries_total = Counter(
            'signal_deliveries_total',
            'Total signal deliveries',
            ['outcome'],
            registry=self.registry
        )

        # Subscription metrics
        self.active_clients = Gauge(
            'signal_active_clients',
            'Number of connected clients',
            registry=self.registry
        )

        self.active_subscriptions = Gauge(
            'signal_active_subscriptions',
            'Number of active (client, symbol, strategy) subscriptions',
            registry=self.registry
        )

    def set_service_info(self, version: str, environment: str = "production"):
        """Set service information"""
        self.service_info.info({
            'service_name': self.service_name,
            'version': version,
            'environment': environment
        })

    def record_tick(self, duration_seconds: float):
        """Record a completed scheduler tick"""
        self.ticks_total.inc()
        self.tick_duration.observe(duration_seconds)

    def record_evaluation(self, strategy: str, outcome: str):
        """Record a strategy evaluation (success, error, unknown_strategy)"""
        self.evaluations_total.labels(strategy=strategy, outcome=outcome).inc()

    def record_delivery(self, outcome: str):
        """Record a delivery attempt (delivered, failed, skipped)"""
        self.deliveries_total.labels(outcome=outcome).inc()

    def update_subscriptions(self, clients: int, subscriptions: int):
        """Update client and subscription gauges"""
        self.active_clients.set(clients)
        self.active_subscriptions.set(subscriptions)

    def export_metrics(self) -> bytes:
        """Export metrics in Prometheus format"""
        return generate_latest(self.registry)


def create_metrics_router(metrics: SignalMetrics) -> APIRouter:
    """
    Create FastAPI router with metrics endpoint

    Args:
        metrics: SignalMetrics instance

    Returns:
        APIRouter with /metrics endpoint
    """
    router = APIRouter(tags=["metrics"])

    @router.get("/metrics")
    async def get_metrics():
        """
        Prometheus metrics endpoint

        Returns metrics in Prometheus text format for scraping.
        """
        metrics_data = metrics.export_metrics()
        return Response(content=metrics_data, media_type=CONTENT_TYPE_LATEST)

    return router
