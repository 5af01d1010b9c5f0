"""
Main entry point for Signal Stream Service.

Serves the WebSocket endpoint clients use to subscribe to
(symbol, strategy) pairs and runs the polling scheduler that pushes
signals to them.
"""
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Literal, Optional

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field, ValidationError

from services.signal_engine.data_fetcher import (
    DataFetcher, ThrottledDataFetcher, YahooFinanceFetcher
)
from services.signal_engine.timeframes import get_utc_now
from services.signal_stream import __version__
from services.signal_stream.config import SignalStreamSettings, get_settings
from services.signal_stream.scheduler import SignalPollingScheduler
from services.signal_stream.signal_publisher import (
    CompositeSignalPublisher, RedisSignalPublisher, SignalPublisher, WebSocketSignalPublisher
)
from services.signal_stream.subscription_registry import SubscriptionRegistry
from shared.monitoring.metrics import SignalMetrics, create_metrics_router
from shared.monitoring.structured_logger import (
    client_id_var, log_business_event, setup_service_logger
)

logger = logging.getLogger(__name__)

BANNER = "Stock Signal WebSocket Server Running"


class SubscriptionRequest(BaseModel):
    """Inbound client message."""
    event: Literal["subscribe", "unsubscribe"]
    symbol: str = Field(..., min_length=1, description="Instrument symbol, e.g. AAPL")
    strategy: str = Field(..., min_length=1, description="Strategy name, e.g. combined")


def _build_redis_publisher(settings: SignalStreamSettings) -> Optional[RedisSignalPublisher]:
    if not settings.redis_enabled:
        return None

    return RedisSignalPublisher(
        redis_host=settings.redis_host,
        redis_port=settings.redis_port,
        redis_db=settings.redis_db,
        redis_password=settings.redis_password,
        channel=settings.redis_channel,
        latest_signal_ttl=settings.latest_signal_ttl_seconds
    )


def create_app(
    settings: Optional[SignalStreamSettings] = None,
    fetcher: Optional[DataFetcher] = None
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Service settings (defaults to environment settings)
        fetcher: Market data source (defaults to throttled Yahoo Finance)

    Returns:
        Configured FastAPI app; components are exposed on ``app.state``
    """
    settings = settings or get_settings()

    if fetcher is None:
        fetcher = ThrottledDataFetcher(
            YahooFinanceFetcher(request_timeout_seconds=settings.request_timeout_seconds),
            max_concurrent=settings.max_concurrent_fetches
        )

    registry = SubscriptionRegistry()
    websocket_publisher = WebSocketSignalPublisher()
    redis_publisher = _build_redis_publisher(settings)
    publisher: SignalPublisher = websocket_publisher
    if redis_publisher:
        publisher = CompositeSignalPublisher([websocket_publisher, redis_publisher])
    metrics = SignalMetrics(service_name=settings.service_name) if settings.enable_metrics else None
    scheduler = SignalPollingScheduler(
        registry=registry,
        publisher=publisher,
        fetcher=fetcher,
        interval_seconds=settings.poll_interval_seconds,
        max_overlapping_ticks=settings.max_overlapping_ticks,
        metrics=metrics
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("=" * 60)
        logger.info(f"Signal Stream Service v{__version__} starting on port {settings.port}")
        logger.info("=" * 60)
        scheduler.start()
        try:
            yield
        finally:
            scheduler.stop()
            await publisher.close()
            logger.info("Signal Stream Service stopped")

    app = FastAPI(
        title="Stock Signal Stream",
        description="Pushes technical-analysis signals to subscribed WebSocket clients",
        version=__version__,
        lifespan=lifespan
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"]
    )

    app.state.settings = settings
    app.state.registry = registry
    app.state.publisher = publisher
    app.state.websocket_publisher = websocket_publisher
    app.state.redis_publisher = redis_publisher
    app.state.scheduler = scheduler
    app.state.metrics = metrics

    if metrics:
        metrics.set_service_info(__version__, "debug" if settings.debug else "production")
        app.include_router(create_metrics_router(metrics))

    def _update_gauges():
        if metrics:
            metrics.update_subscriptions(registry.client_count, len(registry))

    @app.get("/", response_class=PlainTextResponse)
    async def root():
        return BANNER

    @app.get("/health")
    async def health_check():
        """Service status with connection and subscription counts."""
        return {
            "status": "healthy",
            "service": settings.service_name,
            "version": __version__,
            "timestamp": get_utc_now().isoformat(),
            "scheduler_running": scheduler.running,
            "clients": registry.client_count,
            "subscriptions": len(registry)
        }

    @app.get("/signals/{symbol}/{strategy}")
    def latest_signal(symbol: str, strategy: str):
        """Latest signal cached by the Redis mirror for a (symbol, strategy) pair."""
        if redis_publisher is None:
            raise HTTPException(status_code=404, detail="Signal cache is disabled")

        signal = redis_publisher.get_latest_signal(symbol, strategy)
        if signal is None:
            raise HTTPException(status_code=404, detail=f"No cached signal for {symbol}/{strategy}")
        return {"symbol": symbol, "strategy": strategy, "signal": signal}

    @app.websocket("/ws")
    async def signal_socket(websocket: WebSocket):
        """
        Client session.

        Inbound messages are ``{"event": "subscribe"|"unsubscribe", "symbol",
        "strategy"}``. Signals are pushed as ``{"event": "signal", "data": ...}``.
        """
        await websocket.accept()
        client_id = uuid.uuid4().hex
        client_id_var.set(client_id)

        registry.connect(client_id)
        websocket_publisher.register(client_id, websocket)
        _update_gauges()
        log_business_event(logger, "client_connected", client=client_id)

        try:
            while True:
                raw = await websocket.receive_text()
                try:
                    request = SubscriptionRequest.model_validate_json(raw)
                except ValidationError as e:
                    logger.warning(f"Invalid message from {client_id}: {raw[:200]}")
                    await websocket.send_json({
                        "event": "error",
                        "message": f"Invalid message: {e.errors()[0]['msg']}"
                    })
                    continue

                if request.event == "subscribe":
                    registry.subscribe(client_id, request.symbol, request.strategy)
                else:
                    registry.unsubscribe(client_id, request.symbol, request.strategy)
                _update_gauges()

        except WebSocketDisconnect:
            logger.debug(f"WebSocket closed by {client_id}")
        finally:
            websocket_publisher.unregister(client_id)
            removed = registry.disconnect(client_id)
            _update_gauges()
            log_business_event(logger, "client_disconnected", client=client_id, subscriptions_removed=removed)

    return app


def main():
    """Main entry point."""
    import uvicorn

    settings = get_settings()
    setup_service_logger(
        settings.service_name,
        level=settings.log_level,
        log_dir=settings.log_dir,
        json_format=settings.log_format == "json"
    )

    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower()
    )


if __name__ == "__main__":
    main()
