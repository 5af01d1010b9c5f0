"""
Signal Publishers.

Deliver computed signals to subscribers. Delivery is best effort: a
publisher logs transport failures and reports them through its return value
instead of raising.
"""
import asyncio
import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Sequence

import redis
from fastapi import WebSocket
from redis.exceptions import RedisError

from services.signal_engine.timeframes import get_utc_now


logger = logging.getLogger(__name__)


class SignalPublisher(ABC):
    """Delivers signal messages to a client."""

    @abstractmethod
    async def deliver(self, client_id: str, message: Dict[str, Any]) -> bool:
        """
        Deliver one message to one client.

        Args:
            client_id: Connection identifier
            message: ``{symbol, strategy, signal}`` or ``{symbol, strategy, error}``

        Returns:
            True if the message was handed to the transport
        """

    async def close(self):
        """Release transport resources."""
        return None


class WebSocketSignalPublisher(SignalPublisher):
    """Pushes signals over the WebSocket of each connected client."""

    EVENT_SIGNAL = "signal"

    def __init__(self):
        self._connections: Dict[str, WebSocket] = {}

    def register(self, client_id: str, websocket: WebSocket):
        self._connections[client_id] = websocket

    def unregister(self, client_id: str):
        self._connections.pop(client_id, None)

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    async def deliver(self, client_id: str, message: Dict[str, Any]) -> bool:
        websocket = self._connections.get(client_id)
        if websocket is None:
            logger.debug(f"No open connection for {client_id}, dropping signal")
            return False

        try:
            await websocket.send_json({"event": self.EVENT_SIGNAL, "data": message})
            return True
        except Exception as e:
            logger.warning(f"Failed to send signal to {client_id}: {e}")
            return False

    async def close(self):
        self._connections.clear()


class RedisSignalPublisher(SignalPublisher):
    """Mirrors delivered signals to Redis for consumption by other services."""

    # Event channels
    CHANNEL_SIGNAL_UPDATE = "stock:signal:update"

    def __init__(
        self,
        redis_host: str = "localhost",
        redis_port: int = 6379,
        redis_db: int = 0,
        redis_password: Optional[str] = None,
        channel: str = CHANNEL_SIGNAL_UPDATE,
        latest_signal_ttl: int = 3600
    ):
        """
        Initialize the Redis publisher.

        Args:
            redis_host: Redis server host
            redis_port: Redis server port
            redis_db: Redis database number
            redis_password: Redis password (optional)
            channel: Pub/sub channel for signal events
            latest_signal_ttl: Seconds to keep the latest signal per pair
        """
        self.channel = channel
        self.latest_signal_ttl = latest_signal_ttl
        self.redis_client = redis.Redis(
            host=redis_host,
            port=redis_port,
            db=redis_db,
            password=redis_password,
            decode_responses=True
        )
        self._test_connection()

    def _test_connection(self):
        """Test Redis connection."""
        try:
            self.redis_client.ping()
            logger.info("Successfully connected to Redis")
        except RedisError as e:
            logger.error(f"Failed to connect to Redis: {e}")
            raise

    def _serialize_event(self, data: Dict[str, Any]) -> str:
        """
        Serialize event data to JSON.

        Args:
            data: Event data dictionary

        Returns:
            JSON string
        """
        def converter(o):
            if isinstance(o, Enum):
                return o.value
            if isinstance(o, datetime):
                return o.isoformat()
            raise TypeError(f"Object of type {type(o)} is not JSON serializable")

        return json.dumps(data, default=converter)

    def publish_signal(self, client_id: str, message: Dict[str, Any]) -> bool:
        """
        Publish a signal event.

        Returns:
            True if published successfully
        """
        try:
            event = {
                "event_type": "signal",
                "client_id": client_id,
                "timestamp": get_utc_now().isoformat(),
                "data": message
            }
            subscribers = self.redis_client.publish(
                self.channel,
                self._serialize_event(event)
            )
            logger.debug(
                f"Published {message.get('strategy')} signal for {message.get('symbol')} "
                f"to {subscribers} subscribers"
            )
            return True

        except RedisError as e:
            logger.error(f"Failed to publish signal for {message.get('symbol')}: {e}")
            return False

    def set_latest_signal(self, symbol: str, strategy: str, signal: Any):
        """Cache the latest signal for a (symbol, strategy) pair."""
        try:
            key = f"stock:latest_signal:{symbol}:{strategy}"
            self.redis_client.setex(key, self.latest_signal_ttl, self._serialize_event(signal))
        except RedisError as e:
            logger.error(f"Failed to cache signal for {symbol}/{strategy}: {e}")

    def get_latest_signal(self, symbol: str, strategy: str) -> Optional[Any]:
        """Retrieve the cached signal for a (symbol, strategy) pair."""
        try:
            value = self.redis_client.get(f"stock:latest_signal:{symbol}:{strategy}")
            if value:
                return json.loads(value)
            return None
        except RedisError as e:
            logger.error(f"Failed to retrieve cached signal for {symbol}/{strategy}: {e}")
            return None

    def _deliver_sync(self, client_id: str, message: Dict[str, Any]) -> bool:
        published = self.publish_signal(client_id, message)
        if published and "signal" in message:
            self.set_latest_signal(message["symbol"], message["strategy"], message["signal"])
        return published

    async def deliver(self, client_id: str, message: Dict[str, Any]) -> bool:
        return await asyncio.to_thread(self._deliver_sync, client_id, message)

    async def close(self):
        """Close Redis connection."""
        try:
            self.redis_client.close()
            logger.info("Redis connection closed")
        except Exception as e:
            logger.error(f"Error closing Redis connection: {e}")


class CompositeSignalPublisher(SignalPublisher):
    """Fans each delivery out to several publishers."""

    def __init__(self, publishers: Sequence[SignalPublisher]):
        self.publishers = list(publishers)

    async def deliver(self, client_id: str, message: Dict[str, Any]) -> bool:
        results = await asyncio.gather(
            *(publisher.deliver(client_id, message) for publisher in self.publishers),
            return_exceptions=True
        )
        delivered = False
        for publisher, result in zip(self.publishers, results):
            if isinstance(result, BaseException):
                logger.error(f"{type(publisher).__name__} failed for {client_id}: {result}")
            elif result:
                delivered = True
        return delivered

    async def close(self):
        for publisher in self.publishers:
            await publisher.close()
