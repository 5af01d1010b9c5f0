"""
Subscription Registry.

Tracks which (symbol, strategy) pairs each connected client is subscribed
to. Connection handlers mutate it while scheduler ticks read consistent
snapshots, so every access goes through a lock.
"""
import logging
import threading
from dataclasses import dataclass
from typing import Dict, List


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Subscription:
    """A client's standing request for signals on a (symbol, strategy) pair."""
    client_id: str
    symbol: str
    strategy: str


class SubscriptionRegistry:
    """Client id -> ordered set of subscriptions."""

    def __init__(self):
        """Initialize an empty registry."""
        # Dict values are used as insertion-ordered sets
        self._subscriptions: Dict[str, Dict[Subscription, None]] = {}
        self._lock = threading.Lock()

    def connect(self, client_id: str) -> None:
        """
        Register a newly connected client with no subscriptions.

        Args:
            client_id: Connection identifier
        """
        with self._lock:
            self._subscriptions.setdefault(client_id, {})
        logger.info(f"Client connected: {client_id}")

    def subscribe(self, client_id: str, symbol: str, strategy: str) -> bool:
        """
        Add a subscription for a connected client.

        Subscribing twice to the same pair is a no-op.

        Args:
            client_id: Connection identifier
            symbol: Instrument symbol
            strategy: Strategy name

        Returns:
            True if a new subscription was added
        """
        subscription = Subscription(client_id, symbol, strategy)
        with self._lock:
            client_subscriptions = self._subscriptions.get(client_id)
            if client_subscriptions is None:
                added = None
            elif subscription in client_subscriptions:
                added = False
            else:
                client_subscriptions[subscription] = None
                added = True

        if added is None:
            logger.warning(f"Ignoring subscribe from unknown client {client_id}: {symbol}, {strategy}")
            return False
        if added:
            logger.info(f"{client_id} subscribed: {symbol}, {strategy}")
        return added

    def unsubscribe(self, client_id: str, symbol: str, strategy: str) -> bool:
        """
        Remove a subscription if present.

        Returns:
            True if a subscription was removed
        """
        subscription = Subscription(client_id, symbol, strategy)
        with self._lock:
            client_subscriptions = self._subscriptions.get(client_id, {})
            removed = subscription in client_subscriptions
            if removed:
                del client_subscriptions[subscription]

        if removed:
            logger.info(f"{client_id} unsubscribed: {symbol}, {strategy}")
        return removed

    def disconnect(self, client_id: str) -> int:
        """
        Drop a client and all of its subscriptions.

        Returns:
            Number of subscriptions removed
        """
        with self._lock:
            removed = self._subscriptions.pop(client_id, {})
        logger.info(f"Client disconnected: {client_id} ({len(removed)} subscriptions removed)")
        return len(removed)

    def is_connected(self, client_id: str) -> bool:
        with self._lock:
            return client_id in self._subscriptions

    def subscriptions_for(self, client_id: str) -> List[Subscription]:
        """Get a copy of one client's subscriptions."""
        with self._lock:
            return list(self._subscriptions.get(client_id, {}))

    def snapshot(self) -> List[Subscription]:
        """
        Get a consistent copy of every active subscription.

        Returns:
            Subscriptions grouped by client in connection order
        """
        with self._lock:
            return [
                subscription
                for client_subscriptions in self._subscriptions.values()
                for subscription in client_subscriptions
            ]

    @property
    def client_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def __len__(self) -> int:
        with self._lock:
            return sum(len(subs) for subs in self._subscriptions.values())
