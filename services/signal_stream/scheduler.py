"""
Signal Polling Scheduler.

Every tick evaluates each subscribed (symbol, strategy) pair once and
pushes the result to every client holding that subscription.
"""
import asyncio
import logging
import time
import uuid
from collections import OrderedDict
from typing import Any, Dict, List, Mapping, Optional, Tuple

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from services.signal_engine.data_fetcher import DataFetcher
from services.signal_engine.models import signal_to_payload
from services.signal_engine.strategies import STRATEGIES, Evaluator
from services.signal_stream.signal_publisher import SignalPublisher
from services.signal_stream.subscription_registry import Subscription, SubscriptionRegistry
from shared.monitoring.metrics import SignalMetrics
from shared.monitoring.structured_logger import log_business_event, log_error, tick_id_var

logger = logging.getLogger(__name__)

TICK_JOB_ID = 'signal_tick'


class SignalPollingScheduler:
    """
    Drives periodic strategy evaluation for all active subscriptions.
    """

    def __init__(
        self,
        registry: SubscriptionRegistry,
        publisher: SignalPublisher,
        fetcher: DataFetcher,
        strategies: Optional[Mapping[str, Evaluator]] = None,
        interval_seconds: int = 60,
        max_overlapping_ticks: int = 2,
        metrics: Optional[SignalMetrics] = None
    ):
        """
        Initialize the scheduler.

        Args:
            registry: Subscription registry to snapshot on every tick
            publisher: Delivers results to clients
            fetcher: Market data source handed to evaluators
            strategies: Strategy name -> evaluator (defaults to all built-in strategies)
            interval_seconds: Seconds between ticks
            max_overlapping_ticks: Ticks allowed to run at once when one overruns the interval
            metrics: Optional Prometheus metrics
        """
        self.registry = registry
        self.publisher = publisher
        self.fetcher = fetcher
        self.strategies = STRATEGIES if strategies is None else strategies
        self.interval_seconds = interval_seconds
        self.max_overlapping_ticks = max_overlapping_ticks
        self.metrics = metrics

        self.scheduler: Optional[AsyncIOScheduler] = None
        self.running = False

        logger.info(
            f"SignalPollingScheduler initialized "
            f"(interval: {interval_seconds}s, strategies: {len(self.strategies)})"
        )

    def _job_executed_listener(self, event):
        """Log successful job execution."""
        logger.debug(f"Job {event.job_id} executed successfully")

    def _job_error_listener(self, event):
        """Log job execution errors."""
        logger.error(f"Job {event.job_id} failed with exception: {event.exception}")

    def start(self):
        """Schedule the tick job on the running event loop."""
        if self.running:
            logger.warning("Scheduler is already running")
            return

        self.scheduler = AsyncIOScheduler(
            job_defaults={
                'coalesce': True,  # Combine missed runs into one
                'max_instances': self.max_overlapping_ticks,
                'misfire_grace_time': self.interval_seconds
            }
        )
        self.scheduler.add_listener(self._job_executed_listener, EVENT_JOB_EXECUTED)
        self.scheduler.add_listener(self._job_error_listener, EVENT_JOB_ERROR)

        self.scheduler.add_job(
            func=self.run_tick,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=TICK_JOB_ID,
            name='Signal Evaluation Tick',
            replace_existing=True
        )
        self.scheduler.start()
        self.running = True
        logger.info(f"Scheduler started, ticking every {self.interval_seconds}s")

    def stop(self):
        """Stop ticking. Ticks already in flight are not awaited."""
        if not self.running:
            return

        self.scheduler.shutdown(wait=False)
        self.scheduler = None
        self.running = False
        logger.info("Scheduler stopped")

    @staticmethod
    def _group_by_pair(
        subscriptions: List[Subscription]
    ) -> "OrderedDict[Tuple[str, str], List[str]]":
        pairs: "OrderedDict[Tuple[str, str], List[str]]" = OrderedDict()
        for subscription in subscriptions:
            client_ids = pairs.setdefault((subscription.symbol, subscription.strategy), [])
            if subscription.client_id not in client_ids:
                client_ids.append(subscription.client_id)
        return pairs

    async def _evaluate(self, symbol: str, strategy: str) -> Optional[Dict[str, Any]]:
        """
        Evaluate one pair.

        Returns:
            The message to deliver, or None if the strategy is unknown
        """
        evaluator = self.strategies.get(strategy)
        if evaluator is None:
            logger.error(f"Unknown strategy: {strategy} (symbol {symbol})")
            self._record_evaluation(strategy, 'unknown_strategy')
            return None

        try:
            result = await evaluator(symbol, self.fetcher)
            self._record_evaluation(strategy, 'success')
            return {"symbol": symbol, "strategy": strategy, "signal": signal_to_payload(result)}
        except Exception as e:
            log_error(logger, e, {"symbol": symbol, "strategy": strategy})
            self._record_evaluation(strategy, 'error')
            return {"symbol": symbol, "strategy": strategy, "error": str(e)}

    async def _deliver(self, client_id: str, message: Dict[str, Any]) -> str:
        # Client may have disconnected after the snapshot was taken
        if not self.registry.is_connected(client_id):
            return "skipped"
        try:
            delivered = await self.publisher.deliver(client_id, message)
        except Exception as e:
            logger.error(f"Failed to deliver {message['strategy']} for {message['symbol']} to {client_id}: {e}")
            delivered = False
        return "delivered" if delivered else "failed"

    async def _process_pair(self, symbol: str, strategy: str, client_ids: List[str]) -> List[str]:
        """
        Evaluate one pair and deliver the result to its clients right away.

        Returns:
            One delivery outcome per client (delivered, failed or skipped)
        """
        message = await self._evaluate(symbol, strategy)
        if message is None:
            return ["skipped"] * len(client_ids)

        return list(await asyncio.gather(
            *(self._deliver(client_id, message) for client_id in client_ids)
        ))

    async def run_tick(self) -> Dict[str, int]:
        """
        Evaluate every subscribed pair once and deliver the results.

        Pairs run concurrently and each delivers as soon as its own
        evaluation finishes, so a slow or failing pair never delays or
        affects other pairs or clients.

        Returns:
            Statistics: total deliveries attempted, delivered, failed, skipped
        """
        tick_token = tick_id_var.set(uuid.uuid4().hex[:12])
        started = time.monotonic()
        stats = {"total": 0, "delivered": 0, "failed": 0, "skipped": 0}

        try:
            subscriptions = self.registry.snapshot()
            if self.metrics:
                self.metrics.update_subscriptions(self.registry.client_count, len(subscriptions))

            pairs = self._group_by_pair(subscriptions)
            if not pairs:
                logger.debug("No active subscriptions, skipping tick")
                return stats

            logger.info(f"Tick started: {len(pairs)} pairs for {len(subscriptions)} subscriptions")

            results = await asyncio.gather(
                *(
                    self._process_pair(symbol, strategy, client_ids)
                    for (symbol, strategy), client_ids in pairs.items()
                ),
                return_exceptions=True
            )

            for ((symbol, strategy), client_ids), outcomes in zip(pairs.items(), results):
                stats["total"] += len(client_ids)
                if isinstance(outcomes, BaseException):
                    logger.error(f"Processing of {symbol}/{strategy} failed: {outcomes}")
                    outcomes = ["failed"] * len(client_ids)
                for outcome in outcomes:
                    stats[outcome] += 1
                    if self.metrics:
                        self.metrics.record_delivery(outcome)

            log_business_event(logger, "tick_completed", pairs=len(pairs), **stats)
            return stats

        finally:
            if self.metrics:
                self.metrics.record_tick(time.monotonic() - started)
            tick_id_var.reset(tick_token)

    def _record_evaluation(self, strategy: str, outcome: str):
        if self.metrics:
            self.metrics.record_evaluation(strategy, outcome)
