"""Periodic refresh of every subscribed symbol."""
import asyncio
import logging
from typing import Iterable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.jobstores.base import JobLookupError

from app.core.config import settings
from app.providers.models import FetchManyResult
from app.services.broadcaster import Broadcaster
from app.services.quote_source import QuoteSource
from app.services.quote_store import QuoteStore
from app.services.subscription_registry import SubscriptionRegistry

logger = logging.getLogger(__name__)

UPDATE_JOB_ID = "broadcast_stock_updates"


class UpdateScheduler:
    """
    Runs the fetch-and-broadcast cycle on a fixed interval while at least
    one symbol is subscribed.

    The interval job is added when the registry becomes occupied and
    removed when it empties; nothing else starts or stops it.
    """

    def __init__(
        self,
        registry: SubscriptionRegistry,
        quote_source: QuoteSource,
        broadcaster: Broadcaster,
        quote_store: Optional[QuoteStore] = None,
        scheduler: Optional[AsyncIOScheduler] = None,
        interval: Optional[int] = None,
    ):
        self.registry = registry
        self.quote_source = quote_source
        self.broadcaster = broadcaster
        self.quote_store = quote_store
        self.scheduler = scheduler or AsyncIOScheduler()
        self.interval = interval or settings.update_interval_seconds
        self._running = False
        self._lock = asyncio.Lock()

        registry.add_listener(self.on_registry_transition)

    @property
    def is_running(self) -> bool:
        """True while the interval job is registered."""
        return self._running

    def on_registry_transition(self, occupied: bool) -> None:
        if occupied and not self._running:
            logger.info(f"Starting real-time update interval ({self.interval}s)")
            self.scheduler.add_job(
                self.tick,
                IntervalTrigger(seconds=self.interval),
                id=UPDATE_JOB_ID,
                name="Broadcast stock updates",
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )
            self._running = True
        elif not occupied and self._running:
            logger.info("Stopping real-time update interval")
            try:
                self.scheduler.remove_job(UPDATE_JOB_ID)
            except JobLookupError:
                logger.debug("Update job already removed")
            self._running = False

    async def _persist(self, outcome: FetchManyResult) -> None:
        if self.quote_store is None:
            return
        for quote in outcome.results:
            try:
                await self.quote_store.upsert(quote)
            except Exception as e:
                # Storage problems never hold back delivery
                logger.error(f"Failed to persist quote for {quote.symbol}: {e}")

    async def tick(self) -> None:
        """One refresh cycle. Errors are logged; the job keeps running."""
        try:
            async with self._lock:
                symbols = self.registry.all_subscribed_symbols()
                if not symbols:
                    return

                logger.info(f"Broadcasting updates for {len(symbols)} symbols")
                outcome = await self.quote_source.fetch_many(symbols)
                await self._persist(outcome)
                report = await self.broadcaster.deliver(outcome.results, outcome.failures)

                if outcome.failures:
                    logger.warning(
                        f"Update cycle: {len(outcome.failures)} symbols failed "
                        f"({', '.join(outcome.symbols_failed[:10])})"
                    )
                logger.debug(
                    f"Update cycle done: {len(outcome.results)} quotes, "
                    f"{report.delivered} messages sent, {report.failed} send failures"
                )
        except Exception as e:
            logger.error(f"Error in update interval: {e}", exc_info=True)

    async def force_update(self, symbols: Iterable[str]) -> FetchManyResult:
        """
        Out-of-band fetch and broadcast for specific symbols.

        Serialized with scheduled ticks. Messages are marked as forced.

        Returns:
            FetchManyResult for the requested symbols
        """
        async with self._lock:
            outcome = await self.quote_source.fetch_many(symbols)
            await self._persist(outcome)
            await self.broadcaster.deliver(outcome.results, outcome.failures, forced=True)

        logger.info(
            f"Forced update: {len(outcome.results)} quotes, {len(outcome.failures)} failures"
        )
        return outcome

    def start(self) -> None:
        """Start the underlying APScheduler (jobs may already be queued)."""
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Update scheduler started")

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Update scheduler shut down")
        self._running = False
