"""Wiring of the real-time streaming components."""
import logging
from dataclasses import dataclass

from apscheduler.triggers.interval import IntervalTrigger

from app.core.auth import JwtAuthVerifier
from app.core.cache import CacheManager
from app.core.redis import close_redis
from app.scheduler.update_scheduler import UpdateScheduler
from app.services.broadcaster import Broadcaster
from app.services.connection_manager import ConnectionManager
from app.services.quote_source import QuoteSource, create_quote_source
from app.services.quote_store import SqlQuoteStore
from app.services.subscription_registry import SubscriptionRegistry
from app.services.watchlist_service import SqlWatchlistStore

logger = logging.getLogger(__name__)

CACHE_CLEANUP_JOB_ID = "cache_cleanup"


@dataclass
class StreamingRuntime:
    """Everything one process needs to serve the quote stream."""
    cache: CacheManager
    registry: SubscriptionRegistry
    quote_source: QuoteSource
    connection_manager: ConnectionManager
    broadcaster: Broadcaster
    update_scheduler: UpdateScheduler

    def start(self) -> None:
        self.update_scheduler.scheduler.add_job(
            self.cache.cleanup_memory,
            IntervalTrigger(minutes=5),
            id=CACHE_CLEANUP_JOB_ID,
            name="Cache memory cleanup",
            replace_existing=True,
        )
        self.update_scheduler.start()

    async def shutdown(self) -> None:
        self.connection_manager.close()
        self.update_scheduler.shutdown()
        await self.quote_source.close()
        await close_redis()


def build_runtime(quote_source: QuoteSource = None) -> StreamingRuntime:
    """Create the registry, source, manager, broadcaster and scheduler."""
    cache = CacheManager()
    quote_source = quote_source or create_quote_source(cache)
    quote_store = SqlQuoteStore()
    registry = SubscriptionRegistry()

    manager = ConnectionManager(
        registry=registry,
        quote_source=quote_source,
        auth_verifier=JwtAuthVerifier(),
        quote_store=quote_store,
        watchlist_store=SqlWatchlistStore(),
    )
    broadcaster = Broadcaster(registry, manager.get_channel)
    update_scheduler = UpdateScheduler(
        registry=registry,
        quote_source=quote_source,
        broadcaster=broadcaster,
        quote_store=quote_store,
    )
    manager.scheduler = update_scheduler

    logger.info("Streaming runtime assembled")
    return StreamingRuntime(
        cache=cache,
        registry=registry,
        quote_source=quote_source,
        connection_manager=manager,
        broadcaster=broadcaster,
        update_scheduler=update_scheduler,
    )
