"""Quote source adapter: provider fallback, batching and response caching."""
import asyncio
import logging
from typing import Awaitable, Callable, Iterable, List, Optional

from app.core.cache import CacheManager
from app.core.config import settings
from app.providers import QuoteProvider, ProviderError, UpstreamUnavailable
from app.providers.models import QuoteResult, QuoteFailure, FetchManyResult
from app.services.errors import InvalidInput
from app.utils.symbols import validate_symbol

logger = logging.getLogger(__name__)


class QuoteSource:
    """Single entry point for quotes, hiding which upstream answered.

    Single-symbol lookups try the primary provider, then the secondary.
    Batch lookups go to the primary only; symbols that fail are reported
    and picked up again on the next scheduled tick.

    Batch results are accumulated and returned once per call, so a refresh
    cycle delivers all of its updates together after the last batch.
    """

    def __init__(
        self,
        primary: QuoteProvider,
        secondary: Optional[QuoteProvider] = None,
        cache: Optional[CacheManager] = None,
        batch_size: Optional[int] = None,
        batch_delay: Optional[float] = None,
        cache_ttl: Optional[int] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.primary = primary
        self.secondary = secondary
        self.cache = cache
        self.batch_size = batch_size or settings.batch_size
        self.batch_delay = settings.batch_delay_seconds if batch_delay is None else batch_delay
        self.cache_ttl = cache_ttl or settings.quote_cache_ttl_seconds
        self._sleep = sleep

    def _effective_batch_size(self, requested: Optional[int]) -> int:
        size = requested or self.batch_size
        return max(1, min(size, self.primary.max_batch_size))

    async def _cached(self, symbol: str) -> Optional[QuoteResult]:
        if self.cache is None:
            return None
        cached = await self.cache.get(CacheManager.key("quote", symbol))
        if cached is None:
            return None
        try:
            return QuoteResult.from_dict(cached)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Discarding malformed cached quote for {symbol}: {e}")
            return None

    async def _remember(self, quotes: Iterable[QuoteResult]) -> None:
        if self.cache is None:
            return
        for quote in quotes:
            await self.cache.set(CacheManager.key("quote", quote.symbol), quote.to_dict(), self.cache_ttl)

    async def fetch_one(self, symbol: str) -> QuoteResult:
        """
        Fetch the latest quote for one symbol with provider fallback.

        Args:
            symbol: Raw symbol; canonicalized before any request

        Returns:
            QuoteResult

        Raises:
            InvalidInput: If the symbol is malformed
            UpstreamUnavailable: If every provider failed
        """
        try:
            symbol = validate_symbol(symbol)
        except ValueError as e:
            raise InvalidInput(str(e)) from e

        cached = await self._cached(symbol)
        if cached is not None:
            logger.debug(f"Cache hit for {symbol}")
            return cached

        try:
            quote = await self.primary.get_quote(symbol)
        except ProviderError as primary_error:
            if self.secondary is None:
                raise UpstreamUnavailable(
                    f"Unable to fetch stock data for {symbol}: {primary_error}"
                ) from primary_error

            logger.warning(
                f"{self.primary.name} failed for {symbol}, trying {self.secondary.name}: {primary_error}"
            )
            try:
                quote = await self.secondary.get_quote(symbol)
            except ProviderError as secondary_error:
                logger.error(f"All providers failed for {symbol}")
                raise UpstreamUnavailable(
                    f"Unable to fetch stock data for {symbol}: {secondary_error}"
                ) from secondary_error

        await self._remember([quote])
        return quote

    async def fetch_many(self, symbols: Iterable[str], batch_size: Optional[int] = None) -> FetchManyResult:
        """
        Fetch quotes for many symbols in bounded batches.

        A batch that fails as a whole yields one failure per symbol in it;
        other batches are unaffected. A short delay separates consecutive
        batch calls.

        Args:
            symbols: Raw symbols; canonicalized and de-duplicated
            batch_size: Optional override, capped by the provider limit

        Returns:
            FetchManyResult with successes and per-symbol failures
        """
        outcome = FetchManyResult()
        canonical: List[str] = []
        seen = set()

        for raw in symbols:
            try:
                symbol = validate_symbol(raw)
            except ValueError as e:
                outcome.failures.append(QuoteFailure(str(raw), str(e)))
                continue
            if symbol not in seen:
                seen.add(symbol)
                canonical.append(symbol)

        size = self._effective_batch_size(batch_size)

        for index in range(0, len(canonical), size):
            batch = canonical[index:index + size]
            try:
                batch_outcome = await self.primary.get_quotes(batch)
            except Exception as e:
                logger.error(f"Batch update error for {', '.join(batch)}: {e}")
                outcome.failures.extend(QuoteFailure(symbol, str(e)) for symbol in batch)
            else:
                outcome.extend(batch_outcome)
                await self._remember(batch_outcome.results)

            # Small delay between batches to respect API limits
            if index + size < len(canonical):
                await self._sleep(self.batch_delay)

        logger.debug(
            f"Fetched {len(outcome.results)} quotes, {len(outcome.failures)} failures "
            f"({len(canonical)} symbols, batch size {size})"
        )
        return outcome

    async def close(self):
        """Close provider HTTP clients."""
        await self.primary.close()
        if self.secondary is not None:
            await self.secondary.close()


def create_quote_source(cache: Optional[CacheManager] = None) -> QuoteSource:
    """Build the default source: IEX Cloud primary, Alpha Vantage fallback."""
    from app.providers.iex import IexCloudProvider
    from app.providers.alpha_vantage import AlphaVantageProvider

    if not settings.iex_cloud_api_key:
        logger.warning("IEX_CLOUD_API_KEY is not set; quote lookups will rely on the fallback provider")
    if not settings.alpha_vantage_api_key:
        logger.info("ALPHA_VANTAGE_API_KEY is not set; no fallback provider for single lookups")

    return QuoteSource(
        primary=IexCloudProvider(),
        secondary=AlphaVantageProvider() if settings.alpha_vantage_api_key else None,
        cache=cache,
    )
