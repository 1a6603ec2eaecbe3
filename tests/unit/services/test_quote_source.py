"""Unit tests for QuoteSource.

This module tests provider fallback for single lookups, batching and
per-batch failure isolation for multi-symbol fetches, and the response
cache.
"""
import pytest
from unittest.mock import AsyncMock

from app.core.cache import CacheManager
from app.providers import UpstreamUnavailable
from app.providers.models import FetchManyResult
from app.services.errors import InvalidInput
from app.services.quote_source import QuoteSource
from tests.conftest import FakeProvider, create_quote


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def memory_cache():
    """CacheManager without Redis."""
    return CacheManager(redis_factory=AsyncMock(return_value=None))


# ============================================================================
# Tests for fetch_one
# ============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
class TestFetchOne:
    """Test fetch_one method."""

    async def test_primary_success(self, fake_provider):
        """✅ Primary answers → its quote is returned."""
        source = QuoteSource(fake_provider, batch_delay=0)

        quote = await source.fetch_one(" aapl ")

        assert quote.symbol == "AAPL"
        assert fake_provider.quote_calls == ["AAPL"]

    async def test_falls_back_to_secondary(self):
        """✅ Primary fails → secondary quote."""
        primary = FakeProvider(name="primary", fail_symbols={"AAPL"})
        secondary = FakeProvider(name="secondary")
        source = QuoteSource(primary, secondary, batch_delay=0)

        quote = await source.fetch_one("AAPL")

        assert quote.source == "secondary"
        assert secondary.quote_calls == ["AAPL"]

    async def test_both_fail(self):
        """❌ Both providers fail → UpstreamUnavailable."""
        primary = FakeProvider(name="primary", fail_symbols={"AAPL"})
        secondary = FakeProvider(name="secondary", fail_symbols={"AAPL"})
        source = QuoteSource(primary, secondary, batch_delay=0)

        with pytest.raises(UpstreamUnavailable) as exc:
            await source.fetch_one("AAPL")

        assert "AAPL" in str(exc.value)

    async def test_no_secondary(self):
        """❌ Primary fails without a fallback → UpstreamUnavailable."""
        source = QuoteSource(FakeProvider(fail_symbols={"AAPL"}), batch_delay=0)

        with pytest.raises(UpstreamUnavailable):
            await source.fetch_one("AAPL")

    async def test_invalid_symbol(self, fake_provider):
        """❌ Malformed symbol → InvalidInput, no upstream call."""
        source = QuoteSource(fake_provider, batch_delay=0)

        with pytest.raises(InvalidInput):
            await source.fetch_one("not a symbol")

        assert fake_provider.quote_calls == []

    async def test_cache_deduplicates_lookups(self, fake_provider, memory_cache):
        """✅ Second lookup within TTL is served from cache."""
        source = QuoteSource(fake_provider, cache=memory_cache, batch_delay=0)

        first = await source.fetch_one("AAPL")
        second = await source.fetch_one("AAPL")

        assert fake_provider.quote_calls == ["AAPL"]
        assert second == first


# ============================================================================
# Tests for fetch_many
# ============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
class TestFetchMany:
    """Test fetch_many method."""

    async def test_batches_respect_size(self, fake_provider, no_sleep):
        """✅ 25 symbols with batch size 10 → 3 upstream calls."""
        source = QuoteSource(fake_provider, batch_size=10, sleep=no_sleep)
        symbols = [f"S{i}" for i in range(25)]

        outcome = await source.fetch_many(symbols)

        assert [len(b) for b in fake_provider.batch_calls] == [10, 10, 5]
        assert len(outcome.results) == 25
        assert outcome.failures == []

    async def test_delay_between_batches_only(self, fake_provider, no_sleep):
        """✅ Delay runs between batches, not after the last one."""
        source = QuoteSource(fake_provider, batch_size=10, batch_delay=0.1, sleep=no_sleep)

        await source.fetch_many([f"S{i}" for i in range(25)])

        assert no_sleep.await_count == 2
        no_sleep.assert_awaited_with(0.1)

    async def test_batch_size_capped_by_provider(self, no_sleep):
        """✅ Provider limit wins over a larger requested batch size."""
        provider = FakeProvider(max_batch_size=3)
        source = QuoteSource(provider, batch_size=10, sleep=no_sleep)

        await source.fetch_many(["A", "B", "C", "D"], batch_size=50)

        assert provider.batch_calls == [["A", "B", "C"], ["D"]]

    async def test_dedupes_and_canonicalizes(self, fake_provider, no_sleep):
        """✅ Duplicates collapse before batching."""
        source = QuoteSource(fake_provider, sleep=no_sleep)

        outcome = await source.fetch_many(["aapl", "AAPL", " msft"])

        assert fake_provider.batch_calls == [["AAPL", "MSFT"]]
        assert outcome.symbols_resolved == ["AAPL", "MSFT"]

    async def test_invalid_entries_become_failures(self, fake_provider, no_sleep):
        """✅ Malformed entries are reported, never sent upstream."""
        source = QuoteSource(fake_provider, sleep=no_sleep)

        outcome = await source.fetch_many(["AAPL", "bad symbol!"])

        assert fake_provider.batch_calls == [["AAPL"]]
        assert outcome.symbols_failed == ["bad symbol!"]

    async def test_failed_batch_is_isolated(self, no_sleep):
        """✅ A failing batch yields failures for its symbols only."""
        provider = FakeProvider(fail_batches_containing={"BAD"})
        source = QuoteSource(provider, batch_size=2, sleep=no_sleep)

        outcome = await source.fetch_many(["BAD", "X1", "GOOD", "X2"])

        assert sorted(outcome.symbols_failed) == ["BAD", "X1"]
        assert outcome.symbols_resolved == ["GOOD", "X2"]
        assert all(f.reason == "Batch request failed" for f in outcome.failures)

    async def test_unexpected_batch_error_is_isolated(self, no_sleep):
        """✅ Non-provider exceptions are contained to the batch."""
        provider = FakeProvider()
        provider.get_quotes = AsyncMock(side_effect=[
            RuntimeError("boom"),
            FetchManyResult(results=[create_quote("B")]),
        ])
        source = QuoteSource(provider, batch_size=1, sleep=no_sleep)

        outcome = await source.fetch_many(["A", "B"])

        assert outcome.symbols_failed == ["A"]
        assert outcome.symbols_resolved == ["B"]

    async def test_per_symbol_failures_pass_through(self, no_sleep):
        """✅ Provider-level missing symbols stay per-symbol failures."""
        provider = FakeProvider(fail_symbols={"ZZZZ"})
        source = QuoteSource(provider, sleep=no_sleep)

        outcome = await source.fetch_many(["AAPL", "ZZZZ"])

        assert outcome.symbols_resolved == ["AAPL"]
        assert outcome.failures[0].reason == "Stock not found"

    async def test_empty_input(self, fake_provider, no_sleep):
        """✅ No symbols → no upstream call."""
        source = QuoteSource(fake_provider, sleep=no_sleep)

        outcome = await source.fetch_many([])

        assert fake_provider.batch_calls == []
        assert outcome.results == [] and outcome.failures == []

    async def test_batch_results_populate_cache(self, fake_provider, memory_cache, no_sleep):
        """✅ Batch successes are cached for later single lookups."""
        source = QuoteSource(fake_provider, cache=memory_cache, sleep=no_sleep)

        await source.fetch_many(["AAPL"])
        quote = await source.fetch_one("AAPL")

        assert quote.symbol == "AAPL"
        assert fake_provider.quote_calls == []

    async def test_batches_always_go_upstream(self, fake_provider, memory_cache, no_sleep):
        """✅ Cached entries do not short-circuit a refresh cycle."""
        await memory_cache.set(CacheManager.key("quote", "AAPL"), create_quote("AAPL").to_dict(), 60)
        source = QuoteSource(fake_provider, cache=memory_cache, sleep=no_sleep)

        await source.fetch_many(["AAPL"])

        assert fake_provider.batch_calls == [["AAPL"]]


@pytest.mark.unit
@pytest.mark.asyncio
class TestClose:
    """Test close method."""

    async def test_closes_both_providers(self):
        """✅ Both provider clients are closed."""
        primary, secondary = FakeProvider(), FakeProvider()
        source = QuoteSource(primary, secondary)

        await source.close()

        assert primary.closed and secondary.closed
