"""Shared pytest fixtures for quote streaming tests."""
import asyncio
import pytest
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional
from unittest.mock import AsyncMock
from jose import jwt

from app.providers import QuoteProvider, ProviderError
from app.providers.models import QuoteResult, QuoteFailure, FetchManyResult
from app.services.errors import TransportError


def create_access_token(
    claims: dict,
    secret: str,
    expires_delta: timedelta = timedelta(minutes=15),
    algorithm: str = "HS256"
) -> str:
    """Sign a JWT the way the identity provider would."""
    payload = dict(claims, exp=datetime.now(timezone.utc) + expires_delta)
    return jwt.encode(payload, secret, algorithm=algorithm)


def create_quote(
    symbol: str = "AAPL",
    price: float = 150.0,
    change: float = 1.5,
    change_percent: float = 1.01,
    volume: int = 1_000_000,
    timestamp: datetime = None,
    source: str = "iex"
) -> QuoteResult:
    """Factory function to create QuoteResult instances for testing."""
    if timestamp is None:
        timestamp = datetime(2026, 1, 5, 15, 30, 0, tzinfo=timezone.utc)

    return QuoteResult(
        symbol=symbol,
        price=price,
        change=change,
        change_percent=change_percent,
        volume=volume,
        timestamp=timestamp,
        name=f"{symbol} Inc.",
        exchange="NASDAQ",
        previous_close=price - change,
        source=source
    )


class FakeProvider(QuoteProvider):
    """In-memory provider with scripted failures."""

    def __init__(
        self,
        name: str = "fake",
        prices: Optional[dict] = None,
        fail_symbols: Iterable[str] = (),
        fail_batches_containing: Iterable[str] = (),
        max_batch_size: int = 100
    ):
        self.name = name
        self.max_batch_size = max_batch_size
        self.prices = prices or {}
        self.fail_symbols = set(fail_symbols)
        self.fail_batches_containing = set(fail_batches_containing)
        self.quote_calls: List[str] = []
        self.batch_calls: List[List[str]] = []
        self.closed = False

    async def get_quote(self, symbol: str) -> QuoteResult:
        self.quote_calls.append(symbol)
        if symbol in self.fail_symbols:
            raise ProviderError(f"Stock symbol '{symbol}' not found")
        return create_quote(symbol, self.prices.get(symbol, 100.0), source=self.name)

    async def get_quotes(self, symbols: List[str]) -> FetchManyResult:
        self.batch_calls.append(list(symbols))
        if self.fail_batches_containing & set(symbols):
            raise ProviderError("Batch request failed")

        outcome = FetchManyResult()
        for symbol in symbols:
            if symbol in self.fail_symbols:
                outcome.failures.append(QuoteFailure(symbol, "Stock not found"))
            else:
                outcome.results.append(create_quote(symbol, self.prices.get(symbol, 100.0), source=self.name))
        return outcome

    async def close(self):
        self.closed = True


class FakeChannel:
    """Records outbound messages; can be told to fail or stall."""

    def __init__(self, fail: bool = False, delay: float = 0.0):
        self.fail = fail
        self.delay = delay
        self.sent = []

    async def send(self, event, data):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise TransportError("fake", "socket closed")
        self.sent.append((event, data))

    def events(self) -> List[str]:
        return [event for event, _ in self.sent]

    def payloads(self, event: str) -> list:
        return [data for name, data in self.sent if name == event]


@pytest.fixture
def fake_provider():
    """Primary provider that answers every symbol."""
    return FakeProvider(name="primary")


@pytest.fixture
def fake_channel():
    return FakeChannel()


@pytest.fixture
def no_sleep():
    """Replacement for asyncio.sleep between batches."""
    return AsyncMock()


class GatedProvider(FakeProvider):
    """Provider whose single-quote lookups wait until ``release`` is set.

    ``all_waiting`` is set once ``expected_waiters`` lookups are parked at
    the same time.
    """

    def __init__(self, expected_waiters: int = 1, **kwargs):
        super().__init__(**kwargs)
        self.expected_waiters = expected_waiters
        self.waiting: List[str] = []
        self.release = asyncio.Event()
        self.all_waiting = asyncio.Event()

    async def get_quote(self, symbol: str) -> QuoteResult:
        self.waiting.append(symbol)
        if len(self.waiting) >= self.expected_waiters:
            self.all_waiting.set()
        await self.release.wait()
        return await super().get_quote(symbol)


async def drain_snapshots(manager) -> None:
    """Wait for every in-flight initial_data send of ``manager``."""
    pending = [task for c in manager.connections.values() for task in c.snapshot_tasks]
    if pending:
        await asyncio.gather(*pending)
