"""Persistence of the latest quote per symbol."""
import logging
from datetime import timedelta
from typing import Optional, Protocol

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from app.core.database import AsyncSessionLocal
from app.models import Stock
from app.providers.models import QuoteResult
from app.utils.time import utc_now, ensure_aware

logger = logging.getLogger(__name__)


class QuoteStore(Protocol):
    """Where fresh quotes are recorded and recent ones looked up."""

    async def upsert(self, quote: QuoteResult) -> None:
        ...

    async def get_recent(self, symbol: str, max_age_seconds: float) -> Optional[QuoteResult]:
        ...


def stock_to_quote(stock: Stock) -> QuoteResult:
    """Convert a stored row back into a QuoteResult."""
    return QuoteResult(
        symbol=stock.symbol,
        price=stock.current_price,
        change=stock.change or 0.0,
        change_percent=stock.change_percent or 0.0,
        volume=stock.volume or 0,
        timestamp=ensure_aware(stock.last_updated),
        name=stock.name,
        exchange=stock.exchange,
        previous_close=stock.previous_close,
        market_cap=stock.market_cap,
        pe_ratio=stock.pe_ratio,
        dividend_yield=stock.dividend_yield,
        source=stock.source,
    )


class SqlQuoteStore:
    """QuoteStore backed by the ``stocks`` table.

    Storage problems are logged and swallowed so they never block a
    snapshot or a broadcast cycle.
    """

    def __init__(self, session_factory=AsyncSessionLocal):
        self.session_factory = session_factory

    async def upsert(self, quote: QuoteResult) -> None:
        try:
            async with self.session_factory() as db:
                stock = await db.get(Stock, quote.symbol)
                if stock is None:
                    stock = Stock(symbol=quote.symbol)
                    db.add(stock)

                stock.current_price = quote.price
                stock.change = quote.change
                stock.change_percent = quote.change_percent
                stock.volume = quote.volume
                stock.previous_close = quote.previous_close
                stock.source = quote.source
                stock.last_updated = utc_now()
                stock.is_active = True
                # Keep previously known descriptive fields when upstream omits them
                if quote.name is not None:
                    stock.name = quote.name
                if quote.exchange is not None:
                    stock.exchange = quote.exchange
                if quote.market_cap is not None:
                    stock.market_cap = quote.market_cap
                if quote.pe_ratio is not None:
                    stock.pe_ratio = quote.pe_ratio
                if quote.dividend_yield is not None:
                    stock.dividend_yield = quote.dividend_yield

                await db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Database update error for {quote.symbol}: {e}")

    async def get_recent(self, symbol: str, max_age_seconds: float) -> Optional[QuoteResult]:
        """
        Return the stored quote for ``symbol`` if it was updated within
        ``max_age_seconds``, otherwise None.
        """
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(Stock).where(Stock.symbol == symbol, Stock.is_active.is_(True))
                )
                stock = result.scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Database lookup error for {symbol}: {e}")
            return None

        if stock is None:
            return None

        if ensure_aware(stock.last_updated) < utc_now() - timedelta(seconds=max_age_seconds):
            return None

        return stock_to_quote(stock)
