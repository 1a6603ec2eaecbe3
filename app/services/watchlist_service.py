"""Watchlist lookups for watchlist subscriptions."""
import logging
from typing import List, Protocol

from sqlalchemy import select
from sqlalchemy.orm import selectinload

from app.core.database import AsyncSessionLocal
from app.models import Watchlist

logger = logging.getLogger(__name__)


class WatchlistStore(Protocol):
    async def default_watchlist_symbols(self, user_id: str) -> List[str]:
        ...


class SqlWatchlistStore:
    """WatchlistStore backed by the ``watchlists`` tables."""

    def __init__(self, session_factory=AsyncSessionLocal):
        self.session_factory = session_factory

    async def default_watchlist_symbols(self, user_id: str) -> List[str]:
        """
        Symbols on the user's default watchlist.

        Args:
            user_id: Owner of the watchlist

        Returns:
            Symbols in the order they were added; empty if there is no
            default watchlist
        """
        async with self.session_factory() as db:
            result = await db.execute(
                select(Watchlist)
                .options(selectinload(Watchlist.items))
                .where(Watchlist.user_id == user_id, Watchlist.is_default.is_(True))
            )
            watchlist = result.scalars().first()

        if watchlist is None:
            logger.debug(f"No default watchlist for user {user_id}")
            return []

        return [item.symbol for item in watchlist.items]
