"""Models package initialization."""
from app.models.stock import Stock
from app.models.watchlist import Watchlist, WatchlistItem

__all__ = [
    "Stock",
    "Watchlist",
    "WatchlistItem"
]
