"""Services package initialization."""
from app.services.subscription_registry import SubscriptionRegistry, SubscribeResult
from app.services.quote_source import QuoteSource, create_quote_source
from app.services.broadcaster import Broadcaster, DeliveryReport
from app.services.connection_manager import ConnectionManager, Connection, WebSocketChannel
from app.services.quote_store import SqlQuoteStore
from app.services.watchlist_service import SqlWatchlistStore

__all__ = [
    "SubscriptionRegistry",
    "SubscribeResult",
    "QuoteSource",
    "create_quote_source",
    "Broadcaster",
    "DeliveryReport",
    "ConnectionManager",
    "Connection",
    "WebSocketChannel",
    "SqlQuoteStore",
    "SqlWatchlistStore",
]
