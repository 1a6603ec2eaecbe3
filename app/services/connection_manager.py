"""Client connection lifecycle and inbound message handling."""
import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from fastapi import WebSocket, WebSocketDisconnect

from app.core.auth import AuthVerifier, InvalidToken
from app.core.config import settings
from app.providers import ProviderError
from app.providers.models import QuoteResult
from app.services.broadcaster import Channel
from app.services.errors import InvalidInput, TransportError
from app.services.quote_source import QuoteSource
from app.services.quote_store import QuoteStore
from app.services.subscription_registry import SubscriptionRegistry
from app.services.watchlist_service import WatchlistStore
from app.utils.time import utc_now, epoch_millis

logger = logging.getLogger(__name__)


@dataclass
class Connection:
    """One live client session."""
    connection_id: str
    channel: Channel
    user_id: Optional[str] = None
    connected_at: datetime = field(default_factory=utc_now)
    # In-flight initial_data sends, cancelled on disconnect
    snapshot_tasks: Set[asyncio.Task] = field(default_factory=set)


class WebSocketChannel:
    """Channel over a FastAPI WebSocket using the ``{"event", "data"}`` envelope."""

    def __init__(self, websocket: WebSocket, connection_id: str = ""):
        self.websocket = websocket
        self.connection_id = connection_id

    async def send(self, event: str, data: Any) -> None:
        try:
            await self.websocket.send_json({"event": event, "data": data})
        except (WebSocketDisconnect, RuntimeError, OSError) as e:
            raise TransportError(self.connection_id, str(e)) from e


def _symbols_from(data: Any) -> list:
    """Pull the ``symbols`` list out of a payload or raise InvalidInput."""
    if not isinstance(data, dict) or not isinstance(data.get("symbols"), list):
        raise InvalidInput("Invalid symbols array")
    return data["symbols"]


class ConnectionManager:
    """
    Owns the set of live connections and reacts to their messages.

    Subscription state lives in the SubscriptionRegistry; disconnect() is
    the one place a connection's subscriptions are torn down.

    Initial snapshots run as background tasks per connection so a slow
    upstream never holds up the next inbound message.
    """

    def __init__(
        self,
        registry: SubscriptionRegistry,
        quote_source: QuoteSource,
        auth_verifier: Optional[AuthVerifier] = None,
        quote_store: Optional[QuoteStore] = None,
        watchlist_store: Optional[WatchlistStore] = None,
        scheduler=None,
        snapshot_max_age: Optional[int] = None,
    ):
        self.registry = registry
        self.quote_source = quote_source
        self.auth_verifier = auth_verifier
        self.quote_store = quote_store
        self.watchlist_store = watchlist_store
        # UpdateScheduler; assigned by the runtime once the broadcaster exists
        self.scheduler = scheduler
        self.snapshot_max_age = snapshot_max_age or settings.snapshot_max_age_seconds
        self.connections: Dict[str, Connection] = {}

        self._handlers = {
            "authenticate": self._handle_authenticate,
            "subscribe": self._handle_subscribe,
            "unsubscribe": self._handle_unsubscribe,
            "subscribe_watchlist": self._handle_subscribe_watchlist,
            "ping": self._handle_ping,
        }

    # ========================================================================
    # Lifecycle
    # ========================================================================

    def connect(self, channel: Channel, connection_id: Optional[str] = None) -> Connection:
        connection_id = connection_id or uuid.uuid4().hex
        connection = Connection(connection_id=connection_id, channel=channel)
        self.connections[connection_id] = connection
        logger.info(f"Client connected: {connection_id}")
        return connection

    def disconnect(self, connection_id: str, reason: str = "") -> None:
        removed = self.registry.unsubscribe_all(connection_id)
        connection = self.connections.pop(connection_id, None)
        if connection is not None:
            for task in connection.snapshot_tasks:
                task.cancel()
        logger.info(
            f"Client disconnected: {connection_id} ({reason or 'no reason'}), "
            f"released {len(removed)} subscriptions"
        )

    def close(self) -> None:
        """Drop every connection, e.g. on shutdown."""
        for connection_id in list(self.connections):
            self.disconnect(connection_id, "server shutdown")

    def get_channel(self, connection_id: str) -> Optional[Channel]:
        connection = self.connections.get(connection_id)
        return connection.channel if connection else None

    async def _send(self, connection: Connection, event: str, data: Any) -> None:
        try:
            await connection.channel.send(event, data)
        except TransportError as e:
            logger.warning(f"Reply '{event}' not delivered: {e}")

    # ========================================================================
    # Inbound messages
    # ========================================================================

    async def handle_envelope(self, connection_id: str, message: Any) -> None:
        """Validate a raw ``{"event", "data"}`` envelope and dispatch it."""
        if not isinstance(message, dict) or not isinstance(message.get("event"), str):
            connection = self.connections.get(connection_id)
            if connection is not None:
                await self._send(connection, "error", {"error": "Invalid message format"})
            return

        await self.handle_message(connection_id, message["event"], message.get("data"))

    async def handle_message(self, connection_id: str, event: str, data: Any = None) -> None:
        """Dispatch one inbound message to its handler."""
        connection = self.connections.get(connection_id)
        if connection is None:
            logger.warning(f"Message '{event}' from unknown connection {connection_id}")
            return

        handler = self._handlers.get(event)
        if handler is None:
            await self._send(connection, "error", {"error": f"Unknown event: {event}"})
            return

        await handler(connection, data)

    async def _handle_authenticate(self, connection: Connection, data: Any) -> None:
        if not isinstance(data, dict) or not data.get("token"):
            await self._send(connection, "authentication_error", {"error": "Invalid credentials"})
            return

        if self.auth_verifier is None:
            await self._send(connection, "authentication_error", {"error": "Authentication failed"})
            return

        try:
            claims = self.auth_verifier.verify(data["token"])
        except InvalidToken as e:
            logger.info(f"Authentication rejected for {connection.connection_id}: {e}")
            await self._send(connection, "authentication_error", {"error": "Invalid credentials"})
            return

        user_id = claims["user_id"]
        requested = data.get("userId")
        if requested is not None and str(requested) != user_id:
            logger.warning(f"Token subject does not match userId for {connection.connection_id}")
            await self._send(connection, "authentication_error", {"error": "Invalid credentials"})
            return

        connection.user_id = user_id
        logger.info(f"Client {connection.connection_id} authenticated as user {user_id}")
        await self._send(connection, "authenticated", {"success": True, "userId": user_id})

    async def _handle_subscribe(self, connection: Connection, data: Any) -> None:
        try:
            symbols = _symbols_from(data)
        except InvalidInput as e:
            await self._send(connection, "subscription_error", {"error": str(e)})
            return

        await self._subscribe(connection, symbols)

    async def _subscribe(self, connection: Connection, symbols: list) -> List[str]:
        result = self.registry.subscribe(connection.connection_id, symbols)
        errors = [{"symbol": r["symbol"], "error": r["reason"]} for r in result.rejected]

        await self._send(connection, "subscribed", {"symbols": result.accepted, "errors": errors})

        if result.accepted:
            logger.info(f"Client {connection.connection_id} subscribed to: {', '.join(result.accepted)}")
            self._start_initial_data(connection, result.accepted)

        return result.accepted

    async def _handle_unsubscribe(self, connection: Connection, data: Any) -> None:
        try:
            symbols = _symbols_from(data)
        except InvalidInput as e:
            await self._send(connection, "unsubscription_error", {"error": str(e)})
            return

        removed = self.registry.unsubscribe(connection.connection_id, symbols)
        if removed:
            logger.info(f"Client {connection.connection_id} unsubscribed from: {', '.join(removed)}")
        await self._send(connection, "unsubscribed", {"symbols": removed})

    async def _handle_subscribe_watchlist(self, connection: Connection, data: Any) -> None:
        user_id = data.get("userId") if isinstance(data, dict) else None
        user_id = user_id or connection.user_id

        if not user_id:
            await self._send(connection, "subscription_error", {"error": "User ID required for watchlist subscription"})
            return

        if connection.user_id is not None and str(user_id) != connection.user_id:
            await self._send(connection, "subscription_error", {"error": "Cannot subscribe to another user's watchlist"})
            return

        if self.watchlist_store is None:
            await self._send(connection, "subscription_error", {"error": "Failed to subscribe to watchlist"})
            return

        try:
            symbols = await self.watchlist_store.default_watchlist_symbols(str(user_id))
        except Exception as e:
            logger.error(f"Watchlist lookup failed for user {user_id}: {e}", exc_info=True)
            await self._send(connection, "subscription_error", {"error": "Failed to subscribe to watchlist"})
            return

        if not symbols:
            await self._send(connection, "watchlist_subscribed", {"symbols": [], "message": "No watchlist found or empty"})
            return

        accepted = await self._subscribe(connection, symbols)
        await self._send(connection, "watchlist_subscribed", {"symbols": accepted})

    async def _handle_ping(self, connection: Connection, data: Any) -> None:
        await self._send(connection, "pong", {"timestamp": epoch_millis()})

    # ========================================================================
    # Snapshots
    # ========================================================================

    def _start_initial_data(self, connection: Connection, symbols: List[str]) -> asyncio.Task:
        task = asyncio.create_task(self.send_initial_data(connection, symbols))
        connection.snapshot_tasks.add(task)
        task.add_done_callback(connection.snapshot_tasks.discard)
        return task

    async def _stored_snapshot(self, symbol: str) -> Optional[QuoteResult]:
        if self.quote_store is None:
            return None
        try:
            return await self.quote_store.get_recent(symbol, self.snapshot_max_age)
        except Exception as e:
            logger.error(f"Quote store lookup failed for {symbol}: {e}")
            return None

    async def _snapshot(self, symbol: str) -> Optional[QuoteResult]:
        """Recent stored quote if there is one, else a fresh upstream quote."""
        stored = await self._stored_snapshot(symbol)
        if stored is not None:
            return stored

        try:
            quote = await self.quote_source.fetch_one(symbol)
        except (ProviderError, InvalidInput) as e:
            logger.error(f"API error for initial data {symbol}: {e}")
            return None

        if self.quote_store is not None:
            try:
                await self.quote_store.upsert(quote)
            except Exception as e:
                logger.error(f"Failed to store snapshot quote for {symbol}: {e}")
        return quote

    async def send_initial_data(self, connection: Connection, symbols: List[str]) -> None:
        """Send one ``initial_data`` message covering ``symbols``."""
        try:
            quotes = await asyncio.gather(*(self._snapshot(symbol) for symbol in symbols))
        except Exception as e:
            logger.error(f"Error sending initial stock data: {e}", exc_info=True)
            await self._send(connection, "initial_data_error", {"error": "Failed to fetch initial data"})
            return

        stocks = [quote.to_dict() for quote in quotes if quote is not None]
        errors = [
            {"symbol": symbol, "error": "Unable to fetch initial data"}
            for symbol, quote in zip(symbols, quotes) if quote is None
        ]
        await self._send(connection, "initial_data", {"stocks": stocks, "errors": errors})

    # ========================================================================
    # Administration
    # ========================================================================

    def get_stats(self) -> dict:
        interval = self.scheduler.interval if self.scheduler else settings.update_interval_seconds
        return {
            "activeConnections": len(self.connections),
            "totalSubscriptions": self.registry.total_subscriptions,
            "uniqueSymbols": self.registry.unique_symbols,
            "schedulerActive": bool(self.scheduler and self.scheduler.is_running),
            # Milliseconds, like the pong timestamp
            "updateInterval": interval * 1000,
        }

    async def force_update(self, symbols: Any) -> dict:
        """
        Fetch and broadcast ``symbols`` immediately.

        Raises:
            InvalidInput: If ``symbols`` is not a non-empty list
        """
        if not isinstance(symbols, list) or not symbols:
            raise InvalidInput("Symbols array is required")
        if self.scheduler is None:
            raise RuntimeError("Update scheduler is not configured")

        outcome = await self.scheduler.force_update(symbols)
        return {
            "stocks": [quote.to_dict() for quote in outcome.results],
            "errors": [failure.to_dict() for failure in outcome.failures],
        }
