"""In-memory subscription index between connections and symbols."""
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Set

from app.core.config import settings
from app.services.errors import LIMIT_EXCEEDED, INVALID_SYMBOL
from app.utils.symbols import validate_symbol

logger = logging.getLogger(__name__)

OccupancyListener = Callable[[bool], None]


@dataclass
class SubscribeResult:
    """Outcome of a subscribe call."""
    accepted: List[str] = field(default_factory=list)
    rejected: List[dict] = field(default_factory=list)

    def reject(self, symbol, reason: str) -> None:
        self.rejected.append({"symbol": symbol, "reason": reason})


class SubscriptionRegistry:
    """
    Bidirectional index of which connection watches which symbol.

    Every method is synchronous, so a compound mutation (both index sides
    plus pruning) completes without yielding to other coroutines.

    Listeners are told when the registry goes from no subscribed symbols
    to some (True) and back (False).
    """

    def __init__(self, max_per_connection: Optional[int] = None):
        self.max_per_connection = max_per_connection or settings.max_subscriptions_per_client
        self._by_symbol: Dict[str, Set[str]] = {}
        self._by_connection: Dict[str, Set[str]] = {}
        self._listeners: List[OccupancyListener] = []

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_listener(self, callback: OccupancyListener) -> None:
        self._listeners.append(callback)

    def _notify(self, occupied: bool) -> None:
        for callback in self._listeners:
            try:
                callback(occupied)
            except Exception as e:
                logger.error(f"Registry listener failed: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def subscribe(self, connection_id: str, symbols: Iterable) -> SubscribeResult:
        """
        Subscribe a connection to symbols, honoring the per-connection cap.

        Already-held symbols are accepted again without using capacity.
        Once the cap is reached the rest are rejected as "limit exceeded".

        Args:
            connection_id: Connection identifier
            symbols: Raw symbols from the client

        Returns:
            SubscribeResult with canonical accepted symbols and rejections
        """
        result = SubscribeResult()
        was_empty = not self._by_symbol
        current = self._by_connection.get(connection_id, set())
        pending: List[str] = []
        seen: Set[str] = set()

        for raw in symbols:
            try:
                symbol = validate_symbol(raw)
            except ValueError:
                result.reject(raw, INVALID_SYMBOL)
                continue

            if symbol in seen:
                continue
            seen.add(symbol)

            if symbol in current:
                result.accepted.append(symbol)
            elif len(current) + len(pending) < self.max_per_connection:
                pending.append(symbol)
                result.accepted.append(symbol)
            else:
                result.reject(symbol, LIMIT_EXCEEDED)

        if pending:
            self._by_connection.setdefault(connection_id, set()).update(pending)
            for symbol in pending:
                self._by_symbol.setdefault(symbol, set()).add(connection_id)

        if result.rejected:
            logger.info(
                f"Connection {connection_id} subscribe: {len(result.accepted)} accepted, "
                f"{len(result.rejected)} rejected"
            )

        if was_empty and self._by_symbol:
            self._notify(True)

        return result

    def unsubscribe(self, connection_id: str, symbols: Iterable) -> List[str]:
        """
        Remove symbols from a connection.

        Returns:
            Canonical symbols that were actually removed
        """
        held = self._by_connection.get(connection_id)
        if not held:
            return []

        removed: List[str] = []
        for raw in symbols:
            try:
                symbol = validate_symbol(raw)
            except ValueError:
                continue
            if symbol in held:
                held.discard(symbol)
                self._detach(symbol, connection_id)
                removed.append(symbol)

        if not held:
            del self._by_connection[connection_id]

        if removed and not self._by_symbol:
            self._notify(False)

        return removed

    def unsubscribe_all(self, connection_id: str) -> List[str]:
        """Drop every subscription held by a connection."""
        held = self._by_connection.pop(connection_id, None)
        if not held:
            return []

        for symbol in held:
            self._detach(symbol, connection_id)

        if not self._by_symbol:
            self._notify(False)

        return sorted(held)

    def _detach(self, symbol: str, connection_id: str) -> None:
        watchers = self._by_symbol.get(symbol)
        if watchers is None:
            return
        watchers.discard(connection_id)
        if not watchers:
            del self._by_symbol[symbol]

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def symbols_for(self, connection_id: str) -> Set[str]:
        return set(self._by_connection.get(connection_id, ()))

    def connections_for(self, symbol: str) -> Set[str]:
        return set(self._by_symbol.get(symbol, ()))

    def all_subscribed_symbols(self) -> List[str]:
        return list(self._by_symbol)

    def is_empty(self) -> bool:
        return not self._by_symbol

    @property
    def connection_count(self) -> int:
        """Connections holding at least one subscription."""
        return len(self._by_connection)

    @property
    def total_subscriptions(self) -> int:
        return sum(len(held) for held in self._by_connection.values())

    @property
    def unique_symbols(self) -> int:
        return len(self._by_symbol)
