"""Fan-out of quote updates to subscribed connections."""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple

from app.core.config import settings
from app.providers.models import QuoteResult, QuoteFailure
from app.services.subscription_registry import SubscriptionRegistry
from app.utils.time import utc_now_iso

logger = logging.getLogger(__name__)


class Channel(Protocol):
    """Outbound side of a client connection."""

    async def send(self, event: str, data: Any) -> None:
        ...


ChannelLookup = Callable[[str], Optional[Channel]]


@dataclass
class DeliveryReport:
    """Counts of messages pushed and messages that could not be sent."""
    delivered: int = 0
    failed: int = 0


class Broadcaster:
    """
    Pushes stock_update / stock_error messages to every connection
    subscribed to the affected symbol.

    Connections are served concurrently; the messages for one connection
    are sent in order. A slow or broken connection only loses its own
    messages.
    """

    def __init__(
        self,
        registry: SubscriptionRegistry,
        channel_lookup: ChannelLookup,
        send_timeout: Optional[float] = None,
    ):
        self.registry = registry
        self.channel_lookup = channel_lookup
        self.send_timeout = send_timeout or settings.send_timeout_seconds

    def _plan(
        self,
        results: Sequence[QuoteResult],
        failures: Sequence[QuoteFailure],
        forced: bool,
    ) -> Dict[str, List[Tuple[str, dict]]]:
        """Group outbound messages by connection id."""
        timestamp = utc_now_iso()
        outbox: Dict[str, List[Tuple[str, dict]]] = {}

        for quote in results:
            message = {"symbol": quote.symbol, "data": quote.to_dict(), "timestamp": timestamp}
            if forced:
                message["forced"] = True
            for connection_id in self.registry.connections_for(quote.symbol):
                outbox.setdefault(connection_id, []).append(("stock_update", message))

        for failure in failures:
            message = {"symbol": failure.symbol, "error": failure.reason, "timestamp": timestamp}
            if forced:
                message["forced"] = True
            for connection_id in self.registry.connections_for(failure.symbol):
                outbox.setdefault(connection_id, []).append(("stock_error", message))

        return outbox

    async def _send_all(self, connection_id: str, messages: List[Tuple[str, dict]]) -> Tuple[int, int]:
        channel = self.channel_lookup(connection_id)
        if channel is None:
            # Disconnected between snapshot and delivery
            return 0, 0

        delivered = 0
        for index, (event, payload) in enumerate(messages):
            try:
                await asyncio.wait_for(channel.send(event, payload), timeout=self.send_timeout)
            except asyncio.TimeoutError:
                logger.warning(f"Send to {connection_id} timed out after {self.send_timeout}s; dropping its batch")
                return delivered, len(messages) - index
            except Exception as e:
                logger.warning(f"Send to {connection_id} failed: {e}")
                return delivered, len(messages) - index
            delivered += 1

        return delivered, 0

    async def deliver(
        self,
        results: Sequence[QuoteResult],
        failures: Sequence[QuoteFailure] = (),
        forced: bool = False,
    ) -> DeliveryReport:
        """
        Deliver one cycle's results and failures.

        Args:
            results: Successful quotes
            failures: Per-symbol failures
            forced: Mark messages as produced by a forced update

        Returns:
            DeliveryReport
        """
        outbox = self._plan(results, failures, forced)
        report = DeliveryReport()
        if not outbox:
            return report

        outcomes = await asyncio.gather(
            *(self._send_all(connection_id, messages) for connection_id, messages in outbox.items())
        )
        for delivered, failed in outcomes:
            report.delivered += delivered
            report.failed += failed

        logger.debug(
            f"Delivered {report.delivered} messages to {len(outbox)} connections "
            f"({report.failed} failed)"
        )
        return report
