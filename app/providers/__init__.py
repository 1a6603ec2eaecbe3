"""Abstract interface for market data quote providers."""
from abc import ABC, abstractmethod
from typing import List
from app.providers.models import QuoteResult, QuoteFailure, FetchManyResult


class ProviderError(Exception):
    """Exception raised when provider API fails."""
    pass


class UpstreamUnavailable(ProviderError):
    """Raised when no configured provider could serve a request."""
    pass


class QuoteProvider(ABC):
    """Abstract base class for quote data providers."""

    name: str = "provider"

    # Largest number of symbols the upstream accepts in one call
    max_batch_size: int = 1

    @abstractmethod
    async def get_quote(self, symbol: str) -> QuoteResult:
        """
        Fetch the latest quote for one symbol.

        Args:
            symbol: Canonical ticker symbol

        Returns:
            QuoteResult for the symbol

        Raises:
            ProviderError: If API call fails
        """
        pass

    async def get_quotes(self, symbols: List[str]) -> FetchManyResult:
        """
        Fetch quotes for up to ``max_batch_size`` symbols.

        Providers without a batch endpoint fall back to one lookup per
        symbol; a failed lookup becomes a per-symbol failure.

        Raises:
            ProviderError: If more than ``max_batch_size`` symbols are requested
                or the whole call fails
        """
        if len(symbols) > self.max_batch_size:
            raise ProviderError(f"Maximum {self.max_batch_size} symbols allowed per request")

        outcome = FetchManyResult()
        for symbol in symbols:
            try:
                outcome.results.append(await self.get_quote(symbol))
            except ProviderError as e:
                outcome.failures.append(QuoteFailure(symbol, str(e)))
        return outcome

    async def close(self):
        """Release HTTP resources."""
        pass


__all__ = [
    "QuoteProvider",
    "ProviderError",
    "UpstreamUnavailable",
    "QuoteResult",
    "QuoteFailure",
    "FetchManyResult",
]
