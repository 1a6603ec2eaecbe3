"""Alpha Vantage quote provider (single-symbol fallback)."""
import httpx
from datetime import datetime, timezone
from typing import Optional
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log
)
import logging
from app.providers import QuoteProvider, ProviderError
from app.providers.models import QuoteResult
from app.core.config import settings
from app.utils.time import utc_now


logger = logging.getLogger(__name__)

USER_AGENT = "QuoteRelay/1.0"


def _field_float(quote: dict, key: str) -> float:
    raw = quote.get(key)
    if raw in (None, ""):
        return 0.0
    return float(str(raw).replace("%", ""))


def format_alpha_vantage_quote(data: dict) -> QuoteResult:
    """Convert a GLOBAL_QUOTE payload into a QuoteResult."""
    quote = data.get("Global Quote") or {}
    symbol = (quote.get("01. symbol") or "").upper()
    if not symbol:
        raise ProviderError("Alpha Vantage returned an empty quote")

    try:
        trading_day = quote.get("07. latest trading day")
        if trading_day:
            timestamp = datetime.strptime(trading_day, "%Y-%m-%d").replace(tzinfo=timezone.utc)
        else:
            timestamp = utc_now()

        return QuoteResult(
            symbol=symbol,
            price=_field_float(quote, "05. price"),
            change=_field_float(quote, "09. change"),
            change_percent=_field_float(quote, "10. change percent"),
            volume=int(_field_float(quote, "06. volume")),
            timestamp=timestamp,
            # Alpha Vantage doesn't provide company name in quote
            name=symbol,
            previous_close=_field_float(quote, "08. previous close"),
            source="alphavantage",
        )
    except ValueError as e:
        raise ProviderError(f"Malformed Alpha Vantage quote for {symbol}: {e}")


class AlphaVantageProvider(QuoteProvider):
    """Alpha Vantage implementation of quote provider. No batch endpoint."""

    name = "alphavantage"
    max_batch_size = 1

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None
    ):
        self.api_key = api_key or settings.alpha_vantage_api_key
        self.base_url = base_url or settings.alpha_vantage_base_url
        self.timeout = timeout or settings.single_quote_timeout_seconds
        self.client = httpx.AsyncClient(
            timeout=self.timeout,
            headers={"User-Agent": USER_AGENT}
        )

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=2),
        retry=retry_if_exception_type(httpx.ConnectError),
        before_sleep=before_sleep_log(logger, logging.WARNING)
    )
    async def _make_request(self, params: dict) -> dict:
        """Make HTTP request, retrying connection failures once."""
        response = await self.client.get(self.base_url, params=params, timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    async def get_quote(self, symbol: str) -> QuoteResult:
        """Fetch one quote through the GLOBAL_QUOTE function."""
        if not self.api_key:
            raise ProviderError("ALPHA_VANTAGE_API_KEY is not configured")

        try:
            data = await self._make_request({
                "function": "GLOBAL_QUOTE",
                "symbol": symbol,
                "apikey": self.api_key,
            })
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 429:
                raise ProviderError("Alpha Vantage rate limit exceeded (429)")
            raise ProviderError(f"Alpha Vantage API error: {str(e)}")
        except httpx.TimeoutException as e:
            raise ProviderError(f"Alpha Vantage API timeout: {str(e)}")
        except httpx.HTTPError as e:
            raise ProviderError(f"Alpha Vantage API connection error: {str(e)}")
        except Exception as e:
            raise ProviderError(f"Failed to fetch stock data from Alpha Vantage: {str(e)}")

        if not data:
            raise ProviderError("Invalid API call: empty response")
        if data.get("Error Message"):
            raise ProviderError(data["Error Message"])
        if data.get("Note") or data.get("Information"):
            raise ProviderError("API call frequency limit reached")

        return format_alpha_vantage_quote(data)

    async def close(self):
        """Close HTTP client."""
        await self.client.aclose()
