"""IEX Cloud quote provider implementation."""
import httpx
from datetime import datetime, timezone
from typing import List, Optional
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log
)
import logging
from app.providers import QuoteProvider, ProviderError
from app.providers.models import QuoteResult, QuoteFailure, FetchManyResult
from app.core.config import settings, UPSTREAM_MAX_BATCH_SIZE
from app.utils.time import utc_now


logger = logging.getLogger(__name__)

USER_AGENT = "QuoteRelay/1.0"


def _to_float(value, default: Optional[float] = 0.0) -> Optional[float]:
    try:
        return float(value) if value is not None else default
    except (TypeError, ValueError):
        return default


def _to_int(value, default: Optional[int] = 0) -> Optional[int]:
    try:
        return int(value) if value is not None else default
    except (TypeError, ValueError):
        return default


def format_iex_quote(data: dict) -> QuoteResult:
    """Convert an IEX ``quote`` object into a QuoteResult."""
    symbol = (data.get("symbol") or "").upper()
    if not symbol:
        raise ProviderError("IEX quote is missing a symbol")

    price = data.get("latestPrice")
    if price is None:
        price = data.get("iexRealtimePrice")
    if price is None:
        raise ProviderError(f"IEX quote for {symbol} has no price")

    latest_update = data.get("latestUpdate")
    if latest_update:
        timestamp = datetime.fromtimestamp(latest_update / 1000.0, tz=timezone.utc)
    else:
        timestamp = utc_now()

    return QuoteResult(
        symbol=symbol,
        price=float(price),
        change=_to_float(data.get("change")),
        # IEX reports changePercent as a fraction
        change_percent=_to_float(data.get("changePercent")) * 100,
        volume=_to_int(data.get("latestVolume", data.get("volume"))),
        timestamp=timestamp,
        name=data.get("companyName") or data.get("shortName"),
        exchange=data.get("primaryExchange"),
        previous_close=_to_float(data.get("previousClose"), default=None),
        market_cap=_to_int(data.get("marketCap"), default=None),
        pe_ratio=_to_float(data.get("peRatio"), default=None),
        dividend_yield=_to_float(data.get("dividendYield"), default=None),
        source="iex",
    )


class IexCloudProvider(QuoteProvider):
    """IEX Cloud implementation of quote provider (primary, batch capable)."""

    name = "iex"
    max_batch_size = UPSTREAM_MAX_BATCH_SIZE

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        batch_timeout: Optional[float] = None
    ):
        self.api_key = api_key or settings.iex_cloud_api_key
        self.base_url = (base_url or settings.iex_base_url).rstrip("/")
        self.timeout = timeout or settings.single_quote_timeout_seconds
        self.batch_timeout = batch_timeout or settings.batch_quote_timeout_seconds
        self.client = httpx.AsyncClient(
            timeout=self.timeout,
            headers={"User-Agent": USER_AGENT}
        )

    def _require_key(self) -> str:
        if not self.api_key:
            raise ProviderError("IEX_CLOUD_API_KEY is not configured")
        return self.api_key

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=2),
        retry=retry_if_exception_type(httpx.ConnectError),
        before_sleep=before_sleep_log(logger, logging.WARNING)
    )
    async def _make_request(self, url: str, params: dict, timeout: float):
        """Make HTTP request, retrying connection failures once.

        Timeouts are not retried: a slow upstream counts as a failure for
        this cycle and the symbol is fetched again on the next tick.
        """
        response = await self.client.get(url, params=params, timeout=timeout)
        response.raise_for_status()
        return response.json()

    async def get_quote(self, symbol: str) -> QuoteResult:
        """Fetch one quote from /stock/{symbol}/quote."""
        try:
            url = f"{self.base_url}/stock/{symbol}/quote"
            data = await self._make_request(url, {"token": self._require_key()}, self.timeout)

            if not data:
                raise ProviderError("No data received from IEX")

            return format_iex_quote(data)

        except ProviderError:
            raise
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            if status_code == 404:
                raise ProviderError(f"Stock symbol '{symbol}' not found")
            elif status_code in (402, 403):
                raise ProviderError(
                    f"IEX API access denied ({status_code}): check plan and API key"
                )
            elif status_code == 429:
                raise ProviderError(
                    "IEX API rate limit exceeded (429). Please wait before making more requests."
                )
            raise ProviderError(f"IEX API error: {str(e)}")
        except httpx.TimeoutException as e:
            raise ProviderError(f"IEX API timeout: {str(e)}")
        except httpx.HTTPError as e:
            raise ProviderError(f"IEX API connection error: {str(e)}")
        except Exception as e:
            raise ProviderError(f"Failed to fetch stock data from IEX: {str(e)}")

    async def get_quotes(self, symbols: List[str]) -> FetchManyResult:
        """
        Fetch quotes for several symbols through the market batch endpoint.

        Args:
            symbols: Canonical symbols, at most ``max_batch_size``

        Returns:
            FetchManyResult; symbols absent from the response are failures

        Raises:
            ProviderError: If the batch request itself fails
        """
        if not symbols:
            return FetchManyResult()

        if len(symbols) > self.max_batch_size:
            raise ProviderError(f"Maximum {self.max_batch_size} symbols allowed per request")

        try:
            url = f"{self.base_url}/stock/market/batch"
            params = {
                "symbols": ",".join(symbols),
                "types": "quote",
                "token": self._require_key(),
            }
            data = await self._make_request(url, params, self.batch_timeout)

            if not data:
                raise ProviderError("No data received from batch request")

        except ProviderError:
            raise
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 429:
                raise ProviderError(
                    "IEX API rate limit exceeded (429). Please wait before making more requests."
                )
            raise ProviderError(f"IEX batch API error: {str(e)}")
        except httpx.TimeoutException as e:
            raise ProviderError(f"IEX batch API timeout: {str(e)}")
        except httpx.HTTPError as e:
            raise ProviderError(f"IEX batch API connection error: {str(e)}")
        except Exception as e:
            raise ProviderError(f"Failed to fetch multiple stock prices: {str(e)}")

        outcome = FetchManyResult()
        for symbol in symbols:
            entry = data.get(symbol)
            if not entry or not entry.get("quote"):
                outcome.failures.append(QuoteFailure(symbol, "Stock not found"))
                continue
            try:
                outcome.results.append(format_iex_quote(entry["quote"]))
            except ProviderError as e:
                outcome.failures.append(QuoteFailure(symbol, str(e)))

        logger.debug(
            f"IEX batch: {len(outcome.results)} resolved, {len(outcome.failures)} failed"
        )
        return outcome

    async def close(self):
        """Close HTTP client."""
        await self.client.aclose()
