"""Unit tests for IexCloudProvider.

This module tests the IEX Cloud integration including single and batch
quote calls, response parsing, and error handling.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from datetime import datetime, timezone
import httpx

from app.providers.iex import IexCloudProvider, format_iex_quote
from app.providers import ProviderError


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def mock_client():
    """Mock httpx AsyncClient."""
    with patch("httpx.AsyncClient") as mock:
        client_instance = AsyncMock()
        mock.return_value = client_instance
        yield client_instance


@pytest.fixture
def provider(mock_client):
    """Create IexCloudProvider instance."""
    return IexCloudProvider(api_key="test-key", base_url="https://iex.test/stable")


def iex_quote(symbol="AAPL", price=187.25, **overrides):
    data = {
        "symbol": symbol,
        "companyName": f"{symbol} Inc.",
        "primaryExchange": "NASDAQ",
        "latestPrice": price,
        "previousClose": price - 2.0,
        "change": 2.0,
        "changePercent": 0.0108,
        "latestVolume": 51234567,
        "marketCap": 2900000000000,
        "peRatio": 29.4,
        "latestUpdate": 1767627000000,
    }
    data.update(overrides)
    return data


def ok_response(payload):
    resp = MagicMock()
    resp.status_code = 200
    resp.json.return_value = payload
    resp.raise_for_status = MagicMock()
    return resp


def status_error(code):
    resp = MagicMock()
    resp.status_code = code
    return httpx.HTTPStatusError(f"{code} error", request=None, response=resp)


# ============================================================================
# Tests for format_iex_quote
# ============================================================================

@pytest.mark.unit
class TestFormatIexQuote:
    """Test IEX payload parsing."""

    def test_full_payload(self):
        """✅ All fields mapped, changePercent scaled to percent."""
        quote = format_iex_quote(iex_quote())

        assert quote.symbol == "AAPL"
        assert quote.price == 187.25
        assert quote.change == 2.0
        assert quote.change_percent == pytest.approx(1.08)
        assert quote.volume == 51234567
        assert quote.name == "AAPL Inc."
        assert quote.market_cap == 2900000000000
        assert quote.source == "iex"
        assert quote.timestamp == datetime.fromtimestamp(1767627000, tz=timezone.utc)

    def test_realtime_price_fallback(self):
        """✅ Missing latestPrice → iexRealtimePrice."""
        quote = format_iex_quote(iex_quote(latestPrice=None, iexRealtimePrice=186.0))

        assert quote.price == 186.0

    def test_missing_price(self):
        """❌ No price at all → ProviderError."""
        with pytest.raises(ProviderError):
            format_iex_quote(iex_quote(latestPrice=None))

    def test_optional_fields_absent(self):
        """✅ Sparse payload keeps optional fields None."""
        quote = format_iex_quote({"symbol": "aapl", "latestPrice": 10})

        assert quote.symbol == "AAPL"
        assert quote.previous_close is None
        assert quote.pe_ratio is None
        assert quote.volume == 0


# ============================================================================
# Tests for get_quote
# ============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
class TestGetQuote:
    """Test get_quote method."""

    async def test_success(self, provider, mock_client):
        """✅ Success → QuoteResult."""
        mock_client.get.return_value = ok_response(iex_quote())

        quote = await provider.get_quote("AAPL")

        assert quote.price == 187.25
        url = mock_client.get.call_args.args[0]
        assert url == "https://iex.test/stable/stock/AAPL/quote"
        assert mock_client.get.call_args.kwargs["params"] == {"token": "test-key"}
        assert mock_client.get.call_args.kwargs["timeout"] == provider.timeout

    async def test_not_found(self, provider, mock_client):
        """❌ 404 → symbol not found."""
        mock_client.get.side_effect = status_error(404)

        with pytest.raises(ProviderError) as exc:
            await provider.get_quote("ZZZZ")

        assert "Stock symbol 'ZZZZ' not found" in str(exc.value)

    async def test_access_denied(self, provider, mock_client):
        """❌ 403 → access denied message."""
        mock_client.get.side_effect = status_error(403)

        with pytest.raises(ProviderError) as exc:
            await provider.get_quote("AAPL")

        assert "access denied" in str(exc.value)

    async def test_rate_limited(self, provider, mock_client):
        """❌ 429 → rate limit message."""
        mock_client.get.side_effect = status_error(429)

        with pytest.raises(ProviderError) as exc:
            await provider.get_quote("AAPL")

        assert "rate limit" in str(exc.value)

    async def test_timeout(self, provider, mock_client):
        """❌ Timeout → ProviderError without retry."""
        mock_client.get.side_effect = httpx.ReadTimeout("slow")

        with pytest.raises(ProviderError) as exc:
            await provider.get_quote("AAPL")

        assert "timeout" in str(exc.value)
        assert mock_client.get.call_count == 1

    async def test_missing_api_key(self, mock_client):
        """❌ No API key → ProviderError, no request."""
        with patch("app.providers.iex.settings") as mock_settings:
            mock_settings.iex_cloud_api_key = None
            mock_settings.iex_base_url = "https://iex.test/stable"
            mock_settings.single_quote_timeout_seconds = 10.0
            mock_settings.batch_quote_timeout_seconds = 15.0
            provider = IexCloudProvider()

        with pytest.raises(ProviderError) as exc:
            await provider.get_quote("AAPL")

        assert "IEX_CLOUD_API_KEY" in str(exc.value)
        mock_client.get.assert_not_called()


# ============================================================================
# Tests for get_quotes (batch)
# ============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
class TestGetQuotes:
    """Test batch get_quotes method."""

    async def test_batch_success_with_missing_symbol(self, provider, mock_client):
        """✅ Symbols absent from the response → 'Stock not found'."""
        mock_client.get.return_value = ok_response({
            "AAPL": {"quote": iex_quote("AAPL")},
            "MSFT": {"quote": iex_quote("MSFT", 410.0)},
        })

        outcome = await provider.get_quotes(["AAPL", "MSFT", "ZZZZ"])

        assert outcome.symbols_resolved == ["AAPL", "MSFT"]
        assert outcome.failures[0].symbol == "ZZZZ"
        assert outcome.failures[0].reason == "Stock not found"

        params = mock_client.get.call_args.kwargs["params"]
        assert params["symbols"] == "AAPL,MSFT,ZZZZ"
        assert params["types"] == "quote"
        assert mock_client.get.call_args.kwargs["timeout"] == provider.batch_timeout

    async def test_too_many_symbols(self, provider, mock_client):
        """❌ More than 100 symbols → ProviderError."""
        with pytest.raises(ProviderError) as exc:
            await provider.get_quotes([f"S{i}" for i in range(101)])

        assert "Maximum 100 symbols" in str(exc.value)
        mock_client.get.assert_not_called()

    async def test_batch_http_error(self, provider, mock_client):
        """❌ Whole batch call fails → ProviderError."""
        mock_client.get.side_effect = status_error(500)

        with pytest.raises(ProviderError):
            await provider.get_quotes(["AAPL"])

    async def test_empty_batch(self, provider, mock_client):
        """✅ No symbols → empty result without a request."""
        outcome = await provider.get_quotes([])

        assert outcome.results == []
        mock_client.get.assert_not_called()

    async def test_close(self, provider, mock_client):
        """✅ close() closes the HTTP client."""
        await provider.close()

        mock_client.aclose.assert_awaited_once()
