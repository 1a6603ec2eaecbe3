"""Unit tests for AlphaVantageProvider."""
import pytest
from unittest.mock import AsyncMock, MagicMock, patch
import httpx

from app.providers.alpha_vantage import AlphaVantageProvider, format_alpha_vantage_quote
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
    return AlphaVantageProvider(api_key="av-key", base_url="https://av.test/query")


GLOBAL_QUOTE = {
    "Global Quote": {
        "01. symbol": "IBM",
        "02. open": "168.00",
        "05. price": "170.50",
        "06. volume": "3456789",
        "07. latest trading day": "2026-01-05",
        "08. previous close": "169.00",
        "09. change": "1.50",
        "10. change percent": "0.8876%",
    }
}


def response_with(payload):
    resp = MagicMock()
    resp.json.return_value = payload
    resp.raise_for_status = MagicMock()
    return resp


# ============================================================================
# Tests for parsing
# ============================================================================

@pytest.mark.unit
class TestFormatAlphaVantageQuote:
    """Test GLOBAL_QUOTE parsing."""

    def test_parses_fields(self):
        """✅ Strings converted, percent sign stripped."""
        quote = format_alpha_vantage_quote(GLOBAL_QUOTE)

        assert quote.symbol == "IBM"
        assert quote.price == 170.5
        assert quote.change == 1.5
        assert quote.change_percent == pytest.approx(0.8876)
        assert quote.volume == 3456789
        assert quote.previous_close == 169.0
        assert quote.source == "alphavantage"
        assert quote.timestamp.date().isoformat() == "2026-01-05"

    def test_empty_quote(self):
        """❌ Empty Global Quote → ProviderError."""
        with pytest.raises(ProviderError):
            format_alpha_vantage_quote({"Global Quote": {}})


# ============================================================================
# Tests for get_quote
# ============================================================================

@pytest.mark.unit
@pytest.mark.asyncio
class TestGetQuote:
    """Test get_quote method."""

    async def test_success(self, provider, mock_client):
        """✅ GLOBAL_QUOTE call → QuoteResult."""
        mock_client.get.return_value = response_with(GLOBAL_QUOTE)

        quote = await provider.get_quote("IBM")

        assert quote.price == 170.5
        params = mock_client.get.call_args.kwargs["params"]
        assert params == {"function": "GLOBAL_QUOTE", "symbol": "IBM", "apikey": "av-key"}

    async def test_error_message(self, provider, mock_client):
        """❌ 'Error Message' payload → ProviderError with that message."""
        mock_client.get.return_value = response_with({"Error Message": "Invalid API call."})

        with pytest.raises(ProviderError) as exc:
            await provider.get_quote("ZZZZ")

        assert "Invalid API call." in str(exc.value)

    async def test_rate_limit_note(self, provider, mock_client):
        """❌ 'Note' payload → frequency limit error."""
        mock_client.get.return_value = response_with({"Note": "Thank you for using Alpha Vantage!"})

        with pytest.raises(ProviderError) as exc:
            await provider.get_quote("IBM")

        assert "frequency limit" in str(exc.value)

    async def test_http_error(self, provider, mock_client):
        """❌ Transport error → ProviderError."""
        mock_client.get.side_effect = httpx.ReadTimeout("slow")

        with pytest.raises(ProviderError):
            await provider.get_quote("IBM")

    async def test_missing_key(self, mock_client):
        """❌ No API key → ProviderError before any request."""
        with patch("app.providers.alpha_vantage.settings") as mock_settings:
            mock_settings.alpha_vantage_api_key = None
            mock_settings.alpha_vantage_base_url = "https://av.test/query"
            mock_settings.single_quote_timeout_seconds = 10.0
            provider = AlphaVantageProvider()

        with pytest.raises(ProviderError):
            await provider.get_quote("IBM")

        mock_client.get.assert_not_called()

    async def test_batch_falls_back_to_single_lookups(self, provider, mock_client):
        """✅ Default get_quotes → one lookup, failures per symbol."""
        mock_client.get.return_value = response_with(GLOBAL_QUOTE)

        outcome = await provider.get_quotes(["IBM"])

        assert outcome.symbols_resolved == ["IBM"]

        with pytest.raises(ProviderError):
            await provider.get_quotes(["IBM", "AAPL"])
