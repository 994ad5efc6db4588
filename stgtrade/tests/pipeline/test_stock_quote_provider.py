"""Tests for StockQuoteProvider."""
from unittest.mock import MagicMock, PropertyMock, patch

import pandas as pd
import pytest

from stgtrade.core.exceptions import MalformedResponseError
from stgtrade.services.stock_quote_provider import StockQuoteProvider


def make_stock(info=None, closes=None, info_error=None):
    stock = MagicMock()
    if info_error is not None:
        type(stock).info = PropertyMock(side_effect=info_error)
    else:
        stock.info = info or {}
    stock.history.return_value = pd.DataFrame({"Close": closes or []})
    return stock


class TestStockQuoteProvider:

    def test_prefers_previous_close(self):
        stock = make_stock(info={"longName": "Apple Inc.", "previousClose": 180.5, "currentPrice": 182.0})
        provider = StockQuoteProvider(ticker_factory=lambda t: stock)

        quote = provider.lookup("aapl")

        assert quote.name == "Apple Inc."
        assert quote.price == 180.5

    def test_name_falls_back_to_symbol(self):
        stock = make_stock(info={"regularMarketPrice": 12.0})
        quote = StockQuoteProvider(ticker_factory=lambda t: stock).lookup("xyz")
        assert quote.name == "XYZ"
        assert quote.price == 12.0

    def test_history_fallback(self):
        stock = make_stock(info={"shortName": "Thin Co"}, closes=[10.0, 11.0, 12.5])
        quote = StockQuoteProvider(ticker_factory=lambda t: stock).lookup("THIN")
        assert quote.price == 12.5
        stock.history.assert_called_once_with(period="5d")

    def test_info_failure_is_tolerated(self):
        stock = make_stock(info_error=RuntimeError("rate limited"), closes=[7.0])
        quote = StockQuoteProvider(ticker_factory=lambda t: stock).lookup("FLAKY")
        assert quote.price == 7.0

    def test_no_price_raises(self):
        stock = make_stock(info={"longName": "Ghost", "previousClose": 0})
        with pytest.raises(MalformedResponseError):
            StockQuoteProvider(ticker_factory=lambda t: stock).lookup("GHST")

    @patch('stgtrade.services.stock_quote_provider.yf.Ticker')
    def test_default_factory_uses_yfinance(self, mock_ticker):
        mock_ticker.return_value = make_stock(info={"longName": "Acme", "previousClose": 3.0})

        quote = StockQuoteProvider().lookup("acme")

        mock_ticker.assert_called_once_with("ACME")
        assert quote.price == 3.0

    @pytest.mark.asyncio
    async def test_get_quote_runs_lookup(self):
        stock = make_stock(info={"longName": "Async Co", "previousClose": 5.0})
        quote = await StockQuoteProvider(ticker_factory=lambda t: stock).get_quote("ASY")
        assert quote.name == "Async Co"
