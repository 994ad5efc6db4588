import asyncio
import logging
from typing import Any, Callable, Dict, Optional

import pandas as pd
import yfinance as yf

from stgtrade.core.exceptions import MalformedResponseError
from stgtrade.core.types import TickerInfo

logger = logging.getLogger(__name__)


class StockQuoteProvider:
    """Name and last-close lookup from yfinance, usable in place of the search-grounded lookup."""
    NAME_FIELDS = ("longName", "shortName", "displayName")
    # Previous close first: the pipeline anchors on the last completed session
    PRICE_FIELDS = ("previousClose", "regularMarketPreviousClose", "currentPrice", "regularMarketPrice")
    FALLBACK_HISTORY_PERIOD: str = "5d"

    def __init__(self, ticker_factory: Optional[Callable[[str], Any]] = None):
        """ticker_factory is for testing."""
        self._ticker_factory: Callable[[str], Any] = ticker_factory or (lambda t: yf.Ticker(t))

    def _info(self, stock: Any, symbol: str) -> Dict[str, Any]:
        try:
            return stock.info or {}
        except Exception as e:
            logger.warning("Could not fetch info for %s: %s", symbol, e)
            return {}

    def _history_close(self, stock: Any, symbol: str) -> Optional[float]:
        try:
            hist: pd.DataFrame = stock.history(period=self.FALLBACK_HISTORY_PERIOD)
        except Exception as e:
            logger.warning("Could not fetch history for %s: %s", symbol, e)
            return None
        if hist is None or hist.empty or "Close" not in hist.columns:
            return None
        closes = hist["Close"].dropna()
        return float(closes.iloc[-1]) if not closes.empty else None

    def lookup(self, symbol: str) -> TickerInfo:
        """Blocking lookup; raises MalformedResponseError when no positive price is available."""
        symbol = symbol.upper()
        stock = self._ticker_factory(symbol)
        info = self._info(stock, symbol)

        name = next((info[f] for f in self.NAME_FIELDS if info.get(f)), symbol)
        price = None
        for field_name in self.PRICE_FIELDS:
            value = info.get(field_name)
            if isinstance(value, (int, float)) and not isinstance(value, bool) and value > 0:
                price = float(value)
                break
        if price is None:
            logger.debug("No price field in info for %s; falling back to history", symbol)
            price = self._history_close(stock, symbol)
        if price is None or pd.isna(price) or price <= 0:
            raise MalformedResponseError(f"No usable price for {symbol}")

        return TickerInfo(name=str(name), price=price)

    async def get_quote(self, symbol: str) -> TickerInfo:
        return await asyncio.to_thread(self.lookup, symbol)
