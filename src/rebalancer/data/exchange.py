"""Live spot prices from a ccxt exchange, layered over another provider.

Rankings and history still come from the inner provider (usually CoinGecko);
only ``get_prices`` is served from exchange tickers (``SYMBOL/USDT`` last
price). Symbols the exchange does not list fall back to the inner provider.
"""

from collections.abc import Iterable
from datetime import date
from decimal import Decimal

import ccxt.async_support as ccxt_async

from rebalancer.classifier import classify_error
from rebalancer.config import MarketDataSettings
from rebalancer.data.models import PricePoint
from rebalancer.data.provider import MarketDataProvider
from rebalancer.logging import get_logger
from rebalancer.models import CoinSnapshot, normalize_symbol

logger = get_logger(__name__)


class ExchangePriceProvider(MarketDataProvider):
    """MarketDataProvider that prices coins from exchange spot tickers.

    Args:
        inner: Provider for rankings, history and unlisted prices.
        settings: exchange_id and quote_currency.
        exchange: Pre-built ccxt async exchange (tests); built from
            settings when omitted.
    """

    def __init__(
        self,
        inner: MarketDataProvider,
        settings: MarketDataSettings | None = None,
        exchange: ccxt_async.Exchange | None = None,
    ) -> None:
        self._settings = settings or MarketDataSettings()
        self._inner = inner
        if exchange is None:
            exchange_class = getattr(ccxt_async, self._settings.exchange_id)
            exchange = exchange_class({"enableRateLimit": True})
        self._exchange = exchange
        self._markets: dict = {}
        self._quote = normalize_symbol(self._settings.quote_currency)

    def market_symbol(self, symbol: str) -> str:
        """ccxt unified spot symbol, e.g. BTC -> BTC/USDT."""
        return f"{normalize_symbol(symbol)}/{self._quote}"

    async def _ensure_markets(self) -> None:
        if not self._markets:
            self._markets = await self._exchange.load_markets()
            logger.info(
                "exchange_markets_loaded",
                exchange=self._settings.exchange_id,
                market_count=len(self._markets),
            )

    async def get_prices(self, symbols: list[str]) -> dict[str, Decimal]:
        wanted = list(dict.fromkeys(normalize_symbol(s) for s in symbols))
        prices: dict[str, Decimal] = {}
        if self._quote in wanted:
            prices[self._quote] = Decimal("1")

        try:
            await self._ensure_markets()
            listed = {
                self.market_symbol(s): s
                for s in wanted
                if s != self._quote and self.market_symbol(s) in self._markets
            }
            tickers = await self._exchange.fetch_tickers(list(listed)) if listed else {}
        except Exception as e:
            raise classify_error(e) from e

        for market, symbol in listed.items():
            ticker = tickers.get(market) or {}
            last = ticker.get("last") or ticker.get("close")
            if last:
                prices[symbol] = Decimal(str(last))

        unpriced = [s for s in wanted if s not in prices]
        if unpriced:
            logger.debug("exchange_prices_fallback", symbols=unpriced)
            prices.update(await self._inner.get_prices(unpriced))
        return prices

    async def get_ranked_universe(
        self,
        max_coins: int,
        excluded: Iterable[str] = (),
        as_of: date | None = None,
    ) -> list[CoinSnapshot]:
        return await self._inner.get_ranked_universe(max_coins, excluded, as_of)

    async def get_price_series(self, symbols: list[str]) -> dict[str, list[PricePoint]]:
        return await self._inner.get_price_series(symbols)

    async def close(self) -> None:
        """Clean up ccxt async resources and the inner provider."""
        await self._exchange.close()
        await self._inner.close()
