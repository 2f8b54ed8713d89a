"""CoinGecko market data provider.

Fetches the market-cap ranking, spot prices and daily price / market cap
history from the CoinGecko public API. Uses urllib.request (stdlib) run in
a worker thread so the event loop is never blocked.

Every transport failure is classified (see ``rebalancer.classifier``)
before it leaves this module.
"""

import asyncio
import json
import urllib.parse
import urllib.request
from collections.abc import Iterable
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from rebalancer.allocation.universe import UniversePolicy, fetch_size, rank_universe
from rebalancer.classifier import classify_error
from rebalancer.config import MarketDataSettings
from rebalancer.data.models import PricePoint
from rebalancer.data.provider import MarketDataProvider
from rebalancer.exceptions import DataNotFoundError, RebalancerError, ValidationError
from rebalancer.logging import get_logger
from rebalancer.models import CoinSnapshot, normalize_symbol

logger = get_logger(__name__)

# Fallback mapping for symbols not yet seen in a /coins/markets response.
SYMBOL_TO_COINGECKO: dict[str, str] = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "USDT": "tether",
    "BNB": "binancecoin",
    "SOL": "solana",
    "USDC": "usd-coin",
    "XRP": "ripple",
    "DOGE": "dogecoin",
    "TRX": "tron",
    "ADA": "cardano",
    "AVAX": "avalanche-2",
    "SHIB": "shiba-inu",
    "DOT": "polkadot",
    "LINK": "chainlink",
    "MATIC": "matic-network",
    "LTC": "litecoin",
    "UNI": "uniswap",
    "ATOM": "cosmos",
    "NEAR": "near",
    "APT": "aptos",
}

# CoinGecko caps per_page at 250.
MAX_PAGE_SIZE = 250


def _to_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal("0")
    return Decimal(str(value))


def _day(timestamp_ms: float) -> date:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).date()


class CoinGeckoProvider(MarketDataProvider):
    """MarketDataProvider backed by the CoinGecko REST API.

    Args:
        settings: Base URL, API key, timeout.
        policy: Exclusion/truncation order for the ranked universe.
    """

    def __init__(
        self,
        settings: MarketDataSettings | None = None,
        policy: UniversePolicy = UniversePolicy.TRUNCATE_THEN_EXCLUDE,
    ) -> None:
        self._settings = settings or MarketDataSettings()
        self._policy = policy
        # Learned from /coins/markets; the first (largest) coin wins a symbol.
        self._ids: dict[str, str] = {}

    def coin_id(self, symbol: str) -> str:
        """CoinGecko id for a ticker symbol."""
        symbol = normalize_symbol(symbol)
        return self._ids.get(symbol) or SYMBOL_TO_COINGECKO.get(symbol) or symbol.lower()

    # ──────────────────────────────────────────────
    # HTTP
    # ──────────────────────────────────────────────

    def _build_url(self, path: str, params: dict[str, Any]) -> str:
        query = dict(params)
        api_key = self._settings.api_key.get_secret_value()
        if api_key:
            query["x_cg_demo_api_key"] = api_key
        return f"{self._settings.base_url.rstrip('/')}{path}?{urllib.parse.urlencode(query)}"

    def _get_json(self, url: str) -> Any:
        headers = {"Accept": "application/json", "User-Agent": "CryptoRebalancer/0.1"}
        req = urllib.request.Request(url, headers=headers)
        with urllib.request.urlopen(req, timeout=self._settings.request_timeout) as resp:
            return json.loads(resp.read())

    async def _request(
        self,
        path: str,
        params: dict[str, Any],
        symbol: str | None = None,
    ) -> Any:
        url = self._build_url(path, params)
        try:
            return await asyncio.to_thread(self._get_json, url)
        except RebalancerError:
            raise
        except Exception as e:
            error = classify_error(e, symbol)
            logger.warning(
                "coingecko_request_failed",
                path=path,
                symbol=symbol,
                code=error.code,
                error=str(e),
            )
            raise error from e

    # ──────────────────────────────────────────────
    # MarketDataProvider
    # ──────────────────────────────────────────────

    async def get_ranked_universe(
        self,
        max_coins: int,
        excluded: Iterable[str] = (),
        as_of: date | None = None,
    ) -> list[CoinSnapshot]:
        if as_of is not None:
            raise ValidationError(
                "CoinGecko rankings are only available for the current date",
                context={"as_of": as_of.isoformat()},
            )
        excluded = list(excluded)
        per_page = min(fetch_size(max_coins, excluded, self._policy), MAX_PAGE_SIZE)
        data = await self._request(
            "/coins/markets",
            {
                "vs_currency": "usd",
                "order": "market_cap_desc",
                "per_page": per_page,
                "page": 1,
                "sparkline": "false",
            },
        )

        snapshots: list[CoinSnapshot] = []
        for item in data:
            symbol = normalize_symbol(item.get("symbol") or "")
            if not symbol:
                continue
            self._ids.setdefault(symbol, item["id"])
            snapshots.append(
                CoinSnapshot(
                    symbol=symbol,
                    name=item.get("name") or symbol,
                    price=_to_decimal(item.get("current_price")),
                    market_cap=_to_decimal(item.get("market_cap")),
                )
            )

        universe = rank_universe(snapshots, max_coins, excluded, self._policy)
        logger.info(
            "coingecko_universe_loaded",
            fetched=len(snapshots),
            selected=len(universe),
        )
        return universe

    async def get_prices(self, symbols: list[str]) -> dict[str, Decimal]:
        if not symbols:
            return {}
        ids = {normalize_symbol(s): self.coin_id(s) for s in symbols}
        data = await self._request(
            "/simple/price",
            {"ids": ",".join(dict.fromkeys(ids.values())), "vs_currencies": "usd"},
        )
        prices: dict[str, Decimal] = {}
        for symbol, cg_id in ids.items():
            usd = (data.get(cg_id) or {}).get("usd")
            if usd is not None:
                prices[symbol] = _to_decimal(usd)
        missing = sorted(set(ids) - set(prices))
        if missing:
            logger.debug("coingecko_prices_missing", symbols=missing)
        return prices

    async def get_price_series(self, symbols: list[str]) -> dict[str, list[PricePoint]]:
        series: dict[str, list[PricePoint]] = {}
        for raw in symbols:
            symbol = normalize_symbol(raw)
            data = await self._request(
                f"/coins/{urllib.parse.quote(self.coin_id(symbol))}/market_chart",
                {"vs_currency": "usd", "days": "max", "interval": "daily"},
                symbol=symbol,
            )
            points = self._parse_market_chart(data)
            if not points:
                raise DataNotFoundError(
                    f"Historical data not available for {symbol}",
                    context={"symbol": symbol},
                )
            series[symbol] = points
        return series

    @staticmethod
    def _parse_market_chart(data: dict) -> list[PricePoint]:
        """Merge price / market cap / volume arrays into one point per day.

        The trailing "now" sample shares its day with the last daily close;
        the later sample wins.
        """
        market_caps = {_day(ts): v for ts, v in data.get("market_caps") or []}
        volumes = {_day(ts): v for ts, v in data.get("total_volumes") or []}
        by_day: dict[date, PricePoint] = {}
        for ts, price in data.get("prices") or []:
            day = _day(ts)
            by_day[day] = PricePoint(
                date=day,
                price=_to_decimal(price),
                market_cap=_to_decimal(market_caps.get(day)),
                volume=_to_decimal(volumes.get(day)),
            )
        return [by_day[d] for d in sorted(by_day)]
