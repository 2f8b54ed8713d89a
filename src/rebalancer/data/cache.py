"""TTL cache in front of any MarketDataProvider.

Rankings and prices are cached for ``cache_ttl_seconds`` (default 5
minutes), price histories for ``history_cache_ttl_seconds`` (default 1
hour) since they only gain one point per day. Failures are never cached.
"""

import time
from collections.abc import Callable, Iterable
from datetime import date
from decimal import Decimal
from typing import Any

from rebalancer.config import MarketDataSettings
from rebalancer.data.models import PricePoint
from rebalancer.data.provider import MarketDataProvider
from rebalancer.logging import get_logger
from rebalancer.models import CoinSnapshot, normalize_symbol, normalize_symbols

logger = get_logger(__name__)


class CachedMarketDataProvider(MarketDataProvider):
    """Wraps another provider with per-call in-memory caching.

    Args:
        inner: The provider doing the real work.
        settings: Supplies both TTLs.
        clock: Monotonic seconds source.
    """

    def __init__(
        self,
        inner: MarketDataProvider,
        settings: MarketDataSettings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        settings = settings or MarketDataSettings()
        self._inner = inner
        self._ttl = settings.cache_ttl_seconds
        self._history_ttl = settings.history_cache_ttl_seconds
        self._clock = clock
        self._entries: dict[tuple, tuple[float, Any]] = {}

    def _get(self, key: tuple) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    def _put(self, key: tuple, value: Any, ttl: float) -> None:
        now = self._clock()
        for stale in [k for k, (expires_at, _) in self._entries.items() if now >= expires_at]:
            del self._entries[stale]
        self._entries[key] = (now + ttl, value)

    def clear(self) -> None:
        """Drop every cached entry."""
        self._entries.clear()

    async def get_ranked_universe(
        self,
        max_coins: int,
        excluded: Iterable[str] = (),
        as_of: date | None = None,
    ) -> list[CoinSnapshot]:
        excluded_set = normalize_symbols(excluded)
        key = ("universe", max_coins, tuple(sorted(excluded_set)), as_of)
        cached = self._get(key)
        if cached is not None:
            logger.debug("cache_hit", kind="universe", max_coins=max_coins)
            return list(cached)
        universe = await self._inner.get_ranked_universe(max_coins, excluded_set, as_of)
        self._put(key, tuple(universe), self._ttl)
        return universe

    async def get_prices(self, symbols: list[str]) -> dict[str, Decimal]:
        key = ("prices", tuple(sorted(normalize_symbol(s) for s in symbols)))
        cached = self._get(key)
        if cached is not None:
            logger.debug("cache_hit", kind="prices", symbols=len(symbols))
            return dict(cached)
        prices = await self._inner.get_prices(symbols)
        self._put(key, dict(prices), self._ttl)
        return prices

    async def get_price_series(self, symbols: list[str]) -> dict[str, list[PricePoint]]:
        series: dict[str, list[PricePoint]] = {}
        missing: list[str] = []
        for symbol in symbols:
            cached = self._get(("series", normalize_symbol(symbol)))
            if cached is not None:
                series[normalize_symbol(symbol)] = list(cached)
            else:
                missing.append(symbol)

        if missing:
            fetched = await self._inner.get_price_series(missing)
            for symbol, points in fetched.items():
                self._put(("series", normalize_symbol(symbol)), tuple(points), self._history_ttl)
                series[normalize_symbol(symbol)] = points
        return series

    async def close(self) -> None:
        await self._inner.close()
