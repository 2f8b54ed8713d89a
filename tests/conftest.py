"""Shared test fixtures for the rebalancer."""

from collections.abc import Iterable
from datetime import date, timedelta
from decimal import Decimal

import pytest

from rebalancer.allocation.universe import UniversePolicy, rank_universe
from rebalancer.config import AppSettings, BacktestSettings, MarketDataSettings, RebalanceSettings
from rebalancer.data.models import PricePoint
from rebalancer.data.provider import MarketDataProvider
from rebalancer.exceptions import DataNotFoundError
from rebalancer.models import CoinSnapshot


class FakeMarketDataProvider(MarketDataProvider):
    """In-memory provider with call recording.

    Rankings come from ``coins`` through rank_universe; prices default to the
    snapshot prices unless ``prices`` overrides them.
    """

    def __init__(
        self,
        coins: Iterable[CoinSnapshot] = (),
        prices: dict[str, Decimal] | None = None,
        series: dict[str, list[PricePoint]] | None = None,
        policy: UniversePolicy = UniversePolicy.TRUNCATE_THEN_EXCLUDE,
    ) -> None:
        self.coins = list(coins)
        self.prices = prices if prices is not None else {c.symbol: c.price for c in self.coins}
        self.series = series or {}
        self.policy = policy
        self.universe_calls: list[tuple] = []
        self.price_calls: list[list[str]] = []
        self.series_calls: list[list[str]] = []
        self.closed = False

    async def get_ranked_universe(self, max_coins, excluded=(), as_of=None):
        self.universe_calls.append((max_coins, frozenset(excluded), as_of))
        return rank_universe(self.coins, max_coins, excluded, self.policy)

    async def get_prices(self, symbols):
        self.price_calls.append(list(symbols))
        return {s: self.prices[s] for s in symbols if s in self.prices}

    async def get_price_series(self, symbols):
        self.series_calls.append(list(symbols))
        result = {}
        for symbol in symbols:
            if symbol not in self.series:
                raise DataNotFoundError(f"Historical data not available for {symbol}")
            result[symbol] = self.series[symbol]
        return result

    async def close(self):
        self.closed = True


def coin(symbol: str, price: str, market_cap: str, rank: int = 0) -> CoinSnapshot:
    """Shorthand CoinSnapshot builder."""
    return CoinSnapshot(
        symbol=symbol,
        name=symbol.title(),
        price=Decimal(price),
        market_cap=Decimal(market_cap),
        rank=rank,
    )


def flat_series(
    start: date,
    days: int,
    price: str,
    market_cap: str,
) -> list[PricePoint]:
    """Daily points with a constant price and market cap."""
    return [
        PricePoint(
            date=start + timedelta(days=i),
            price=Decimal(price),
            market_cap=Decimal(market_cap),
        )
        for i in range(days)
    ]


@pytest.fixture
def scenario_coins() -> list[CoinSnapshot]:
    """BTC / ETH / USDT universe used by the calculator scenarios."""
    return [
        coin("BTC", "50000", "1000000000000"),
        coin("ETH", "3000", "400000000000"),
        coin("USDT", "1", "100000000000"),
    ]


@pytest.fixture
def fake_provider(scenario_coins: list[CoinSnapshot]) -> FakeMarketDataProvider:
    return FakeMarketDataProvider(scenario_coins)


@pytest.fixture
def rebalance_settings() -> RebalanceSettings:
    return RebalanceSettings()


@pytest.fixture
def backtest_settings() -> BacktestSettings:
    """Loader settings with retries enabled and no real waiting needed."""
    return BacktestSettings(max_concurrent_fetches=2, retry_base_delay=0.0)


@pytest.fixture
def mock_settings(tmp_path) -> AppSettings:
    """AppSettings with test defaults and a temporary database path."""
    return AppSettings(
        log_level="DEBUG",
        rebalance=RebalanceSettings(),
        backtest=BacktestSettings(retry_base_delay=0.0),
        market_data=MarketDataSettings(db_path=str(tmp_path / "history.db")),
    )


@pytest.fixture
def make_coin():
    return coin


@pytest.fixture
def make_series():
    return flat_series


@pytest.fixture
def make_provider():
    return FakeMarketDataProvider
