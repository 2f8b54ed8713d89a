"""Tests for run_backtest, run_backtest_cli and sync_price_history."""

from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from rebalancer.backtest.history import sync_price_history
from rebalancer.backtest.models import BacktestConfig
from rebalancer.backtest.runner import run_backtest, run_backtest_cli
from rebalancer.backtest.simulator import BacktestSimulator
from rebalancer.data.database import HistoricalDatabase
from rebalancer.data.store import HistoricalDataStore
from rebalancer.exceptions import DataNotFoundError, NetworkError, ValidationError

START = date(2023, 1, 1)


@pytest.fixture
def two_coin_provider(make_provider, make_coin, make_series):
    """A (cap 300) and B (cap 100), constant over Jan to mid March 2023."""
    return make_provider(
        [make_coin("A", "10", "300"), make_coin("B", "20", "100")],
        series={
            "A": make_series(START, 70, "10", "300"),
            "B": make_series(START, 70, "20", "100"),
        },
    )


# ---------------------------------------------------------------------------
# run_backtest
# ---------------------------------------------------------------------------


class TestRunBacktest:
    @pytest.mark.asyncio
    async def test_end_to_end_with_provider(self, two_coin_provider, backtest_settings):
        config = BacktestConfig(start_date=START, end_date=date(2023, 3, 1), max_coins=2)

        result = await run_backtest(config, two_coin_provider, backtest_settings)

        assert len(result.portfolio_history) == 3
        assert result.metrics.rebalance_count == 1
        assert result.metrics.total_fees == Decimal("7.5")
        assert two_coin_provider.universe_calls == [(100, frozenset(), None)]
        assert sorted(two_coin_provider.series_calls) == [["A"], ["B"]]

    @pytest.mark.asyncio
    async def test_exclusions_match_direct_simulation(
        self, make_provider, make_coin, make_series, backtest_settings
    ):
        series = {
            "BTC": make_series(START, 70, "100", "1000"),
            "ETH": make_series(START, 70, "10", "500"),
            "SOL": make_series(START, 70, "1", "100"),
        }
        provider = make_provider(
            [
                make_coin("BTC", "100", "1000"),
                make_coin("ETH", "10", "500"),
                make_coin("SOL", "1", "100"),
            ],
            series=series,
        )
        config = BacktestConfig(
            start_date=START,
            end_date=date(2023, 3, 1),
            max_coins=2,
            excluded_coins=frozenset({"BTC"}),
        )

        loaded = await run_backtest(config, provider, backtest_settings)
        direct = BacktestSimulator(config, series, backtest_settings).run()

        assert sorted(loaded.portfolio_history[-1].holdings) == ["ETH", "SOL"]
        assert [s.total_value for s in loaded.portfolio_history] == [
            s.total_value for s in direct.portfolio_history
        ]

    @pytest.mark.asyncio
    async def test_invalid_config_rejected_before_loading(self, two_coin_provider):
        config = BacktestConfig(start_date=date(2023, 3, 1), end_date=START)

        with pytest.raises(ValidationError):
            await run_backtest(config, two_coin_provider)

        assert two_coin_provider.universe_calls == []
        assert two_coin_provider.series_calls == []

    @pytest.mark.asyncio
    async def test_missing_history_fails_run(self, make_provider, make_coin, make_series):
        provider = make_provider(
            [make_coin("A", "10", "300"), make_coin("B", "20", "100")],
            series={"A": make_series(START, 70, "10", "300")},
        )
        config = BacktestConfig(start_date=START, end_date=date(2023, 3, 1))

        with pytest.raises(DataNotFoundError):
            await run_backtest(config, provider)


# ---------------------------------------------------------------------------
# run_backtest_cli
# ---------------------------------------------------------------------------


async def _populate(db_path: str, make_series) -> None:
    async with HistoricalDatabase(db_path) as database:
        store = HistoricalDataStore(database)
        await store.upsert_coin("A", "Alpha")
        await store.insert_price_points("A", make_series(START, 70, "10", "300"))
        await store.insert_price_points("B", make_series(START, 70, "20", "100"))


class TestRunBacktestCli:
    @pytest.mark.asyncio
    async def test_runs_against_history_store(self, mock_settings, make_series):
        await _populate(mock_settings.market_data.db_path, make_series)

        result = await run_backtest_cli(
            "2023-01-01", "2023-03-01", max_coins=2, settings=mock_settings
        )

        assert result.config.initial_value == Decimal("10000")
        assert [s.total_value for s in result.portfolio_history] == [
            Decimal("10000"),
            Decimal("9992.5"),
            Decimal("9992.5"),
        ]

    @pytest.mark.asyncio
    async def test_config_overrides_applied(self, mock_settings, make_series):
        await _populate(mock_settings.market_data.db_path, make_series)

        result = await run_backtest_cli(
            "2023-01-01",
            "2023-03-01",
            frequency="QUARTERLY",
            max_coins=2,
            initial_value=Decimal("5000"),
            settings=mock_settings,
            transaction_fee_percent=Decimal("0"),
            slippage_percent=Decimal("0"),
            not_a_field=True,
        )

        assert result.config.rebalance_frequency.value == "quarterly"
        assert result.metrics.total_fees == Decimal("0")
        assert result.portfolio_history[-1].total_value == Decimal("5000")

    @pytest.mark.asyncio
    async def test_invalid_date_format(self, mock_settings):
        with pytest.raises(ValidationError) as exc_info:
            await run_backtest_cli("2023/01/01", "2023-03-01", settings=mock_settings)
        assert exc_info.value.context["field"] == "start_date"

    @pytest.mark.asyncio
    async def test_unknown_frequency(self, mock_settings):
        with pytest.raises(ValidationError):
            await run_backtest_cli(
                "2023-01-01", "2023-03-01", frequency="weekly", settings=mock_settings
            )


# ---------------------------------------------------------------------------
# sync_price_history
# ---------------------------------------------------------------------------


class TestSyncPriceHistory:
    @pytest.mark.asyncio
    async def test_syncs_provider_universe(self, two_coin_provider, backtest_settings):
        async with HistoricalDatabase(":memory:") as database:
            store = HistoricalDataStore(database)

            inserted = await sync_price_history(
                store, two_coin_provider, settings=backtest_settings
            )
            again = await sync_price_history(
                store, two_coin_provider, settings=backtest_settings
            )
            universe = await store.get_ranked_universe(2)

        assert inserted == 140
        assert again == 0
        assert [(c.symbol, c.name) for c in universe] == [("A", "A"), ("B", "B")]

    @pytest.mark.asyncio
    async def test_explicit_symbols_deduplicated(self, two_coin_provider, backtest_settings):
        async with HistoricalDatabase(":memory:") as database:
            store = HistoricalDataStore(database)

            inserted = await sync_price_history(
                store, two_coin_provider, symbols=["a", "A"], settings=backtest_settings
            )
            symbols = await store.get_symbols()

        assert inserted == 70
        assert symbols == ["A"]
        assert two_coin_provider.universe_calls == []

    @pytest.mark.asyncio
    async def test_universe_lookup_retried(
        self, two_coin_provider, make_coin, backtest_settings
    ):
        two_coin_provider.get_ranked_universe = AsyncMock(
            side_effect=[NetworkError("reset"), [make_coin("A", "10", "300", rank=1)]]
        )

        async with HistoricalDatabase(":memory:") as database:
            store = HistoricalDataStore(database)
            inserted = await sync_price_history(
                store, two_coin_provider, settings=backtest_settings
            )

        assert inserted == 70
        assert two_coin_provider.get_ranked_universe.await_count == 2
