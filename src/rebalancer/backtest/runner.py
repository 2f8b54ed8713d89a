"""High-level entry points for running backtests.

Provides run_backtest() for a provider-backed run (load history, then
simulate) and run_backtest_cli() for convenient CLI usage with date strings
against the local SQLite history store.
"""

import time
from collections.abc import Iterable
from datetime import date, datetime
from decimal import Decimal

from rebalancer.allocation.universe import UniversePolicy
from rebalancer.backtest.loader import BacktestDataLoader
from rebalancer.backtest.models import BacktestConfig, BacktestResult, RebalanceFrequency
from rebalancer.backtest.simulator import BacktestSimulator
from rebalancer.classifier import classify_error
from rebalancer.config import AppSettings, BacktestSettings, RebalanceSettings
from rebalancer.data.database import HistoricalDatabase
from rebalancer.data.provider import MarketDataProvider
from rebalancer.data.store import HistoricalDataStore
from rebalancer.exceptions import RebalancerError, ValidationError
from rebalancer.logging import get_logger

logger = get_logger(__name__)


async def run_backtest(
    config: BacktestConfig,
    provider: MarketDataProvider,
    backtest_settings: BacktestSettings | None = None,
    rebalance_settings: RebalanceSettings | None = None,
) -> BacktestResult:
    """Run a single backtest with the given configuration.

    Validates the config before touching the provider, loads every
    candidate's history, then simulates.

    Args:
        config: Backtest configuration (dates, frequency, costs, universe).
        provider: Source of the candidate list and price histories.
        backtest_settings: Metric constants and loader limits.
        rebalance_settings: Minimum trade value and max_coins limit.

    Returns:
        BacktestResult with snapshot history, events, metrics and benchmark.

    Raises:
        RebalancerError: Validation, data loading, or calculation failure.
    """
    if backtest_settings is None:
        backtest_settings = BacktestSettings()
    if rebalance_settings is None:
        rebalance_settings = RebalanceSettings()

    config.validate(rebalance_settings.max_coins_limit)
    start_time = time.monotonic()

    logger.info(
        "run_backtest_starting",
        start_date=config.start_date.isoformat(),
        end_date=config.end_date.isoformat(),
        frequency=config.rebalance_frequency.value,
        max_coins=config.max_coins,
        excluded=sorted(config.excluded_coins),
    )

    loader = BacktestDataLoader(provider, backtest_settings)
    series = await loader.load(config)

    simulator = BacktestSimulator(
        config,
        series,
        settings=backtest_settings,
        rebalance_settings=rebalance_settings,
    )
    try:
        result = simulator.run()
    except RebalancerError:
        raise
    except Exception as e:
        raise classify_error(e) from e

    logger.info(
        "run_backtest_complete",
        snapshots=len(result.portfolio_history),
        rebalances=result.metrics.rebalance_count,
        total_return_pct=str(result.metrics.total_return_pct),
        elapsed_seconds=round(time.monotonic() - start_time, 2),
    )
    return result


def _parse_date(value: str, field_name: str) -> date:
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError as e:
        raise ValidationError(
            f"Invalid date format for {field_name}. Expected YYYY-MM-DD. Error: {e}",
            context={"field": field_name, "value": value},
        ) from e


async def run_backtest_cli(
    start_date: str,
    end_date: str,
    frequency: str = "monthly",
    max_coins: int = 10,
    excluded_coins: Iterable[str] = (),
    initial_value: Decimal | None = None,
    db_path: str | None = None,
    settings: AppSettings | None = None,
    **kwargs: object,
) -> BacktestResult:
    """Convenience entry point for CLI usage with date strings.

    Runs against the local SQLite history store, so no network access is
    needed once the store has been populated.

    Args:
        start_date: Start date as "YYYY-MM-DD" string.
        end_date: End date as "YYYY-MM-DD" string.
        frequency: "monthly", "quarterly" or "yearly".
        max_coins: Universe size per rebalance date.
        excluded_coins: Symbols never held.
        initial_value: Starting value in USD. Defaults to settings.
        db_path: Path to the SQLite history database. Defaults to settings.
        settings: Application settings. Defaults to environment.
        **kwargs: Additional BacktestConfig fields to override.

    Raises:
        ValidationError: Invalid dates, frequency or parameters.
    """
    if settings is None:
        settings = AppSettings()

    try:
        rebalance_frequency = RebalanceFrequency(frequency.lower())
    except ValueError as e:
        raise ValidationError(
            f"Unknown rebalance frequency: {frequency}",
            context={"field": "rebalance_frequency"},
        ) from e

    config = BacktestConfig(
        start_date=_parse_date(start_date, "start_date"),
        end_date=_parse_date(end_date, "end_date"),
        initial_value=initial_value or settings.backtest.default_initial_value,
        rebalance_frequency=rebalance_frequency,
        max_coins=max_coins,
        excluded_coins=frozenset(excluded_coins),
    )
    overrides = {k: v for k, v in kwargs.items() if hasattr(config, k)}
    if overrides:
        config = config.with_overrides(**overrides)

    policy = UniversePolicy(settings.market_data.universe_policy)

    async with HistoricalDatabase(db_path or settings.market_data.db_path) as database:
        store = HistoricalDataStore(database, policy=policy)
        result = await run_backtest(
            config,
            store,
            backtest_settings=settings.backtest,
            rebalance_settings=settings.rebalance,
        )

    m = result.metrics
    logger.info(
        "backtest_cli_summary",
        date_range=f"{start_date} to {end_date}",
        frequency=rebalance_frequency.value,
        initial_value=str(config.initial_value),
        final_value=str(result.portfolio_history[-1].total_value),
        total_return_pct=str(m.total_return_pct),
        annualized_return_pct=str(m.annualized_return_pct),
        volatility_pct=str(m.volatility_pct),
        sharpe_ratio=str(m.sharpe_ratio),
        max_drawdown_pct=str(m.max_drawdown_pct),
        win_rate_pct=str(m.win_rate_pct),
        total_fees=str(m.total_fees),
        rebalance_count=m.rebalance_count,
    )
    return result
