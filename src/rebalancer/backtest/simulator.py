"""Periodic market-cap rebalancing replayed over historical data.

Walks the rebalance dates d0 < d1 < ... < dn in order:

1. At d0 the top ``max_coins`` coins by market cap, after dropping excluded
   symbols, are bought in EQUAL value (bootstrap allocation, deliberately not
   market-cap weighted).
2. For each transition d_i -> d_{i+1}: revalue at d_i, re-rank the universe
   at d_i, derive trades with the same rules as the live calculator
   (``plan_rebalance``), charge fee + slippage, move to the post-fee target
   composition, then revalue and snapshot at d_{i+1}.

Prices and market caps come from nearest-date lookup (no interpolation).
The simulation is pure synchronous arithmetic over already loaded series.

CRITICAL: All monetary values use Decimal. Never use float for prices, amounts, or fees.
"""

from collections.abc import Iterable, Mapping
from datetime import date
from decimal import Decimal

from rebalancer.allocation.engine import plan_rebalance, portfolio_value
from rebalancer.allocation.universe import UniversePolicy, rank_universe
from rebalancer.analytics.metrics import compute_benchmark, compute_metrics
from rebalancer.backtest.models import (
    BacktestConfig,
    BacktestResult,
    HoldingSnapshot,
    PortfolioSnapshot,
    RebalanceEvent,
)
from rebalancer.backtest.schedule import generate_rebalance_dates
from rebalancer.backtest.series import PriceSeriesIndex
from rebalancer.config import BacktestSettings, RebalanceSettings
from rebalancer.data.models import PricePoint
from rebalancer.exceptions import InsufficientDataError
from rebalancer.logging import get_logger
from rebalancer.models import CoinSnapshot

logger = get_logger(__name__)

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")


class BacktestSimulator:
    """Replays the rebalancing strategy over pre-loaded price histories.

    Args:
        config: Dates, frequency, costs and universe parameters.
        series: Symbol -> daily observations (or a ready PriceSeriesIndex).
            Excluded symbols may be present; they are dropped before ranking,
            so they never take a universe slot.
        settings: Metric constants (risk-free rate, annualization).
        rebalance_settings: Minimum trade value and max_coins limit.
    """

    def __init__(
        self,
        config: BacktestConfig,
        series: PriceSeriesIndex | Mapping[str, Iterable[PricePoint]],
        settings: BacktestSettings | None = None,
        rebalance_settings: RebalanceSettings | None = None,
    ) -> None:
        self._config = config
        self._index = series if isinstance(series, PriceSeriesIndex) else PriceSeriesIndex(series)
        self._settings = settings or BacktestSettings()
        self._rebalance_settings = rebalance_settings or RebalanceSettings()

    def run(self) -> BacktestResult:
        """Execute the simulation and compute metrics.

        Raises:
            ValidationError: Invalid configuration.
            InsufficientDataError: No coin can be bought on the start date,
                or fewer than two snapshots could be produced.
        """
        config = self._config
        config.validate(self._rebalance_settings.max_coins_limit)

        dates = generate_rebalance_dates(
            config.start_date, config.end_date, config.rebalance_frequency
        )

        logger.info(
            "backtest_starting",
            start_date=config.start_date.isoformat(),
            end_date=config.end_date.isoformat(),
            frequency=config.rebalance_frequency.value,
            rebalance_dates=len(dates),
            symbols=len(self._index.symbols),
        )

        holdings = self._initial_holdings(dates[0])
        cash = _ZERO
        history = [self._snapshot(dates[0], holdings, cash)]
        events: list[RebalanceEvent] = []

        for current_date, next_date in zip(dates, dates[1:]):
            event, holdings, cash = self._rebalance(current_date, holdings, cash)
            if event is not None:
                events.append(event)
            history.append(self._snapshot(next_date, holdings, cash))

        if len(history) < 2:
            raise InsufficientDataError(
                "Insufficient data: fewer than two portfolio snapshots",
                context={"snapshots": len(history)},
            )

        metrics = compute_metrics(
            history,
            events,
            risk_free_rate_pct=self._settings.risk_free_rate_pct,
            annualization_periods=self._settings.annualization_periods,
        )
        benchmark = compute_benchmark(history, self._index.prices_on(dates[-1]))

        logger.info(
            "backtest_complete",
            snapshots=len(history),
            rebalances=metrics.rebalance_count,
            total_return_pct=str(metrics.total_return_pct),
            total_fees=str(metrics.total_fees),
        )

        return BacktestResult(
            config=config,
            portfolio_history=history,
            rebalance_events=events,
            metrics=metrics,
            benchmark=benchmark,
        )

    # ──────────────────────────────────────────────
    # Simulation steps
    # ──────────────────────────────────────────────

    def _select_universe(self, on: date) -> list[CoinSnapshot]:
        return rank_universe(
            self._index.snapshots_on(on),
            self._config.max_coins,
            self._config.excluded_coins,
            UniversePolicy.EXCLUDE_THEN_TRUNCATE,
        )

    def _initial_holdings(self, start: date) -> dict[str, Decimal]:
        """Equal-value allocation of initial_value across the start universe."""
        universe = self._select_universe(start)
        if not universe:
            raise InsufficientDataError(
                "Insufficient data: no coin has price and market cap data on the start date",
                context={"date": start.isoformat(), "symbols": len(self._index.symbols)},
            )
        value_per_coin = self._config.initial_value / Decimal(len(universe))
        holdings = {coin.symbol: value_per_coin / coin.price for coin in universe}
        logger.debug(
            "backtest_initial_allocation",
            date=start.isoformat(),
            coins=list(holdings),
        )
        return holdings

    def _rebalance(
        self,
        on: date,
        holdings: dict[str, Decimal],
        cash: Decimal,
    ) -> tuple[RebalanceEvent | None, dict[str, Decimal], Decimal]:
        """Apply one rebalance on ``on``; returns (event, holdings, cash)."""
        prices = self._index.prices_on(on)
        value = portfolio_value(holdings, prices, cash)
        plan = plan_rebalance(
            holdings,
            self._select_universe(on),
            prices,
            value,
            fee_rate=self._config.cost_rate,
            min_trade_value=self._rebalance_settings.min_trade_value,
        )
        if not plan.trades:
            return None, holdings, cash

        fees = plan.total_fees
        value_after = value - fees
        targets = plan.target_amounts()
        if targets:
            scale = value_after / value if value > 0 else _ZERO
            new_holdings = {s: amount * scale for s, amount in targets.items() if amount > 0}
            new_cash = _ZERO
        else:
            # Empty universe: everything was sold, proceeds stay in cash.
            new_holdings = {}
            new_cash = value_after

        event = RebalanceEvent(
            date=on,
            value_before_trades=value,
            value_after_fees=value_after,
            trades=list(plan.trades),
            total_fees=fees,
            portfolio_before=dict(holdings),
            portfolio_after=dict(new_holdings),
        )
        logger.debug(
            "backtest_rebalanced",
            date=on.isoformat(),
            trades=len(plan.trades),
            fees=str(fees),
        )
        return event, new_holdings, new_cash

    def _snapshot(
        self,
        on: date,
        holdings: Mapping[str, Decimal],
        cash: Decimal,
    ) -> PortfolioSnapshot:
        values = {
            symbol: amount * self._index.price_on(symbol, on)
            for symbol, amount in holdings.items()
            if amount > 0
        }
        total = cash + sum(values.values(), _ZERO)
        return PortfolioSnapshot(
            date=on,
            total_value=total,
            holdings={
                symbol: HoldingSnapshot(
                    amount=holdings[symbol],
                    value=value,
                    percentage=value / total * _HUNDRED if total > 0 else _ZERO,
                )
                for symbol, value in values.items()
            },
            cash=cash,
        )
