"""Performance analytics over a backtest's snapshot history.

Pure Decimal analytics: total/annualized return, volatility, Sharpe ratio,
max drawdown, win rate, fee totals, and a buy-and-hold benchmark.
No external dependencies (no pandas, numpy, quantstats).

Volatility is annualized with sqrt(12) regardless of the configured rebalance
frequency. That is a known approximation; changing it changes every
historical volatility and Sharpe figure.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from decimal import Decimal, DecimalException
from typing import TYPE_CHECKING

from rebalancer.exceptions import CalculationError, InsufficientDataError

if TYPE_CHECKING:
    from rebalancer.backtest.models import PortfolioSnapshot, RebalanceEvent

_ZERO = Decimal("0")
_ONE = Decimal("1")
_HUNDRED = Decimal("100")
DAYS_PER_YEAR = Decimal("365.25")
RISK_FREE_RATE_PCT = Decimal("3")


@dataclass
class BacktestMetrics:
    """Aggregate metrics from a completed backtest run.

    Percentages are on a 0-100 scale.
    """

    total_return_pct: Decimal
    annualized_return_pct: Decimal
    volatility_pct: Decimal
    sharpe_ratio: Decimal
    max_drawdown_pct: Decimal
    win_rate_pct: Decimal
    total_fees: Decimal
    rebalance_count: int

    def to_dict(self) -> dict:
        return {
            "total_return_pct": str(self.total_return_pct),
            "annualized_return_pct": str(self.annualized_return_pct),
            "volatility_pct": str(self.volatility_pct),
            "sharpe_ratio": str(self.sharpe_ratio),
            "max_drawdown_pct": str(self.max_drawdown_pct),
            "win_rate_pct": str(self.win_rate_pct),
            "total_fees": str(self.total_fees),
            "rebalance_count": self.rebalance_count,
        }


@dataclass
class BenchmarkComparison:
    """Strategy return against buying and holding the initial allocation."""

    hodl_return_pct: Decimal
    outperformance_pct: Decimal

    def to_dict(self) -> dict:
        return {
            "hodl_return_pct": str(self.hodl_return_pct),
            "outperformance_pct": str(self.outperformance_pct),
        }


def total_return_pct(initial_value: Decimal, final_value: Decimal) -> Decimal:
    """(final - initial) / initial * 100."""
    if initial_value == 0:
        raise CalculationError(
            "division by zero: initial portfolio value is 0",
            context={"metric": "total_return_pct"},
        )
    return (final_value - initial_value) / initial_value * _HUNDRED


def annualized_return_pct(
    initial_value: Decimal,
    final_value: Decimal,
    elapsed_days: int,
) -> Decimal:
    """Compound annual growth rate in percent; 0 when no time elapsed."""
    if elapsed_days <= 0:
        return _ZERO
    if initial_value == 0:
        raise CalculationError(
            "division by zero: initial portfolio value is 0",
            context={"metric": "annualized_return_pct"},
        )
    years = Decimal(elapsed_days) / DAYS_PER_YEAR
    ratio = final_value / initial_value
    try:
        growth = ratio ** (_ONE / years)
    except DecimalException as e:
        raise CalculationError(
            f"NaN in annualized return: {e!r}",
            context={"ratio": ratio, "years": years},
        ) from e
    return (growth - _ONE) * _HUNDRED


def period_returns(values: Sequence[Decimal]) -> list[Decimal]:
    """Simple return between each consecutive pair of values."""
    returns: list[Decimal] = []
    for prev, curr in zip(values, values[1:]):
        if prev == 0:
            raise CalculationError(
                "division by zero: portfolio value reached 0",
                context={"metric": "period_returns"},
            )
        returns.append((curr - prev) / prev)
    return returns


def volatility_pct(returns: Sequence[Decimal], annualization_periods: int = 12) -> Decimal:
    """Population standard deviation of returns, annualized, in percent."""
    if not returns:
        return _ZERO
    n = Decimal(len(returns))
    mean = sum(returns, _ZERO) / n
    variance = sum(((r - mean) ** 2 for r in returns), _ZERO) / n
    return variance.sqrt() * Decimal(annualization_periods).sqrt() * _HUNDRED


def sharpe_ratio(
    annualized_pct: Decimal,
    volatility: Decimal,
    risk_free_rate_pct: Decimal = RISK_FREE_RATE_PCT,
) -> Decimal:
    """(annualized return - risk free) / volatility; 0 when volatility is 0."""
    if volatility <= 0:
        return _ZERO
    return (annualized_pct - risk_free_rate_pct) / volatility


def max_drawdown_pct(values: Sequence[Decimal]) -> Decimal:
    """Largest peak-to-trough decline of the value series, in percent of peak."""
    if not values:
        return _ZERO
    peak = values[0]
    max_dd = _ZERO
    for value in values:
        if value > peak:
            peak = value
        if peak <= 0:
            continue
        dd = (peak - value) / peak * _HUNDRED
        if dd > max_dd:
            max_dd = dd
    return max_dd


def win_rate_pct(returns: Sequence[Decimal]) -> Decimal:
    """Share of strictly positive period returns, in percent."""
    if not returns:
        return _ZERO
    wins = sum(1 for r in returns if r > 0)
    return Decimal(wins) / Decimal(len(returns)) * _HUNDRED


def compute_metrics(
    history: Sequence[PortfolioSnapshot],
    events: Sequence[RebalanceEvent],
    risk_free_rate_pct: Decimal = RISK_FREE_RATE_PCT,
    annualization_periods: int = 12,
) -> BacktestMetrics:
    """Summary statistics for a completed backtest.

    Args:
        history: Snapshots in ascending date order (at least two).
        events: Rebalance events emitted during the run.
        risk_free_rate_pct: Annual risk-free rate subtracted in Sharpe.
        annualization_periods: Periods per year used to annualize volatility.

    Raises:
        InsufficientDataError: Fewer than two snapshots.
        CalculationError: A zero starting or intermediate portfolio value.
    """
    if len(history) < 2:
        raise InsufficientDataError(
            "Insufficient data for metrics calculation",
            context={"snapshots": len(history)},
        )

    first, last = history[0], history[-1]
    values = [s.total_value for s in history]
    returns = period_returns(values)
    annualized = annualized_return_pct(
        first.total_value, last.total_value, (last.date - first.date).days
    )
    volatility = volatility_pct(returns, annualization_periods)

    return BacktestMetrics(
        total_return_pct=total_return_pct(first.total_value, last.total_value),
        annualized_return_pct=annualized,
        volatility_pct=volatility,
        sharpe_ratio=sharpe_ratio(annualized, volatility, risk_free_rate_pct),
        max_drawdown_pct=max_drawdown_pct(values),
        win_rate_pct=win_rate_pct(returns),
        total_fees=sum((e.total_fees for e in events), _ZERO),
        rebalance_count=len(events),
    )


def compute_benchmark(
    history: Sequence[PortfolioSnapshot],
    final_prices: Mapping[str, Decimal],
) -> BenchmarkComparison:
    """Compare the strategy with holding the initial allocation untouched.

    Args:
        history: Snapshot history; the first snapshot is the initial allocation.
        final_prices: Prices on the final snapshot date.
    """
    if len(history) < 2:
        raise InsufficientDataError(
            "Insufficient data for benchmark calculation",
            context={"snapshots": len(history)},
        )
    first, last = history[0], history[-1]
    hodl_final = first.cash + sum(
        (h.amount * final_prices.get(symbol, _ZERO) for symbol, h in first.holdings.items()),
        _ZERO,
    )
    hodl = total_return_pct(first.total_value, hodl_final)
    strategy = total_return_pct(first.total_value, last.total_value)
    return BenchmarkComparison(hodl_return_pct=hodl, outperformance_pct=strategy - hodl)
