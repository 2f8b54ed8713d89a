"""Data models for the backtest engine.

Defines configuration, per-date snapshot, rebalance event and result
dataclasses for a single backtest run.

CRITICAL: All monetary values use Decimal. Never use float for prices, amounts, or fees.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from enum import Enum

from rebalancer.analytics.metrics import BacktestMetrics, BenchmarkComparison
from rebalancer.exceptions import ValidationError
from rebalancer.models import Trade, normalize_symbol, normalize_symbols


class RebalanceFrequency(str, Enum):
    """How often the simulated portfolio is rebalanced."""

    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"

    @property
    def months(self) -> int:
        return {"monthly": 1, "quarterly": 3, "yearly": 12}[self.value]


@dataclass
class BacktestConfig:
    """Configuration for a single backtest run.

    Fee and slippage are percentages (0.1 means 0.1%), charged on the value
    of every simulated trade.
    """

    # Required fields
    start_date: date
    end_date: date

    initial_value: Decimal = Decimal("10000")
    rebalance_frequency: RebalanceFrequency = RebalanceFrequency.MONTHLY
    transaction_fee_percent: Decimal = Decimal("0.1")
    slippage_percent: Decimal = Decimal("0.05")
    max_coins: int = 10
    excluded_coins: frozenset[str] = frozenset()

    # Candidate symbols; None means "the provider's current top coins".
    symbols: list[str] | None = None

    def __post_init__(self) -> None:
        self.rebalance_frequency = RebalanceFrequency(self.rebalance_frequency)
        self.excluded_coins = normalize_symbols(self.excluded_coins)
        if self.symbols is not None:
            self.symbols = list(dict.fromkeys(normalize_symbol(s) for s in self.symbols))

    @property
    def cost_rate(self) -> Decimal:
        """Fraction of trade value lost to fee plus slippage."""
        return (self.transaction_fee_percent + self.slippage_percent) / Decimal("100")

    def validate(self, max_coins_limit: int = 50) -> None:
        """Reject configurations the simulator cannot run.

        Raises:
            ValidationError: Describing the first invalid field.
        """
        if self.start_date >= self.end_date:
            raise ValidationError(
                "Invalid date range: start_date must be before end_date",
                context={"field": "start_date"},
            )
        if self.initial_value <= 0:
            raise ValidationError(
                "initial_value must be positive", context={"field": "initial_value"}
            )
        if self.transaction_fee_percent < 0:
            raise ValidationError(
                "transaction_fee_percent cannot be negative",
                context={"field": "transaction_fee_percent"},
            )
        if self.slippage_percent < 0:
            raise ValidationError(
                "slippage_percent cannot be negative",
                context={"field": "slippage_percent"},
            )
        if not 1 <= self.max_coins <= max_coins_limit:
            raise ValidationError(
                f"max_coins must be between 1 and {max_coins_limit}",
                context={"field": "max_coins"},
            )

    def with_overrides(self, **kwargs: object) -> BacktestConfig:
        """Return a new BacktestConfig with specified fields overridden."""
        return replace(self, **kwargs)

    def to_dict(self) -> dict:
        """Serialize to dict for JSON output; Decimals as strings."""
        return {
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "initial_value": str(self.initial_value),
            "rebalance_frequency": self.rebalance_frequency.value,
            "transaction_fee_percent": str(self.transaction_fee_percent),
            "slippage_percent": str(self.slippage_percent),
            "max_coins": self.max_coins,
            "excluded_coins": sorted(self.excluded_coins),
            "symbols": self.symbols,
        }


@dataclass(frozen=True)
class HoldingSnapshot:
    """Value of one holding on a snapshot date."""

    amount: Decimal
    value: Decimal
    percentage: Decimal


@dataclass
class PortfolioSnapshot:
    """Portfolio valuation on one simulated date.

    Attributes:
        date: Snapshot date.
        total_value: cash + sum of holding values.
        holdings: Per-symbol amount, value and percentage of total_value.
        cash: Uninvested cash (non-zero only when a universe was empty).
    """

    date: date
    total_value: Decimal
    holdings: dict[str, HoldingSnapshot] = field(default_factory=dict)
    cash: Decimal = Decimal("0")

    def to_dict(self) -> dict:
        return {
            "date": self.date.isoformat(),
            "total_value": str(self.total_value),
            "holdings": {
                symbol: {
                    "amount": str(h.amount),
                    "value": str(h.value),
                    "percentage": str(h.percentage),
                }
                for symbol, h in self.holdings.items()
            },
            "cash": str(self.cash),
        }


@dataclass
class RebalanceEvent:
    """A simulated rebalance that produced at least one trade."""

    date: date
    value_before_trades: Decimal
    value_after_fees: Decimal
    trades: list[Trade]
    total_fees: Decimal
    portfolio_before: dict[str, Decimal]
    portfolio_after: dict[str, Decimal]

    def to_dict(self) -> dict:
        return {
            "date": self.date.isoformat(),
            "value_before_trades": str(self.value_before_trades),
            "value_after_fees": str(self.value_after_fees),
            "trades": [t.to_dict() for t in self.trades],
            "total_fees": str(self.total_fees),
            "portfolio_before": {k: str(v) for k, v in self.portfolio_before.items()},
            "portfolio_after": {k: str(v) for k, v in self.portfolio_after.items()},
        }


@dataclass
class BacktestResult:
    """Complete result of a single backtest run."""

    config: BacktestConfig
    portfolio_history: list[PortfolioSnapshot]
    rebalance_events: list[RebalanceEvent]
    metrics: BacktestMetrics
    benchmark: BenchmarkComparison | None = None

    def to_dict(self) -> dict:
        """Serialize to dict for JSON output."""
        return {
            "config": self.config.to_dict(),
            "portfolio_history": [s.to_dict() for s in self.portfolio_history],
            "rebalance_events": [e.to_dict() for e in self.rebalance_events],
            "metrics": self.metrics.to_dict(),
            "benchmark": self.benchmark.to_dict() if self.benchmark else None,
        }
