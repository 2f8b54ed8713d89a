"""Shared data models for the rebalancing calculator.

CRITICAL: All monetary values use Decimal. Never use float for prices, amounts, or fees.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum


def normalize_symbol(symbol: str) -> str:
    """Canonical symbol form: stripped, upper-case."""
    return symbol.strip().upper()


def normalize_symbols(symbols: Iterable[str] | None) -> frozenset[str]:
    """Normalize an iterable of symbols into a frozenset."""
    return frozenset(normalize_symbol(s) for s in symbols or ())


class TradeAction(str, Enum):
    """Trade direction."""

    BUY = "BUY"
    SELL = "SELL"


@dataclass
class Holding:
    """A quantity of one asset (not a currency value)."""

    symbol: str
    amount: Decimal


@dataclass
class Portfolio:
    """Holdings plus cash, with the user's universe preferences."""

    holdings: list[Holding] = field(default_factory=list)
    cash_balance: Decimal = Decimal("0")
    excluded_coins: frozenset[str] = frozenset()
    max_coins: int = 15

    def __post_init__(self) -> None:
        self.excluded_coins = normalize_symbols(self.excluded_coins)

    def amounts(self) -> dict[str, Decimal]:
        """Map normalized symbol -> held amount, preserving holding order."""
        return {normalize_symbol(h.symbol): h.amount for h in self.holdings}


@dataclass(frozen=True)
class CoinSnapshot:
    """One coin in a ranked universe."""

    symbol: str
    name: str
    price: Decimal
    market_cap: Decimal
    rank: int = 0


@dataclass(frozen=True)
class TargetAllocation:
    """Market-cap weighted target for one universe coin."""

    symbol: str
    percentage_of_portfolio: Decimal
    target_value: Decimal
    target_amount: Decimal

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "percentage_of_portfolio": str(self.percentage_of_portfolio),
            "target_value": str(self.target_value),
            "target_amount": str(self.target_amount),
        }


@dataclass(frozen=True)
class Trade:
    """A recommended (or simulated) trade.

    Attributes:
        symbol: Asset symbol.
        action: BUY or SELL.
        amount: Units traded, always positive.
        price: Price used to value the trade.
        value: amount * price.
        fee: value * fee rate.
        current_amount: Units held before the trade.
        target_amount: Units held after the trade (0 for liquidations).
    """

    symbol: str
    action: TradeAction
    amount: Decimal
    price: Decimal
    value: Decimal
    fee: Decimal
    current_amount: Decimal = Decimal("0")
    target_amount: Decimal = Decimal("0")

    @property
    def signed_amount(self) -> Decimal:
        """+amount for buys, -amount for sells."""
        return self.amount if self.action is TradeAction.BUY else -self.amount

    def to_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "action": self.action.value,
            "amount": str(self.amount),
            "price": str(self.price),
            "value": str(self.value),
            "fee": str(self.fee),
            "current_amount": str(self.current_amount),
            "target_amount": str(self.target_amount),
        }


@dataclass(frozen=True)
class RebalanceResult:
    """Outcome of a single rebalancing calculation."""

    current_portfolio_value: Decimal
    target_allocations: tuple[TargetAllocation, ...]
    trades: tuple[Trade, ...]
    total_buy_value: Decimal
    total_sell_value: Decimal
    estimated_fees: Decimal

    def to_dict(self) -> dict:
        """Serialize to dict for JSON output; Decimals as strings."""
        return {
            "current_portfolio_value": str(self.current_portfolio_value),
            "target_allocations": [a.to_dict() for a in self.target_allocations],
            "trades": [t.to_dict() for t in self.trades],
            "summary": {
                "total_buy_value": str(self.total_buy_value),
                "total_sell_value": str(self.total_sell_value),
                "estimated_fees": str(self.estimated_fees),
            },
        }
