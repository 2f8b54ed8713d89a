"""Market-cap weighted rebalancing calculator.

Turns {portfolio, coin universe} into {target allocations, trades, summary}.
The arithmetic lives in pure functions (``plan_rebalance`` and helpers) so the
backtest simulator replays exactly the same rules with its own fee rate;
``AllocationEngine`` only adds the provider round-trips around them.

Trade rules:
- Universe coins trade only when the drift is worth more than
  ``min_trade_value`` (USD, default $1), measured in value, not units.
- Holdings outside the universe are always fully liquidated.
- Unpriced holdings count as zero value; that is not an error.

CRITICAL: All monetary values use Decimal. Never use float for prices, amounts, or fees.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import Decimal

from rebalancer.classifier import classify_error
from rebalancer.config import RebalanceSettings
from rebalancer.data.provider import MarketDataProvider
from rebalancer.exceptions import RebalancerError, ValidationError
from rebalancer.logging import get_logger
from rebalancer.models import (
    CoinSnapshot,
    Portfolio,
    RebalanceResult,
    TargetAllocation,
    Trade,
    TradeAction,
    normalize_symbol,
    normalize_symbols,
)

logger = get_logger(__name__)

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")


@dataclass(frozen=True)
class RebalancePlan:
    """Targets and trades for one rebalance, before any summary totals."""

    target_allocations: tuple[TargetAllocation, ...]
    trades: tuple[Trade, ...]

    @property
    def total_fees(self) -> Decimal:
        return sum((t.fee for t in self.trades), _ZERO)

    def target_amounts(self) -> dict[str, Decimal]:
        return {a.symbol: a.target_amount for a in self.target_allocations}


def validate_portfolio(
    portfolio: Portfolio,
    max_coins: int,
    max_coins_limit: int = 50,
) -> None:
    """Reject malformed input before any provider call.

    Raises:
        ValidationError: max_coins out of range, negative cash or amounts,
            or duplicate holding symbols.
    """
    if not 1 <= max_coins <= max_coins_limit:
        raise ValidationError(
            f"max_coins must be between 1 and {max_coins_limit}, got {max_coins}",
            context={"field": "max_coins"},
        )
    if portfolio.cash_balance < 0:
        raise ValidationError(
            "cash_balance cannot be negative",
            context={"field": "cash_balance"},
        )
    seen: set[str] = set()
    for holding in portfolio.holdings:
        symbol = normalize_symbol(holding.symbol)
        if not symbol:
            raise ValidationError("holding symbol is required", context={"field": "symbol"})
        if holding.amount < 0:
            raise ValidationError(
                f"amount for {symbol} cannot be negative",
                context={"field": "amount", "symbol": symbol},
            )
        if symbol in seen:
            raise ValidationError(
                f"duplicate holding {symbol}",
                context={"field": "holdings", "symbol": symbol},
            )
        seen.add(symbol)


def portfolio_value(
    amounts: Mapping[str, Decimal],
    prices: Mapping[str, Decimal],
    cash: Decimal = _ZERO,
) -> Decimal:
    """cash + sum(amount * price); unpriced symbols contribute zero."""
    total = cash
    for symbol, amount in amounts.items():
        total += amount * prices.get(symbol, _ZERO)
    return total


def compute_target_allocations(
    universe: Iterable[CoinSnapshot],
    prices: Mapping[str, Decimal],
    total_value: Decimal,
) -> list[TargetAllocation]:
    """Weight each universe coin by market cap share of the universe.

    Returns an empty list for an empty universe or one whose market caps sum
    to zero. The percentages of a non-empty result sum to 100.
    """
    coins = list(universe)
    total_market_cap = sum((c.market_cap for c in coins), _ZERO)
    if not coins or total_market_cap <= 0:
        return []

    allocations: list[TargetAllocation] = []
    for coin in coins:
        weight = coin.market_cap / total_market_cap
        target_value = weight * total_value
        price = prices.get(coin.symbol) or coin.price
        allocations.append(
            TargetAllocation(
                symbol=coin.symbol,
                percentage_of_portfolio=weight * _HUNDRED,
                target_value=target_value,
                target_amount=target_value / price,
            )
        )
    return allocations


def plan_rebalance(
    current_amounts: Mapping[str, Decimal],
    universe: Iterable[CoinSnapshot],
    prices: Mapping[str, Decimal],
    total_value: Decimal,
    fee_rate: Decimal,
    min_trade_value: Decimal = Decimal("1"),
) -> RebalancePlan:
    """Derive target allocations and the trades that reach them.

    Args:
        current_amounts: Held units per normalized symbol.
        universe: Ranked target coins.
        prices: Price per symbol; universe coins fall back to snapshot price.
        total_value: Portfolio value the targets are sized against.
        fee_rate: Fraction of trade value charged per trade.
        min_trade_value: Universe trades at or below this value are skipped.

    Returns:
        RebalancePlan with universe trades first (in rank order), then
        liquidations (in holding order).
    """
    coins = list(universe)
    allocations = compute_target_allocations(coins, prices, total_value)
    snapshot_price = {c.symbol: c.price for c in coins}

    trades: list[Trade] = []
    for target in allocations:
        price = prices.get(target.symbol) or snapshot_price[target.symbol]
        current = current_amounts.get(target.symbol, _ZERO)
        diff = target.target_amount - current
        value = abs(diff) * price
        if value <= min_trade_value:
            continue
        trades.append(
            Trade(
                symbol=target.symbol,
                action=TradeAction.BUY if diff > 0 else TradeAction.SELL,
                amount=abs(diff),
                price=price,
                value=value,
                fee=value * fee_rate,
                current_amount=current,
                target_amount=target.target_amount,
            )
        )

    targeted = {c.symbol for c in coins}
    for symbol, amount in current_amounts.items():
        if symbol in targeted or amount <= 0:
            continue
        price = prices.get(symbol, _ZERO)
        value = amount * price
        trades.append(
            Trade(
                symbol=symbol,
                action=TradeAction.SELL,
                amount=amount,
                price=price,
                value=value,
                fee=value * fee_rate,
                current_amount=amount,
                target_amount=_ZERO,
            )
        )

    return RebalancePlan(target_allocations=tuple(allocations), trades=tuple(trades))


def summarize(
    total_value: Decimal,
    plan: RebalancePlan,
    fee_rate: Decimal,
) -> RebalanceResult:
    """Attach buy/sell totals and estimated fees to a plan."""
    total_buy = sum(
        (t.value for t in plan.trades if t.action is TradeAction.BUY), _ZERO
    )
    total_sell = sum(
        (t.value for t in plan.trades if t.action is TradeAction.SELL), _ZERO
    )
    return RebalanceResult(
        current_portfolio_value=total_value,
        target_allocations=plan.target_allocations,
        trades=plan.trades,
        total_buy_value=total_buy,
        total_sell_value=total_sell,
        estimated_fees=(total_buy + total_sell) * fee_rate,
    )


class AllocationEngine:
    """Computes rebalancing recommendations against live provider data.

    Holds no state between calls: the same inputs and the same provider
    snapshot always produce the same trades.

    Args:
        provider: Source of the ranked universe and current prices.
        settings: Fee rate, coin limits and trade threshold.
    """

    def __init__(
        self,
        provider: MarketDataProvider,
        settings: RebalanceSettings | None = None,
    ) -> None:
        self._provider = provider
        self._settings = settings or RebalanceSettings()

    async def calculate(
        self,
        portfolio: Portfolio,
        excluded_coins: Iterable[str] | None = None,
        max_coins: int | None = None,
        fee_rate: Decimal | None = None,
    ) -> RebalanceResult:
        """Recommend trades that move ``portfolio`` to market-cap weights.

        ``excluded_coins`` and ``max_coins`` default to the portfolio's own
        preferences; ``fee_rate`` defaults to the configured rate.

        Raises:
            ValidationError: Malformed portfolio or max_coins.
            RebalancerError: Any classified provider failure. No partial
                result is ever returned.
        """
        max_coins = portfolio.max_coins if max_coins is None else max_coins
        excluded = normalize_symbols(
            portfolio.excluded_coins if excluded_coins is None else excluded_coins
        )
        rate = self._settings.fee_rate if fee_rate is None else fee_rate
        if rate < 0:
            raise ValidationError("fee_rate cannot be negative", context={"field": "fee_rate"})

        validate_portfolio(portfolio, max_coins, self._settings.max_coins_limit)
        amounts = portfolio.amounts()

        try:
            universe = await self._provider.get_ranked_universe(max_coins, excluded)
            leaked = [c.symbol for c in universe if normalize_symbol(c.symbol) in excluded]
            if leaked:
                logger.warning("provider_returned_excluded_coins", symbols=leaked)
                universe = [c for c in universe if normalize_symbol(c.symbol) not in excluded]

            symbols = list(dict.fromkeys([*amounts, *(c.symbol for c in universe)]))
            prices = await self._provider.get_prices(symbols)
        except RebalancerError:
            raise
        except Exception as e:
            raise classify_error(e) from e

        total_value = portfolio_value(amounts, prices, portfolio.cash_balance)
        plan = plan_rebalance(
            amounts,
            universe,
            prices,
            total_value,
            fee_rate=rate,
            min_trade_value=self._settings.min_trade_value,
        )
        result = summarize(total_value, plan, rate)

        logger.info(
            "rebalance_calculated",
            portfolio_value=str(total_value),
            universe_size=len(universe),
            trades=len(result.trades),
            estimated_fees=str(result.estimated_fees),
        )
        return result


async def calculate_rebalancing(
    portfolio: Portfolio,
    excluded_coins: Iterable[str] | None,
    max_coins: int | None,
    provider: MarketDataProvider,
    settings: RebalanceSettings | None = None,
) -> RebalanceResult:
    """Single-shot entry point for callers (HTTP layer, CLI)."""
    engine = AllocationEngine(provider, settings)
    return await engine.calculate(portfolio, excluded_coins, max_coins)
