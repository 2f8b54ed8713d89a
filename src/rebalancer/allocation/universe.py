"""Ranking a coin list into a rebalancing universe.

Two exclusion policies are supported:

- TRUNCATE_THEN_EXCLUDE (default): take the true top ``max_coins`` by market
  cap, then drop excluded symbols. Excluding a top coin shrinks the universe.
- EXCLUDE_THEN_TRUNCATE: drop excluded symbols first, then take the top
  ``max_coins``. Lower-ranked coins backfill excluded ones.

Either way ranks are renumbered densely from 1 after exclusion. Every provider
and the backtest simulator go through ``rank_universe`` so the policy is
applied consistently.
"""

from collections.abc import Iterable
from enum import Enum

from rebalancer.models import CoinSnapshot, normalize_symbol, normalize_symbols


class UniversePolicy(str, Enum):
    """Order in which exclusion and truncation are applied."""

    TRUNCATE_THEN_EXCLUDE = "truncate_then_exclude"
    EXCLUDE_THEN_TRUNCATE = "exclude_then_truncate"


def rank_universe(
    coins: Iterable[CoinSnapshot],
    max_coins: int,
    excluded: Iterable[str] = (),
    policy: UniversePolicy = UniversePolicy.TRUNCATE_THEN_EXCLUDE,
) -> list[CoinSnapshot]:
    """Select and rank the universe from an unordered coin list.

    Coins with a non-positive price or market cap are never ranked. Sorting is
    by market cap descending, ties broken by symbol so the result is
    deterministic.

    Args:
        coins: Candidate snapshots (any order, any rank values).
        max_coins: Target universe size.
        excluded: Symbols to exclude (case-insensitive).
        policy: Exclusion/truncation order.

    Returns:
        At most ``max_coins`` snapshots with dense ranks 1..k.
    """
    excluded_set = normalize_symbols(excluded)
    eligible = [
        c for c in coins if c.market_cap > 0 and c.price > 0
    ]
    eligible.sort(key=lambda c: (-c.market_cap, normalize_symbol(c.symbol)))

    def _is_excluded(coin: CoinSnapshot) -> bool:
        return normalize_symbol(coin.symbol) in excluded_set

    if policy is UniversePolicy.EXCLUDE_THEN_TRUNCATE:
        selected = [c for c in eligible if not _is_excluded(c)][:max_coins]
    else:
        selected = [c for c in eligible[:max_coins] if not _is_excluded(c)]

    return [
        CoinSnapshot(
            symbol=normalize_symbol(c.symbol),
            name=c.name,
            price=c.price,
            market_cap=c.market_cap,
            rank=i,
        )
        for i, c in enumerate(selected, 1)
    ]


def fetch_size(
    max_coins: int,
    excluded: Iterable[str],
    policy: UniversePolicy,
) -> int:
    """How many raw top coins a provider must fetch to satisfy ``policy``."""
    if policy is UniversePolicy.EXCLUDE_THEN_TRUNCATE:
        return max_coins + len(normalize_symbols(excluded))
    return max_coins
