"""Nearest-date lookup over per-symbol price histories.

The backtest never interpolates: a coin's price and market cap on a date are
those of the observation closest to it by absolute day count. Ties go to the
earlier observation. A symbol without observations prices at zero and has zero
market cap, so it is simply never selected.
"""

from bisect import bisect_left
from collections.abc import Iterable, Mapping
from datetime import date
from decimal import Decimal

from rebalancer.data.models import PricePoint
from rebalancer.models import CoinSnapshot, normalize_symbol

_ZERO = Decimal("0")


def _nearest_index(ordinals: list[int], target: int) -> int:
    idx = bisect_left(ordinals, target)
    if idx == 0:
        return 0
    if idx == len(ordinals):
        return idx - 1
    if target - ordinals[idx - 1] <= ordinals[idx] - target:
        return idx - 1
    return idx


def nearest_point(points: list[PricePoint], target: date) -> PricePoint | None:
    """Closest observation to ``target`` in an ascending-by-date list.

    Returns None only for an empty list.
    """
    if not points:
        return None
    ordinals = [p.date.toordinal() for p in points]
    return points[_nearest_index(ordinals, target.toordinal())]


class PriceSeriesIndex:
    """Read-only view over the loaded histories, queried per date.

    Args:
        series: Symbol -> observations. Input order is not trusted; each
            series is sorted by date here.
    """

    def __init__(self, series: Mapping[str, Iterable[PricePoint]]) -> None:
        self._series: dict[str, list[PricePoint]] = {
            normalize_symbol(symbol): sorted(points, key=lambda p: p.date)
            for symbol, points in series.items()
        }
        self._ordinals: dict[str, list[int]] = {
            symbol: [p.date.toordinal() for p in points]
            for symbol, points in self._series.items()
        }

    @property
    def symbols(self) -> list[str]:
        return list(self._series)

    def has_data(self) -> bool:
        return any(self._series.values())

    def point_on(self, symbol: str, on: date) -> PricePoint | None:
        points = self._series.get(symbol)
        if not points:
            return None
        return points[_nearest_index(self._ordinals[symbol], on.toordinal())]

    def price_on(self, symbol: str, on: date) -> Decimal:
        point = self.point_on(symbol, on)
        return point.price if point is not None else _ZERO

    def market_cap_on(self, symbol: str, on: date) -> Decimal:
        point = self.point_on(symbol, on)
        return point.market_cap if point is not None else _ZERO

    def prices_on(self, on: date) -> dict[str, Decimal]:
        """Price of every symbol on a date (zero when unavailable)."""
        return {symbol: self.price_on(symbol, on) for symbol in self._series}

    def snapshots_on(self, on: date) -> list[CoinSnapshot]:
        """Unranked snapshots of every symbol with data, for rank_universe."""
        snapshots = []
        for symbol in self._series:
            point = self.point_on(symbol, on)
            if point is None:
                continue
            snapshots.append(
                CoinSnapshot(
                    symbol=symbol,
                    name=symbol,
                    price=point.price,
                    market_cap=point.market_cap,
                )
            )
        return snapshots
