"""Abstract market data provider interface.

Defines the contract the calculator and backtester consume. Core code depends
only on this interface; CoinGecko, exchange, cache and SQLite details stay in
the concrete implementations.

Implementations must raise classified ``RebalancerError`` subclasses (see
``rebalancer.classifier``), never raw transport exceptions.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import date
from decimal import Decimal

from rebalancer.data.models import PricePoint
from rebalancer.models import CoinSnapshot


class MarketDataProvider(ABC):
    """Abstract base class for market data sources."""

    @abstractmethod
    async def get_ranked_universe(
        self,
        max_coins: int,
        excluded: Iterable[str] = (),
        as_of: date | None = None,
    ) -> list[CoinSnapshot]:
        """Return up to ``max_coins`` coins ranked by market cap, exclusions applied.

        Ranks are dense from 1 within the returned list. ``as_of`` asks for the
        ranking on a past date; providers without history raise ValidationError.
        """
        ...

    @abstractmethod
    async def get_prices(self, symbols: list[str]) -> dict[str, Decimal]:
        """Return the current USD price per symbol.

        Symbols the provider cannot price are omitted from the result.
        """
        ...

    @abstractmethod
    async def get_price_series(
        self, symbols: list[str]
    ) -> dict[str, list[PricePoint]]:
        """Return the full daily history per symbol, sorted ascending by date.

        Raises DataNotFoundError when no series exists for a symbol.
        """
        ...

    async def close(self) -> None:
        """Release network or database resources. Default: nothing to do."""
        return None
