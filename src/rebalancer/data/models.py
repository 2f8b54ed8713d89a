"""Data models for historical price / market cap series.

CRITICAL: All monetary values use Decimal. Never use float for prices or market caps.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal


@dataclass(frozen=True)
class PricePoint:
    """One daily observation of a coin.

    Stored in SQLite with price, market_cap and volume as TEXT to preserve
    Decimal precision.
    """

    date: date
    price: Decimal
    market_cap: Decimal
    volume: Decimal = Decimal("0")
