"""Market data layer.

Provides the MarketDataProvider interface and its implementations: the
CoinGecko API client, a TTL cache, exchange spot prices via ccxt, and the
SQLite history store used for offline backtests.
"""

from rebalancer.data.cache import CachedMarketDataProvider
from rebalancer.data.coingecko import CoinGeckoProvider
from rebalancer.data.database import HistoricalDatabase
from rebalancer.data.exchange import ExchangePriceProvider
from rebalancer.data.models import PricePoint
from rebalancer.data.provider import MarketDataProvider
from rebalancer.data.store import HistoricalDataStore

__all__ = [
    "CachedMarketDataProvider",
    "CoinGeckoProvider",
    "ExchangePriceProvider",
    "HistoricalDataStore",
    "HistoricalDatabase",
    "MarketDataProvider",
    "PricePoint",
]
