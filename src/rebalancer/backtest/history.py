"""Populate the local SQLite history store from a live provider.

Backtests run offline against HistoricalDataStore; this module fills it.
Fetching reuses BacktestDataLoader, so retries, bounded concurrency and
the all-or-nothing rule are the same as for a live backtest load.
"""

import time

from rebalancer.backtest.loader import BacktestDataLoader
from rebalancer.config import BacktestSettings
from rebalancer.data.provider import MarketDataProvider
from rebalancer.data.store import HistoricalDataStore
from rebalancer.logging import get_logger
from rebalancer.models import normalize_symbol

logger = get_logger(__name__)


async def sync_price_history(
    store: HistoricalDataStore,
    provider: MarketDataProvider,
    symbols: list[str] | None = None,
    settings: BacktestSettings | None = None,
) -> int:
    """Download daily history into ``store``.

    Args:
        store: Destination store.
        provider: Live source (CoinGecko, usually behind the cache).
        symbols: Coins to sync. Defaults to the provider's current top
            ``candidate_pool_size`` coins, whose names are recorded too.
        settings: Loader limits and candidate pool size.

    Returns:
        Number of newly inserted observations.
    """
    settings = settings or BacktestSettings()
    start_time = time.monotonic()
    loader = BacktestDataLoader(provider, settings)

    if symbols is None:
        universe = await loader.candidate_universe()
        for coin in universe:
            await store.upsert_coin(coin.symbol, coin.name)
        symbols = [coin.symbol for coin in universe]
    else:
        symbols = list(dict.fromkeys(normalize_symbol(s) for s in symbols))

    series = await loader.load_symbols(symbols)

    inserted = 0
    for i, (symbol, points) in enumerate(series.items(), 1):
        count = await store.insert_price_points(symbol, points)
        inserted += count
        logger.debug(
            "history_symbol_synced",
            symbol=symbol,
            progress=f"{i}/{len(series)}",
            inserted=count,
        )

    logger.info(
        "history_sync_complete",
        symbols=len(series),
        inserted=inserted,
        total_duration_seconds=round(time.monotonic() - start_time, 1),
    )
    return inserted
