"""Typed SQLite read/write abstraction for historical price data.

Provides HistoricalDataStore with typed methods for inserting and querying
daily price / market cap observations and coin names. All SQL is isolated
behind this interface. The store is also a MarketDataProvider, so backtests
(and the calculator, as of a past date) can run fully offline.

CRITICAL: All monetary values stored as TEXT in SQLite, restored as Decimal on read.
"""

from collections.abc import Iterable
from datetime import date
from decimal import Decimal

from rebalancer.allocation.universe import UniversePolicy, rank_universe
from rebalancer.data.database import HistoricalDatabase
from rebalancer.data.models import PricePoint
from rebalancer.data.provider import MarketDataProvider
from rebalancer.exceptions import DataNotFoundError
from rebalancer.logging import get_logger
from rebalancer.models import CoinSnapshot, normalize_symbol

logger = get_logger(__name__)

# One row per symbol: the observation nearest to the target day, earlier day on ties.
_NEAREST_SQL = """
SELECT p.symbol, COALESCE(c.name, p.symbol), p.price, p.market_cap
FROM (
    SELECT symbol, price, market_cap,
           ROW_NUMBER() OVER (
               PARTITION BY symbol
               ORDER BY ABS(julianday(day) - julianday(?)), day ASC
           ) AS rn
    FROM price_history
) AS p
LEFT JOIN coins AS c ON c.symbol = p.symbol
WHERE p.rn = 1
"""

_LATEST_SQL = """
SELECT p.symbol, COALESCE(c.name, p.symbol), p.price, p.market_cap
FROM (
    SELECT symbol, price, market_cap,
           ROW_NUMBER() OVER (PARTITION BY symbol ORDER BY day DESC) AS rn
    FROM price_history
) AS p
LEFT JOIN coins AS c ON c.symbol = p.symbol
WHERE p.rn = 1
"""


class HistoricalDataStore(MarketDataProvider):
    """Async SQLite store for daily coin observations.

    Wraps HistoricalDatabase with typed read/write methods. All SQL access
    goes through self._database.db (the aiosqlite Connection).

    Usage:
        async with HistoricalDatabase("data/history.db") as database:
            store = HistoricalDataStore(database)
            count = await store.insert_price_points("BTC", points)
    """

    def __init__(
        self,
        database: HistoricalDatabase,
        policy: UniversePolicy = UniversePolicy.TRUNCATE_THEN_EXCLUDE,
    ) -> None:
        self._database = database
        self._policy = policy

    # ──────────────────────────────────────────────
    # Write methods
    # ──────────────────────────────────────────────

    async def upsert_coin(
        self,
        symbol: str,
        name: str,
        coingecko_id: str | None = None,
    ) -> None:
        """Insert or update a coin's display name and CoinGecko id."""
        await self._database.db.execute(
            "INSERT OR REPLACE INTO coins (symbol, name, coingecko_id) VALUES (?, ?, ?)",
            (normalize_symbol(symbol), name, coingecko_id),
        )
        await self._database.db.commit()

    async def insert_price_points(self, symbol: str, points: Iterable[PricePoint]) -> int:
        """Insert daily observations, ignoring duplicates via INSERT OR IGNORE.

        Returns the number of actually inserted rows (excludes ignored duplicates).
        """
        symbol = normalize_symbol(symbol)
        data = [
            (
                symbol,
                p.date.isoformat(),
                str(p.price),
                str(p.market_cap),
                str(p.volume),
            )
            for p in points
        ]
        if not data:
            return 0

        cursor = await self._database.db.executemany(
            "INSERT OR IGNORE INTO price_history "
            "(symbol, day, price, market_cap, volume) "
            "VALUES (?, ?, ?, ?, ?)",
            data,
        )
        await self._database.db.commit()

        inserted = cursor.rowcount
        logger.debug(
            "inserted_price_points",
            symbol=symbol,
            total=len(data),
            inserted=inserted,
        )
        return inserted

    # ──────────────────────────────────────────────
    # Read methods
    # ──────────────────────────────────────────────

    async def get_symbols(self) -> list[str]:
        """All symbols with at least one stored observation, sorted."""
        cursor = await self._database.db.execute(
            "SELECT DISTINCT symbol FROM price_history ORDER BY symbol"
        )
        rows = await cursor.fetchall()
        return [row[0] for row in rows]

    async def get_price_points(
        self,
        symbol: str,
        since: date | None = None,
        until: date | None = None,
    ) -> list[PricePoint]:
        """Query observations for a symbol within an optional date range.

        Returns list of PricePoint ordered by date ASC.
        """
        conditions = ["symbol = ?"]
        params: list = [normalize_symbol(symbol)]

        if since is not None:
            conditions.append("day >= ?")
            params.append(since.isoformat())
        if until is not None:
            conditions.append("day <= ?")
            params.append(until.isoformat())

        where = " AND ".join(conditions)
        cursor = await self._database.db.execute(
            f"SELECT day, price, market_cap, volume "
            f"FROM price_history WHERE {where} ORDER BY day ASC",
            params,
        )
        rows = await cursor.fetchall()
        return [
            PricePoint(
                date=date.fromisoformat(row[0]),
                price=Decimal(row[1]),
                market_cap=Decimal(row[2]),
                volume=Decimal(row[3]),
            )
            for row in rows
        ]

    async def get_snapshots(self, as_of: date | None = None) -> list[CoinSnapshot]:
        """One unranked snapshot per symbol: nearest to ``as_of``, or latest."""
        if as_of is None:
            cursor = await self._database.db.execute(_LATEST_SQL)
        else:
            cursor = await self._database.db.execute(_NEAREST_SQL, (as_of.isoformat(),))
        rows = await cursor.fetchall()
        return [
            CoinSnapshot(
                symbol=row[0],
                name=row[1],
                price=Decimal(row[2]),
                market_cap=Decimal(row[3]),
            )
            for row in rows
        ]

    # ──────────────────────────────────────────────
    # MarketDataProvider
    # ──────────────────────────────────────────────

    async def get_ranked_universe(
        self,
        max_coins: int,
        excluded: Iterable[str] = (),
        as_of: date | None = None,
    ) -> list[CoinSnapshot]:
        snapshots = await self.get_snapshots(as_of)
        universe = rank_universe(snapshots, max_coins, excluded, self._policy)
        logger.debug(
            "store_universe_ranked",
            as_of=as_of.isoformat() if as_of else None,
            candidates=len(snapshots),
            selected=len(universe),
        )
        return universe

    async def get_prices(self, symbols: list[str]) -> dict[str, Decimal]:
        """Latest stored price per symbol; unknown symbols are omitted."""
        wanted = {normalize_symbol(s) for s in symbols}
        snapshots = await self.get_snapshots()
        return {s.symbol: s.price for s in snapshots if s.symbol in wanted}

    async def get_price_series(self, symbols: list[str]) -> dict[str, list[PricePoint]]:
        series: dict[str, list[PricePoint]] = {}
        for symbol in symbols:
            points = await self.get_price_points(symbol)
            if not points:
                raise DataNotFoundError(
                    f"Historical data not available for {normalize_symbol(symbol)}",
                    context={"symbol": normalize_symbol(symbol)},
                )
            series[normalize_symbol(symbol)] = points
        return series
