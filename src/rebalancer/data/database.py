"""Async SQLite database manager for historical price persistence.

Uses aiosqlite for non-blocking database operations with WAL mode
for concurrent read/write performance.
"""

import os
from typing import Self

import aiosqlite

from rebalancer.logging import get_logger

logger = get_logger(__name__)

SCHEMA_VERSION = 1

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS coins (
    symbol TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    coingecko_id TEXT
);

CREATE TABLE IF NOT EXISTS price_history (
    symbol TEXT NOT NULL,
    day TEXT NOT NULL,
    price TEXT NOT NULL,
    market_cap TEXT NOT NULL,
    volume TEXT NOT NULL DEFAULT '0',
    PRIMARY KEY (symbol, day)
);
"""

_CREATE_INDEXES_SQL = """
CREATE INDEX IF NOT EXISTS idx_price_history_day
    ON price_history(day);
"""


class HistoricalDatabase:
    """Async SQLite connection manager for price history.

    Usage:
        async with HistoricalDatabase("data/history.db") as db:
            await db.db.execute("SELECT ...")

    ``":memory:"`` is accepted for throwaway databases (tests).
    """

    def __init__(self, db_path: str = "data/history.db") -> None:
        self._db_path = db_path
        self._connection: aiosqlite.Connection | None = None

    @property
    def db(self) -> aiosqlite.Connection:
        """Access the raw aiosqlite connection.

        Raises RuntimeError if not connected.
        """
        if self._connection is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._connection

    async def connect(self) -> None:
        """Open the connection, configure pragmas and create the schema."""
        if self._db_path != ":memory:":
            db_dir = os.path.dirname(self._db_path)
            if db_dir:
                os.makedirs(db_dir, exist_ok=True)

        self._connection = await aiosqlite.connect(self._db_path)

        await self._connection.execute("PRAGMA journal_mode=WAL")
        await self._connection.execute("PRAGMA synchronous=NORMAL")

        await self._connection.executescript(_CREATE_TABLES_SQL)
        await self._connection.executescript(_CREATE_INDEXES_SQL)
        await self._connection.commit()
        await self._ensure_schema_version()

        logger.info("historical_db_connected", db_path=self._db_path)

    async def close(self) -> None:
        """Close the database connection if open."""
        if self._connection is not None:
            await self._connection.close()
            self._connection = None
            logger.info("historical_db_closed", db_path=self._db_path)

    async def _ensure_schema_version(self) -> None:
        assert self._connection is not None
        cursor = await self._connection.execute(
            "SELECT version FROM schema_version LIMIT 1"
        )
        row = await cursor.fetchone()
        if row is None:
            await self._connection.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                (SCHEMA_VERSION,),
            )
            await self._connection.commit()
            logger.info("schema_version_set", version=SCHEMA_VERSION)
        elif row[0] != SCHEMA_VERSION:
            logger.warning(
                "schema_version_mismatch",
                db_path=self._db_path,
                stored=row[0],
                expected=SCHEMA_VERSION,
            )

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        await self.close()
