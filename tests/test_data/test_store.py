"""Tests for HistoricalDataStore against an in-memory SQLite database."""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from rebalancer.allocation.universe import UniversePolicy
from rebalancer.data.database import HistoricalDatabase
from rebalancer.data.models import PricePoint
from rebalancer.data.store import HistoricalDataStore
from rebalancer.exceptions import DataNotFoundError

JAN_1 = date(2023, 1, 1)


def _points(start: date, caps: list[str], price: str = "1") -> list[PricePoint]:
    return [
        PricePoint(date=start + timedelta(days=i), price=Decimal(price), market_cap=Decimal(cap))
        for i, cap in enumerate(caps)
    ]


class TestWriteRead:
    @pytest.mark.asyncio
    async def test_insert_and_query_ordered(self):
        async with HistoricalDatabase(":memory:") as database:
            store = HistoricalDataStore(database)
            points = _points(JAN_1, ["10", "20", "30"], price="1.23456789")

            inserted = await store.insert_price_points("btc", list(reversed(points)))
            result = await store.get_price_points("BTC")

        assert inserted == 3
        assert result == points
        assert result[0].price == Decimal("1.23456789")

    @pytest.mark.asyncio
    async def test_duplicates_ignored(self):
        async with HistoricalDatabase(":memory:") as database:
            store = HistoricalDataStore(database)
            points = _points(JAN_1, ["10", "20"])

            await store.insert_price_points("BTC", points)
            again = await store.insert_price_points("BTC", points)

        assert again == 0

    @pytest.mark.asyncio
    async def test_empty_insert(self):
        async with HistoricalDatabase(":memory:") as database:
            assert await HistoricalDataStore(database).insert_price_points("BTC", []) == 0

    @pytest.mark.asyncio
    async def test_date_range_filter(self):
        async with HistoricalDatabase(":memory:") as database:
            store = HistoricalDataStore(database)
            await store.insert_price_points("BTC", _points(JAN_1, ["1", "2", "3", "4"]))

            result = await store.get_price_points(
                "BTC", since=date(2023, 1, 2), until=date(2023, 1, 3)
            )

        assert [p.market_cap for p in result] == [Decimal("2"), Decimal("3")]

    @pytest.mark.asyncio
    async def test_symbols(self):
        async with HistoricalDatabase(":memory:") as database:
            store = HistoricalDataStore(database)
            await store.insert_price_points("ETH", _points(JAN_1, ["1"]))
            await store.insert_price_points("BTC", _points(JAN_1, ["1"]))

            assert await store.get_symbols() == ["BTC", "ETH"]


class TestProviderInterface:
    @pytest.mark.asyncio
    async def test_ranking_as_of_date(self):
        async with HistoricalDatabase(":memory:") as database:
            store = HistoricalDataStore(database)
            await store.upsert_coin("BTC", "Bitcoin", "bitcoin")
            await store.insert_price_points("BTC", _points(JAN_1, ["100"] * 10))
            # ETH overtakes BTC from Jan 6.
            await store.insert_price_points("ETH", _points(JAN_1, ["50"] * 5 + ["200"] * 5))

            early = await store.get_ranked_universe(2, as_of=date(2023, 1, 2))
            late = await store.get_ranked_universe(2, as_of=date(2023, 1, 9))

        assert [(c.symbol, c.rank) for c in early] == [("BTC", 1), ("ETH", 2)]
        assert [c.symbol for c in late] == ["ETH", "BTC"]
        assert early[0].name == "Bitcoin"
        assert early[1].name == "ETH"

    @pytest.mark.asyncio
    async def test_nearest_date_tie_goes_to_earlier(self):
        async with HistoricalDatabase(":memory:") as database:
            store = HistoricalDataStore(database)
            await store.insert_price_points(
                "BTC",
                [
                    PricePoint(date=date(2023, 1, 1), price=Decimal("1"), market_cap=Decimal("10")),
                    PricePoint(date=date(2023, 1, 5), price=Decimal("2"), market_cap=Decimal("20")),
                ],
            )

            (snapshot,) = await store.get_snapshots(as_of=date(2023, 1, 3))

        assert snapshot.price == Decimal("1")

    @pytest.mark.asyncio
    async def test_current_ranking_uses_latest_points(self):
        async with HistoricalDatabase(":memory:") as database:
            store = HistoricalDataStore(database)
            await store.insert_price_points("BTC", _points(JAN_1, ["100", "100"]))
            await store.insert_price_points("ETH", _points(JAN_1, ["50", "500"]))

            universe = await store.get_ranked_universe(1)

        assert [c.symbol for c in universe] == ["ETH"]

    @pytest.mark.asyncio
    async def test_exclusion_policy_applied(self):
        async with HistoricalDatabase(":memory:") as database:
            store = HistoricalDataStore(database, policy=UniversePolicy.EXCLUDE_THEN_TRUNCATE)
            for symbol, cap in (("BTC", "300"), ("ETH", "200"), ("SOL", "100")):
                await store.insert_price_points(symbol, _points(JAN_1, [cap]))

            universe = await store.get_ranked_universe(2, excluded=["eth"])

        assert [c.symbol for c in universe] == ["BTC", "SOL"]

    @pytest.mark.asyncio
    async def test_latest_prices(self):
        async with HistoricalDatabase(":memory:") as database:
            store = HistoricalDataStore(database)
            await store.insert_price_points(
                "BTC",
                [
                    PricePoint(date=date(2023, 1, 1), price=Decimal("10"), market_cap=Decimal("1")),
                    PricePoint(date=date(2023, 1, 2), price=Decimal("11"), market_cap=Decimal("1")),
                ],
            )

            prices = await store.get_prices(["btc", "UNKNOWN"])

        assert prices == {"BTC": Decimal("11")}

    @pytest.mark.asyncio
    async def test_missing_series_raises(self):
        async with HistoricalDatabase(":memory:") as database:
            store = HistoricalDataStore(database)
            await store.insert_price_points("BTC", _points(JAN_1, ["1"]))

            series = await store.get_price_series(["BTC"])
            with pytest.raises(DataNotFoundError):
                await store.get_price_series(["BTC", "NOPE"])

        assert len(series["BTC"]) == 1


class TestDatabaseLifecycle:
    @pytest.mark.asyncio
    async def test_creates_parent_directory(self, tmp_path):
        db_path = tmp_path / "nested" / "history.db"
        async with HistoricalDatabase(str(db_path)):
            pass
        assert db_path.exists()

    @pytest.mark.asyncio
    async def test_access_before_connect(self):
        with pytest.raises(RuntimeError):
            HistoricalDatabase(":memory:").db
