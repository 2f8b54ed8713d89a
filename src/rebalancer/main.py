"""Command-line entry point.

Subcommands:
    rebalance   Recommend trades for a portfolio against live CoinGecko data
                (spot prices from an exchange when MARKET_DATA_PRICE_SOURCE=exchange).
    sync        Download daily history into the local SQLite store.
    backtest    Replay the strategy over the local SQLite store.

Results are printed as JSON (Decimals as strings). Logs go to stderr.
"""

import argparse
import asyncio
import json
import sys
from decimal import Decimal, InvalidOperation

from rebalancer.allocation.engine import calculate_rebalancing
from rebalancer.allocation.universe import UniversePolicy
from rebalancer.backtest.history import sync_price_history
from rebalancer.backtest.runner import run_backtest_cli
from rebalancer.config import AppSettings
from rebalancer.data.cache import CachedMarketDataProvider
from rebalancer.data.coingecko import CoinGeckoProvider
from rebalancer.data.database import HistoricalDatabase
from rebalancer.data.exchange import ExchangePriceProvider
from rebalancer.data.provider import MarketDataProvider
from rebalancer.data.store import HistoricalDataStore
from rebalancer.exceptions import RebalancerError, ValidationError
from rebalancer.logging import bind_run_context, clear_run_context, get_logger, setup_logging
from rebalancer.models import Holding, Portfolio

logger = get_logger(__name__)


def _parse_holding(value: str) -> Holding:
    symbol, sep, amount = value.partition("=")
    try:
        if not sep:
            raise InvalidOperation
        return Holding(symbol=symbol, amount=Decimal(amount))
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"expected SYMBOL=AMOUNT, got {value!r}") from None


def _split_symbols(value: str) -> list[str]:
    return [s for s in value.split(",") if s.strip()]


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="rebalancer", description=__doc__.splitlines()[0])
    sub = parser.add_subparsers(dest="command", required=True)

    rebalance = sub.add_parser("rebalance", help="recommend trades for a portfolio")
    rebalance.add_argument("holdings", nargs="*", type=_parse_holding, metavar="SYMBOL=AMOUNT")
    rebalance.add_argument("--cash", type=Decimal, default=Decimal("0"))
    rebalance.add_argument("--max-coins", type=int, default=None)
    rebalance.add_argument("--exclude", type=_split_symbols, default=[])

    sync = sub.add_parser("sync", help="download history into the SQLite store")
    sync.add_argument("--symbols", type=_split_symbols, default=None)
    sync.add_argument("--db-path", default=None)

    backtest = sub.add_parser("backtest", help="replay the strategy over stored history")
    backtest.add_argument("start_date", help="YYYY-MM-DD")
    backtest.add_argument("end_date", help="YYYY-MM-DD")
    backtest.add_argument(
        "--frequency", choices=["monthly", "quarterly", "yearly"], default="monthly"
    )
    backtest.add_argument("--max-coins", type=int, default=10)
    backtest.add_argument("--exclude", type=_split_symbols, default=[])
    backtest.add_argument("--initial-value", type=Decimal, default=None)
    backtest.add_argument("--db-path", default=None)
    return parser


def _live_provider(settings: AppSettings) -> CachedMarketDataProvider:
    policy = UniversePolicy(settings.market_data.universe_policy)
    provider: MarketDataProvider = CoinGeckoProvider(settings.market_data, policy=policy)
    if settings.market_data.price_source == "exchange":
        provider = ExchangePriceProvider(provider, settings.market_data)
    return CachedMarketDataProvider(provider, settings.market_data)


async def run(args: argparse.Namespace, settings: AppSettings) -> dict:
    """Execute one subcommand and return its JSON-ready result."""
    if args.command == "rebalance":
        portfolio = Portfolio(
            holdings=list(args.holdings),
            cash_balance=args.cash,
            excluded_coins=frozenset(args.exclude),
            max_coins=args.max_coins or settings.rebalance.default_max_coins,
        )
        provider = _live_provider(settings)
        try:
            result = await calculate_rebalancing(
                portfolio, None, None, provider, settings.rebalance
            )
        finally:
            await provider.close()
        return result.to_dict()

    if args.command == "sync":
        provider = _live_provider(settings)
        db_path = args.db_path or settings.market_data.db_path
        try:
            async with HistoricalDatabase(db_path) as database:
                store = HistoricalDataStore(database)
                inserted = await sync_price_history(
                    store, provider, args.symbols, settings.backtest
                )
        finally:
            await provider.close()
        return {"db_path": db_path, "inserted": inserted}

    result = await run_backtest_cli(
        args.start_date,
        args.end_date,
        frequency=args.frequency,
        max_coins=args.max_coins,
        excluded_coins=args.exclude,
        initial_value=args.initial_value,
        db_path=args.db_path,
        settings=settings,
    )
    return result.to_dict()


def main(argv: list[str] | None = None) -> int:
    """Sync entry point for the ``rebalancer`` console script."""
    args = _build_parser().parse_args(argv)
    settings = AppSettings()
    setup_logging(settings.log_level)
    bind_run_context(command=args.command)

    try:
        output = asyncio.run(run(args, settings))
    except RebalancerError as e:
        logger.error("command_failed", **e.to_dict())
        print(json.dumps({"error": e.to_dict()}, indent=2), file=sys.stderr)
        return 2 if isinstance(e, ValidationError) else 1
    finally:
        clear_run_context()

    print(json.dumps(output, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
