"""Historical price loading for backtests.

Resolves the candidate symbols, then fetches one price series per symbol
with bounded concurrency. Each fetch is retried with backoff on transport
failures (network, rate limit, server). Any symbol that still fails after
its retries fails the whole load: a backtest never runs on a partial
universe.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable, Iterable
from typing import TypeVar

from rebalancer.backtest.models import BacktestConfig
from rebalancer.classifier import classify_error, retry_delay, should_retry
from rebalancer.config import BacktestSettings
from rebalancer.data.models import PricePoint
from rebalancer.data.provider import MarketDataProvider
from rebalancer.exceptions import DataNotFoundError, RebalancerError
from rebalancer.logging import get_logger
from rebalancer.models import CoinSnapshot

logger = get_logger(__name__)

T = TypeVar("T")


class BacktestDataLoader:
    """Loads every candidate's price history through a MarketDataProvider.

    Usage:
        loader = BacktestDataLoader(provider, settings)
        series = await loader.load(config)
    """

    def __init__(
        self,
        provider: MarketDataProvider,
        settings: BacktestSettings | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._provider = provider
        self._settings = settings or BacktestSettings()
        self._sleep = sleep

    async def candidate_symbols(self, config: BacktestConfig) -> list[str]:
        """Explicit ``config.symbols`` or the provider's current top coins.

        Excluded symbols are removed either way.
        """
        if config.symbols is not None:
            return [s for s in config.symbols if s not in config.excluded_coins]

        universe = await self.candidate_universe(config.excluded_coins)
        return [c.symbol for c in universe if c.symbol not in config.excluded_coins]

    async def candidate_universe(self, excluded: Iterable[str] = ()) -> list[CoinSnapshot]:
        """The provider's current top ``candidate_pool_size`` coins, with retry."""
        return await self._with_retry(
            self._provider.get_ranked_universe,
            self._settings.candidate_pool_size,
            frozenset(excluded),
        )

    async def load(self, config: BacktestConfig) -> dict[str, list[PricePoint]]:
        """Fetch the full history of every candidate.

        Raises:
            RebalancerError: The classified failure of the first symbol
                that could not be loaded.
        """
        return await self.load_symbols(await self.candidate_symbols(config))

    async def load_symbols(self, symbols: list[str]) -> dict[str, list[PricePoint]]:
        """Fetch the full history of each symbol, all or nothing."""
        start_time = time.monotonic()
        semaphore = asyncio.Semaphore(self._settings.max_concurrent_fetches)

        results = await asyncio.gather(
            *(self._fetch_symbol(symbol, semaphore) for symbol in symbols),
            return_exceptions=True,
        )

        series: dict[str, list[PricePoint]] = {}
        failures: list[tuple[str, BaseException]] = []
        for symbol, result in zip(symbols, results):
            if isinstance(result, BaseException):
                failures.append((symbol, result))
            else:
                series[symbol] = result

        if failures:
            symbol, exc = failures[0]
            logger.error(
                "backtest_data_load_failed",
                failed_symbols=[s for s, _ in failures],
                error=str(exc),
            )
            if isinstance(exc, RebalancerError):
                raise exc
            raise classify_error(exc, symbol) from exc

        logger.info(
            "backtest_data_loaded",
            symbols=len(series),
            points=sum(len(points) for points in series.values()),
            elapsed_seconds=round(time.monotonic() - start_time, 2),
        )
        return series

    async def _fetch_symbol(
        self,
        symbol: str,
        semaphore: asyncio.Semaphore,
    ) -> list[PricePoint]:
        async with semaphore:
            result = await self._with_retry(
                self._provider.get_price_series, [symbol], symbol=symbol
            )
        points = result.get(symbol)
        if not points:
            raise DataNotFoundError(
                f"Historical data not available for {symbol}",
                context={"symbol": symbol},
            )
        return points

    async def _with_retry(
        self,
        fetch_fn: Callable[..., Awaitable[T]],
        *args: object,
        symbol: str | None = None,
    ) -> T:
        """Run a provider call, retrying transport failures with backoff.

        Re-raises the classified error once retries are exhausted or the
        failure is not retryable.
        """
        max_attempts = self._settings.max_retries
        attempt = 0
        while True:
            try:
                return await fetch_fn(*args)
            except Exception as e:
                error = classify_error(e, symbol)
                if not should_retry(error, attempt, max_attempts):
                    logger.warning(
                        "fetch_failed_permanently",
                        symbol=symbol,
                        code=error.code,
                        attempts=attempt + 1,
                        error=error.message,
                    )
                    if error is e:
                        raise
                    raise error from e

                delay = retry_delay(
                    error,
                    attempt,
                    base_delay=self._settings.retry_base_delay,
                    max_delay=self._settings.retry_max_delay,
                    rate_limit_max_delay=self._settings.rate_limit_max_delay,
                )
                logger.warning(
                    "fetch_retry",
                    symbol=symbol,
                    code=error.code,
                    attempt=attempt + 1,
                    max_attempts=max_attempts,
                    delay=delay,
                )
                await self._sleep(delay)
                attempt += 1
