"""Backtest engine package.

Replays periodic market-cap rebalancing over historical price and market cap
series: rebalance scheduling, nearest-date lookup, data loading with retry,
the simulator itself, and runner entry points.
"""

from rebalancer.backtest.history import sync_price_history
from rebalancer.backtest.loader import BacktestDataLoader
from rebalancer.backtest.models import (
    BacktestConfig,
    BacktestResult,
    PortfolioSnapshot,
    RebalanceEvent,
    RebalanceFrequency,
)
from rebalancer.backtest.runner import run_backtest, run_backtest_cli
from rebalancer.backtest.simulator import BacktestSimulator

__all__ = [
    "BacktestConfig",
    "BacktestDataLoader",
    "BacktestResult",
    "BacktestSimulator",
    "PortfolioSnapshot",
    "RebalanceEvent",
    "RebalanceFrequency",
    "run_backtest",
    "run_backtest_cli",
    "sync_price_history",
]
