"""Market-cap weighted allocation: universe selection, targets and trades."""

from rebalancer.allocation.engine import (
    AllocationEngine,
    RebalancePlan,
    calculate_rebalancing,
    plan_rebalance,
)
from rebalancer.allocation.universe import UniversePolicy, rank_universe

__all__ = [
    "AllocationEngine",
    "RebalancePlan",
    "UniversePolicy",
    "calculate_rebalancing",
    "plan_rebalance",
    "rank_universe",
]
