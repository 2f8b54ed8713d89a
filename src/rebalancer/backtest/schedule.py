"""Rebalance date generation.

Dates step by calendar months from the start date. Each step is computed from
the start (start + k months) rather than from the previous date, so a start
on the 31st lands on each month's last day without drifting. The end date is
always the final date, aligned or not.
"""

import calendar
from datetime import date

from rebalancer.backtest.models import RebalanceFrequency


def add_months(start: date, months: int) -> date:
    """Shift ``start`` by whole months, clamping to the target month's last day."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def generate_rebalance_dates(
    start: date,
    end: date,
    frequency: RebalanceFrequency,
) -> list[date]:
    """Return strictly increasing dates d0 = start < ... < dn = end."""
    step = RebalanceFrequency(frequency).months
    dates: list[date] = []
    k = 0
    current = start
    while current <= end:
        dates.append(current)
        k += 1
        current = add_months(start, k * step)

    if dates[-1] != end:
        dates.append(end)
    return dates
