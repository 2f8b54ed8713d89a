"""Tests for rebalance date generation."""

from datetime import date

import pytest

from rebalancer.backtest.models import RebalanceFrequency
from rebalancer.backtest.schedule import add_months, generate_rebalance_dates


class TestAddMonths:
    def test_plain_step(self):
        assert add_months(date(2023, 1, 15), 1) == date(2023, 2, 15)

    def test_clamps_to_month_end(self):
        assert add_months(date(2023, 1, 31), 1) == date(2023, 2, 28)
        assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)

    def test_year_rollover(self):
        assert add_months(date(2023, 11, 30), 3) == date(2024, 2, 29)


class TestGenerateRebalanceDates:
    def test_monthly_aligned(self):
        dates = generate_rebalance_dates(
            date(2023, 1, 1), date(2023, 4, 1), RebalanceFrequency.MONTHLY
        )
        assert dates == [
            date(2023, 1, 1),
            date(2023, 2, 1),
            date(2023, 3, 1),
            date(2023, 4, 1),
        ]

    def test_unaligned_end_appended(self):
        dates = generate_rebalance_dates(
            date(2023, 1, 1), date(2023, 8, 15), RebalanceFrequency.QUARTERLY
        )
        assert dates == [
            date(2023, 1, 1),
            date(2023, 4, 1),
            date(2023, 7, 1),
            date(2023, 8, 15),
        ]

    def test_month_end_start_does_not_drift(self):
        dates = generate_rebalance_dates(
            date(2023, 1, 31), date(2023, 5, 31), RebalanceFrequency.MONTHLY
        )
        assert dates == [
            date(2023, 1, 31),
            date(2023, 2, 28),
            date(2023, 3, 31),
            date(2023, 4, 30),
            date(2023, 5, 31),
        ]

    def test_short_range_is_start_and_end(self):
        dates = generate_rebalance_dates(
            date(2023, 1, 1), date(2023, 1, 10), RebalanceFrequency.YEARLY
        )
        assert dates == [date(2023, 1, 1), date(2023, 1, 10)]

    @pytest.mark.parametrize("frequency", list(RebalanceFrequency))
    def test_strictly_increasing_ending_at_end(self, frequency):
        end = date(2025, 3, 17)
        dates = generate_rebalance_dates(date(2021, 10, 31), end, frequency)

        assert all(a < b for a, b in zip(dates, dates[1:]))
        assert dates[-1] == end

    def test_accepts_string_frequency(self):
        dates = generate_rebalance_dates(date(2023, 1, 1), date(2024, 1, 1), "yearly")
        assert dates == [date(2023, 1, 1), date(2024, 1, 1)]
