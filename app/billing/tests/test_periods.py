"""
Tests for billing period arithmetic.
"""

from datetime import date, datetime, timezone

import pytest

from billing.periods import add_months, advance
from billing.state_machines import BillingCycle


class TestAddMonths:
    """Tests for add_months."""

    @pytest.mark.parametrize(
        "start, months, expected",
        [
            (date(2024, 1, 15), 1, date(2024, 2, 15)),
            (date(2024, 1, 31), 1, date(2024, 2, 29)),
            (date(2023, 1, 31), 1, date(2023, 2, 28)),
            (date(2024, 3, 31), 1, date(2024, 4, 30)),
            (date(2024, 12, 31), 1, date(2025, 1, 31)),
            (date(2024, 11, 30), 3, date(2025, 2, 28)),
            (date(2024, 2, 29), 12, date(2025, 2, 28)),
        ],
    )
    def test_clamps_to_month_end(self, start, months, expected):
        assert add_months(start, months) == expected

    def test_preserves_time_and_tz(self):
        start = datetime(2024, 1, 31, 9, 30, tzinfo=timezone.utc)

        result = add_months(start, 1)

        assert result == datetime(2024, 2, 29, 9, 30, tzinfo=timezone.utc)

    def test_chained_calls_keep_clamped_day(self):
        """Clamping applies per call."""
        assert add_months(add_months(date(2024, 1, 31), 1), 1) == date(2024, 3, 29)


class TestAdvance:
    """Tests for advance."""

    @pytest.mark.parametrize(
        "cycle, expected",
        [
            (BillingCycle.MONTHLY, date(2024, 2, 29)),
            (BillingCycle.QUARTERLY, date(2024, 4, 30)),
            (BillingCycle.YEARLY, date(2025, 1, 31)),
        ],
    )
    def test_cycles(self, cycle, expected):
        assert advance(date(2024, 1, 31), cycle) == expected

    def test_accepts_raw_string(self):
        assert advance(date(2024, 5, 10), "monthly") == date(2024, 6, 10)

    def test_unknown_cycle(self):
        with pytest.raises(ValueError):
            advance(date(2024, 5, 10), "weekly")
