"""
Calendar-aware billing period arithmetic.

Periods advance by calendar months, not by a fixed number of days. A day
that does not exist in the target month is clamped to the month's last day:

    advance(datetime(2024, 1, 31), BillingCycle.MONTHLY)    # 2024-02-29
    advance(datetime(2024, 11, 30), BillingCycle.QUARTERLY) # 2025-02-28
    advance(datetime(2024, 2, 29), BillingCycle.YEARLY)     # 2025-02-28
"""

from __future__ import annotations

import calendar
from datetime import date, datetime
from typing import TypeVar

from billing.state_machines import BillingCycle

D = TypeVar("D", date, datetime)

CYCLE_MONTHS = {
    BillingCycle.MONTHLY: 1,
    BillingCycle.QUARTERLY: 3,
    BillingCycle.YEARLY: 12,
}


def add_months(value: D, months: int) -> D:
    """Shift ``value`` by ``months`` calendar months, clamping the day."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def advance(value: D, cycle: str) -> D:
    """Return the end of the billing period that starts at ``value``."""
    return add_months(value, CYCLE_MONTHS[BillingCycle(cycle)])
