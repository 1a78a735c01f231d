from __future__ import annotations

import calendar
from datetime import date
from typing import Optional

# Payroll months are always 30 days long, whatever the calendar says.
PAYROLL_MONTH_DAYS = 30


def compute_worked_days(start_date: Optional[date], year: int, month: int) -> int:
    """
    Days worked in (year, month) for a contract starting on `start_date`.

    In the month the contract starts the worker is paid from the start day to
    the end of the calendar month, never more than 30 and never less than 1.
    Every other month counts as a full 30-day month, as does a missing start date.
    """
    if start_date is None:
        return PAYROLL_MONTH_DAYS
    if (start_date.year, start_date.month) != (year, month):
        return PAYROLL_MONTH_DAYS
    days_in_month = calendar.monthrange(year, month)[1]
    days = days_in_month - start_date.day + 1
    return max(1, min(days, PAYROLL_MONTH_DAYS))
