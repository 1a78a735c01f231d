from __future__ import annotations

from decimal import Decimal
from typing import Mapping, Optional

from cl_payroll_api.common.errors import ValidationError
from .money import D, ZERO, round_clp

DEFAULT_WEEKLY_HOURS = Decimal("44")
HALF_HOUR = Decimal("0.5")


def fallback_factor(weekly_hours) -> Decimal:
    # hour value of a monthly salary (28 / (weekly hours * 4 * 30)) with the 50% surcharge
    wh = D(weekly_hours)
    return (Decimal("28") / (wh * 4 * 30)) * Decimal("1.5")


def overtime_factor(weekly_hours, factors: Mapping[Decimal, Decimal]) -> Decimal:
    """Table factor for an exact weekly-hours match, formula otherwise."""
    wh = D(weekly_hours)
    factor = factors.get(wh)
    if factor is None:
        factor = fallback_factor(wh)
    return D(factor)


def validate_hours(hours) -> Decimal:
    h = D(hours)
    if h < ZERO:
        raise ValidationError("overtime_hours must not be negative", fields=["overtime_hours"])
    if h % HALF_HOUR != ZERO:
        raise ValidationError("overtime_hours must be a multiple of 0.5", fields=["overtime_hours"])
    return h


def overtime_amount(hours, base_salary, weekly_hours: Optional[Decimal], factors: Mapping[Decimal, Decimal],
                    default_weekly_hours=DEFAULT_WEEKLY_HOURS) -> int:
    h = validate_hours(hours)
    if h == ZERO:
        return 0
    wh = D(weekly_hours) if weekly_hours else D(default_weekly_hours)
    if wh <= ZERO:
        raise ValidationError("weekly_hours must be positive", fields=["weekly_hours"])
    return round_clp(D(base_salary) * overtime_factor(wh, factors) * h)
