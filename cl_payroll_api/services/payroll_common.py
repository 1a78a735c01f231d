import calendar
import re
from datetime import date
from typing import Optional, Tuple

from cl_payroll_api.common.errors import PeriodError, ValidationError

_PERIOD_RE = re.compile(r"^(\d{4})-(\d{1,2})$")


def parse_period(value: Optional[str], field: str = "period") -> Tuple[int, int]:
    """'2025-08' -> (2025, 8)."""
    if not value:
        raise ValidationError(f"{field} is required (YYYY-MM)", fields=[field])
    m = _PERIOD_RE.match(str(value).strip())
    if not m:
        raise ValidationError(f"{field} must look like YYYY-MM", fields=[field])
    year, month = int(m.group(1)), int(m.group(2))
    if not 1 <= month <= 12:
        raise ValidationError(f"{field} month must be 1..12", fields=[field])
    return year, month


def format_period(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def period_bounds(year: int, month: int) -> Tuple[date, date]:
    return date(year, month, 1), date(year, month, calendar.monthrange(year, month)[1])


def ensure_not_future(year: int, month: int, today: Optional[date] = None) -> None:
    today = today or date.today()
    if (year, month) > (today.year, today.month):
        raise PeriodError(
            f"Period {format_period(year, month)} is in the future",
            payload={"period": format_period(year, month), "today": today.isoformat()},
        )
