"""
Helper utilities
"""
import math
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Optional, Union


_MALFORMED = object()


def _coerce(value: Any) -> Any:
    """Parse a raw metric value, returning _MALFORMED when it cannot be read."""
    if isinstance(value, str):
        cleaned = value.strip().replace(",", "")
        if cleaned.endswith("%"):
            cleaned = cleaned[:-1].strip()
        if not cleaned:
            return _MALFORMED
        try:
            number = float(cleaned)
        except ValueError:
            return _MALFORMED
    else:
        try:
            number = float(value)
        except (TypeError, ValueError):
            return _MALFORMED

    if not math.isfinite(number):
        return _MALFORMED
    return number


def safe_parse_number(value: Any, fallback: float = 0.0) -> float:
    """
    Coerce a metric value to float.

    Handles None, numbers, Decimals and strings such as "1,200" or "45%".
    Anything unparsable or non-finite returns the fallback.
    """
    if value is None:
        return fallback
    number = _coerce(value)
    return fallback if number is _MALFORMED else number


def is_malformed_number(value: Any) -> bool:
    """True when a non-null value fails numeric coercion"""
    if value is None:
        return False
    return _coerce(value) is _MALFORMED


def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    """Safely divide two numbers"""
    try:
        return numerator / denominator if denominator != 0 else default
    except (TypeError, ZeroDivisionError):
        return default


def calculate_percentage_change(current: float, previous: float) -> Optional[float]:
    """Calculate percentage change between two values"""
    if previous == 0:
        return None
    return ((current - previous) * 100) / previous


def round_half_up(value: float) -> int:
    """Round .5 away from zero (Python's round() uses banker's rounding)"""
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def clamp(value: float, low: float, high: float) -> float:
    """Clamp value into [low, high]"""
    return max(low, min(value, high))


def report_month_start(day: Optional[Union[date, datetime]] = None) -> date:
    """First day of the calendar month containing `day` (today by default)"""
    day = day or datetime.utcnow().date()
    if isinstance(day, datetime):
        day = day.date()
    return day.replace(day=1)


def parse_iso_date(value: Union[str, date, None]) -> Optional[date]:
    """Parse YYYY-MM-DD (or pass a date through); None when missing or invalid"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.strptime(str(value)[:10], "%Y-%m-%d").date()
    except ValueError:
        return None


def format_number(value: float, decimals: int = 0) -> str:
    """Format a number with thousands separators"""
    return f"{value:,.{decimals}f}"
