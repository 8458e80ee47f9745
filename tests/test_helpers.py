"""
Numeric parsing and small math helpers.

Every aggregator reads numbers through safe_parse_number, so its behavior on
malformed input is the behavior of the whole system.
"""
import math
from datetime import date, datetime
from decimal import Decimal

import pytest

from dental_vitals.utils.helpers import (
    safe_parse_number,
    is_malformed_number,
    safe_divide,
    calculate_percentage_change,
    round_half_up,
    clamp,
    report_month_start,
    parse_iso_date,
    format_number,
)


# ---------------------------------------------------------------------------
# safe_parse_number
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("raw, expected", [
    ("1,200", 1200.0),
    ("45%", 45.0),
    (None, 0.0),
    ("  12  ", 12.0),
    ("1,234.5", 1234.5),
    (7, 7.0),
    (3.25, 3.25),
    (Decimal("4.75"), 4.75),
    ("-3", -3.0),
])
def test_safe_parse_number(raw, expected):
    assert safe_parse_number(raw) == expected


@pytest.mark.parametrize("raw", ["abc", "", "   ", "%", "12abc", [], {}, float("nan"), float("inf"), "inf"])
def test_safe_parse_number_falls_back_to_zero(raw):
    assert safe_parse_number(raw) == 0.0


def test_safe_parse_number_custom_fallback():
    assert safe_parse_number("n/a", fallback=-1.0) == -1.0


def test_is_malformed_number():
    assert is_malformed_number("abc")
    assert is_malformed_number("")
    assert is_malformed_number(float("nan"))
    assert not is_malformed_number(None)
    assert not is_malformed_number("1,200")
    assert not is_malformed_number("45%")
    assert not is_malformed_number(0)


# ---------------------------------------------------------------------------
# Math helpers
# ---------------------------------------------------------------------------

def test_safe_divide():
    assert safe_divide(10, 4) == 2.5
    assert safe_divide(10, 0) == 0.0
    assert safe_divide(10, 0, default=-1) == -1


def test_calculate_percentage_change():
    assert calculate_percentage_change(105, 100) == 5.0
    assert calculate_percentage_change(90, 100) == -10.0
    assert calculate_percentage_change(5, 0) is None


@pytest.mark.parametrize("value, expected", [
    (53.5, 54),
    (54.5, 55),
    (53.49, 53),
    (0.5, 1),
    (100.0, 100),
    (0, 0),
])
def test_round_half_up(value, expected):
    assert round_half_up(value) == expected


def test_clamp():
    assert clamp(150, 0, 100) == 100
    assert clamp(-5, 0, 100) == 0
    assert clamp(42, 0, 100) == 42
    assert not math.isnan(clamp(1e300, 0, 100))


# ---------------------------------------------------------------------------
# Dates and formatting
# ---------------------------------------------------------------------------

def test_report_month_start():
    assert report_month_start(date(2024, 3, 17)) == date(2024, 3, 1)
    assert report_month_start(datetime(2024, 12, 31, 23, 59)) == date(2024, 12, 1)
    assert report_month_start().day == 1


def test_parse_iso_date():
    assert parse_iso_date("2024-03-05") == date(2024, 3, 5)
    assert parse_iso_date("2024-03-05T10:00:00Z") == date(2024, 3, 5)
    assert parse_iso_date(date(2024, 1, 2)) == date(2024, 1, 2)
    assert parse_iso_date("03/05/2024") is None
    assert parse_iso_date("") is None
    assert parse_iso_date(None) is None


def test_format_number():
    assert format_number(1234567) == "1,234,567"
    assert format_number(1234.567, 2) == "1,234.57"
