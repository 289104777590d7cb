"""
Normalisation, IST calendar and formatting helpers.
"""
from datetime import date, datetime
from decimal import Decimal

import pytest
import pytz

from profitfirst.exceptions import InvalidDateRange
from profitfirst.utils.dates import (
    DateRange,
    add_months,
    default_range,
    ist_day,
    parse_day,
    resolve_range,
    trailing_months,
    utc_bounds,
)
from profitfirst.utils.helpers import brand_from_store_url, format_currency, format_percent, safe_divide
from profitfirst.utils.normalize import normalize_product_id, to_decimal, to_optional_decimal


# ---------------------------------------------------------------------------
# Numbers
# ---------------------------------------------------------------------------

def test_to_decimal_accepts_numbers_and_numeric_strings():
    assert to_decimal(450) == Decimal("450")
    assert to_decimal(12.5) == Decimal("12.5")
    assert to_decimal("1,23,456.50") == Decimal("123456.50")
    assert to_decimal("₹ 450") == Decimal("450")
    assert to_decimal("Rs. 99") == Decimal("99")


@pytest.mark.parametrize("value", [None, "", "n/a", "-", "null", "abc", float("nan"), True])
def test_to_decimal_placeholders_become_zero(value):
    assert to_decimal(value) == Decimal("0")


def test_to_optional_decimal_keeps_missing_distinct_from_zero():
    assert to_optional_decimal(None) is None
    assert to_optional_decimal("n/a") is None
    assert to_optional_decimal("0") == Decimal("0")


def test_product_gid_is_reduced_to_numeric_id():
    assert normalize_product_id("gid://shopify/Product/123") == "123"
    assert normalize_product_id("456") == "456"
    assert normalize_product_id(None) is None
    assert normalize_product_id("  ") is None


def test_safe_divide_zero_denominator():
    assert safe_divide(10, 0) == Decimal("0")
    assert safe_divide(Decimal("10"), Decimal("4")) == Decimal("2.5")


# ---------------------------------------------------------------------------
# IST calendar
# ---------------------------------------------------------------------------

def test_utc_instant_late_evening_falls_on_next_ist_day():
    # 20:00 UTC == 01:30 IST next day
    assert ist_day(datetime(2024, 10, 1, 20, 0, tzinfo=pytz.UTC)) == date(2024, 10, 2)
    assert ist_day(datetime(2024, 10, 1, 18, 29)) == date(2024, 10, 1)


def test_utc_bounds_cover_whole_ist_days():
    start, end = utc_bounds(DateRange(date(2024, 10, 1), date(2024, 10, 2)))
    assert start == "2024-09-30T18:30:00Z"
    assert end == "2024-10-02T18:29:59Z"


def test_date_range_rejects_start_after_end():
    with pytest.raises(InvalidDateRange):
        DateRange(date(2024, 10, 2), date(2024, 10, 1))


def test_single_day_range():
    r = DateRange(date(2024, 10, 1), date(2024, 10, 1))
    assert r.days == 1
    assert list(r.iter_days()) == [date(2024, 10, 1)]


def test_default_range_is_thirty_days_ending_today_ist():
    now = datetime(2024, 10, 30, 20, 0, tzinfo=pytz.UTC)  # Oct 31 in IST
    r = default_range(30, now)
    assert r.end == date(2024, 10, 31)
    assert r.start == date(2024, 10, 2)
    assert r.days == 30


def test_resolve_range_parses_and_validates():
    r = resolve_range("2024-10-01", "2024-10-07")
    assert r == DateRange(date(2024, 10, 1), date(2024, 10, 7))
    with pytest.raises(InvalidDateRange):
        resolve_range("2024-13-01", "2024-10-07")
    with pytest.raises(InvalidDateRange):
        parse_day("yesterday-ish")


def test_month_helpers():
    assert add_months(date(2024, 12, 15), 1) == date(2025, 1, 1)
    assert add_months(date(2024, 1, 31), -1) == date(2023, 12, 1)
    assert trailing_months(date(2024, 10, 19), 2) == [date(2024, 8, 1), date(2024, 9, 1)]


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------

def test_inr_uses_indian_grouping():
    assert format_currency(Decimal("4786863")) == "₹47,86,863"
    assert format_currency(Decimal("999")) == "₹999"
    assert format_currency(Decimal("100000")) == "₹1,00,000"
    assert format_currency(Decimal("-1200.4")) == "-₹1,200"


def test_currency_rounds_half_up():
    assert format_currency(Decimal("10.5")) == "₹11"
    assert format_currency(Decimal("1234.565"), places=2) == "₹1,234.57"


def test_percent_two_decimals():
    assert format_percent(Decimal("12.345")) == "12.35%"
    assert format_percent(0) == "0.00%"


def test_brand_from_store_url():
    assert brand_from_store_url("my-brand.myshopify.com") == "My Brand"
    assert brand_from_store_url("https://acme.myshopify.com") == "Acme"
    assert brand_from_store_url(None) == "Your Store"
