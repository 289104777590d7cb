"""
Numeric normalisation for heterogeneous source payloads.

Sources send money as numbers, numeric strings, locale-grouped strings
("1,23,456.50"), strings with a currency marker ("₹ 450", "Rs. 99") or
placeholders ("n/a", "-"). Everything becomes a Decimal; anything unusable
becomes zero.
"""
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

ZERO = Decimal("0")

_PLACEHOLDERS = {"", "n/a", "na", "-", "--", "null", "none", "nan"}
_CURRENCY_MARKERS = re.compile(r"(₹|rs\.?|inr|\$|usd)", re.IGNORECASE)


def to_decimal(value: Any) -> Decimal:
    """Convert a source value to Decimal, 0 for missing or malformed input."""
    if value is None or isinstance(value, bool):
        return ZERO
    if isinstance(value, Decimal):
        return value if value.is_finite() else ZERO
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        if value != value or value in (float("inf"), float("-inf")):
            return ZERO
        return Decimal(str(value))
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _PLACEHOLDERS:
            return ZERO
        text = _CURRENCY_MARKERS.sub("", text)
        text = text.replace(",", "").replace(" ", "")
        if not text:
            return ZERO
        try:
            result = Decimal(text)
        except InvalidOperation:
            return ZERO
        return result if result.is_finite() else ZERO
    return ZERO


def to_optional_decimal(value: Any) -> Optional[Decimal]:
    """Like to_decimal but keeps 'not reported' distinct from zero."""
    if value is None:
        return None
    if isinstance(value, str) and value.strip().lower() in _PLACEHOLDERS:
        return None
    return to_decimal(value)


def to_int(value: Any) -> int:
    return int(to_decimal(value))


def normalize_product_id(value: Any) -> Optional[str]:
    """Strip Shopify GID prefixes: 'gid://shopify/Product/123' -> '123'."""
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    return text.rsplit("/", 1)[-1]
