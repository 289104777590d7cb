"""
Helper utilities
"""
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional, Union
from urllib.parse import urlparse

Number = Union[int, float, Decimal]

_ZERO = Decimal("0")


def _dec(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def safe_divide(numerator: Number, denominator: Number, default: Number = _ZERO) -> Decimal:
    """Safely divide two numbers, returning ``default`` on a zero denominator"""
    numerator, denominator = _dec(numerator), _dec(denominator)
    if denominator == 0:
        return _dec(default)
    return numerator / denominator


def quantize(value: Number, places: int = 2) -> Decimal:
    """Round half-up to a fixed number of decimal places"""
    exponent = Decimal(1).scaleb(-places) if places else Decimal(1)
    return _dec(value).quantize(exponent, rounding=ROUND_HALF_UP)


def group_indian(digits: str) -> str:
    """Apply Indian digit grouping: 4786863 -> 47,86,863"""
    if len(digits) <= 3:
        return digits
    head, tail = digits[:-3], digits[-3:]
    groups: List[str] = []
    while len(head) > 2:
        groups.insert(0, head[-2:])
        head = head[:-2]
    if head:
        groups.insert(0, head)
    return ",".join(groups + [tail])


def format_currency(amount: Number, symbol: str = "₹", places: int = 0) -> str:
    """Format amount as Indian-locale currency, e.g. ₹47,86,863 or -₹1,200"""
    rounded = quantize(amount, places)
    sign = "-" if rounded < 0 else ""
    text = f"{abs(rounded):f}"
    whole, _, fraction = text.partition(".")
    formatted = group_indian(whole)
    if places:
        formatted = f"{formatted}.{fraction}"
    return f"{sign}{symbol}{formatted}"


def format_number(value: Number) -> str:
    """Whole number with Indian grouping, e.g. 12,345"""
    rounded = quantize(value, 0)
    sign = "-" if rounded < 0 else ""
    return f"{sign}{group_indian(f'{abs(rounded):f}')}"


def format_percent(value: Number, places: int = 2) -> str:
    return f"{quantize(value, places)}%"


def format_ratio(value: Number, places: int = 2) -> str:
    return f"{quantize(value, places)}"


def brand_from_store_url(store_url: Optional[str]) -> str:
    """'my-brand.myshopify.com' -> 'My Brand'"""
    if not store_url:
        return "Your Store"
    parsed = urlparse(store_url if "//" in store_url else f"//{store_url}")
    host = (parsed.netloc or parsed.path).split(".")[0]
    words = [w for w in host.replace("_", "-").split("-") if w]
    return " ".join(w.capitalize() for w in words) or "Your Store"
