"""
Formatting Utilities

Rendering and parsing of money, percentages and dates for display.
Separators and the currency symbol come from AppSettings, so the whole
ledger renders one locale (Brazilian Real by default: "R$ 1.234,56").

All amounts are Decimal. Parsing NEVER guesses silently: an input that
cannot be read as a number raises ValueError.
"""

import re
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Union

from finance_tracker.config import get_settings
from finance_tracker.config.settings import AppSettings
from finance_tracker.models.finance import CENTS


Number = Union[Decimal, int, float, str]

_NON_NUMERIC = re.compile(r"[^\d,.\-]")


def _group_thousands(digits: str, separator: str) -> str:
    groups = []
    while len(digits) > 3:
        groups.insert(0, digits[-3:])
        digits = digits[:-3]
    groups.insert(0, digits)
    return separator.join(groups)


def _format_number(value: Decimal, settings: AppSettings) -> str:
    """Fixed two-decimal rendering with the configured separators."""
    quantized = abs(value).quantize(CENTS, rounding=ROUND_HALF_UP)
    integer_part, fraction_part = f"{quantized:f}".split(".")
    grouped = _group_thousands(integer_part, settings.thousands_separator)
    return f"{grouped}{settings.decimal_separator}{fraction_part}"


def format_currency(value: Number, settings: Optional[AppSettings] = None) -> str:
    """
    Format an amount as currency.

    Examples:
        1234.56  -> "R$ 1.234,56"
        -50      -> "-R$ 50,00"
    """
    settings = settings or get_settings().app
    amount = Decimal(str(value))
    sign = "-" if amount.quantize(CENTS, rounding=ROUND_HALF_UP) < 0 else ""
    return f"{sign}{settings.currency_symbol} {_format_number(amount, settings)}"


def parse_currency(value: str) -> Decimal:
    """
    Convert a currency string to a Decimal.

    Accepts "R$ 1.234,56", "1234.56" and "1,5". When more than one
    separator is present, the last one is the decimal point.
    Empty input is zero.

    Raises:
        ValueError: if the text holds no readable number
    """
    cleaned = _NON_NUMERIC.sub("", value or "")
    if not cleaned:
        return Decimal("0")

    parts = re.split(r"[.,]", cleaned)
    if len(parts) > 2:
        normalized = "".join(parts[:-1]) + "." + parts[-1]
    else:
        normalized = cleaned.replace(",", ".")

    try:
        return Decimal(normalized)
    except InvalidOperation:
        raise ValueError(f"Not a currency value: {value!r}")


def format_percent(value: Number, settings: Optional[AppSettings] = None) -> str:
    """Format a percentage value: 12.34 -> "12,34%"."""
    settings = settings or get_settings().app
    amount = Decimal(str(value))
    sign = "-" if amount.quantize(CENTS, rounding=ROUND_HALF_UP) < 0 else ""
    return f"{sign}{_format_number(amount, settings)}%"


def format_date(value: Optional[date]) -> str:
    """Day-first date: 2023-12-31 -> "31/12/2023". None renders empty."""
    if value is None:
        return ""
    return value.strftime("%d/%m/%Y")


def format_installment(current: int, total: int) -> str:
    return f"{current}/{total}"


def calculate_progress(current: Number, target: Number) -> Decimal:
    """
    Progress of current towards target as a percentage.

    Clamped to [0, 100]. A non-positive target has no progress.
    """
    current = Decimal(str(current))
    target = Decimal(str(target))
    if target <= 0:
        return Decimal("0")
    progress = current / target * 100
    return min(Decimal("100"), max(Decimal("0"), progress))
