# FILE: services/template_filters.py
"""
Formatting filters for the response template DSL.

A filter takes the raw value and an optional string argument and returns text.
Filters may raise ValueError/TypeError on unusable input; the renderer then
falls back to the unfiltered value.
"""

from datetime import date, datetime
from typing import Any, Callable, Dict, Optional

from dateutil import parser as date_parser

CURRENCY_SYMBOLS: Dict[str, str] = {
    "INR": "₹",
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "JPY": "¥",
    "AED": "AED ",
    "SGD": "S$",
}
DEFAULT_CURRENCY = "INR"


def to_number(value: Any) -> float:
    if isinstance(value, bool):
        raise TypeError("booleans are not numbers")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        cleaned = value.strip().replace(",", "")
        for symbol in CURRENCY_SYMBOLS.values():
            cleaned = cleaned.replace(symbol.strip(), "")
        return float(cleaned.strip())
    raise TypeError(f"not a number: {type(value).__name__}")


def _decimals(arg: Optional[str], default: int) -> int:
    if arg is None or not arg.strip():
        return default
    places = int(arg.strip())
    if places < 0 or places > 10:
        raise ValueError("decimal places out of range")
    return places


def currency(value: Any, arg: Optional[str] = None) -> str:
    amount = to_number(value)
    code = (arg or DEFAULT_CURRENCY).strip().upper()
    symbol = CURRENCY_SYMBOLS.get(code, f"{code} ")
    sign = "-" if amount < 0 else ""
    return f"{sign}{symbol}{abs(amount):,.2f}"


def number(value: Any, arg: Optional[str] = None) -> str:
    places = _decimals(arg, 0)
    return f"{to_number(value):,.{places}f}"


def percent(value: Any, arg: Optional[str] = None) -> str:
    places = _decimals(arg, 1)
    return f"{to_number(value):.{places}f}%"


def round_value(value: Any, arg: Optional[str] = None) -> str:
    places = _decimals(arg, 0)
    rounded = round(to_number(value), places)
    return str(int(rounded)) if places == 0 else f"{rounded:.{places}f}"


def format_date(value: Any, arg: Optional[str] = None) -> str:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        parsed = date_parser.parse(value)
    else:
        raise TypeError("not a date")
    fmt = arg.strip() if arg and arg.strip() else "%d %b %Y"
    return parsed.strftime(fmt)


FILTERS: Dict[str, Callable[[Any, Optional[str]], str]] = {
    "currency": currency,
    "number": number,
    "percent": percent,
    "percentage": percent,
    "round": round_value,
    "date": format_date,
    "upper": lambda v, arg=None: str(v).upper(),
    "lower": lambda v, arg=None: str(v).lower(),
    "title": lambda v, arg=None: str(v).title(),
}


def get_filter(name: str) -> Optional[Callable[[Any, Optional[str]], str]]:
    return FILTERS.get(name.lower())
