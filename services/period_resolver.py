"""
Period Resolver Service

- Converts natural language period expressions into concrete date ranges
- Used to expand period/date_range entity values into tool parameters
"""

from datetime import date, timedelta
import calendar
from typing import Dict, Optional, Tuple


def get_today() -> date:
    """Return today's date (system clock)."""
    return date.today()


def _quarter_bounds(year: int, quarter: int) -> Tuple[date, date]:
    start_month = 3 * (quarter - 1) + 1
    end_month = start_month + 2
    last_day = calendar.monthrange(year, end_month)[1]
    return date(year, start_month, 1), date(year, end_month, last_day)


def resolve_date_range(text: str, today: Optional[date] = None) -> Optional[Tuple[date, date]]:
    """
    Resolve natural language period expressions into (start_date, end_date).
    Returns None if no recognized pattern is found.
    """
    text = text.lower().strip()
    today = today or get_today()

    if text in ("today", "current day"):
        return today, today

    if text == "yesterday":
        d = today - timedelta(days=1)
        return d, d

    if text in ("this week", "current week"):
        start = today - timedelta(days=today.weekday())  # Monday
        end = start + timedelta(days=6)  # Sunday
        return start, min(end, today)

    if text in ("last week", "previous week"):
        end = today - timedelta(days=today.weekday() + 1)
        start = end - timedelta(days=6)
        return start, end

    if text in ("this month", "current month", "mtd", "month to date"):
        start = today.replace(day=1)
        last_day = calendar.monthrange(today.year, today.month)[1]
        end = today.replace(day=last_day)
        return start, min(end, today)

    if text in ("last month", "previous month"):
        year = today.year
        month = today.month - 1
        if month == 0:
            month = 12
            year -= 1
        start = date(year, month, 1)
        last_day = calendar.monthrange(year, month)[1]
        end = date(year, month, last_day)
        return start, end

    if text in ("this quarter", "current quarter", "qtd"):
        start, end = _quarter_bounds(today.year, (today.month - 1) // 3 + 1)
        return start, min(end, today)

    if text in ("last quarter", "previous quarter"):
        quarter = (today.month - 1) // 3
        year = today.year
        if quarter == 0:
            quarter = 4
            year -= 1
        return _quarter_bounds(year, quarter)

    if text in ("this year", "current year", "ytd", "year to date"):
        return date(today.year, 1, 1), today

    if text in ("last year", "previous year"):
        return date(today.year - 1, 1, 1), date(today.year - 1, 12, 31)

    if text.startswith("last ") and text.endswith(" days"):
        count = text[len("last "):-len(" days")].strip()
        if count.isdigit() and int(count) > 0:
            return today - timedelta(days=int(count) - 1), today

    return None


def resolve_expression(expr: str, today: Optional[date] = None) -> Dict[str, str]:
    """
    High-level resolver.
    Returns a dict with start_date and end_date (ISO format) if matched,
    else returns an empty dict.
    """
    if not isinstance(expr, str):
        return {}
    result = resolve_date_range(expr, today)
    if result:
        start, end = result
        return {
            "start_date": start.isoformat(),
            "end_date": end.isoformat(),
        }
    return {}
