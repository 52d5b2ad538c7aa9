# utils/helpers.py
from __future__ import annotations

from datetime import date, datetime
import logging
from typing import Union, Optional

NumberLike = Union[float, int, str]
DateLike = Union[date, datetime, str, None]

_log = logging.getLogger(__name__)


def today_str() -> str:
    """Return today's date as ISO string (YYYY-MM-DD)."""
    return date.today().isoformat()


def now_str() -> str:
    """System timestamp used for created_at/updated_at columns."""
    return datetime.now().isoformat(timespec="microseconds")


def to_date_str(value: DateLike) -> str:
    """
    Normalize a business date to 'YYYY-MM-DD'.

    Accepts None (today), date/datetime, or an ISO string (a time part is dropped).
    """
    if value is None:
        return today_str()
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    text = str(value).strip()
    try:
        return datetime.fromisoformat(text).date().isoformat()
    except ValueError as e:
        raise ValueError(f"Invalid date {value!r}; expected YYYY-MM-DD.") from e


def fmt_money(
    v: NumberLike,
    places: int = 2,
    *,
    currency: Optional[str] = None,
    sentinel: Optional[str] = None,
) -> str:
    """
    Format a number as money with thousands separators and a fixed number of decimals.

    On parse failure returns `sentinel` when given, else str(v).
    """
    try:
        x = float(v)
    except (TypeError, ValueError) as e:
        _log.debug("fmt_money: failed to parse %r as float: %s", v, e)
        return str(sentinel) if sentinel is not None else str(v)
    text = f"{x:,.{places}f}"
    return f"{currency} {text}" if currency else text
