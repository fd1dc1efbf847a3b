"""Month labels ("YYYY-MM") and month windows"""

import re
from datetime import date, datetime
from typing import List, Optional, Union

from livecount.exceptions import ConfigurationError

MonthLike = Union[date, datetime, str]

_MONTH_RE = re.compile(r"^(\d{4})-(\d{2})")


def month_label(value: MonthLike) -> str:
    """
    Normalize a date, datetime or ISO-ish string to a "YYYY-MM" label.

    Strings are accepted as "YYYY-MM" or anything starting with "YYYY-MM"
    (e.g. an ISO timestamp "2024-03-17T10:00:00Z").

    Raises:
        ConfigurationError: If the value cannot be read as a month
    """
    if isinstance(value, (date, datetime)):
        return f"{value.year:04d}-{value.month:02d}"

    if isinstance(value, str):
        match = _MONTH_RE.match(value.strip())
        if match and 1 <= int(match.group(2)) <= 12:
            return f"{match.group(1)}-{match.group(2)}"

    raise ConfigurationError(f"Cannot derive a month from {value!r}")


def month_start(value: MonthLike) -> date:
    """First day of the month containing value"""
    label = month_label(value)
    return date(int(label[:4]), int(label[5:7]), 1)


def month_index(value: MonthLike) -> int:
    start = month_start(value)
    return start.year * 12 + (start.month - 1)


def months_between(start: MonthLike, end: MonthLike) -> List[date]:
    """Every month start from start to end, both inclusive, chronological"""
    first = month_index(start)
    last = month_index(end)
    return [date(i // 12, i % 12 + 1, 1) for i in range(first, last + 1)]


def shift_months(value: MonthLike, months: int) -> date:
    index = month_index(value) + months
    return date(index // 12, index % 12 + 1, 1)


def as_date(value: Optional[MonthLike]) -> Optional[date]:
    """Coerce a datetime or ISO string to a date for window comparisons"""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    except ValueError:
        return month_start(value)
