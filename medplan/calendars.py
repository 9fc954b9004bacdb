"""
calendars.py — Week arithmetic and the public-holiday lookup

Helpers:
  - monday_of / require_monday / week_dates / iter_week_starts
  - template_week_parity: EVEN/ODD relative to a fixed epoch Monday
  - iso_week_parity:      EVEN/ODD of the ISO week number
  - nth_weekday_of_month: 1 for the first Tuesday of a month, 2 for the second, ...

HolidayCalendar is a static date → holiday-name lookup. The default French
calendar is built from the `holidays` package (Easter Monday, Ascension and
Whit Monday included).
"""

import logging
from datetime import date, timedelta
from typing import Dict, Iterable, Iterator, List, Mapping, Optional

import holidays as holidays_lib

from medplan.errors import StructuralError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Week helpers
# ---------------------------------------------------------------------------

def require_date(value: object, label: str) -> date:
    # datetime is a date subclass; a datetime here means a caller mixed types.
    if not isinstance(value, date) or hasattr(value, "hour"):
        raise StructuralError(f"{label} must be a datetime.date, got {value!r}")
    return value


def monday_of(d: date) -> date:
    return d - timedelta(days=d.weekday())


def require_monday(week_start: object) -> date:
    """Return week_start if it is a Monday date, else raise StructuralError."""
    d = require_date(week_start, "week_start")
    if d.weekday() != 0:
        raise StructuralError(f"Week start {d.isoformat()} is not a Monday")
    return d


def week_dates(monday: date) -> List[date]:
    """The seven dates Monday..Sunday of the week starting on `monday`."""
    return [monday + timedelta(days=i) for i in range(7)]


def iter_week_starts(start: date, end: date) -> Iterator[date]:
    """Mondays of every week touching [start, end], in order."""
    current = monday_of(start)
    while current <= end:
        yield current
        current += timedelta(days=7)


def template_week_parity(d: date, epoch: date) -> str:
    """
    Return 'EVEN' or 'ODD' for the week containing d, counted from the week
    containing `epoch` (week 0, EVEN).
    """
    weeks_diff = (monday_of(d) - monday_of(epoch)).days // 7
    return "EVEN" if weeks_diff % 2 == 0 else "ODD"


def iso_week_parity(d: date) -> str:
    return "EVEN" if d.isocalendar()[1] % 2 == 0 else "ODD"


def nth_weekday_of_month(d: date) -> int:
    return (d.day - 1) // 7 + 1


# ---------------------------------------------------------------------------
# Holiday calendar
# ---------------------------------------------------------------------------

class HolidayCalendar:
    """
    Read-only date → holiday name lookup.

    Usage:
        cal = HolidayCalendar({date(2025, 5, 1): "Fête du Travail"})
        cal = HolidayCalendar.french([2025, 2026])
        cal.name_for(date(2025, 5, 1))  # → "Fête du Travail"
    """

    def __init__(self, entries: Optional[Mapping[date, str]] = None):
        self._entries: Dict[date, str] = dict(entries or {})

    @classmethod
    def french(cls, years: Iterable[int]) -> "HolidayCalendar":
        years = sorted(set(years))
        fr = holidays_lib.France(years=years)
        logger.debug(f"Built French holiday calendar for {years}: {len(fr)} dates")
        return cls({d: name for d, name in fr.items()})

    def name_for(self, d: date) -> Optional[str]:
        return self._entries.get(d)

    def __contains__(self, d: object) -> bool:
        return d in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[date]:
        return iter(sorted(self._entries))

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, HolidayCalendar):
            return NotImplemented
        return self._entries == other._entries

    def __repr__(self) -> str:
        return f"HolidayCalendar({len(self._entries)} dates)"
