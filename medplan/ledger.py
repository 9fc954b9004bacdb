"""
ledger.py — Equity Ledger and history replay

The ledger maps doctor id → equity group → assignment count. It is never
stored as running totals: replay_ledger regenerates every week of a window
(automatic fill disabled) and counts only what overrides pinned, so an
exception or override added after the fact is reflected the next time the
window is replayed.

Counting rules:
  - activity occurrences only, one point per pinned (Manual / AutoLocked)
    occurrence whose canonical date lies in the window
  - WEEKLY-granularity activities: one point per doctor, activity and week,
    anchored at that doctor's earliest occurrence of the activity that week
  - Closed overrides and stale doctor ids count nothing

Replaying two contiguous week-aligned windows and adding the ledgers equals
replaying their union.
"""

import logging
from datetime import date, timedelta
from typing import Dict, Iterator, List, Mapping, Optional, Tuple

from medplan.calendars import require_date, iter_week_starts
from medplan.errors import StructuralError
from medplan.models import Granularity, ScheduleRules, SlotType

logger = logging.getLogger(__name__)


class EquityLedger:
    """
    doctor id → equity group → non-negative count.

    Missing entries read as 0; equality ignores zero entries.
    """

    def __init__(self, counts: Optional[Mapping[str, Mapping[str, int]]] = None):
        self._counts: Dict[str, Dict[str, int]] = {}
        for doctor_id, groups in (counts or {}).items():
            for group, n in groups.items():
                self.add(doctor_id, group, n)

    def get(self, doctor_id: str, group: str) -> int:
        return self._counts.get(doctor_id, {}).get(group, 0)

    def add(self, doctor_id: str, group: str, n: int = 1) -> None:
        if n < 0:
            raise ValueError(f"Ledger counts cannot decrease (got {n} for {doctor_id}/{group})")
        if n == 0:
            return
        groups = self._counts.setdefault(doctor_id, {})
        groups[group] = groups.get(group, 0) + n

    def doctors(self) -> List[str]:
        return sorted(self._counts)

    def groups(self) -> List[str]:
        return sorted({g for groups in self._counts.values() for g in groups})

    def total(self, doctor_id: str) -> int:
        return sum(self._counts.get(doctor_id, {}).values())

    def items(self) -> Iterator[Tuple[str, str, int]]:
        for doctor_id in sorted(self._counts):
            for group in sorted(self._counts[doctor_id]):
                yield doctor_id, group, self._counts[doctor_id][group]

    def as_dict(self) -> Dict[str, Dict[str, int]]:
        return {d: dict(g) for d, g in self._counts.items()}

    def __add__(self, other: "EquityLedger") -> "EquityLedger":
        if not isinstance(other, EquityLedger):
            return NotImplemented
        merged = EquityLedger(self._counts)
        for doctor_id, group, n in other.items():
            merged.add(doctor_id, group, n)
        return merged

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, EquityLedger):
            return NotImplemented
        return dict(((d, g), n) for d, g, n in self.items()) == dict(((d, g), n) for d, g, n in other.items())

    def __repr__(self) -> str:
        return f"EquityLedger({self.as_dict()})"


# ---------------------------------------------------------------------------
# Replay
# ---------------------------------------------------------------------------

def replay_ledger(
    start_date: date,
    end_date: date,
    rules: ScheduleRules,
    overrides: Optional[Mapping] = None,
) -> EquityLedger:
    """
    Recompute the ledger for [start_date, end_date] (inclusive).

    Every week touching the window is regenerated with automatic fill off;
    only pinned overrides count (see module docstring).

    Raises:
        StructuralError: non-date arguments or end_date before start_date.
    """
    from medplan.recurrence import resolve_week

    start = require_date(start_date, "start_date")
    end = require_date(end_date, "end_date")
    if end < start:
        raise StructuralError(f"Replay window is reversed: {start.isoformat()} > {end.isoformat()}")

    activities = rules.activity_map()
    ledger = EquityLedger()
    weeks = 0

    for monday in iter_week_starts(start, end):
        weeks += 1
        weekly_anchor: Dict[Tuple[str, str], Tuple[date, int, str]] = {}

        for occ in resolve_week(monday, rules, overrides, auto_fill=False):
            if occ.slot_type is not SlotType.ACTIVITY or occ.activity_id is None:
                continue
            if not occ.locked or occ.closed or occ.assigned_doctor_id is None:
                continue
            activity = activities[occ.activity_id]
            doctor_id = occ.assigned_doctor_id

            if activity.granularity is Granularity.WEEKLY:
                key = (doctor_id, activity.id)
                anchor = (occ.canonical_date, occ.period.order, occ.id)
                if key not in weekly_anchor or anchor < weekly_anchor[key]:
                    weekly_anchor[key] = anchor
            elif start <= occ.canonical_date <= end:
                ledger.add(doctor_id, activity.group)

        for (doctor_id, activity_id), anchor in sorted(weekly_anchor.items()):
            if start <= anchor[0] <= end:
                ledger.add(doctor_id, activities[activity_id].group)

    logger.info(
        f"Replayed {weeks} week(s) {start.isoformat()} → {end.isoformat()}: "
        f"{sum(n for _d, _g, n in ledger.items())} points"
    )
    return ledger


def history_before(
    week_start: date,
    history_start: Optional[date],
    rules: ScheduleRules,
    overrides: Optional[Mapping] = None,
) -> EquityLedger:
    """Ledger from history_start up to the day before week_start (empty if none)."""
    if history_start is None or history_start >= week_start:
        return EquityLedger()
    return replay_ledger(history_start, week_start - timedelta(days=1), rules, overrides)
