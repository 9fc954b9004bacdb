"""
autofill.py — Automatic Fill / Equity Balancer

Assigns open activity occurrences of one week, lowest weighted score first:

    score = (ledger[doctor][group] + running week tally) / employment_factor

Ties: lower current-week load, then doctor id (fully deterministic).

Phase 1 — HALF_DAY activities, in activity definition order, then occurrence
          order. Each choice bumps the running tally and the week load.
Phase 2 — WEEKLY activities: one doctor for every open occurrence of the
          activity in the week. A doctor already holding one occurrence is
          copied onto the others where still eligible; whatever stays open
          goes to the best candidate eligible on all of it.

Never touched: locked (overridden), closed, holiday or already-assigned
occurrences. Assignments already present count toward the running tallies.
"""

import logging
from dataclasses import replace
from typing import Dict, List, Optional, Sequence, Set, Tuple

from medplan.availability import eligible_for
from medplan.ledger import EquityLedger
from medplan.models import (
    ActivityDefinition,
    Doctor,
    Granularity,
    Occurrence,
    ScheduleRules,
    SlotType,
)

logger = logging.getLogger(__name__)


class _Tallies:
    """Running per-week counters layered over a read-only ledger snapshot."""

    def __init__(self, ledger: EquityLedger):
        self.ledger = ledger
        self.running: Dict[Tuple[str, str], int] = {}
        self.load: Dict[str, int] = {}

    def bump(self, doctor_id: str, group: str, load: int = 1) -> None:
        key = (doctor_id, group)
        self.running[key] = self.running.get(key, 0) + 1
        self.load[doctor_id] = self.load.get(doctor_id, 0) + load

    def score(self, doctor: Doctor, group: str) -> float:
        points = self.ledger.get(doctor.id, group) + self.running.get((doctor.id, group), 0)
        return points / doctor.employment_factor

    def key(self, doctor: Doctor, group: str) -> Tuple[float, int, str]:
        return self.score(doctor, group), self.load.get(doctor.id, 0), doctor.id


def _is_fillable(occ: Occurrence) -> bool:
    return not (occ.locked or occ.closed or occ.holiday or occ.assigned_doctor_id)


def _activity_slots(
    occurrences: Sequence[Occurrence],
    activity_id: str,
) -> List[int]:
    return [
        i for i, o in enumerate(occurrences)
        if o.slot_type is SlotType.ACTIVITY and o.activity_id == activity_id
    ]


def _count_existing(
    occurrences: Sequence[Occurrence],
    activities: Sequence[ActivityDefinition],
    tallies: _Tallies,
) -> None:
    """Pinned / template-default assignments count before anything is filled."""
    for activity in activities:
        seen_weekly = set()
        for i in _activity_slots(occurrences, activity.id):
            occ = occurrences[i]
            doctor_id = occ.assigned_doctor_id
            if occ.closed or doctor_id is None:
                continue
            if activity.granularity is Granularity.WEEKLY:
                if doctor_id in seen_weekly:
                    continue
                seen_weekly.add(doctor_id)
            tallies.bump(doctor_id, activity.group)


# ---------------------------------------------------------------------------
# Phase 1: half-day activities
# ---------------------------------------------------------------------------

def _fill_half_day(
    current: List[Occurrence],
    activity: ActivityDefinition,
    rules: ScheduleRules,
    tallies: _Tallies,
) -> int:
    filled = 0
    for i in _activity_slots(current, activity.id):
        occ = current[i]
        if not _is_fillable(occ):
            continue
        candidates = eligible_for(occ, rules.roster, rules.unavailabilities, current)
        if not candidates:
            logger.info(f"{occ.id}: no eligible doctor — left unassigned")
            continue
        chosen = min(candidates, key=lambda d: tallies.key(d, activity.group))
        logger.debug(
            f"{occ.id}: {chosen.id} (score {tallies.score(chosen, activity.group):.2f}, "
            f"{len(candidates)} candidates)"
        )
        current[i] = replace(occ, assigned_doctor_id=chosen.id)
        tallies.bump(chosen.id, activity.group)
        filled += 1
    return filled


# ---------------------------------------------------------------------------
# Phase 2: week-granularity activities
# ---------------------------------------------------------------------------

def _weekly_holder(current: List[Occurrence], indices: List[int]) -> Optional[str]:
    """Doctor already holding the activity this week (pinned first)."""
    for locked_first in (True, False):
        for i in indices:
            occ = current[i]
            if occ.closed or occ.assigned_doctor_id is None:
                continue
            if occ.locked == locked_first:
                return occ.assigned_doctor_id
    return None


def _eligible_ids(
    current: List[Occurrence],
    i: int,
    rules: ScheduleRules,
    check_busy: bool,
) -> Set[str]:
    return {d.id for d in eligible_for(
        current[i], rules.roster, rules.unavailabilities, current, check_busy=check_busy,
    )}


def _fill_weekly(
    current: List[Occurrence],
    activity: ActivityDefinition,
    rules: ScheduleRules,
    tallies: _Tallies,
) -> int:
    indices = [i for i in _activity_slots(current, activity.id)
               if not current[i].closed and not current[i].holiday]
    if not indices:
        return 0

    check_busy = not activity.allow_double_booking
    filled = 0

    holder = _weekly_holder(current, indices)
    if holder is not None:
        for i in indices:
            if not _is_fillable(current[i]):
                continue
            if holder in _eligible_ids(current, i, rules, check_busy):
                current[i] = replace(current[i], assigned_doctor_id=holder)
                filled += 1
            else:
                logger.info(f"{current[i].id}: weekly holder {holder} not available — reselecting")

    remaining = [i for i in indices if _is_fillable(current[i])]
    if not remaining:
        return filled

    pool: Optional[List[Doctor]] = None
    for i in remaining:
        ids = _eligible_ids(current, i, rules, check_busy)
        pool = [d for d in (pool if pool is not None else rules.roster) if d.id in ids]
    if not pool:
        logger.info(f"{activity.id}: nobody available for the rest of the week — left unassigned")
        return filled

    chosen = min(pool, key=lambda d: tallies.key(d, activity.group))
    tallies.bump(chosen.id, activity.group)
    logger.debug(f"{activity.id}: weekly holder {chosen.id} ({len(pool)} candidates)")
    for i in remaining:
        current[i] = replace(current[i], assigned_doctor_id=chosen.id)
        filled += 1
    return filled


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def auto_fill_week(
    occurrences: Sequence[Occurrence],
    rules: ScheduleRules,
    ledger: EquityLedger,
) -> List[Occurrence]:
    """
    Return a copy of one week's occurrences with open activity occurrences
    assigned. Input order is preserved; inputs are not mutated.
    """
    current = list(occurrences)
    tallies = _Tallies(ledger)
    _count_existing(current, rules.activities, tallies)

    half_day = [a for a in rules.activities if a.granularity is Granularity.HALF_DAY]
    weekly = [a for a in rules.activities if a.granularity is Granularity.WEEKLY]

    filled = 0
    for activity in half_day:
        filled += _fill_half_day(current, activity, rules, tallies)
    for activity in weekly:
        filled += _fill_weekly(current, activity, rules, tallies)

    logger.info(f"Auto-fill assigned {filled} occurrence(s)")
    return current
