"""
availability.py — Eligible-doctor filter for one half-day

Used by the automatic fill, by the replacement ranker's candidate pool and by
manual-selection dropdowns. Pure: the roster order is preserved and nothing is
mutated.

A doctor is excluded when:
  - an Unavailability covers the date (whole day or same period)
  - a recurring weekday / half-day exclusion covers the half-day
  - the occurrence's activity or slot type is in their exclusions
  - they are the doctor being replaced
  - they already sit on a blocking, non-closed occurrence at the same date and period
"""

import logging
from datetime import date
from typing import Iterable, List, Optional, Sequence

from medplan.models import Doctor, Occurrence, Period, SlotType, Unavailability, Weekday

logger = logging.getLogger(__name__)


def is_absent(
    doctor_id: str,
    d: date,
    period: Period,
    unavailabilities: Iterable[Unavailability],
) -> bool:
    return any(u.doctor_id == doctor_id and u.covers(d, period) for u in unavailabilities)


def is_busy(
    doctor_id: str,
    d: date,
    period: Period,
    occurrences: Iterable[Occurrence],
    ignore_occurrence_id: Optional[str] = None,
) -> bool:
    """True if doctor already holds a blocking, open occurrence at (d, period)."""
    for occ in occurrences:
        if occ.id == ignore_occurrence_id or occ.closed or not occ.blocking:
            continue
        if occ.date == d and occ.period is period and doctor_id in occ.participants:
            return True
    return False


def is_excluded(
    doctor: Doctor,
    activity_id: Optional[str] = None,
    slot_type: Optional[SlotType] = None,
) -> bool:
    """Competence exclusions (activity or slot type)."""
    if activity_id and activity_id in doctor.excluded_activities:
        return True
    return slot_type is not None and slot_type in doctor.excluded_slot_types


def filter_available(
    day: Weekday,
    period: Period,
    date: date,
    roster: Sequence[Doctor],
    unavailabilities: Sequence[Unavailability],
    current_occurrences: Sequence[Occurrence] = (),
    activity_id: Optional[str] = None,
    slot_type: Optional[SlotType] = None,
    exclude_doctor_id: Optional[str] = None,
    ignore_occurrence_id: Optional[str] = None,
    check_busy: bool = True,
) -> List[Doctor]:
    """
    Return the doctors eligible for (day, period, date), in roster order.

    Args:
        day, period, date:    target half-day (day is normally Weekday.of(date))
        roster:               full doctor roster
        unavailabilities:     dated absences
        current_occurrences:  this week's occurrences, for the busy check
        activity_id:          occurrence activity (competence exclusion)
        slot_type:            occurrence slot type (competence exclusion)
        exclude_doctor_id:    doctor being replaced
        ignore_occurrence_id: the occurrence being filled; its own holder is not "busy"
        check_busy:           False skips the double-booking exclusion
    """
    eligible: List[Doctor] = []
    for doc in roster:
        if doc.id == exclude_doctor_id:
            continue
        if not doc.works_on(day, period):
            continue
        if is_excluded(doc, activity_id, slot_type):
            continue
        if is_absent(doc.id, date, period, unavailabilities):
            continue
        if check_busy and is_busy(doc.id, date, period, current_occurrences, ignore_occurrence_id):
            continue
        eligible.append(doc)

    if not eligible:
        logger.debug(f"No eligible doctor for {date.isoformat()} {period.value}")
    return eligible


def eligible_for(
    occurrence: Occurrence,
    roster: Sequence[Doctor],
    unavailabilities: Sequence[Unavailability],
    current_occurrences: Sequence[Occurrence] = (),
    replacing: Optional[str] = None,
    check_busy: bool = True,
) -> List[Doctor]:
    """filter_available shaped around an existing occurrence."""
    return filter_available(
        day=occurrence.weekday,
        period=occurrence.period,
        date=occurrence.date,
        roster=roster,
        unavailabilities=unavailabilities,
        current_occurrences=current_occurrences,
        activity_id=occurrence.activity_id,
        slot_type=occurrence.slot_type,
        exclude_doctor_id=replacing,
        ignore_occurrence_id=occurrence.id,
        check_busy=check_busy,
    )
