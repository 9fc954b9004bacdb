"""
conflicts.py — Conflict Detector

Checks (all HIGH severity, closed occurrences ignored):
  - UNAVAILABLE:         a participant has a dated Unavailability covering the
                         half-day, or a recurring weekday / half-day exclusion
                         (for RCPs only once attendance is confirmed)
  - COMPETENCE_MISMATCH: a participant excludes the occurrence's activity or
                         slot type
  - DOUBLE_BOOKING:      a doctor sits on two or more blocking occurrences of
                         the same date and period; every implicated occurrence
                         gets its own record pointing at another one

Usage:
  detector = ConflictDetector(roster, unavailabilities, activities)
  conflicts = detector.check_all(occurrences)
"""

import logging
from collections import defaultdict
from datetime import date
from typing import Dict, List, Optional, Sequence, Tuple

from medplan.models import (
    ActivityDefinition,
    Conflict,
    ConflictKind,
    Doctor,
    Occurrence,
    Period,
    Severity,
    Unavailability,
)

logger = logging.getLogger(__name__)


def _label(occ: Occurrence, activities: Dict[str, ActivityDefinition]) -> str:
    if occ.activity_id and occ.activity_id in activities:
        return activities[occ.activity_id].name
    return occ.location


def _blocking_groups(
    occurrences: Sequence[Occurrence],
) -> Dict[Tuple[date, Period, str], List[Occurrence]]:
    """(date, period, doctor) → blocking, open occurrences holding that doctor."""
    groups: Dict[Tuple[date, Period, str], List[Occurrence]] = defaultdict(list)
    for occ in occurrences:
        if occ.closed or not occ.blocking:
            continue
        for doctor_id in occ.participants:
            groups[(occ.date, occ.period, doctor_id)].append(occ)
    return groups


def find_conflicting_occurrence(
    occurrence: Occurrence,
    occurrences: Sequence[Occurrence],
    doctor_id: str,
) -> Optional[Occurrence]:
    """
    The other occurrence that double-books `doctor_id` with `occurrence`,
    or None. Symmetric: asking from the returned occurrence points back.
    """
    if occurrence.closed or not occurrence.blocking or doctor_id not in occurrence.participants:
        return None
    for other in occurrences:
        if other.id == occurrence.id or other.closed or not other.blocking:
            continue
        if other.date == occurrence.date and other.period is occurrence.period \
                and doctor_id in other.participants:
            return other
    return None


class ConflictDetector:
    """Read-only checks over one set of resolved occurrences."""

    def __init__(
        self,
        roster: Sequence[Doctor],
        unavailabilities: Sequence[Unavailability],
        activities: Sequence[ActivityDefinition] = (),
    ):
        self.roster = roster
        self.unavailabilities = unavailabilities
        self._doctors: Dict[str, Doctor] = {d.id: d for d in roster}
        self._activities: Dict[str, ActivityDefinition] = {a.id: a for a in activities}

    def _open(self, occurrences: Sequence[Occurrence]):
        for occ in occurrences:
            if occ.closed:
                continue
            for doctor_id in occ.participants:
                doctor = self._doctors.get(doctor_id)
                if doctor is None:
                    logger.warning(f"{occ.id}: participant {doctor_id!r} not in roster — skipped")
                    continue
                yield occ, doctor

    # -----------------------------------------------------------------------
    # Unavailability
    # -----------------------------------------------------------------------

    def check_unavailability(self, occurrences: Sequence[Occurrence]) -> List[Conflict]:
        conflicts: List[Conflict] = []
        for occ, doctor in self._open(occurrences):
            for absence in self.unavailabilities:
                if absence.doctor_id != doctor.id or not absence.covers(occ.date, occ.period):
                    continue
                scope = f" - {absence.period.value}" if absence.period else ""
                conflicts.append(Conflict(
                    id=f"conflict-abs-{occ.id}-{doctor.id}-{absence.id}",
                    occurrence_id=occ.id,
                    doctor_id=doctor.id,
                    kind=ConflictKind.UNAVAILABLE,
                    description=f"{doctor.name} is absent ({absence.reason or 'unavailable'}{scope})",
                ))

            if doctor.works_on(occ.weekday, occ.period):
                continue
            if occ.is_rcp and occ.unconfirmed:
                continue
            if occ.is_rcp:
                desc = (f"{doctor.name} confirmed the RCP but does not work "
                        f"{occ.weekday.name.lower()} {occ.period.value.lower()}")
            else:
                desc = (f"{doctor.name} does not work {occ.weekday.name.lower()} "
                        f"{occ.period.value.lower()} (recurring exclusion)")
            conflicts.append(Conflict(
                id=f"conflict-halfday-excl-{occ.id}-{doctor.id}",
                occurrence_id=occ.id,
                doctor_id=doctor.id,
                kind=ConflictKind.UNAVAILABLE,
                description=desc,
            ))
        return conflicts

    # -----------------------------------------------------------------------
    # Competence
    # -----------------------------------------------------------------------

    def check_competence(self, occurrences: Sequence[Occurrence]) -> List[Conflict]:
        conflicts: List[Conflict] = []
        for occ, doctor in self._open(occurrences):
            if occ.activity_id and occ.activity_id in doctor.excluded_activities:
                conflicts.append(Conflict(
                    id=f"conflict-act-excl-{occ.id}-{doctor.id}",
                    occurrence_id=occ.id,
                    doctor_id=doctor.id,
                    kind=ConflictKind.COMPETENCE_MISMATCH,
                    description=f"{doctor.name} is excluded from activity {_label(occ, self._activities)}",
                ))
            elif occ.slot_type in doctor.excluded_slot_types:
                conflicts.append(Conflict(
                    id=f"conflict-type-excl-{occ.id}-{doctor.id}",
                    occurrence_id=occ.id,
                    doctor_id=doctor.id,
                    kind=ConflictKind.COMPETENCE_MISMATCH,
                    description=f"{doctor.name} is excluded from {occ.slot_type.value} slots",
                ))
        return conflicts

    # -----------------------------------------------------------------------
    # Double booking
    # -----------------------------------------------------------------------

    def check_double_booking(self, occurrences: Sequence[Occurrence]) -> List[Conflict]:
        conflicts: List[Conflict] = []
        for (_d, _p, doctor_id), held in _blocking_groups(occurrences).items():
            if len(held) < 2:
                continue
            doctor = self._doctors.get(doctor_id)
            name = doctor.name if doctor else doctor_id
            for occ in held:
                other = next(o for o in held if o.id != occ.id)
                others = ", ".join(_label(o, self._activities) for o in held if o.id != occ.id)
                conflicts.append(Conflict(
                    id=f"conflict-db-{occ.id}-{doctor_id}",
                    occurrence_id=occ.id,
                    doctor_id=doctor_id,
                    kind=ConflictKind.DOUBLE_BOOKING,
                    description=(
                        f"{name} is on {_label(occ, self._activities)} and {others} "
                        f"on the same half-day"
                    ),
                    severity=Severity.HIGH,
                    other_occurrence_id=other.id,
                ))
        return conflicts

    # -----------------------------------------------------------------------
    # All checks
    # -----------------------------------------------------------------------

    def check_all(self, occurrences: Sequence[Occurrence]) -> List[Conflict]:
        conflicts = (
            self.check_unavailability(occurrences)
            + self.check_competence(occurrences)
            + self.check_double_booking(occurrences)
        )
        by_kind: Dict[str, int] = defaultdict(int)
        for c in conflicts:
            by_kind[c.kind.value] += 1
        if conflicts:
            logger.info(f"{len(conflicts)} conflict(s): {dict(by_kind)}")
        else:
            logger.debug("No conflicts")
        return conflicts


def detect_conflicts(
    occurrences: Sequence[Occurrence],
    unavailabilities: Sequence[Unavailability],
    roster: Sequence[Doctor],
    activities: Sequence[ActivityDefinition] = (),
) -> List[Conflict]:
    return ConflictDetector(roster, unavailabilities, activities).check_all(occurrences)
