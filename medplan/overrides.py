"""
overrides.py — Caller-persisted per-occurrence decisions

Override = Unset | Closed | Manual(doctor_id) | AutoLocked(doctor_id)

  Unset        engine decides (template default or automatic fill)
  Closed       occurrence is never assigned
  Manual       pinned by a planner
  AutoLocked   an earlier automatic choice, pinned so replay counts it

Overrides always win over automatic fill. A Manual/AutoLocked override naming a
doctor missing from the roster is a stale reference: it is logged and treated
as Unset.

The legacy store persisted overrides as strings ("__CLOSED__", "auto:<id>",
"<id>"); parse_legacy_override / format_legacy_override convert between the two.
"""

import logging
from dataclasses import dataclass, replace
from typing import Container, Dict, List, Mapping, Optional, Sequence, Union

from medplan.models import Occurrence
from medplan.schedule_config import LEGACY_AUTO_PREFIX, LEGACY_CLOSED_MARKER

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Unset:
    pass


@dataclass(frozen=True)
class Closed:
    pass


@dataclass(frozen=True)
class Manual:
    doctor_id: str


@dataclass(frozen=True)
class AutoLocked:
    doctor_id: str


Override = Union[Unset, Closed, Manual, AutoLocked]
OverrideMap = Mapping[str, Override]   # occurrence id → override

UNSET = Unset()
CLOSED = Closed()


def pinned_doctor(override: Optional[Override]) -> Optional[str]:
    """Doctor id for Manual/AutoLocked overrides, None otherwise."""
    if isinstance(override, (Manual, AutoLocked)):
        return override.doctor_id
    return None


# ---------------------------------------------------------------------------
# Legacy string codec
# ---------------------------------------------------------------------------

def parse_legacy_override(raw: Optional[str]) -> Override:
    if raw is None:
        return UNSET
    value = str(raw).strip()
    if not value:
        return UNSET
    if value == LEGACY_CLOSED_MARKER:
        return CLOSED
    if value.startswith(LEGACY_AUTO_PREFIX):
        doctor_id = value[len(LEGACY_AUTO_PREFIX):]
        return AutoLocked(doctor_id) if doctor_id else UNSET
    return Manual(value)


def format_legacy_override(override: Override) -> Optional[str]:
    """Inverse of parse_legacy_override; Unset has no stored form (None)."""
    if isinstance(override, Closed):
        return LEGACY_CLOSED_MARKER
    if isinstance(override, AutoLocked):
        return f"{LEGACY_AUTO_PREFIX}{override.doctor_id}"
    if isinstance(override, Manual):
        return override.doctor_id
    return None


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------

def effective_override(
    occurrence_id: str,
    overrides: Optional[OverrideMap],
    known_doctors: Container[str],
) -> Override:
    """Look up an override, downgrading stale doctor references to Unset."""
    if not overrides:
        return UNSET
    override = overrides.get(occurrence_id, UNSET)
    doctor_id = pinned_doctor(override)
    if doctor_id is not None and doctor_id not in known_doctors:
        logger.warning(
            f"Override on {occurrence_id} names unknown doctor {doctor_id!r} — treated as unset"
        )
        return UNSET
    return override


def apply_overrides(
    occurrences: Sequence[Occurrence],
    overrides: Optional[OverrideMap],
    known_doctors: Container[str],
) -> List[Occurrence]:
    """
    Return a copy of `occurrences` with overrides applied.

    Closed → unassigned, closed, locked.
    Manual / AutoLocked → assigned to that doctor, locked (also on holidays).
    """
    result: List[Occurrence] = []
    applied: Dict[str, int] = {"closed": 0, "pinned": 0}
    for occ in occurrences:
        override = effective_override(occ.id, overrides, known_doctors)
        if isinstance(override, Closed):
            occ = replace(
                occ, assigned_doctor_id=None, secondary_doctor_ids=(), backup_doctor_id=None,
                closed=True, locked=True,
            )
            applied["closed"] += 1
        else:
            doctor_id = pinned_doctor(override)
            if doctor_id is not None:
                occ = replace(
                    occ,
                    assigned_doctor_id=doctor_id,
                    secondary_doctor_ids=tuple(d for d in occ.secondary_doctor_ids if d != doctor_id),
                    closed=False,
                    locked=True,
                )
                applied["pinned"] += 1
        result.append(occ)
    if applied["closed"] or applied["pinned"]:
        logger.debug(f"Overrides applied: {applied['pinned']} pinned, {applied['closed']} closed")
    return result
