"""
identifiers.py — Occurrence identifier encoding (version 1)

An occurrence id is the persisted key for overrides and exceptions:

    {rule_id}-{YYYY}-{MM}-{DD}

rule_id is the template slot or RCP definition id; the date is the canonical
(un-moved) date even when an exception displays the occurrence elsewhere.

Parsing anchors on the trailing "-YYYY-MM-DD" only, so rule ids may contain
hyphens and digits of their own ("rcp-2024-02" is a valid rule id).
"""

import re
from dataclasses import dataclass
from datetime import date

from medplan.errors import StructuralError

ENCODING_VERSION = 1

_ID_PATTERN = re.compile(r"^(?P<rule_id>.+)-(?P<date>\d{4}-\d{2}-\d{2})$")


@dataclass(frozen=True)
class OccurrenceId:
    rule_id: str
    canonical_date: date

    def __str__(self) -> str:
        return encode_occurrence_id(self.rule_id, self.canonical_date)


def encode_occurrence_id(rule_id: str, canonical_date: date) -> str:
    if not rule_id:
        raise StructuralError("Occurrence rule id must be non-empty")
    if not isinstance(canonical_date, date):
        raise StructuralError(f"Canonical date must be a date, got {canonical_date!r}")
    return f"{rule_id}-{canonical_date.isoformat()}"


def decode_occurrence_id(occurrence_id: str) -> OccurrenceId:
    """Split an occurrence id back into (rule_id, canonical_date)."""
    match = _ID_PATTERN.match(occurrence_id or "")
    if match is None:
        raise StructuralError(f"Malformed occurrence id: {occurrence_id!r}")
    try:
        canonical = date.fromisoformat(match.group("date"))
    except ValueError as e:
        raise StructuralError(f"Malformed occurrence id date in {occurrence_id!r}: {e}") from e
    return OccurrenceId(match.group("rule_id"), canonical)
