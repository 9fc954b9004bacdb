"""
Tests for overrides: legacy codec and application
"""

import sys
from datetime import date
from pathlib import Path

import pytest

# Add project root
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from medplan.models import Occurrence, Period, SlotType, Weekday
from medplan.overrides import (
    CLOSED,
    UNSET,
    AutoLocked,
    Closed,
    Manual,
    apply_overrides,
    format_legacy_override,
    parse_legacy_override,
    pinned_doctor,
)


def _occ(occ_id="slot-2025-05-05", doctor=None, secondaries=()):
    d = date(2025, 5, 5)
    return Occurrence(
        id=occ_id, rule_id="slot", canonical_date=d, date=d, weekday=Weekday.MONDAY,
        period=Period.MORNING, location="Room", slot_type=SlotType.CONSULTATION,
        assigned_doctor_id=doctor, secondary_doctor_ids=tuple(secondaries),
    )


class TestLegacyCodec:

    @pytest.mark.parametrize("raw,expected", [
        (None, UNSET),
        ("", UNSET),
        ("__CLOSED__", CLOSED),
        ("auto:DUP", AutoLocked("DUP")),
        ("auto:", UNSET),
        ("MAR", Manual("MAR")),
    ])
    def test_parse(self, raw, expected):
        assert parse_legacy_override(raw) == expected

    def test_format(self):
        assert format_legacy_override(CLOSED) == "__CLOSED__"
        assert format_legacy_override(AutoLocked("DUP")) == "auto:DUP"
        assert format_legacy_override(Manual("MAR")) == "MAR"
        assert format_legacy_override(UNSET) is None

    def test_pinned_doctor(self):
        assert pinned_doctor(Manual("A")) == "A"
        assert pinned_doctor(AutoLocked("B")) == "B"
        assert pinned_doctor(CLOSED) is None
        assert pinned_doctor(None) is None


class TestApplyOverrides:

    def test_closed(self):
        [occ] = apply_overrides([_occ(doctor="A", secondaries=["B"])], {"slot-2025-05-05": Closed()}, {"A", "B"})
        assert occ.closed and occ.locked
        assert occ.assigned_doctor_id is None
        assert occ.participants == ()

    def test_manual_pins_and_dedupes_secondary(self):
        [occ] = apply_overrides([_occ(doctor="A", secondaries=["B"])], {"slot-2025-05-05": Manual("B")}, {"A", "B"})
        assert occ.assigned_doctor_id == "B"
        assert occ.locked
        assert occ.secondary_doctor_ids == ()

    def test_stale_doctor_treated_as_unset(self, caplog):
        original = _occ(doctor="A")
        [occ] = apply_overrides([original], {"slot-2025-05-05": Manual("GONE")}, {"A"})
        assert occ == original
        assert "GONE" in caplog.text

    def test_other_ids_untouched(self):
        original = _occ()
        assert apply_overrides([original], {"other-2025-05-05": CLOSED}, set()) == [original]

    def test_inputs_not_mutated(self):
        original = _occ(doctor="A")
        apply_overrides([original], {"slot-2025-05-05": Manual("B")}, {"A", "B"})
        assert original.assigned_doctor_id == "A"
        assert not original.locked
