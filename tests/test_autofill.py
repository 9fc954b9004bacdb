"""
Tests for the automatic fill / equity balancer
"""

import sys
from datetime import date
from pathlib import Path

import pytest

# Add project root
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from medplan.autofill import auto_fill_week
from medplan.calendars import HolidayCalendar
from medplan.conflicts import detect_conflicts
from medplan.ledger import EquityLedger
from medplan.models import (
    ActivityDefinition,
    ConflictKind,
    Doctor,
    Granularity,
    Period,
    ScheduleRules,
    SlotType,
    TemplateSlot,
    Unavailability,
    Weekday,
)
from medplan.overrides import Manual
from medplan.recurrence import find_occurrence, generate_week, resolve_week

WEEK = date(2025, 5, 5)


def _activity_slot(slot_id, weekday, period, activity_id):
    return TemplateSlot(slot_id, weekday, period, activity_id.title(), SlotType.ACTIVITY, activity_id=activity_id)


def _rules(roster, templates, activities, unavailabilities=()):
    return ScheduleRules(
        roster=tuple(roster),
        templates=tuple(templates),
        activities=tuple(activities),
        unavailabilities=tuple(unavailabilities),
        holidays=HolidayCalendar(),
    )


def _assigned(occurrences, occ_id):
    return find_occurrence(occurrences, occ_id).assigned_doctor_id


class TestEquityScore:

    def test_employment_factor_weighting(self):
        """X: 3 points at 1.0 → 3.0; Y: 1 point at 0.5 → 2.0; Y is owed the slot."""
        rules = _rules(
            [Doctor("X", "Dr X", employment_factor=1.0), Doctor("Y", "Dr Y", employment_factor=0.5)],
            [_activity_slot("unity-mon-pm", Weekday.MONDAY, Period.AFTERNOON, "unity")],
            [ActivityDefinition("unity", "Unity", equity_group="unity")],
        )
        ledger = EquityLedger({"X": {"unity": 3}, "Y": {"unity": 1}})
        occurrences = resolve_week(WEEK, rules, auto_fill=True, ledger=ledger)
        assert _assigned(occurrences, "unity-mon-pm-2025-05-05") == "Y"

    def test_running_tally_rotates(self):
        rules = _rules(
            [Doctor("A", "Dr A"), Doctor("B", "Dr B")],
            [
                _activity_slot("unity-mon-pm", Weekday.MONDAY, Period.AFTERNOON, "unity"),
                _activity_slot("unity-tue-pm", Weekday.TUESDAY, Period.AFTERNOON, "unity"),
                _activity_slot("unity-wed-pm", Weekday.WEDNESDAY, Period.AFTERNOON, "unity"),
            ],
            [ActivityDefinition("unity", "Unity")],
        )
        occurrences = resolve_week(WEEK, rules, auto_fill=True)
        assert [_assigned(occurrences, f"unity-{d}-pm-2025-05-0{n}") for d, n in
                (("mon", 5), ("tue", 6), ("wed", 7))] == ["A", "B", "A"]

    def test_groups_share_points(self):
        """Two activities in one equity group are balanced together."""
        rules = _rules(
            [Doctor("A", "Dr A"), Doctor("B", "Dr B")],
            [
                _activity_slot("unity-mon-pm", Weekday.MONDAY, Period.AFTERNOON, "unity"),
                _activity_slot("astreinte-tue-pm", Weekday.TUESDAY, Period.AFTERNOON, "astreinte"),
            ],
            [
                ActivityDefinition("unity", "Unity", equity_group="shared"),
                ActivityDefinition("astreinte", "Astreinte", equity_group="shared"),
            ],
        )
        occurrences = resolve_week(WEEK, rules, auto_fill=True)
        assert _assigned(occurrences, "unity-mon-pm-2025-05-05") == "A"
        assert _assigned(occurrences, "astreinte-tue-pm-2025-05-06") == "B"


class TestTieBreaks:

    def test_week_load_then_id(self):
        """Equal scores in the group: the doctor with less work this week wins."""
        rules = _rules(
            [Doctor("A", "Dr A"), Doctor("B", "Dr B")],
            [
                _activity_slot("astreinte-mon-pm", Weekday.MONDAY, Period.AFTERNOON, "astreinte"),
                _activity_slot("unity-tue-pm", Weekday.TUESDAY, Period.AFTERNOON, "unity"),
            ],
            [ActivityDefinition("unity", "Unity"), ActivityDefinition("astreinte", "Astreinte")],
        )
        overrides = {"astreinte-mon-pm-2025-05-05": Manual("A")}
        occurrences = resolve_week(WEEK, rules, overrides=overrides, auto_fill=True)
        assert _assigned(occurrences, "unity-tue-pm-2025-05-06") == "B"

    def test_doctor_id_last(self):
        rules = _rules(
            [Doctor("B", "Dr B"), Doctor("A", "Dr A")],
            [_activity_slot("unity-mon-pm", Weekday.MONDAY, Period.AFTERNOON, "unity")],
            [ActivityDefinition("unity", "Unity")],
        )
        occurrences = resolve_week(WEEK, rules, auto_fill=True)
        assert _assigned(occurrences, "unity-mon-pm-2025-05-05") == "A"


class TestPinnedAssignments:

    def test_pinned_counts_toward_tally(self):
        rules = _rules(
            [Doctor("A", "Dr A"), Doctor("B", "Dr B")],
            [
                _activity_slot("unity-mon-pm", Weekday.MONDAY, Period.AFTERNOON, "unity"),
                _activity_slot("unity-tue-pm", Weekday.TUESDAY, Period.AFTERNOON, "unity"),
            ],
            [ActivityDefinition("unity", "Unity")],
        )
        # without the pin, A would win Tuesday on doctor id
        overrides = {"unity-mon-pm-2025-05-05": Manual("A")}
        occurrences = resolve_week(WEEK, rules, overrides=overrides, auto_fill=True)
        assert _assigned(occurrences, "unity-tue-pm-2025-05-06") == "B"

    def test_pinned_never_changed(self):
        rules = _rules(
            [Doctor("A", "Dr A"), Doctor("B", "Dr B")],
            [_activity_slot("unity-mon-pm", Weekday.MONDAY, Period.AFTERNOON, "unity")],
            [ActivityDefinition("unity", "Unity")],
        )
        ledger = EquityLedger({"B": {"custom_unity": 50}})
        overrides = {"unity-mon-pm-2025-05-05": Manual("B")}
        occurrences = resolve_week(WEEK, rules, overrides=overrides, auto_fill=True, ledger=ledger)
        assert _assigned(occurrences, "unity-mon-pm-2025-05-05") == "B"

    def test_busy_doctor_skipped(self):
        rules = _rules(
            [Doctor("A", "Dr A"), Doctor("B", "Dr B")],
            [
                TemplateSlot("consult-mon-pm", Weekday.MONDAY, Period.AFTERNOON, "Consultation",
                             default_doctor_id="A"),
                _activity_slot("unity-mon-pm", Weekday.MONDAY, Period.AFTERNOON, "unity"),
            ],
            [ActivityDefinition("unity", "Unity")],
        )
        occurrences = resolve_week(WEEK, rules, auto_fill=True)
        assert _assigned(occurrences, "unity-mon-pm-2025-05-05") == "B"

    def test_no_candidate_left_open(self):
        rules = _rules(
            [Doctor("A", "Dr A", excluded_activities=frozenset({"unity"}))],
            [_activity_slot("unity-mon-pm", Weekday.MONDAY, Period.AFTERNOON, "unity")],
            [ActivityDefinition("unity", "Unity")],
        )
        occurrences = resolve_week(WEEK, rules, auto_fill=True)
        assert _assigned(occurrences, "unity-mon-pm-2025-05-05") is None


class TestWeeklyActivities:

    @pytest.fixture
    def workflow_slots(self):
        return [
            _activity_slot("workflow-mon-am", Weekday.MONDAY, Period.MORNING, "workflow"),
            _activity_slot("workflow-wed-am", Weekday.WEDNESDAY, Period.MORNING, "workflow"),
            _activity_slot("workflow-fri-am", Weekday.FRIDAY, Period.MORNING, "workflow"),
        ]

    def _holders(self, occurrences):
        return {o.assigned_doctor_id for o in occurrences if o.activity_id == "workflow"}

    def test_one_doctor_all_week(self, workflow_slots):
        rules = _rules(
            [Doctor("A", "Dr A"), Doctor("B", "Dr B")], workflow_slots,
            [ActivityDefinition("workflow", "Workflow", Granularity.WEEKLY)],
        )
        assert self._holders(resolve_week(WEEK, rules, auto_fill=True)) == {"A"}

    def test_requires_whole_week_availability(self, workflow_slots):
        rules = _rules(
            [Doctor("A", "Dr A"), Doctor("B", "Dr B")], workflow_slots,
            [ActivityDefinition("workflow", "Workflow", Granularity.WEEKLY)],
            unavailabilities=[Unavailability("u", "A", date(2025, 5, 7), date(2025, 5, 7))],
        )
        assert self._holders(resolve_week(WEEK, rules, auto_fill=True)) == {"B"}

    def test_pinned_doctor_propagated(self, workflow_slots):
        rules = _rules(
            [Doctor("A", "Dr A"), Doctor("B", "Dr B")], workflow_slots,
            [ActivityDefinition("workflow", "Workflow", Granularity.WEEKLY)],
        )
        overrides = {"workflow-wed-am-2025-05-07": Manual("B")}
        occurrences = resolve_week(WEEK, rules, overrides=overrides, auto_fill=True)
        assert self._holders(occurrences) == {"B"}
        assert not find_occurrence(occurrences, "workflow-mon-am-2025-05-05").locked

    def test_pinned_holder_not_copied_onto_unavailable_day(self, workflow_slots):
        rules = _rules(
            [Doctor("A", "Dr A"), Doctor("B", "Dr B")], workflow_slots,
            [ActivityDefinition("workflow", "Workflow", Granularity.WEEKLY)],
            unavailabilities=[Unavailability("u", "B", date(2025, 5, 9), date(2025, 5, 9))],
        )
        overrides = {"workflow-mon-am-2025-05-05": Manual("B")}
        occurrences = resolve_week(WEEK, rules, overrides=overrides, auto_fill=True)
        assert _assigned(occurrences, "workflow-wed-am-2025-05-07") == "B"
        assert _assigned(occurrences, "workflow-fri-am-2025-05-09") == "A"
        conflicts = detect_conflicts(occurrences, rules.unavailabilities, rules.roster, rules.activities)
        assert conflicts == []

    def test_pinned_holder_not_double_booked(self, workflow_slots):
        consult = TemplateSlot("consult-wed-am", Weekday.WEDNESDAY, Period.MORNING, "Consultation",
                               default_doctor_id="B")
        rules = _rules(
            [Doctor("A", "Dr A"), Doctor("B", "Dr B")], workflow_slots + [consult],
            [ActivityDefinition("workflow", "Workflow", Granularity.WEEKLY)],
        )
        overrides = {"workflow-mon-am-2025-05-05": Manual("B")}
        occurrences = resolve_week(WEEK, rules, overrides=overrides, auto_fill=True)
        assert _assigned(occurrences, "workflow-fri-am-2025-05-09") == "B"
        assert _assigned(occurrences, "workflow-wed-am-2025-05-07") == "A"
        conflicts = detect_conflicts(occurrences, rules.unavailabilities, rules.roster, rules.activities)
        assert not [c for c in conflicts if c.kind is ConflictKind.DOUBLE_BOOKING]

    def test_holder_unavailable_everywhere_else_leaves_open_when_nobody_fits(self, workflow_slots):
        rules = _rules(
            [Doctor("B", "Dr B")], workflow_slots,
            [ActivityDefinition("workflow", "Workflow", Granularity.WEEKLY)],
            unavailabilities=[Unavailability("u", "B", date(2025, 5, 7), date(2025, 5, 9))],
        )
        overrides = {"workflow-mon-am-2025-05-05": Manual("B")}
        occurrences = resolve_week(WEEK, rules, overrides=overrides, auto_fill=True)
        assert _assigned(occurrences, "workflow-wed-am-2025-05-07") is None
        assert _assigned(occurrences, "workflow-fri-am-2025-05-09") is None

    def test_double_booking_tolerated(self, workflow_slots):
        consult = TemplateSlot("consult-mon-am", Weekday.MONDAY, Period.MORNING, "Consultation",
                               default_doctor_id="A")
        rules = _rules(
            [Doctor("A", "Dr A"), Doctor("B", "Dr B")], workflow_slots + [consult],
            [ActivityDefinition("workflow", "Workflow", Granularity.WEEKLY, allow_double_booking=True)],
        )
        ledger = EquityLedger({"B": {"custom_workflow": 5}})
        assert self._holders(resolve_week(WEEK, rules, auto_fill=True, ledger=ledger)) == {"A"}

    def test_weekly_equity(self, workflow_slots):
        rules = _rules(
            [Doctor("A", "Dr A"), Doctor("B", "Dr B")], workflow_slots,
            [ActivityDefinition("workflow", "Workflow", Granularity.WEEKLY, equity_group="workflow")],
        )
        ledger = EquityLedger({"A": {"workflow": 2}, "B": {"workflow": 1}})
        assert self._holders(resolve_week(WEEK, rules, auto_fill=True, ledger=ledger)) == {"B"}


class TestPurity:

    def test_input_not_mutated_and_order_kept(self):
        rules = _rules(
            [Doctor("A", "Dr A")],
            [_activity_slot("unity-mon-pm", Weekday.MONDAY, Period.AFTERNOON, "unity")],
            [ActivityDefinition("unity", "Unity")],
        )
        raw = generate_week(WEEK, rules)
        filled = auto_fill_week(raw, rules, EquityLedger())
        assert raw[0].assigned_doctor_id is None
        assert [o.id for o in filled] == [o.id for o in raw]
        assert filled[0].assigned_doctor_id == "A"

    def test_ledger_not_mutated(self):
        rules = _rules(
            [Doctor("A", "Dr A")],
            [_activity_slot("unity-mon-pm", Weekday.MONDAY, Period.AFTERNOON, "unity")],
            [ActivityDefinition("unity", "Unity")],
        )
        ledger = EquityLedger()
        resolve_week(WEEK, rules, auto_fill=True, ledger=ledger)
        assert ledger == EquityLedger()
