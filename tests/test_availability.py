"""
Tests for the availability filter
"""

import sys
from datetime import date
from pathlib import Path

import pytest

# Add project root
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from medplan.availability import eligible_for, filter_available, is_busy
from medplan.calendars import HolidayCalendar
from medplan.ledger import EquityLedger
from medplan.models import (
    ActivityDefinition,
    Doctor,
    Occurrence,
    Period,
    ScheduleRules,
    SlotType,
    TemplateSlot,
    Unavailability,
    Weekday,
)
from medplan.recurrence import resolve_week

FRIDAY = date(2025, 5, 2)


def _occ(occ_id, doctor, period=Period.MORNING, d=FRIDAY, blocking=True, closed=False,
         slot_type=SlotType.CONSULTATION, activity_id=None):
    return Occurrence(
        id=occ_id, rule_id=occ_id, canonical_date=d, date=d, weekday=Weekday.of(d), period=period,
        location="Room", slot_type=slot_type, assigned_doctor_id=doctor, activity_id=activity_id,
        blocking=blocking, closed=closed,
    )


@pytest.fixture
def roster():
    return [
        Doctor("A", "Dr A"),
        Doctor("B", "Dr B"),
        Doctor("C", "Dr C", excluded_weekdays=frozenset({Weekday.FRIDAY})),
        Doctor("D", "Dr D", excluded_half_days=frozenset({(Weekday.FRIDAY, Period.AFTERNOON)})),
        Doctor("E", "Dr E", excluded_activities=frozenset({"unity"}),
               excluded_slot_types=frozenset({SlotType.MACHINE})),
    ]


def _ids(doctors):
    return [d.id for d in doctors]


def _unassigned(occurrences):
    return [o.id for o in occurrences if o.assigned_doctor_id is None]


class TestFilterAvailable:

    def test_everyone_free(self, roster):
        result = filter_available(Weekday.THURSDAY, Period.MORNING, date(2025, 5, 1), roster, [])
        assert _ids(result) == ["A", "B", "C", "D", "E"]

    def test_whole_day_unavailability(self, roster):
        absences = [Unavailability("u1", "B", FRIDAY, FRIDAY)]
        for period in Period:
            assert "B" not in _ids(filter_available(Weekday.FRIDAY, period, FRIDAY, roster, absences))

    def test_period_unavailability(self, roster):
        absences = [Unavailability("u1", "A", FRIDAY, FRIDAY, Period.MORNING)]
        assert "A" not in _ids(filter_available(Weekday.FRIDAY, Period.MORNING, FRIDAY, roster, absences))
        assert "A" in _ids(filter_available(Weekday.FRIDAY, Period.AFTERNOON, FRIDAY, roster, absences))

    def test_recurring_exclusions(self, roster):
        morning = _ids(filter_available(Weekday.FRIDAY, Period.MORNING, FRIDAY, roster, []))
        afternoon = _ids(filter_available(Weekday.FRIDAY, Period.AFTERNOON, FRIDAY, roster, []))
        assert "C" not in morning and "C" not in afternoon
        assert "D" in morning and "D" not in afternoon

    def test_competence_exclusions(self, roster):
        unity = filter_available(Weekday.THURSDAY, Period.MORNING, date(2025, 5, 1), roster, [],
                                 activity_id="unity", slot_type=SlotType.ACTIVITY)
        machine = filter_available(Weekday.THURSDAY, Period.MORNING, date(2025, 5, 1), roster, [],
                                   slot_type=SlotType.MACHINE)
        assert "E" not in _ids(unity)
        assert "E" not in _ids(machine)

    def test_replaced_doctor_excluded(self, roster):
        result = filter_available(Weekday.THURSDAY, Period.MORNING, date(2025, 5, 1), roster, [],
                                  exclude_doctor_id="A")
        assert "A" not in _ids(result)

    def test_busy_on_blocking_occurrence(self, roster):
        current = [_occ("consult", "A")]
        result = filter_available(Weekday.FRIDAY, Period.MORNING, FRIDAY, roster, [], current)
        assert "A" not in _ids(result)

    def test_non_blocking_or_closed_do_not_count(self, roster):
        current = [_occ("workflow", "A", blocking=False), _occ("closed", "B", closed=True)]
        result = filter_available(Weekday.FRIDAY, Period.MORNING, FRIDAY, roster, [], current)
        assert {"A", "B"} <= set(_ids(result))

    def test_check_busy_disabled(self, roster):
        current = [_occ("consult", "A")]
        result = filter_available(Weekday.FRIDAY, Period.MORNING, FRIDAY, roster, [], current, check_busy=False)
        assert "A" in _ids(result)

    def test_secondary_participant_is_busy(self):
        occ = Occurrence(
            id="rcp", rule_id="rcp", canonical_date=FRIDAY, date=FRIDAY, weekday=Weekday.FRIDAY,
            period=Period.MORNING, location="RCP", slot_type=SlotType.RCP,
            assigned_doctor_id="A", secondary_doctor_ids=("B",),
        )
        assert is_busy("B", FRIDAY, Period.MORNING, [occ])
        assert not is_busy("B", FRIDAY, Period.AFTERNOON, [occ])

    def test_empty_pool_is_not_an_error(self):
        assert filter_available(Weekday.FRIDAY, Period.MORNING, FRIDAY, [], []) == []


class TestEligibleFor:

    def test_own_holder_not_busy(self, roster):
        occ = _occ("unity", "A", slot_type=SlotType.ACTIVITY, activity_id="unity")
        assert "A" in _ids(eligible_for(occ, roster, [], [occ]))

    def test_replacing(self, roster):
        occ = _occ("unity", "A", slot_type=SlotType.ACTIVITY, activity_id="unity")
        result = _ids(eligible_for(occ, roster, [], [occ], replacing="A"))
        assert result == ["B", "D"]


class TestUnavailableDoctorNeverAutoAssigned:
    """Doctor B is away all of 2025-05-02: nothing that day may go to B."""

    def test_week_of_may_second(self):
        rules = ScheduleRules(
            roster=(Doctor("A", "Dr A"), Doctor("B", "Dr B")),
            unavailabilities=(Unavailability("abs", "B", FRIDAY, FRIDAY),),
            templates=(
                TemplateSlot("unity-fri-am", Weekday.FRIDAY, Period.MORNING, "Unity", SlotType.ACTIVITY,
                             activity_id="unity"),
                TemplateSlot("unity-fri-pm", Weekday.FRIDAY, Period.AFTERNOON, "Unity", SlotType.ACTIVITY,
                             activity_id="unity"),
                TemplateSlot("astreinte-fri-pm", Weekday.FRIDAY, Period.AFTERNOON, "Astreinte",
                             SlotType.ACTIVITY, activity_id="astreinte"),
            ),
            activities=(
                ActivityDefinition("unity", "Unity", equity_group="unity"),
                ActivityDefinition("astreinte", "Astreinte", equity_group="unity"),
            ),
            holidays=HolidayCalendar(),
        )
        # B is far behind on equity, so only availability keeps B out
        ledger = EquityLedger({"A": {"unity": 10}})
        occurrences = resolve_week(date(2025, 4, 28), rules, auto_fill=True, ledger=ledger)
        friday = [o for o in occurrences if o.date == FRIDAY]
        assert friday
        assert all("B" not in o.participants for o in friday)
        assert _unassigned(friday) == ["astreinte-fri-pm-2025-05-02"]
