from __future__ import annotations

from builders import MONDAY, clinic, dispensary, rota, ward
from pharmrota.assignment_index import AssignmentIndex
from pharmrota.conflicts import conflict_report, has_conflict
from pharmrota.models import TIME_SLOTS, Pharmacist


def test_ward_plus_clinic_in_same_slot_conflicts():
    index = AssignmentIndex([rota(1, MONDAY, [ward(4), clinic(4, start="09:30", end="10:30")])])
    assert has_conflict(index, 4, MONDAY, TIME_SLOTS[0])
    assert not has_conflict(index, 4, MONDAY, TIME_SLOTS[1])


def test_partial_ward_does_not_conflict():
    index = AssignmentIndex(
        [rota(1, MONDAY, [ward(4, start="09:00", end="10:00"), dispensary(4, "09:00", "11:00")])]
    )
    assert not has_conflict(index, 4, MONDAY, TIME_SLOTS[0])


def test_other_pharmacists_are_not_flagged():
    index = AssignmentIndex([rota(1, MONDAY, [ward(4), dispensary(5, "09:00", "11:00")])])
    assert not has_conflict(index, 4, MONDAY, TIME_SLOTS[0])
    assert not has_conflict(index, 5, MONDAY, TIME_SLOTS[0])


def test_conflict_report_names_pharmacist_and_slot():
    index = AssignmentIndex([rota(1, MONDAY, [ward(4), dispensary(4, "13:00", "15:00")])])
    warnings = conflict_report(index, [Pharmacist(id=4, name="Amir Khan", display_name="Amir")])
    assert len(warnings) == 1
    warning = warnings[0]
    assert warning["type"] == "double_booked"
    assert warning["pharmacist"] == "Amir"
    assert warning["slot"] == "13:00-15:00"
    assert warning["date"] == MONDAY.isoformat()
