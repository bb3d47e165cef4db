from __future__ import annotations

import asyncio
import datetime

import pytest
from pydantic import ValidationError

from builders import MONDAY, TUESDAY, FlakyBackend, cell, clinic, dispensary, holders, open_editor, seed_week, ward
from pharmrota import database as db
from pharmrota.editor import generation_guard
from pharmrota.exceptions import AssignmentValidationError, PartialWriteError, RotaError
from pharmrota.models import MANAGEMENT_TIME, TIME_SLOTS, RotaStatus
from pharmrota.scope import Scope
from pharmrota.session import EditSession


def test_slot_edit_on_full_day_ward_reassigns_the_entry(memory_db):
    seed_week(memory_db, {MONDAY: [ward(1)]})
    editor = open_editor()
    result = asyncio.run(editor.assign(cell("Ward 1", TIME_SLOTS[1], 1), 2))
    assert result.ok
    assert holders(editor, MONDAY, "Ward 1") == [(2, "00:00", "23:59")]
    assert editor.index.ward_at(MONDAY, "Ward 1", TIME_SLOTS[3]).pharmacist_id == 2


def test_slot_edit_keeps_co_occupants(memory_db):
    seed_week(memory_db, {MONDAY: [dispensary(1, "09:00", "11:00"), dispensary(2, "09:00", "11:00")]})
    editor = open_editor()
    asyncio.run(editor.assign(cell("Dispensary", TIME_SLOTS[0], 2), 3))
    assert holders(editor, MONDAY, "Dispensary") == [(1, "09:00", "11:00"), (3, "09:00", "11:00")]


def test_slot_edit_is_a_no_op_when_pharmacist_already_there(memory_db):
    seed_week(memory_db, {MONDAY: [dispensary(1, "09:00", "11:00"), dispensary(2, "09:00", "11:00")]})
    editor = open_editor()
    assert editor.plan(cell("Dispensary", TIME_SLOTS[0], 1), 2, Scope.SLOT) == []
    result = asyncio.run(editor.assign(cell("Dispensary", TIME_SLOTS[0], 1), 2))
    assert result.completed == []


def test_empty_slot_gets_a_new_assignment(memory_db):
    seed_week(memory_db, {MONDAY: [dispensary(1, "09:00", "11:00")]})
    editor = open_editor()
    target = cell("Dispensary", TIME_SLOTS[3])
    asyncio.run(editor.assign(target, 4))
    assert holders(editor, MONDAY, "Dispensary") == [(1, "09:00", "11:00"), (4, "15:00", "17:00")]
    assert [e.pharmacist_id for e in editor.occupants(target)] == [4]


def test_day_scope_moves_only_the_shown_pharmacists_entries(memory_db):
    seed_week(
        memory_db,
        {
            MONDAY: [
                dispensary(1, "09:00", "11:00"),
                dispensary(2, "11:00", "13:00"),
                dispensary(1, "13:00", "15:00"),
            ]
        },
    )
    editor = open_editor()
    result = asyncio.run(editor.assign(cell("Dispensary", TIME_SLOTS[0], 1), 5, Scope.DAY))
    assert len(result.completed) == 2
    assert holders(editor, MONDAY, "Dispensary") == [
        (5, "09:00", "11:00"),
        (2, "11:00", "13:00"),
        (5, "13:00", "15:00"),
    ]


def test_day_scope_on_empty_location_fills_every_slot(memory_db):
    seed_week(memory_db, {MONDAY: [ward(1)]})
    editor = open_editor()
    asyncio.run(editor.assign(cell(MANAGEMENT_TIME, TIME_SLOTS[0]), 3, Scope.DAY))
    assert [start for _, start, _ in holders(editor, MONDAY, MANAGEMENT_TIME)] == [s.start for s in TIME_SLOTS]


def test_week_scope_skips_days_without_rotas(memory_db):
    seed_week(memory_db, {MONDAY: [ward(1)], TUESDAY: [ward(1), ward(2, location="Ward 2")]})
    editor = open_editor()
    result = asyncio.run(editor.assign(cell("Ward 1", TIME_SLOTS[0], 1), 4, Scope.WEEK))
    assert len(result.completed) == 2
    assert holders(editor, MONDAY, "Ward 1") == [(4, "00:00", "23:59")]
    assert holders(editor, TUESDAY, "Ward 1") == [(4, "00:00", "23:59")]
    assert holders(editor, TUESDAY, "Ward 2") == [(2, "00:00", "23:59")]




def test_day_scope_with_no_entries_for_the_shown_pharmacist_writes_nothing(memory_db, caplog):
    seed_week(memory_db, {MONDAY: [dispensary(2, "09:00", "11:00")]})
    editor = open_editor()
    target = cell("Dispensary", TIME_SLOTS[0], 1)
    assert editor.plan(target, 5, Scope.DAY) == []
    with caplog.at_level("WARNING"):
        result = asyncio.run(editor.assign(target, 5, Scope.DAY))
    assert result.completed == []
    assert "No assignments for pharmacist 1" in caplog.text
    assert holders(editor, MONDAY, "Dispensary") == [(2, "09:00", "11:00")]


def test_week_scope_with_no_entries_for_the_shown_pharmacist_writes_nothing(memory_db):
    seed_week(
        memory_db,
        {MONDAY: [dispensary(2, "09:00", "11:00")], TUESDAY: [dispensary(2, "09:00", "11:00")]},
    )
    editor = open_editor()
    result = asyncio.run(editor.assign(cell("Dispensary", TIME_SLOTS[0], 1), 5, Scope.WEEK))
    assert result.completed == []
    assert holders(editor, MONDAY, "Dispensary") == [(2, "09:00", "11:00")]
    assert holders(editor, TUESDAY, "Dispensary") == [(2, "09:00", "11:00")]


def test_bulk_edit_skips_writes_that_would_duplicate(memory_db):
    seed_week(memory_db, {MONDAY: [dispensary(1, "09:00", "11:00"), dispensary(2, "09:00", "11:00")]})
    editor = open_editor()
    intents = editor.plan(cell("Dispensary", TIME_SLOTS[0]), 2, Scope.DAY)
    assert intents == []


def test_partial_failure_refreshes_and_can_be_retried(memory_db, caplog):
    seed_week(memory_db, {MONDAY: [ward(1)], TUESDAY: [ward(1)]})
    editor = open_editor(FlakyBackend(fail_on=2))
    with caplog.at_level("ERROR"), pytest.raises(PartialWriteError) as excinfo:
        asyncio.run(editor.assign(cell("Ward 1", TIME_SLOTS[0], 1), 3, Scope.WEEK))
    assert "requires reconciliation" in caplog.text
    assert holders(editor, MONDAY, "Ward 1") == [(3, "00:00", "23:59")]
    assert holders(editor, TUESDAY, "Ward 1") == [(1, "00:00", "23:59")]

    retried = asyncio.run(editor.retry(excinfo.value.result))
    assert retried.ok
    assert holders(editor, TUESDAY, "Ward 1") == [(3, "00:00", "23:59")]


def test_generate_stores_drafts_and_configuration(memory_db):
    seed_week(memory_db, {})
    editor = open_editor()
    editor.session.toggle_weekday("Friday", False)
    summary = asyncio.run(editor.generate())
    assert len(summary["rota_ids"]) == 4
    assert sorted(editor.rota_ids_by_date()) == [MONDAY + datetime.timedelta(days=n) for n in range(4)]
    config = db.get_rota_configuration(memory_db["session"], MONDAY)
    assert config["is_generated"]
    assert config["settings"]["selectedWeekdays"] == ["Monday", "Tuesday", "Wednesday", "Thursday"]
    days = {day["day"]: day["active"] for day in editor.days()}
    assert days["Friday"] is False
    assert days["Monday"] is True


def test_second_generation_request_is_dropped(memory_db, caplog):
    seed_week(memory_db, {})
    editor = open_editor()
    assert generation_guard.acquire()
    try:
        with caplog.at_level("WARNING"):
            assert asyncio.run(editor.generate()) is None
    finally:
        generation_guard.release()
    assert "already in progress" in caplog.text
    assert db.list_rotas(memory_db["session"]) == []


def test_guard_is_released_after_a_failed_generation(memory_db):
    seed_week(memory_db, {})
    editor = open_editor()
    editor.session.week_start = MONDAY + datetime.timedelta(days=1)
    with pytest.raises(ValidationError):
        asyncio.run(editor.generate())
    assert generation_guard.acquire()
    generation_guard.release()




def test_overlapping_generation_requests_drop_the_second(memory_db):
    seed_week(memory_db, {})
    first, second = open_editor(), open_editor()

    async def both():
        return await asyncio.gather(first.generate(), second.generate())

    summary, dropped = asyncio.run(both())
    assert dropped is None
    with memory_db["Session"]() as fresh:
        assert sorted(rota.id for rota in db.list_rotas(fresh)) == sorted(summary["rota_ids"])
    assert generation_guard.acquire()
    generation_guard.release()


def test_published_week_edits_the_pinned_copy_and_resets(memory_db):
    ids = seed_week(memory_db, {MONDAY: [ward(1)]})
    result = db.publish_rota(memory_db["session"], ids[MONDAY], "Dana", MONDAY)
    published = [db.get_rota(memory_db["session"], rota_id) for rota_id in result["published_rota_ids"]]
    editor = open_editor(session=EditSession.for_published_week(published))
    assert editor.index.from_override

    asyncio.run(editor.assign(cell("Ward 1", TIME_SLOTS[0], 1), 2))
    assert holders(editor, MONDAY, "Ward 1") == [(2, "00:00", "23:59")]
    assert db.get_rota(memory_db["session"], ids[MONDAY]).assignments[0].pharmacist_id == 1

    with pytest.raises(RotaError):
        asyncio.run(editor.generate())

    editor.session.set_free_text("dispensary-2024-06-03-09:00-11:00", "Locum")
    asyncio.run(editor.reset())
    assert holders(editor, MONDAY, "Ward 1") == [(1, "00:00", "23:59")]
    assert editor.session.free_cell_text == {}


def test_conflicts_are_reported_with_names(memory_db):
    seed_week(memory_db, {MONDAY: [ward(1), dispensary(1, "09:00", "11:00")]})
    editor = open_editor()
    [warning] = editor.conflicts()
    assert warning["pharmacist"] == "Ana"
    assert warning["slot"] == "09:00-11:00"




def test_cell_text_is_keyed_by_cell_type(memory_db):
    seed_week(memory_db, {MONDAY: [ward(1), clinic(3)]})
    editor = open_editor()
    assert editor.set_cell_text(cell("Dispensary", TIME_SLOTS[0]), "Agency") == "dispensary-2024-06-03-09:00-11:00"
    clinic_key = editor.set_cell_text(cell("Warfarin Clinic", TIME_SLOTS[0]), "Cancelled")
    assert clinic_key == "clinic-Warfarin Clinic-2024-06-03-09:00-11:00"
    with pytest.raises(AssignmentValidationError):
        editor.set_cell_text(cell("Ward 1", TIME_SLOTS[0]), "Locum")
    editor.set_cell_text(cell("Dispensary", TIME_SLOTS[0]), "")
    assert editor.session.free_cell_text == {clinic_key: "Cancelled"}


def test_days_view_labels_substitute_bank_holidays(memory_db):
    seed_week(memory_db, {})
    editor = open_editor(session=EditSession.for_week(datetime.date(2022, 12, 26), []))
    days = {day["date"]: day["bank_holiday"] for day in editor.days()}
    assert days["2022-12-26"] == "Boxing Day"
    assert days["2022-12-27"] == "Christmas Day (substitute)"
    assert days["2022-12-28"] is None


def test_editor_reads_drafts_only(memory_db):
    ids = seed_week(memory_db, {MONDAY: [ward(1)]})
    db.publish_rota(memory_db["session"], ids[MONDAY], "Dana", MONDAY)
    editor = open_editor()
    assert editor.rota_ids_by_date() == {MONDAY: ids[MONDAY]}
    assert all(rota.status is RotaStatus.DRAFT for rota in editor.index.rotas)
