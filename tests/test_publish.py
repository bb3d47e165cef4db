from __future__ import annotations

import asyncio
from typing import Dict, List

import pytest

from builders import MONDAY, TUESDAY, open_editor, seed_week, ward
from pharmrota import database as db
from pharmrota.exceptions import AssignmentValidationError, RotaError
from pharmrota.models import DISPENSARY, MANAGEMENT_TIME, UNAVAILABLE, AssignmentType, RotaStatus
from pharmrota.publish import PublishWorkflow, cell_key_date, free_text_key, partition_free_text
from pharmrota.session import EditSession


class RecordingBackend:
    def __init__(self) -> None:
        self.saved: Dict[int, Dict[str, str]] = {}
        self.published: List[tuple] = []

    async def save_free_cell_text(self, rota_id, free_cell_text):
        self.saved[rota_id] = dict(free_cell_text)

    async def publish_rota(self, rota_id, user_name, week_start):
        self.published.append((rota_id, user_name, week_start))
        return {"published_rota_ids": [100], "published_set_id": "set-1"}


def test_key_shapes():
    assert free_text_key(DISPENSARY, MONDAY, "09:00", "11:00") == "dispensary-2024-06-03-09:00-11:00"
    assert free_text_key(UNAVAILABLE, MONDAY, "09:00", "11:00") == "unavailable-2024-06-03-09:00-11:00"
    assert free_text_key(MANAGEMENT_TIME, MONDAY, "13:00", "15:00") == "management-2024-06-03-13:00-15:00"
    clinic_key = free_text_key("Anti-coag Clinic", MONDAY, "09:00", "12:00", AssignmentType.CLINIC)
    assert clinic_key == "clinic-Anti-coag Clinic-2024-06-03-09:00-12:00"


@pytest.mark.parametrize("kind", [AssignmentType.WARD, None])
def test_ward_and_unknown_cells_have_no_key(kind):
    with pytest.raises(AssignmentValidationError):
        free_text_key("Ward 1", MONDAY, "09:00", "11:00", kind)


@pytest.mark.parametrize(
    "key",
    [
        "dispensary-2024-06-04-09:00-11:00",
        "clinic-Anti-coag Clinic-2024-06-04-09:00-12:00",
        "clinic-Ward 2024-Annex-2024-06-04-09:00-12:00",
        "unavailable-2024-06-04-09:00-11:00",
        "management-2024-06-04-15:00-17:00",
    ],
)
def test_date_is_read_from_every_key_shape(key):
    assert cell_key_date(key) == TUESDAY


def test_unparseable_keys_are_kept_aside(caplog):
    with caplog.at_level("ERROR"):
        by_date, unparsed = partition_free_text({"notes": "x", "dispensary-2024-13-40-09:00-11:00": "y"})
    assert by_date == {}
    assert set(unparsed) == {"notes", "dispensary-2024-13-40-09:00-11:00"}
    assert "Could not extract date" in caplog.text


def test_publish_attaches_text_to_its_own_date_only():
    backend = RecordingBackend()
    workflow = PublishWorkflow(backend)
    result = asyncio.run(
        workflow.publish(
            {TUESDAY: 2, MONDAY: 1},
            "Dana",
            MONDAY,
            {"dispensary-2024-06-03-09:00-11:00": "Agency cover"},
        )
    )
    assert backend.saved == {1: {"dispensary-2024-06-03-09:00-11:00": "Agency cover"}}
    assert backend.published == [(1, "Dana", MONDAY)]
    assert result["published_set_id"] == "set-1"


def test_publish_defaults_actor_and_drops_text_without_rota():
    backend = RecordingBackend()
    asyncio.run(
        PublishWorkflow(backend).publish(
            {MONDAY: 1}, None, MONDAY, {"management-2024-06-05-09:00-11:00": "Audit"}
        )
    )
    assert backend.saved == {}
    assert backend.published == [(1, "Unknown User", MONDAY)]


def test_publish_needs_rotas():
    with pytest.raises(RotaError):
        asyncio.run(PublishWorkflow(RecordingBackend()).publish({}, "Dana", MONDAY))


def test_editor_publish_freezes_the_week(memory_db):
    ids = seed_week(memory_db, {MONDAY: [ward(1)], TUESDAY: [ward(2)]})
    editor = open_editor()
    editor.session.set_free_text("dispensary-2024-06-03-09:00-11:00", "Agency cover")

    result = asyncio.run(editor.publish("Dana"))

    with memory_db["Session"]() as fresh:
        published = db.rotas_for_week(fresh, MONDAY, "published")
        drafts = db.rotas_for_week(fresh, MONDAY, "draft")
    assert [rota.id for rota in published] == result["published_rota_ids"]
    assert [rota.original_rota_id for rota in published] == [ids[MONDAY], ids[TUESDAY]]
    assert published[0].free_cell_text == {"dispensary-2024-06-03-09:00-11:00": "Agency cover"}
    assert published[1].free_cell_text == {}
    assert all(rota.status is RotaStatus.PUBLISHED for rota in published)
    assert drafts[0].free_cell_text == {"dispensary-2024-06-03-09:00-11:00": "Agency cover"}


def test_republishing_a_published_edit_only_saves_text(memory_db):
    ids = seed_week(memory_db, {MONDAY: [ward(1)]})
    first = db.publish_rota(memory_db["session"], ids[MONDAY], "Dana", MONDAY)
    published = [db.get_rota(memory_db["session"], rota_id) for rota_id in first["published_rota_ids"]]
    editor = open_editor(session=EditSession.for_published_week(published))
    editor.session.set_free_text("unavailable-2024-06-03-09:00-11:00", "Training")

    result = asyncio.run(editor.publish("Dana"))

    assert result == first
    with memory_db["Session"]() as fresh:
        [stored] = db.rotas_for_week(fresh, MONDAY, "published")
    assert stored.free_cell_text == {"unavailable-2024-06-03-09:00-11:00": "Training"}
    assert stored.published_set_id == first["published_set_id"]
