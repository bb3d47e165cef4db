from __future__ import annotations

import datetime
import logging
from typing import Any, Dict, List, Optional, Set, Tuple

from .assignment_index import AssignmentIndex, IndexedAssignment
from .availability import effective_rules_by_pharmacist
from .backend import RotaBackend
from .conflicts import conflict_report
from .exceptions import PartialWriteError, RotaError
from .generator import GenerationRequest
from .holidays import bank_holiday_for
from .models import (
    TIME_SLOTS,
    Assignment,
    AssignmentType,
    CellRef,
    Clinic,
    Pharmacist,
    Rota,
    TimeSlot,
    location_type,
    weekday_name,
)
from .publish import PublishWorkflow, free_text_key
from .scope import Scope, ScopeGroup, ScopeResolver
from .session import EditSession
from .writes import APPEND, BatchResult, WriteIntent, WriteSequencer

logger = logging.getLogger(__name__)


class GenerationGuard:
    """Process-wide flag that drops overlapping generation requests instead of queueing them."""

    def __init__(self) -> None:
        self.active = False

    def acquire(self) -> bool:
        if self.active:
            return False
        self.active = True
        return True

    def release(self) -> None:
        self.active = False


generation_guard = GenerationGuard()


class RotaEditor:
    """Edit path for one week: scoped edits, generation, reset and read views.

    The assignment index is rebuilt from the backend after every batch of
    writes, never patched in place.
    """

    def __init__(self, backend: RotaBackend, session: EditSession, *, actor: str = "system") -> None:
        self.backend = backend
        self.session = session
        self.actor = actor
        self.sequencer = WriteSequencer(backend)
        self.remote: List[Rota] = []
        self.pharmacists: List[Pharmacist] = []
        self.clinics: List[Clinic] = []
        self.index = AssignmentIndex([], override=session.pinned)
        self.needs_resync = False

    async def load_reference_data(self) -> None:
        self.pharmacists = await self.backend.list_pharmacists()
        self.clinics = await self.backend.list_clinics()

    async def refresh(self) -> AssignmentIndex:
        self.remote = await self.backend.list_rotas()
        if self.session.pinned is not None:
            by_id = {rota.id: rota for rota in self.remote}
            self.session.pinned = [by_id.get(rota.id, rota) for rota in self.session.pinned]
        self.index = self.session.build_index(self.remote)
        self.needs_resync = False
        logger.debug("Rebuilt assignment index with %d assignments", len(self.index))
        return self.index

    # -- edits -------------------------------------------------------------

    def _cell_type(self, cell: CellRef) -> AssignmentType:
        fixed = location_type(cell.location)
        if fixed is not None:
            return fixed
        if any(clinic.name == cell.location for clinic in self.clinics):
            return AssignmentType.CLINIC
        for entry in self.index.on(cell.date, cell.location):
            return entry.assignment.type
        return AssignmentType.WARD

    def _new_assignment(self, cell: CellRef, pharmacist_id: int, slot: TimeSlot) -> Assignment:
        kind = self._cell_type(cell)
        return Assignment(
            location=cell.location,
            type=kind,
            pharmacist_id=pharmacist_id,
            start_time=slot.start,
            end_time=slot.end,
            is_lunch_cover=cell.is_lunch_cover and kind is AssignmentType.DISPENSARY,
        )

    def _creation_intents(self, cell: CellRef, pharmacist_id: int, scope: Scope) -> List[WriteIntent]:
        if scope is Scope.WEEK:
            dates = self.session.dates
        else:
            dates = [cell.date]
        if scope is Scope.SLOT or self._cell_type(cell) is AssignmentType.CLINIC:
            slots = [cell.slot]
        else:
            slots = list(TIME_SLOTS)
        intents: List[WriteIntent] = []
        for date in dates:
            rota = self.index.rota_for(date)
            if rota is None:
                logger.warning("No rota for %s; nothing to create for %s", date, cell.location)
                continue
            for slot in slots:
                intents.append(
                    WriteIntent(rota.id, APPEND, pharmacist_id, self._new_assignment(cell, pharmacist_id, slot))
                )
        return intents

    def _slot_intents(
        self, cell: CellRef, pharmacist_id: int, group: ScopeGroup
    ) -> List[WriteIntent]:
        """Reassign only the occupant shown in the cell; co-occupants keep their entries."""
        slot = cell.slot
        entries = list(group.entries)
        target = next((entry for entry in entries if entry.pharmacist_id == cell.pharmacist_id), entries[0])
        occupants = self.index.cell_assignments(cell.location, cell.date, slot)
        if any(
            entry.pharmacist_id == pharmacist_id and entry.assignment.matches_range(slot.start, slot.end)
            for entry in occupants
        ):
            logger.info("Pharmacist %s already covers %s on %s", pharmacist_id, cell.location, cell.date)
            return []
        item = target.assignment
        held = {entry.assignment.key for entry in self.index.on(cell.date, cell.location)}
        if (pharmacist_id, item.location, item.start_time, item.end_time) in held:
            logger.info("Pharmacist %s already holds %s %s", pharmacist_id, item.location, item.start_time)
            return []
        return [WriteIntent(group.rota_id, target.position, pharmacist_id)]

    def _bulk_intents(self, pharmacist_id: int, groups: List[ScopeGroup]) -> List[WriteIntent]:
        intents: List[WriteIntent] = []
        for group in groups:
            rota = self.index.rota_for(group.date)
            keys: Set[Tuple] = {assignment.key for assignment in rota.assignments} if rota else set()
            for entry in group.entries:
                if entry.pharmacist_id == pharmacist_id:
                    continue
                item = entry.assignment
                new_key = (pharmacist_id, item.location, item.start_time, item.end_time)
                if new_key in keys:
                    logger.debug("Skipping %s: pharmacist %s already holds it", item.key, pharmacist_id)
                    continue
                keys.discard(item.key)
                keys.add(new_key)
                intents.append(WriteIntent(group.rota_id, entry.position, pharmacist_id))
        return intents

    def plan(self, cell: CellRef, pharmacist_id: int, scope: Scope) -> List[WriteIntent]:
        """Ordered writes needed to put ``pharmacist_id`` into ``cell`` across ``scope``."""
        scope = Scope(scope)
        resolver = ScopeResolver(self.index, self.session.dates)
        groups = resolver.resolve(cell.location, cell.date, scope, cell.slot, cell.pharmacist_id)
        if not groups:
            if scope is Scope.SLOT or cell.pharmacist_id is None:
                return self._creation_intents(cell, pharmacist_id, scope)
            logger.warning(
                "No assignments for pharmacist %s at %s to update across the %s",
                cell.pharmacist_id,
                cell.location,
                scope.value,
            )
            return []
        if scope is Scope.SLOT:
            return self._slot_intents(cell, pharmacist_id, groups[0])
        return self._bulk_intents(pharmacist_id, groups)

    async def assign(self, cell: CellRef, pharmacist_id: int, scope: Scope = Scope.SLOT) -> BatchResult:
        intents = self.plan(cell, pharmacist_id, scope)
        if not intents:
            logger.info("Nothing to update for %s on %s", cell.location, cell.date)
            return BatchResult()
        result = await self.sequencer.run(intents)
        await self.refresh()
        if not result.ok:
            raise PartialWriteError(result, result.error)
        logger.info(
            "Assigned pharmacist %s to %s on %s (%s scope, %d writes)",
            pharmacist_id,
            cell.location,
            cell.date,
            Scope(scope).value,
            len(result.completed),
        )
        return result

    async def retry(self, result: BatchResult) -> BatchResult:
        """Re-run the writes a failed batch never applied. Appends are idempotent."""
        retried = await self.sequencer.retry(result)
        await self.refresh()
        if not retried.ok:
            raise PartialWriteError(retried, retried.error)
        return retried

    # -- generation --------------------------------------------------------

    def generation_request(self, regenerate: bool = False) -> GenerationRequest:
        selected_ids = set(self.session.selected_pharmacist_ids)
        selected = [p for p in self.pharmacists if not selected_ids or p.id in selected_ids]
        return GenerationRequest(
            start_date=self.session.week_start,
            pharmacist_ids=[p.id for p in selected],
            clinic_ids=list(self.session.selected_clinic_ids),
            working_days_by_pharmacist={
                p.id: list(self.session.working_days.get(p.id, p.working_days)) for p in selected
            },
            single_pharmacist_dispensary_days=list(self.session.single_pharmacist_dispensary_days),
            regenerate=regenerate,
            unavailable_rules_by_pharmacist=effective_rules_by_pharmacist(selected, self.session.overrides),
            selected_weekdays=list(self.session.selected_weekdays),
            actor=self.actor,
        )

    async def generate(self, regenerate: bool = False) -> Optional[Dict[str, Any]]:
        if self.session.is_published_edit:
            raise RotaError("A published week cannot be regenerated; edit it instead.")
        if not generation_guard.acquire():
            logger.warning("Rota generation already in progress; ignoring request for %s", self.session.week_start)
            return None
        try:
            if not self.pharmacists:
                await self.load_reference_data()
            summary = await self.backend.generate_weekly_rota(self.generation_request(regenerate))
            await self.backend.save_rota_configuration(
                self.session.week_start,
                self.session.to_settings(),
                user_name=self.actor,
                is_generated=True,
            )
            await self.refresh()
            return summary
        finally:
            generation_guard.release()

    async def reset(self) -> Optional[Dict[str, Any]]:
        """Throw away session changes.

        A published-week session goes back to the snapshot it was opened
        with; a draft week clears its overrides and is generated again.
        """
        if self.session.is_published_edit:
            self.session.pinned = list(self.session.initial or [])
            self.session.reset_overrides()
            self.index = self.session.build_index(self.remote)
            return None
        self.session.reset_overrides()
        return await self.generate(regenerate=True)

    # -- publishing --------------------------------------------------------

    def set_cell_text(self, cell: CellRef, text: str) -> str:
        """Store (or clear, when empty) the free text of a non-ward cell; returns its key."""
        key = free_text_key(cell.location, cell.date, cell.start_time, cell.end_time, self._cell_type(cell))
        self.session.set_free_text(key, text)
        return key

    async def publish(self, actor: Optional[str]) -> Dict[str, Any]:
        """Publish the draft week with the session's free text.

        Edits to a published week already live on the published rotas, so
        only the free text is stored for them.
        """
        workflow = PublishWorkflow(self.backend)
        if self.session.is_published_edit:
            await workflow.save_free_text(self.rota_ids_by_date(), self.session.free_cell_text)
            await self.refresh()
            pinned = self.session.pinned or []
            return {
                "published_rota_ids": [rota.id for rota in pinned],
                "published_set_id": pinned[0].published_set_id if pinned else None,
            }
        result = await workflow.publish(
            self.rota_ids_by_date(),
            actor,
            self.session.week_start,
            self.session.free_cell_text,
        )
        await self.refresh()
        return result

    # -- read views --------------------------------------------------------

    def conflicts(self) -> List[Dict[str, Any]]:
        return conflict_report(self.index, self.pharmacists)

    def days(self) -> List[Dict[str, Any]]:
        resolver = self.session.deselection(self.remote)
        view = []
        for date in self.session.dates:
            holiday = bank_holiday_for(date)
            rota = self.index.rota_for(date)
            view.append(
                {
                    "date": date.isoformat(),
                    "day": weekday_name(date),
                    "active": resolver.is_day_active(date),
                    "rota_id": rota.id if rota else None,
                    "bank_holiday": holiday.title if holiday else None,
                }
            )
        return view

    def occupants(self, cell: CellRef) -> List[IndexedAssignment]:
        return self.index.cell_assignments(cell.location, cell.date, cell.slot)

    def rota_ids_by_date(self) -> Dict[datetime.date, int]:
        return self.index.rota_ids_by_date()
