from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING, Dict, List, Optional

from .assignment_index import AssignmentIndex, IndexedAssignment
from .exceptions import PartialWriteError
from .models import CellRef, Rota
from .writes import WriteIntent

if TYPE_CHECKING:
    from .editor import RotaEditor

logger = logging.getLogger(__name__)


class SwapState(str, Enum):
    IDLE = "idle"
    ARMED = "armed"
    TARGETED = "targeted"
    COMMITTING = "committing"


def find_assignment(index: AssignmentIndex, cell: CellRef) -> Optional[IndexedAssignment]:
    """The stored record behind a cell for the cell's pharmacist; full-day entries match any slot."""
    if cell.pharmacist_id is None:
        return None
    for entry in index.on(cell.date, cell.location):
        if entry.pharmacist_id == cell.pharmacist_id and entry.assignment.matches_range(
            cell.start_time, cell.end_time
        ):
            return entry
    return None


def swapped_rotas(rotas: List[Rota], first: IndexedAssignment, second: IndexedAssignment) -> List[Rota]:
    changes: Dict[tuple, int] = {
        (first.rota_id, first.position): second.pharmacist_id,
        (second.rota_id, second.position): first.pharmacist_id,
    }
    result = []
    for rota in rotas:
        if not any(rota_id == rota.id for rota_id, _ in changes):
            result.append(rota)
            continue
        assignments = [
            assignment.model_copy(update={"pharmacist_id": changes[(rota.id, position)]})
            if (rota.id, position) in changes
            else assignment
            for position, assignment in enumerate(rota.assignments)
        ]
        result.append(rota.with_assignments(assignments))
    return result


class SwapProtocol:
    """Drag-and-drop exchange of the pharmacists in two occupied cells.

    Idle -> Armed on drag start, Armed <-> Targeted while hovering occupied
    cells, Targeted -> Committing on drop, then back to Idle. The swap is
    shown locally first and undone if either remote write fails.
    """

    def __init__(self, editor: "RotaEditor") -> None:
        self.editor = editor
        self.state = SwapState.IDLE
        self.source: Optional[CellRef] = None
        self.target: Optional[CellRef] = None

    def arm(self, cell: CellRef) -> SwapState:
        if self.state is not SwapState.IDLE:
            logger.debug("Ignoring drag start while %s", self.state.value)
            return self.state
        if cell.pharmacist_id is None:
            return self.state
        self.source = cell
        self.state = SwapState.ARMED
        return self.state

    def hover(self, cell: CellRef) -> SwapState:
        if self.state not in (SwapState.ARMED, SwapState.TARGETED):
            return self.state
        if self.source is not None and cell.same_cell(self.source):
            self.target = None
            self.state = SwapState.ARMED
        elif cell.pharmacist_id is None:
            self.target = None
            self.state = SwapState.ARMED
        else:
            self.target = cell
            self.state = SwapState.TARGETED
        return self.state

    def leave(self) -> SwapState:
        if self.state is SwapState.TARGETED:
            self.target = None
            self.state = SwapState.ARMED
        return self.state

    def cancel(self) -> None:
        self.state = SwapState.IDLE
        self.source = None
        self.target = None

    async def drop(self) -> bool:
        """Commit the swap. Returns False when nothing was swapped."""
        if self.state is not SwapState.TARGETED or self.source is None or self.target is None:
            self.cancel()
            return False
        self.state = SwapState.COMMITTING
        source, target = self.source, self.target
        try:
            return await self._commit(source, target)
        finally:
            self.cancel()

    async def _commit(self, source_cell: CellRef, target_cell: CellRef) -> bool:
        index = self.editor.index
        source = find_assignment(index, source_cell)
        target = find_assignment(index, target_cell)
        if source is None or target is None:
            logger.warning(
                "Swap aborted: could not locate %s",
                "source assignment" if source is None else "target assignment",
            )
            return False
        if source.pharmacist_id == target.pharmacist_id:
            logger.debug("Swap between cells held by the same pharmacist is a no-op")
            return False
        before_index = index
        before_pinned = self.editor.session.pinned
        swapped = swapped_rotas(index.rotas, source, target)
        if before_pinned is not None:
            self.editor.session.pinned = swapped
        self.editor.index = AssignmentIndex(swapped)
        result = await self.editor.sequencer.run(
            [
                WriteIntent(source.rota_id, source.position, target.pharmacist_id),
                WriteIntent(target.rota_id, target.position, source.pharmacist_id),
            ]
        )
        if not result.ok:
            self.editor.index = before_index
            self.editor.session.pinned = before_pinned
            if result.completed:
                self.editor.needs_resync = True
                logger.error(
                    "Swap of %s and %s half applied; requires reconciliation",
                    source_cell.location,
                    target_cell.location,
                )
            else:
                logger.error("Swap of %s and %s failed and was reverted", source_cell.location, target_cell.location)
            raise PartialWriteError(result, result.error)
        await self.editor.refresh()
        logger.info(
            "Swapped pharmacists %s and %s between %s and %s",
            source.pharmacist_id,
            target.pharmacist_id,
            source_cell.location,
            target_cell.location,
        )
        return True
