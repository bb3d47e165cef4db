from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Tuple

from .assignment_index import AssignmentIndex, IndexedAssignment
from .models import TimeSlot

logger = logging.getLogger(__name__)


class Scope(str, Enum):
    SLOT = "slot"
    DAY = "day"
    WEEK = "week"


@dataclass(frozen=True)
class ScopeGroup:
    rota_id: int
    date: datetime.date
    positions: Tuple[int, ...]
    exact: bool = False
    entries: Tuple[IndexedAssignment, ...] = field(default=(), compare=False, repr=False)


def _group(entries: List[IndexedAssignment], exact: bool = False) -> ScopeGroup:
    first = entries[0]
    return ScopeGroup(
        rota_id=first.rota_id,
        date=first.date,
        positions=tuple(entry.position for entry in entries),
        exact=exact,
        entries=tuple(entries),
    )


class ScopeResolver:
    """Turns a cell plus an edit scope into the stored positions an edit must touch.

    Positions always refer to the rota's own assignment list, which is how
    writes address assignments.
    """

    def __init__(self, index: AssignmentIndex, week: Optional[Iterable[datetime.date]] = None) -> None:
        self.index = index
        self.week = sorted(week) if week is not None else sorted(index.rota_ids_by_date())

    def resolve(
        self,
        location: str,
        date: datetime.date,
        scope: Scope,
        slot: Optional[TimeSlot] = None,
        pharmacist_id: Optional[int] = None,
    ) -> List[ScopeGroup]:
        scope = Scope(scope)
        if scope is Scope.SLOT:
            if slot is None:
                raise ValueError("A time slot is required for slot scope edits.")
            return self._slot(location, date, slot, pharmacist_id)
        if scope is Scope.DAY:
            return self._day(location, date, pharmacist_id)
        groups: List[ScopeGroup] = []
        for day in self.week:
            if self.index.rota_for(day) is None:
                logger.debug("No rota on %s; skipping for week scope", day)
                continue
            groups.extend(self._day(location, day, pharmacist_id))
        return groups

    def _slot(
        self,
        location: str,
        date: datetime.date,
        slot: TimeSlot,
        pharmacist_id: Optional[int],
    ) -> List[ScopeGroup]:
        entries = self.index.on(date, location)
        exact = [
            entry
            for entry in entries
            if entry.assignment.start_time == slot.start and entry.assignment.end_time == slot.end
        ]
        if exact:
            return [_group(exact, exact=True)]
        covering = [entry for entry in entries if entry.assignment.covers(slot)]
        if pharmacist_id is not None:
            own = [entry for entry in covering if entry.pharmacist_id == pharmacist_id]
            if own:
                return [_group(own[:1])]
        if covering:
            return [_group(covering[:1])]
        logger.debug("Nothing stored for %s on %s %s", location, date, slot.label())
        return []

    def _day(self, location: str, date: datetime.date, pharmacist_id: Optional[int]) -> List[ScopeGroup]:
        entries = self.index.on(date, location)
        if pharmacist_id is not None:
            entries = [entry for entry in entries if entry.pharmacist_id == pharmacist_id]
        if not entries:
            return []
        return [_group(entries)]
