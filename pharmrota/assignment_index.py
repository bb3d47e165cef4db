from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Optional

from .models import DISPENSARY, Assignment, AssignmentType, Rota, TimeSlot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IndexedAssignment:
    """An assignment together with the rota and list position that store it."""

    rota_id: int
    date: datetime.date
    position: int
    assignment: Assignment

    @property
    def pharmacist_id(self) -> int:
        return self.assignment.pharmacist_id


class AssignmentIndex:
    """Read view over the assignments of the visible week.

    ``rotas`` are the remote snapshots. When ``override`` is given (an edit
    session working on a published week) it replaces the remote snapshots
    entirely for as long as it is present.
    """

    def __init__(self, rotas: Iterable[Rota], override: Optional[Iterable[Rota]] = None) -> None:
        source = list(override) if override is not None else list(rotas)
        self.from_override = override is not None
        self._rotas: Dict[datetime.date, Rota] = {}
        for rota in source:
            if rota.date in self._rotas:
                logger.debug("Ignoring second rota %s for %s", rota.id, rota.date)
                continue
            self._rotas[rota.date] = rota
        self._by_day: Dict[datetime.date, List[IndexedAssignment]] = {}
        for rota in self._rotas.values():
            self._by_day[rota.date] = [
                IndexedAssignment(rota.id, rota.date, position, assignment)
                for position, assignment in enumerate(rota.assignments)
            ]

    def __iter__(self) -> Iterator[IndexedAssignment]:
        for date in sorted(self._by_day):
            yield from self._by_day[date]

    def __len__(self) -> int:
        return sum(len(entries) for entries in self._by_day.values())

    @property
    def rotas(self) -> List[Rota]:
        return [self._rotas[date] for date in sorted(self._rotas)]

    def rota_for(self, date: datetime.date) -> Optional[Rota]:
        return self._rotas.get(date)

    def rota_ids_by_date(self) -> Dict[datetime.date, int]:
        return {date: rota.id for date, rota in self._rotas.items()}

    def on(self, date: datetime.date, location: Optional[str] = None) -> List[IndexedAssignment]:
        entries = self._by_day.get(date, [])
        if location is None:
            return list(entries)
        return [entry for entry in entries if entry.assignment.location == location]

    def ward_at(self, date: datetime.date, location: str, slot: TimeSlot) -> Optional[IndexedAssignment]:
        for entry in self.on(date, location):
            if entry.assignment.type is AssignmentType.WARD and entry.assignment.covers(slot):
                return entry
        return None

    def dispensary_at(self, date: datetime.date, slot: TimeSlot) -> Optional[IndexedAssignment]:
        entries = self.on(date, DISPENSARY)
        for entry in entries:
            if entry.assignment.start_time == slot.start and entry.assignment.end_time == slot.end:
                return entry
        # Lunch relief matches on any intersection, touching ends included.
        for entry in entries:
            item = entry.assignment
            if item.is_lunch_cover and item.start_time <= slot.end and item.end_time >= slot.start:
                return entry
        for entry in entries:
            if not entry.assignment.is_lunch_cover and entry.assignment.covers(slot):
                return entry
        return None

    def clinic_at(self, date: datetime.date, clinic_name: str) -> Optional[IndexedAssignment]:
        for entry in self.on(date, clinic_name):
            if entry.assignment.type is AssignmentType.CLINIC:
                return entry
        return None

    def cell_assignments(self, location: str, date: datetime.date, slot: TimeSlot) -> List[IndexedAssignment]:
        """Every occupant of a cell, primary first."""
        entries = self.on(date, location)
        exact = [
            entry
            for entry in entries
            if entry.assignment.start_time == slot.start and entry.assignment.end_time == slot.end
        ]
        if exact:
            return exact
        return [
            entry
            for entry in entries
            if entry.assignment.type is AssignmentType.WARD and entry.assignment.is_full_day
        ]

    def for_pharmacist(self, pharmacist_id: int, date: Optional[datetime.date] = None) -> List[IndexedAssignment]:
        entries = self.on(date) if date is not None else list(self)
        return [entry for entry in entries if entry.pharmacist_id == pharmacist_id]
