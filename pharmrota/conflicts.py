from __future__ import annotations

import datetime
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional

from .assignment_index import AssignmentIndex
from .models import TIME_SLOTS, AssignmentType, Pharmacist, TimeSlot, weekday_name

_CLASHING_TYPES = {AssignmentType.CLINIC, AssignmentType.DISPENSARY}


def has_conflict(index: AssignmentIndex, pharmacist_id: int, date: datetime.date, slot: TimeSlot) -> bool:
    """True when the pharmacist is on a ward for the whole slot and also on a clinic or dispensary during it.

    Advisory only; nothing in the write path consults this.
    """
    entries = index.for_pharmacist(pharmacist_id, date)
    on_ward = any(
        entry.assignment.type is AssignmentType.WARD and entry.assignment.covers(slot) for entry in entries
    )
    if not on_ward:
        return False
    return any(
        entry.assignment.type in _CLASHING_TYPES and entry.assignment.intersects(slot) for entry in entries
    )


def conflict_report(
    index: AssignmentIndex,
    pharmacists: Optional[Iterable[Pharmacist]] = None,
    slots: Iterable[TimeSlot] = TIME_SLOTS,
) -> List[Dict[str, Any]]:
    names = {pharmacist.id: pharmacist.label for pharmacist in pharmacists or []}
    slots = list(slots)
    holders: Dict[datetime.date, set] = defaultdict(set)
    for entry in index:
        holders[entry.date].add(entry.pharmacist_id)
    warnings: List[Dict[str, Any]] = []
    for date in sorted(holders):
        for pharmacist_id in sorted(holders[date]):
            for slot in slots:
                if not has_conflict(index, pharmacist_id, date, slot):
                    continue
                name = names.get(pharmacist_id, f"Pharmacist {pharmacist_id}")
                warnings.append(
                    {
                        "type": "double_booked",
                        "severity": "warning",
                        "pharmacist_id": pharmacist_id,
                        "pharmacist": name,
                        "date": date.isoformat(),
                        "day": weekday_name(date),
                        "slot": slot.label(),
                        "message": f"{name} is on a ward and a clinic/dispensary during {slot.label()} on {weekday_name(date)}.",
                    }
                )
    return warnings
