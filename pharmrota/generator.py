from __future__ import annotations

import datetime
import logging
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from . import database
from .models import (
    DEFAULT_WEEKDAYS,
    DISPENSARY,
    LUNCH_COVER_SLOT,
    TIME_SLOTS,
    UNAVAILABLE,
    Assignment,
    AssignmentType,
    AvailabilityRule,
    Band,
    Clinic,
    Directorate,
    FULL_DAY,
    Pharmacist,
    TimeSlot,
    intersects,
    week_dates,
    weekday_name,
)

logger = logging.getLogger(__name__)


class GenerationRequest(BaseModel):
    """Inputs of one weekly generation run, with availability already resolved."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    start_date: datetime.date
    pharmacist_ids: List[int] = Field(default_factory=list)
    clinic_ids: List[int] = Field(default_factory=list)
    working_days_by_pharmacist: Dict[int, List[str]] = Field(default_factory=dict)
    single_pharmacist_dispensary_days: List[str] = Field(default_factory=list)
    regenerate: bool = False
    unavailable_rules_by_pharmacist: Dict[int, List[AvailabilityRule]] = Field(default_factory=dict)
    selected_weekdays: List[str] = Field(default_factory=lambda: list(DEFAULT_WEEKDAYS))
    actor: str = "system"

    @field_validator("start_date")
    @classmethod
    def _monday(cls, value: datetime.date) -> datetime.date:
        if value.weekday() != 0:
            raise ValueError("Start date must be a Monday.")
        return value


class RotaGenerator:
    """Deterministic reference planner for one week of draft rotas.

    It fills clinics first, then the dispensary slots and lunch cover, then
    spreads the remaining working pharmacists over the active wards for the
    whole day. It makes no attempt at optimal staffing.
    """

    def __init__(
        self,
        pharmacists: Iterable[Pharmacist],
        clinics: Iterable[Clinic],
        directorates: Iterable[Directorate],
    ) -> None:
        self.pharmacists = sorted(pharmacists, key=lambda item: item.id)
        self.clinics = list(clinics)
        self.wards = [ward.name for directorate in directorates for ward in directorate.wards if ward.is_active]
        self.warnings: List[str] = []

    def plan_week(self, request: GenerationRequest) -> Dict[datetime.date, List[Assignment]]:
        self.warnings = []
        selected = [p for p in self.pharmacists if not request.pharmacist_ids or p.id in request.pharmacist_ids]
        clinics = [c for c in self.clinics if c.is_active and (not request.clinic_ids or c.id in request.clinic_ids)]
        clinic_holders: Set[int] = set()
        plans: Dict[datetime.date, List[Assignment]] = {}
        for offset, date in enumerate(week_dates(request.start_date)):
            day = weekday_name(date)
            if day not in request.selected_weekdays:
                logger.debug("Skipping deselected day %s", date)
                continue
            working = [
                p for p in selected if day in request.working_days_by_pharmacist.get(p.id, p.working_days)
            ]
            plans[date] = self._plan_day(
                date,
                working,
                [c for c in clinics if c.day_of_week == date.isoweekday()],
                request,
                clinic_holders,
                offset,
            )
        return plans

    def _rules(self, request: GenerationRequest, pharmacist: Pharmacist) -> List[AvailabilityRule]:
        if pharmacist.id in request.unavailable_rules_by_pharmacist:
            return request.unavailable_rules_by_pharmacist[pharmacist.id]
        return list(pharmacist.not_available_rules)

    def _plan_day(
        self,
        date: datetime.date,
        working: List[Pharmacist],
        clinics: List[Clinic],
        request: GenerationRequest,
        clinic_holders: Set[int],
        offset: int,
    ) -> List[Assignment]:
        day = weekday_name(date)
        blocked: Dict[int, List[AvailabilityRule]] = {p.id: self._rules(request, p) for p in working}
        busy: Dict[int, List[Tuple[str, str]]] = {p.id: [] for p in working}
        assignments: List[Assignment] = []

        def free(pharmacist: Pharmacist, slot: TimeSlot) -> bool:
            if any(rule.blocks(day, slot) for rule in blocked[pharmacist.id]):
                return False
            return not any(intersects(start, end, slot) for start, end in busy[pharmacist.id])

        def take(pharmacist: Pharmacist, **fields: Any) -> None:
            assignment = Assignment(pharmacist_id=pharmacist.id, **fields)
            assignments.append(assignment)
            busy[pharmacist.id].append((assignment.start_time, assignment.end_time))

        for pharmacist in working:
            for slot in TIME_SLOTS:
                if any(rule.blocks(day, slot) for rule in blocked[pharmacist.id]):
                    assignments.append(
                        Assignment(
                            location=UNAVAILABLE,
                            type=AssignmentType.UNAVAILABLE,
                            pharmacist_id=pharmacist.id,
                            start_time=slot.start,
                            end_time=slot.end,
                        )
                    )

        for clinic in clinics:
            candidates = [
                p
                for p in working
                if p.id not in clinic_holders
                and (p.warfarin_trained or not clinic.requires_warfarin_training)
                and free(p, clinic.slot)
            ]
            if not candidates:
                self.warnings.append(f"No pharmacist available for {clinic.name} on {date.isoformat()}.")
                continue
            holder = candidates[0]
            clinic_holders.add(holder.id)
            take(
                holder,
                location=clinic.name,
                type=AssignmentType.CLINIC,
                start_time=clinic.start_time,
                end_time=clinic.end_time,
            )

        dispensary_pool = sorted(
            working, key=lambda p: (p.band is not Band.DISPENSARY_PHARMACIST, p.id)
        )
        single = day in request.single_pharmacist_dispensary_days
        dispensary_holders: Set[int] = set()
        previous: Optional[Pharmacist] = None
        for index, slot in enumerate(TIME_SLOTS):
            candidates = [p for p in dispensary_pool if free(p, slot)]
            if not candidates:
                self.warnings.append(f"Dispensary {slot.label()} uncovered on {date.isoformat()}.")
                continue
            if single and previous is not None and previous in candidates:
                holder = previous
            elif single:
                holder = candidates[0]
            else:
                holder = candidates[(index + offset) % len(candidates)]
            previous = holder
            dispensary_holders.add(holder.id)
            take(holder, location=DISPENSARY, type=AssignmentType.DISPENSARY, start_time=slot.start, end_time=slot.end)
        relief = [p for p in dispensary_pool if p.id not in dispensary_holders and free(p, LUNCH_COVER_SLOT)]
        if relief:
            take(
                relief[0],
                location=DISPENSARY,
                type=AssignmentType.DISPENSARY,
                start_time=LUNCH_COVER_SLOT.start,
                end_time=LUNCH_COVER_SLOT.end,
                is_lunch_cover=True,
            )

        ward_staff = [
            p
            for p in working
            if p.id not in dispensary_holders
            and not all(any(rule.blocks(day, slot) for rule in blocked[p.id]) for slot in TIME_SLOTS)
        ]
        if self.wards and not ward_staff:
            self.warnings.append(f"No pharmacists left for wards on {date.isoformat()}.")
        elif ward_staff:
            for index, ward in enumerate(self.wards):
                holder = ward_staff[(index + offset) % len(ward_staff)]
                assignments.append(
                    Assignment(
                        location=ward,
                        type=AssignmentType.WARD,
                        pharmacist_id=holder.id,
                        start_time=FULL_DAY.start,
                        end_time=FULL_DAY.end,
                    )
                )
        return assignments


def generate_weekly_rota(
    session,
    staff_session,
    request: GenerationRequest,
) -> Dict[str, Any]:
    """Plan the week and store one draft rota per selected weekday.

    An existing draft for a date is kept unless ``request.regenerate`` is set,
    in which case its assignments are replaced.
    """
    generator = RotaGenerator(
        database.list_pharmacists(staff_session),
        database.list_clinics(staff_session),
        database.list_directorates(staff_session),
    )
    plans = generator.plan_week(request)
    existing = {rota.date: rota for rota in database.rotas_for_week(session, request.start_date, "draft")}
    rota_ids: List[int] = []
    days: List[Dict[str, Any]] = []
    for date, assignments in plans.items():
        current = existing.get(date)
        if current is not None and not request.regenerate:
            logger.info("Keeping existing draft %s for %s", current.id, date)
            rota_ids.append(current.id)
            days.append({"date": date.isoformat(), "rota_id": current.id, "kept": True})
            continue
        if current is not None:
            row = database.replace_rota_assignments(
                session,
                current.id,
                assignments,
                included_weekdays=request.selected_weekdays,
                generated_by=request.actor,
            )
        else:
            row = database.create_rota(
                session,
                date,
                assignments,
                included_weekdays=request.selected_weekdays,
                generated_by=request.actor,
            )
        rota_ids.append(row.id)
        days.append({"date": date.isoformat(), "rota_id": row.id, "assignments": len(assignments)})
    logger.info("Generated %d draft rotas for week %s", len(rota_ids), request.start_date)
    return {
        "week_start": request.start_date.isoformat(),
        "rota_ids": rota_ids,
        "days": days,
        "warnings": list(generator.warnings),
    }
