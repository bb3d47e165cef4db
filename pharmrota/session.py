from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from .assignment_index import AssignmentIndex
from .availability import RuleOverrides
from .deselection import DeselectionResolver
from .holidays import bank_holidays_in_range
from .models import (
    DEFAULT_WEEKDAYS,
    WEEKDAY_NAMES,
    Clinic,
    Pharmacist,
    Rota,
    RotaStatus,
    normalize_week_start,
    week_dates,
    weekday_name,
)

logger = logging.getLogger(__name__)


@dataclass
class EditSession:
    """Everything one editing session knows beyond the stored rotas.

    ``pinned`` is the working copy used while editing an already published
    week; ``initial`` is the snapshot a reset returns to.
    """

    week_start: datetime.date
    selected_pharmacist_ids: List[int] = field(default_factory=list)
    selected_clinic_ids: List[int] = field(default_factory=list)
    working_days: Dict[int, List[str]] = field(default_factory=dict)
    single_pharmacist_dispensary_days: List[str] = field(default_factory=list)
    selected_weekdays: List[str] = field(default_factory=lambda: list(DEFAULT_WEEKDAYS))
    overrides: RuleOverrides = field(default_factory=RuleOverrides)
    free_cell_text: Dict[str, str] = field(default_factory=dict)
    pinned: Optional[List[Rota]] = None
    initial: Optional[List[Rota]] = None

    def __post_init__(self) -> None:
        self.week_start = normalize_week_start(self.week_start)

    @classmethod
    def for_week(
        cls,
        week_start: datetime.date,
        pharmacists: Iterable[Pharmacist] = (),
        clinics: Iterable[Clinic] = (),
    ) -> "EditSession":
        """Fresh session for an unpublished week with bank holidays already switched off."""
        pharmacists = list(pharmacists)
        session = cls(
            week_start=week_start,
            selected_pharmacist_ids=[p.id for p in pharmacists],
            selected_clinic_ids=[c.id for c in clinics if c.include_by_default and c.is_active],
            working_days={p.id: list(p.working_days) for p in pharmacists},
        )
        dates = session.dates
        for holiday in bank_holidays_in_range(dates[0], dates[-1]):
            day = weekday_name(holiday.date)
            if day in session.selected_weekdays:
                logger.info("Deselecting %s (%s)", day, holiday.title)
                session.selected_weekdays.remove(day)
        return session

    @classmethod
    def for_published_week(cls, rotas: Iterable[Rota], **kwargs: Any) -> "EditSession":
        rotas = sorted(rotas, key=lambda rota: rota.date)
        if not rotas:
            raise ValueError("Cannot edit a published week without rotas.")
        session = cls(week_start=rotas[0].date, pinned=list(rotas), initial=list(rotas), **kwargs)
        pinned_days = session.pinned_weekdays
        if pinned_days is not None:
            session.selected_weekdays = [day for day in WEEKDAY_NAMES if day in pinned_days]
        for rota in rotas:
            session.free_cell_text.update(rota.free_cell_text)
        return session

    @property
    def dates(self) -> List[datetime.date]:
        return week_dates(self.week_start)

    @property
    def is_published_edit(self) -> bool:
        return self.pinned is not None

    @property
    def pinned_weekdays(self) -> Optional[List[str]]:
        for rota in self.pinned or []:
            if rota.included_weekdays is not None:
                return list(rota.included_weekdays)
        return None

    def week_rotas(self, rotas: Iterable[Rota]) -> List[Rota]:
        """Drafts of this week from a remote listing."""
        dates = set(self.dates)
        return [rota for rota in rotas if rota.date in dates and rota.status is RotaStatus.DRAFT]

    def build_index(self, remote: Iterable[Rota]) -> AssignmentIndex:
        return AssignmentIndex(self.week_rotas(remote), override=self.pinned)

    def deselection(self, remote: Iterable[Rota]) -> DeselectionResolver:
        remote = list(remote)
        return DeselectionResolver(
            self.pinned if self.pinned is not None else self.week_rotas(remote),
            pinned_weekdays=self.pinned_weekdays,
            selected_weekdays=self.selected_weekdays,
            live_edit=True,
            all_rotas=remote,
        )

    def toggle_weekday(self, day: str, selected: bool) -> None:
        day = day.strip().capitalize()
        if day not in WEEKDAY_NAMES:
            raise ValueError(f"Unknown weekday {day!r}.")
        wanted = set(self.selected_weekdays)
        if selected:
            wanted.add(day)
        else:
            wanted.discard(day)
        self.selected_weekdays = [name for name in WEEKDAY_NAMES if name in wanted]

    def set_free_text(self, key: str, text: str) -> None:
        if text:
            self.free_cell_text[key] = text
        else:
            self.free_cell_text.pop(key, None)

    def reset_overrides(self) -> None:
        self.overrides.clear()
        self.free_cell_text.clear()

    def to_settings(self) -> Dict[str, Any]:
        """Shape stored on the weekly rota configuration record."""
        settings: Dict[str, Any] = {
            "selectedPharmacistIds": list(self.selected_pharmacist_ids),
            "selectedClinicIds": list(self.selected_clinic_ids),
            "selectedWeekdays": list(self.selected_weekdays),
            "pharmacistWorkingDays": {str(pid): days for pid, days in self.working_days.items()},
            "singlePharmacistDispensaryDays": list(self.single_pharmacist_dispensary_days),
        }
        settings.update(self.overrides.to_payload())
        return settings

    @classmethod
    def from_settings(cls, week_start: datetime.date, settings: Optional[Dict[str, Any]]) -> "EditSession":
        settings = settings or {}
        return cls(
            week_start=week_start,
            selected_pharmacist_ids=[int(pid) for pid in settings.get("selectedPharmacistIds") or []],
            selected_clinic_ids=[int(cid) for cid in settings.get("selectedClinicIds") or []],
            working_days={int(pid): list(days) for pid, days in (settings.get("pharmacistWorkingDays") or {}).items()},
            single_pharmacist_dispensary_days=list(settings.get("singlePharmacistDispensaryDays") or []),
            selected_weekdays=list(settings.get("selectedWeekdays") or DEFAULT_WEEKDAYS),
            overrides=RuleOverrides.from_payload(settings),
        )
