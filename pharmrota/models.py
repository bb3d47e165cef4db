from __future__ import annotations

import datetime
import re
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

WEEKDAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]
DEFAULT_WEEKDAYS = WEEKDAY_NAMES[:5]
WEEKEND_NAMES = {"Saturday", "Sunday"}

DISPENSARY = "Dispensary"
MANAGEMENT_TIME = "Management Time"
UNAVAILABLE = "Unavailable Pharmacists"
RESERVED_LOCATIONS = {DISPENSARY, MANAGEMENT_TIME, UNAVAILABLE}

_TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def weekday_name(value: datetime.date) -> str:
    return WEEKDAY_NAMES[value.weekday()]


def week_dates(week_start: datetime.date, days: int = 5) -> List[datetime.date]:
    """Return the working dates of the week beginning ``week_start``."""
    return [week_start + datetime.timedelta(days=offset) for offset in range(days)]


def normalize_week_start(value: datetime.date) -> datetime.date:
    """Return the Monday for the provided date."""
    if isinstance(value, datetime.datetime):
        value = value.date()
    return value - datetime.timedelta(days=value.weekday())


def _check_time(value: str) -> str:
    value = (value or "").strip()
    if not _TIME_PATTERN.match(value):
        raise ValueError(f"Expected HH:MM time, got {value!r}.")
    return value


class _RotaModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class TimeSlot(_RotaModel):
    start: str
    end: str

    @field_validator("start", "end")
    @classmethod
    def _valid_time(cls, value: str) -> str:
        return _check_time(value)

    @model_validator(mode="after")
    def _ordered(self) -> "TimeSlot":
        if self.end <= self.start:
            raise ValueError(f"Slot end {self.end} must be after start {self.start}.")
        return self

    @property
    def is_full_day(self) -> bool:
        return self.start == FULL_DAY_START and self.end == FULL_DAY_END

    def label(self) -> str:
        return f"{self.start}-{self.end}"


FULL_DAY_START = "00:00"
FULL_DAY_END = "23:59"
FULL_DAY = TimeSlot(start=FULL_DAY_START, end=FULL_DAY_END)
TIME_SLOTS: List[TimeSlot] = [
    TimeSlot(start="09:00", end="11:00"),
    TimeSlot(start="11:00", end="13:00"),
    TimeSlot(start="13:00", end="15:00"),
    TimeSlot(start="15:00", end="17:00"),
]
LUNCH_COVER_SLOT = TimeSlot(start="12:30", end="13:15")


def covers(start: str, end: str, slot: TimeSlot) -> bool:
    """True when the range ``start``-``end`` spans the whole slot."""
    return start <= slot.start and end >= slot.end


def intersects(start: str, end: str, slot: TimeSlot) -> bool:
    """Open-interval intersection; touching ranges do not intersect."""
    return not (slot.end <= start or slot.start >= end)


class AssignmentType(str, Enum):
    WARD = "ward"
    DISPENSARY = "dispensary"
    CLINIC = "clinic"
    MANAGEMENT = "management"
    UNAVAILABLE = "unavailable"


class RotaStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class Band(str, Enum):
    DISPENSARY_PHARMACIST = "Dispensary Pharmacist"
    EAU_PRACTITIONER = "EAU Practitioner"
    BAND_8A = "8a"
    BAND_7 = "7"
    BAND_6 = "6"
    OTHER = "Other"


_FIXED_LOCATIONS = {
    AssignmentType.DISPENSARY: DISPENSARY,
    AssignmentType.MANAGEMENT: MANAGEMENT_TIME,
    AssignmentType.UNAVAILABLE: UNAVAILABLE,
}


def location_type(location: str) -> Optional[AssignmentType]:
    """Infer the assignment type of a reserved location name, or None for wards/clinics."""
    for kind, name in _FIXED_LOCATIONS.items():
        if name == location:
            return kind
    return None


class Assignment(_RotaModel):
    """One pharmacist covering one location for one time range.

    Variants are keyed by ``type``: dispensary, management and unavailable
    entries always use their reserved location name, wards and clinics name
    their own location, and only dispensary entries may be lunch cover.
    """

    location: str
    type: AssignmentType
    pharmacist_id: int
    start_time: str
    end_time: str
    is_lunch_cover: bool = False
    date: Optional[datetime.date] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def _valid_time(cls, value: str) -> str:
        return _check_time(value)

    @model_validator(mode="after")
    def _check_variant(self) -> "Assignment":
        if self.end_time <= self.start_time:
            raise ValueError(f"Assignment end {self.end_time} must be after start {self.start_time}.")
        if not self.location.strip():
            raise ValueError("Assignment location is required.")
        fixed = _FIXED_LOCATIONS.get(self.type)
        if fixed is not None and self.location != fixed:
            raise ValueError(f"{self.type.value} assignments must use location {fixed!r}.")
        if fixed is None and self.location in RESERVED_LOCATIONS:
            raise ValueError(f"{self.type.value} assignment cannot use reserved location {self.location!r}.")
        if self.is_lunch_cover and self.type is not AssignmentType.DISPENSARY:
            raise ValueError("Only dispensary assignments can be lunch cover.")
        return self

    @property
    def key(self) -> Tuple[int, str, str, str]:
        return (self.pharmacist_id, self.location, self.start_time, self.end_time)

    @property
    def is_full_day(self) -> bool:
        return self.start_time == FULL_DAY_START and self.end_time == FULL_DAY_END

    def matches_range(self, start: str, end: str) -> bool:
        """Exact range match, or a full-day entry standing in for any slot of its day."""
        return (self.start_time == start and self.end_time == end) or self.is_full_day

    def covers(self, slot: TimeSlot) -> bool:
        return covers(self.start_time, self.end_time, slot)

    def intersects(self, slot: TimeSlot) -> bool:
        return intersects(self.start_time, self.end_time, slot)


class CellRef(_RotaModel):
    """A grid cell as the user sees it, with the pharmacist shown in it if any."""

    location: str
    date: datetime.date
    start_time: str
    end_time: str
    pharmacist_id: Optional[int] = None
    is_lunch_cover: bool = False

    @property
    def slot(self) -> TimeSlot:
        return TimeSlot(start=self.start_time, end=self.end_time)

    def same_cell(self, other: "CellRef") -> bool:
        return (self.location, self.date, self.start_time, self.end_time) == (
            other.location,
            other.date,
            other.start_time,
            other.end_time,
        )


class AvailabilityRule(_RotaModel):
    id: Optional[int] = None
    day_of_week: str
    start_time: str
    end_time: str

    @field_validator("day_of_week")
    @classmethod
    def _valid_day(cls, value: str) -> str:
        value = (value or "").strip().capitalize()
        if value not in WEEKDAY_NAMES:
            raise ValueError(f"Unknown weekday {value!r}.")
        return value

    @field_validator("start_time", "end_time")
    @classmethod
    def _valid_time(cls, value: str) -> str:
        return _check_time(value)

    @property
    def key(self) -> Tuple:
        if self.id is not None:
            return ("id", self.id)
        return (self.day_of_week, self.start_time, self.end_time)

    def blocks(self, day: str, slot: TimeSlot) -> bool:
        return self.day_of_week == day and intersects(self.start_time, self.end_time, slot)


class Pharmacist(_RotaModel):
    id: int
    name: str
    display_name: Optional[str] = None
    band: Band = Band.OTHER
    working_days: List[str] = Field(default_factory=lambda: list(DEFAULT_WEEKDAYS))
    is_default_pharmacist: bool = False
    warfarin_trained: bool = False
    primary_directorate: str = ""
    not_available_rules: List[AvailabilityRule] = Field(default_factory=list)

    @field_validator("band", mode="before")
    @classmethod
    def _coerce_band(cls, value):
        if isinstance(value, Band):
            return value
        try:
            return Band(str(value or "").strip())
        except ValueError:
            return Band.OTHER

    @field_validator("not_available_rules", mode="before")
    @classmethod
    def _rules_default(cls, value):
        return value or []

    @property
    def label(self) -> str:
        return self.display_name or self.name


class Clinic(_RotaModel):
    id: int
    name: str
    day_of_week: int = Field(ge=1, le=7)  # isoweekday, 1 = Monday
    start_time: str
    end_time: str
    requires_warfarin_training: bool = False
    is_active: bool = True
    include_by_default: bool = False

    @field_validator("start_time", "end_time")
    @classmethod
    def _valid_time(cls, value: str) -> str:
        return _check_time(value)

    @property
    def slot(self) -> TimeSlot:
        return TimeSlot(start=self.start_time, end=self.end_time)


class Ward(_RotaModel):
    name: str
    is_active: bool = True
    min_pharmacists: int = 1
    ideal_pharmacists: int = 1


class Directorate(_RotaModel):
    id: int
    name: str
    wards: List[Ward] = Field(default_factory=list)


class Rota(_RotaModel):
    id: int
    date: datetime.date
    status: RotaStatus = RotaStatus.DRAFT
    assignments: List[Assignment] = Field(default_factory=list)
    included_weekdays: Optional[List[str]] = None
    free_cell_text: Dict[str, str] = Field(default_factory=dict)
    original_rota_id: Optional[int] = None
    generated_by: str = "system"
    published_by: Optional[str] = None
    published_at: Optional[str] = None
    published_set_id: Optional[str] = None
    last_edited: Optional[str] = None

    @model_validator(mode="after")
    def _unique_assignments(self) -> "Rota":
        seen = set()
        for assignment in self.assignments:
            if assignment.key in seen:
                raise ValueError(f"Duplicate assignment {assignment.key} in rota {self.id}.")
            seen.add(assignment.key)
        return self

    @property
    def weekday(self) -> str:
        return weekday_name(self.date)

    def dated_assignments(self) -> List[Assignment]:
        return [assignment.model_copy(update={"date": self.date}) for assignment in self.assignments]

    def with_assignments(self, assignments: List[Assignment]) -> "Rota":
        """Return a copy holding ``assignments``; the original snapshot is left untouched."""
        return self.model_copy(update={"assignments": list(assignments)})
