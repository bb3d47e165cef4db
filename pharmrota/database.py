from __future__ import annotations

import datetime
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
    delete,
    select,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, sessionmaker
from sqlalchemy.types import Time

from .exceptions import (
    AssignmentIndexError,
    AssignmentValidationError,
    DuplicateAssignmentError,
    RotaError,
    RotaNotFoundError,
)
from .models import (
    DEFAULT_WEEKDAYS,
    Assignment,
    AvailabilityRule,
    Clinic as ClinicModel,
    Directorate as DirectorateModel,
    Pharmacist as PharmacistModel,
    Rota as RotaModel,
    RotaStatus,
    Ward as WardModel,
    WEEKDAY_NAMES,
    normalize_week_start,
)

logger = logging.getLogger(__name__)

DATA_DIR = Path(os.getenv("PHARMROTA_DATA_DIR") or Path(__file__).resolve().parent / "data")
DATA_DIR.mkdir(parents=True, exist_ok=True)
STAFF_DATABASE_URL = os.getenv("PHARMROTA_STAFF_DB_URL") or f"sqlite:///{(DATA_DIR / 'staff.db').as_posix()}"
ROTA_DATABASE_URL = os.getenv("PHARMROTA_ROTA_DB_URL") or f"sqlite:///{(DATA_DIR / 'rota.db').as_posix()}"
ROTA_STATUS_CHOICES = {status.value for status in RotaStatus}
DELETE_ARCHIVED_CONFIRMATION = "CONFIRM_DELETE_ARCHIVED_ROTAS"


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def _load_json(raw: Optional[str], default):
    if not raw:
        return default
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Discarding unreadable JSON column value %r", raw[:60])
        return default


def _parse_time(value: str) -> datetime.time:
    return datetime.datetime.strptime(value, "%H:%M").time()


def _format_time(value: datetime.time) -> str:
    return value.strftime("%H:%M")


class StaffBase(DeclarativeBase):
    """Standalone metadata for roster tables living in staff.db."""

    pass


class Base(DeclarativeBase):
    """Metadata for rota tables living in rota.db."""

    pass


class Pharmacist(StaffBase):
    __tablename__ = "pharmacists"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    display_name: Mapped[str] = mapped_column(String(120), default="", nullable=False)
    band: Mapped[str] = mapped_column(String(40), default="", nullable=False)
    working_days: Mapped[str] = mapped_column(String(120), default=",".join(DEFAULT_WEEKDAYS), nullable=False)
    is_default_pharmacist: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    warfarin_trained: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    primary_directorate: Mapped[str] = mapped_column(String(80), default="", nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    unavailability: Mapped[List["PharmacistUnavailability"]] = relationship(
        back_populates="pharmacist", cascade="all, delete-orphan", order_by="PharmacistUnavailability.id"
    )

    @property
    def working_day_list(self) -> List[str]:
        return [day.strip() for day in self.working_days.split(",") if day.strip()]

    @working_day_list.setter
    def working_day_list(self, days: Iterable[str]) -> None:
        wanted = {day.strip().capitalize() for day in days if day.strip()}
        self.working_days = ",".join(day for day in WEEKDAY_NAMES if day in wanted)


class PharmacistUnavailability(StaffBase):
    __tablename__ = "pharmacist_unavailability"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    pharmacist_id: Mapped[int] = mapped_column(ForeignKey("pharmacists.id", ondelete="CASCADE"))
    day_of_week: Mapped[str] = mapped_column(String(12), nullable=False)
    start_time: Mapped[datetime.time] = mapped_column(Time, nullable=False)
    end_time: Mapped[datetime.time] = mapped_column(Time, nullable=False)

    pharmacist: Mapped[Pharmacist] = relationship(back_populates="unavailability")


class Clinic(StaffBase):
    __tablename__ = "clinics"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    day_of_week: Mapped[int] = mapped_column(Integer, nullable=False)  # 1 = Monday
    start_time: Mapped[datetime.time] = mapped_column(Time, nullable=False)
    end_time: Mapped[datetime.time] = mapped_column(Time, nullable=False)
    requires_warfarin_training: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    include_by_default: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


class Directorate(StaffBase):
    __tablename__ = "directorates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False, unique=True)

    wards: Mapped[List["Ward"]] = relationship(
        back_populates="directorate", cascade="all, delete-orphan", order_by="Ward.id"
    )


class Ward(StaffBase):
    __tablename__ = "wards"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    directorate_id: Mapped[int] = mapped_column(ForeignKey("directorates.id", ondelete="CASCADE"))
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    min_pharmacists: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    ideal_pharmacists: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    directorate: Mapped[Directorate] = relationship(back_populates="wards")


class Rota(Base):
    __tablename__ = "rotas"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    date: Mapped[datetime.date] = mapped_column(Date, nullable=False, index=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="draft")
    generated_by: Mapped[str] = mapped_column(String(60), nullable=False, default="system")
    generated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    includedWeekdaysJSON: Mapped[str | None] = mapped_column(String(200), nullable=True)
    freeCellTextJSON: Mapped[str] = mapped_column(String(8000), nullable=False, default="{}")
    original_rota_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    published_by: Mapped[str | None] = mapped_column(String(120), nullable=True)
    published_at: Mapped[str | None] = mapped_column(String(40), nullable=True)
    publish_date: Mapped[str | None] = mapped_column(String(20), nullable=True)
    publish_time: Mapped[str | None] = mapped_column(String(20), nullable=True)
    published_set_id: Mapped[str | None] = mapped_column(String(60), nullable=True)
    last_edited: Mapped[str | None] = mapped_column(String(40), nullable=True)

    assignments: Mapped[List["RotaAssignment"]] = relationship(
        back_populates="rota", cascade="all, delete-orphan", order_by="RotaAssignment.position"
    )

    @property
    def included_weekdays(self) -> Optional[List[str]]:
        if self.includedWeekdaysJSON is None:
            return None
        value = _load_json(self.includedWeekdaysJSON, None)
        return value if isinstance(value, list) else None

    @included_weekdays.setter
    def included_weekdays(self, days: Optional[Iterable[str]]) -> None:
        self.includedWeekdaysJSON = None if days is None else json.dumps(list(days))

    @property
    def free_cell_text(self) -> Dict[str, str]:
        value = _load_json(self.freeCellTextJSON, {})
        return value if isinstance(value, dict) else {}

    @free_cell_text.setter
    def free_cell_text(self, mapping: Dict[str, str]) -> None:
        self.freeCellTextJSON = json.dumps(dict(mapping or {}))


class RotaAssignment(Base):
    __tablename__ = "rota_assignments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    rota_id: Mapped[int] = mapped_column(ForeignKey("rotas.id", ondelete="CASCADE"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    pharmacist_id: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    location: Mapped[str] = mapped_column(String(120), nullable=False)
    start_time: Mapped[str] = mapped_column(String(5), nullable=False)
    end_time: Mapped[str] = mapped_column(String(5), nullable=False)
    is_lunch_cover: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    rota: Mapped[Rota] = relationship(back_populates="assignments")

    __table_args__ = (
        UniqueConstraint("rota_id", "position", name="uq_rota_assignment_position"),
        UniqueConstraint(
            "rota_id", "pharmacist_id", "location", "start_time", "end_time", name="uq_rota_assignment_holder"
        ),
    )

    @property
    def key(self):
        return (self.pharmacist_id, self.location, self.start_time, self.end_time)


class RotaConfiguration(Base):
    __tablename__ = "rota_configurations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    week_start_date: Mapped[datetime.date] = mapped_column(Date, nullable=False, unique=True)
    settingsJSON: Mapped[str] = mapped_column(String(16000), nullable=False, default="{}")
    last_modified: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    last_modified_by: Mapped[str] = mapped_column(String(120), nullable=False, default="Unknown user")
    rota_generated_at: Mapped[datetime.datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_generated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)


class AuditLog(Base):
    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(120), nullable=False)
    action: Mapped[str] = mapped_column(String(60), nullable=False)
    target_type: Mapped[str] = mapped_column(String(32), nullable=False, default="Rota")
    target_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    payloadJSON: Mapped[str] = mapped_column(String(4000), nullable=False, default="{}")
    created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


staff_engine = create_engine(
    STAFF_DATABASE_URL,
    echo=False,
    future=True,
)
rota_engine = create_engine(
    ROTA_DATABASE_URL,
    echo=False,
    future=True,
)
SessionLocal = sessionmaker(bind=rota_engine, expire_on_commit=False, future=True)
StaffSessionLocal = sessionmaker(bind=staff_engine, expire_on_commit=False, future=True)


def init_database() -> None:
    StaffBase.metadata.create_all(staff_engine)
    Base.metadata.create_all(rota_engine)


# ---------------------------------------------------------------------------
# Roster reference data
# ---------------------------------------------------------------------------


def create_pharmacist(
    session,
    name: str,
    *,
    band: str = "",
    display_name: str = "",
    working_days: Optional[Iterable[str]] = None,
    is_default_pharmacist: bool = False,
    warfarin_trained: bool = False,
    primary_directorate: str = "",
) -> Pharmacist:
    name = (name or "").strip()
    if not name:
        raise ValueError("Pharmacist name is required.")
    pharmacist = Pharmacist(
        name=name,
        display_name=display_name.strip(),
        band=band,
        is_default_pharmacist=is_default_pharmacist,
        warfarin_trained=warfarin_trained,
        primary_directorate=primary_directorate,
    )
    pharmacist.working_day_list = working_days if working_days is not None else DEFAULT_WEEKDAYS
    session.add(pharmacist)
    session.commit()
    session.refresh(pharmacist)
    return pharmacist


def add_unavailability(session, pharmacist_id: int, day_of_week: str, start_time: str, end_time: str) -> PharmacistUnavailability:
    rule = AvailabilityRule(day_of_week=day_of_week, start_time=start_time, end_time=end_time)
    if session.get(Pharmacist, pharmacist_id) is None:
        raise ValueError(f"Pharmacist with id {pharmacist_id} was not found.")
    row = PharmacistUnavailability(
        pharmacist_id=pharmacist_id,
        day_of_week=rule.day_of_week,
        start_time=_parse_time(rule.start_time),
        end_time=_parse_time(rule.end_time),
    )
    session.add(row)
    session.commit()
    session.refresh(row)
    return row


def pharmacist_to_model(row: Pharmacist) -> PharmacistModel:
    return PharmacistModel(
        id=row.id,
        name=row.name,
        display_name=row.display_name or None,
        band=row.band,
        working_days=row.working_day_list,
        is_default_pharmacist=bool(row.is_default_pharmacist),
        warfarin_trained=bool(row.warfarin_trained),
        primary_directorate=row.primary_directorate or "",
        not_available_rules=[
            AvailabilityRule(
                id=rule.id,
                day_of_week=rule.day_of_week,
                start_time=_format_time(rule.start_time),
                end_time=_format_time(rule.end_time),
            )
            for rule in row.unavailability
        ],
    )


def list_pharmacists(session, ids: Optional[Iterable[int]] = None) -> List[PharmacistModel]:
    stmt = select(Pharmacist).order_by(Pharmacist.name)
    if ids is not None:
        stmt = stmt.where(Pharmacist.id.in_(list(ids)))
    return [pharmacist_to_model(row) for row in session.scalars(stmt)]


def create_clinic(
    session,
    name: str,
    day_of_week: int,
    start_time: str,
    end_time: str,
    *,
    requires_warfarin_training: bool = False,
    include_by_default: bool = False,
    is_active: bool = True,
) -> Clinic:
    if not 1 <= int(day_of_week) <= 7:
        raise ValueError("Clinic day_of_week must be between 1 (Monday) and 7 (Sunday).")
    clinic = Clinic(
        name=name.strip(),
        day_of_week=int(day_of_week),
        start_time=_parse_time(start_time),
        end_time=_parse_time(end_time),
        requires_warfarin_training=requires_warfarin_training,
        include_by_default=include_by_default,
        is_active=is_active,
    )
    session.add(clinic)
    session.commit()
    session.refresh(clinic)
    return clinic


def list_clinics(session, ids: Optional[Iterable[int]] = None) -> List[ClinicModel]:
    stmt = select(Clinic).order_by(Clinic.day_of_week, Clinic.start_time, Clinic.name)
    if ids is not None:
        stmt = stmt.where(Clinic.id.in_(list(ids)))
    return [
        ClinicModel(
            id=row.id,
            name=row.name,
            day_of_week=row.day_of_week,
            start_time=_format_time(row.start_time),
            end_time=_format_time(row.end_time),
            requires_warfarin_training=bool(row.requires_warfarin_training),
            is_active=bool(row.is_active),
            include_by_default=bool(row.include_by_default),
        )
        for row in session.scalars(stmt)
    ]


def create_directorate(session, name: str, wards: Iterable[str | Dict[str, Any]] = ()) -> Directorate:
    directorate = Directorate(name=name.strip())
    for ward in wards:
        if isinstance(ward, str):
            ward = {"name": ward}
        directorate.wards.append(
            Ward(
                name=ward["name"],
                is_active=ward.get("is_active", True),
                min_pharmacists=ward.get("min_pharmacists", 1),
                ideal_pharmacists=ward.get("ideal_pharmacists", 1),
            )
        )
    session.add(directorate)
    session.commit()
    session.refresh(directorate)
    return directorate


def list_directorates(session) -> List[DirectorateModel]:
    return [
        DirectorateModel(
            id=row.id,
            name=row.name,
            wards=[
                WardModel(
                    name=ward.name,
                    is_active=bool(ward.is_active),
                    min_pharmacists=ward.min_pharmacists,
                    ideal_pharmacists=ward.ideal_pharmacists,
                )
                for ward in row.wards
            ],
        )
        for row in session.scalars(select(Directorate).order_by(Directorate.id))
    ]


# ---------------------------------------------------------------------------
# Rotas
# ---------------------------------------------------------------------------


def _assignment_row(position: int, assignment: Assignment) -> RotaAssignment:
    return RotaAssignment(
        position=position,
        pharmacist_id=assignment.pharmacist_id,
        type=assignment.type.value,
        location=assignment.location,
        start_time=assignment.start_time,
        end_time=assignment.end_time,
        is_lunch_cover=assignment.is_lunch_cover,
    )


def rota_to_model(row: Rota) -> RotaModel:
    return RotaModel(
        id=row.id,
        date=row.date,
        status=RotaStatus(row.status),
        assignments=[
            Assignment(
                location=item.location,
                type=item.type,
                pharmacist_id=item.pharmacist_id,
                start_time=item.start_time,
                end_time=item.end_time,
                is_lunch_cover=bool(item.is_lunch_cover),
            )
            for item in row.assignments
        ],
        included_weekdays=row.included_weekdays,
        free_cell_text=row.free_cell_text,
        original_rota_id=row.original_rota_id,
        generated_by=row.generated_by,
        published_by=row.published_by,
        published_at=row.published_at,
        published_set_id=row.published_set_id,
        last_edited=row.last_edited,
    )


def _get_rota_row(session, rota_id: int) -> Rota:
    rota = session.get(Rota, rota_id)
    if rota is None:
        raise RotaNotFoundError(rota_id)
    return rota


def create_rota(
    session,
    date: datetime.date,
    assignments: Iterable[Assignment] = (),
    *,
    status: str = "draft",
    included_weekdays: Optional[Iterable[str]] = None,
    generated_by: str = "system",
) -> Rota:
    if status not in ROTA_STATUS_CHOICES:
        raise ValueError(f"Invalid rota status '{status}'.")
    assignments = list(assignments)
    # Constructing the model enforces one entry per holder/location/range.
    RotaModel(id=0, date=date, assignments=assignments)
    rota = Rota(date=date, status=status, generated_by=generated_by)
    rota.included_weekdays = list(included_weekdays) if included_weekdays is not None else None
    for position, assignment in enumerate(assignments):
        rota.assignments.append(_assignment_row(position, assignment))
    session.add(rota)
    session.commit()
    session.refresh(rota)
    return rota


def get_rota(session, rota_id: int) -> RotaModel:
    return rota_to_model(_get_rota_row(session, rota_id))


def list_rotas(session, status: Optional[str] = None) -> List[RotaModel]:
    stmt = select(Rota).order_by(Rota.date.desc(), Rota.id.desc())
    if status is not None:
        if status not in ROTA_STATUS_CHOICES:
            raise ValueError(f"Invalid rota status '{status}'.")
        stmt = stmt.where(Rota.status == status)
    return [rota_to_model(row) for row in session.scalars(stmt)]


def _week_rows(session, week_start: datetime.date, status: Optional[str] = None) -> List[Rota]:
    week_start = normalize_week_start(week_start)
    stmt = select(Rota).where(
        Rota.date >= week_start,
        Rota.date < week_start + datetime.timedelta(days=7),
    )
    if status is not None:
        stmt = stmt.where(Rota.status == status)
    return list(session.scalars(stmt.order_by(Rota.date, Rota.id)))


def rotas_for_week(session, week_start: datetime.date, status: Optional[str] = None) -> List[RotaModel]:
    return [rota_to_model(row) for row in _week_rows(session, week_start, status)]


def update_rota_assignment(
    session,
    rota_id: int,
    index: int,
    pharmacist_id: int,
    new_assignment: Optional[Assignment] = None,
) -> int:
    """Write one assignment by position and return the position written.

    ``index == -1`` appends ``new_assignment`` for ``pharmacist_id``; appending
    an entry the rota already holds returns the existing position instead.
    Any other index reassigns that entry, taking its other fields from
    ``new_assignment`` when one is supplied.
    """
    rota = _get_rota_row(session, rota_id)
    rows = list(rota.assignments)
    if index == -1:
        if new_assignment is None:
            raise AssignmentValidationError("A new assignment is required when appending.")
        candidate = new_assignment.model_copy(update={"pharmacist_id": pharmacist_id, "date": None})
        for row in rows:
            if row.key == candidate.key:
                logger.debug("Rota %s already holds %s at %s", rota_id, candidate.key, row.position)
                return row.position
        position = len(rows)
        rota.assignments.append(_assignment_row(position, candidate))
    else:
        if not 0 <= index < len(rows):
            raise AssignmentIndexError(rota_id, index, len(rows))
        row = rows[index]
        if new_assignment is not None:
            target = new_assignment.model_copy(update={"pharmacist_id": pharmacist_id})
        else:
            target = Assignment(
                location=row.location,
                type=row.type,
                pharmacist_id=pharmacist_id,
                start_time=row.start_time,
                end_time=row.end_time,
                is_lunch_cover=bool(row.is_lunch_cover),
            )
        clash = next((other for other in rows if other is not row and other.key == target.key), None)
        if clash is not None:
            raise DuplicateAssignmentError(
                f"Rota {rota_id} already assigns pharmacist {pharmacist_id} to "
                f"{target.location} {target.start_time}-{target.end_time} (position {clash.position})."
            )
        row.pharmacist_id = pharmacist_id
        row.type = target.type.value
        row.location = target.location
        row.start_time = target.start_time
        row.end_time = target.end_time
        row.is_lunch_cover = target.is_lunch_cover
        position = index
    rota.last_edited = _utcnow().isoformat()
    session.commit()
    return position


def replace_rota_assignments(
    session,
    rota_id: int,
    assignments: Iterable[Assignment],
    *,
    included_weekdays: Optional[Iterable[str]] = None,
    generated_by: Optional[str] = None,
) -> Rota:
    rota = _get_rota_row(session, rota_id)
    assignments = list(assignments)
    RotaModel(id=rota.id, date=rota.date, assignments=assignments)
    rota.assignments.clear()
    session.flush()
    for position, assignment in enumerate(assignments):
        rota.assignments.append(_assignment_row(position, assignment))
    if included_weekdays is not None:
        rota.included_weekdays = list(included_weekdays)
    if generated_by:
        rota.generated_by = generated_by
        rota.generated_at = _utcnow()
    rota.last_edited = _utcnow().isoformat()
    session.commit()
    session.refresh(rota)
    return rota


def save_free_cell_text(session, rota_id: int, mapping: Dict[str, str]) -> Rota:
    rota = _get_rota_row(session, rota_id)
    rota.free_cell_text = {str(key): str(value) for key, value in (mapping or {}).items()}
    session.commit()
    session.refresh(rota)
    return rota


def publish_rota(session, rota_id: int, user_name: Optional[str], week_start: datetime.date) -> Dict[str, Any]:
    """Archive the week's published set and publish a fresh copy of every draft."""
    reference = _get_rota_row(session, rota_id)
    week_start = normalize_week_start(week_start)
    drafts = _week_rows(session, week_start, "draft")
    if not drafts:
        raise RotaError(f"No draft rotas found for the week starting {week_start.isoformat()}.")
    now = _utcnow()
    published_set_id = f"{week_start.isoformat()}-{int(now.timestamp() * 1000)}"
    for previous in _week_rows(session, week_start, "published"):
        logger.info("Archiving previously published rota %s (%s)", previous.id, previous.date)
        previous.status = "archived"
    published: List[Rota] = []
    for draft in drafts:
        copy = Rota(
            date=draft.date,
            status="published",
            generated_by=draft.generated_by,
            generated_at=draft.generated_at,
            includedWeekdaysJSON=draft.includedWeekdaysJSON,
            freeCellTextJSON=draft.freeCellTextJSON,
            original_rota_id=draft.id,
            published_by=user_name or "Unknown User",
            published_at=now.isoformat(),
            publish_date=now.strftime("%d/%m/%Y"),
            publish_time=now.strftime("%H:%M:%S"),
            published_set_id=published_set_id,
            last_edited=draft.last_edited,
        )
        for item in draft.assignments:
            copy.assignments.append(
                RotaAssignment(
                    position=item.position,
                    pharmacist_id=item.pharmacist_id,
                    type=item.type,
                    location=item.location,
                    start_time=item.start_time,
                    end_time=item.end_time,
                    is_lunch_cover=item.is_lunch_cover,
                )
            )
        session.add(copy)
        published.append(copy)
    session.commit()
    published_ids = [rota.id for rota in published]
    logger.info(
        "Published %d rotas for week %s from reference rota %s (set %s)",
        len(published_ids),
        week_start,
        reference.id,
        published_set_id,
    )
    record_audit_log(
        session,
        user_id=user_name or "Unknown User",
        action="ROTA_PUBLISHED",
        target_type="Rota",
        target_id=reference.id,
        payload={"week_start": week_start.isoformat(), "published_set_id": published_set_id, "rota_ids": published_ids},
    )
    return {"published_rota_ids": published_ids, "published_set_id": published_set_id}


def archive_rotas(session, week_start: datetime.date, archive_all: bool = False) -> List[int]:
    if archive_all:
        rows = list(session.scalars(select(Rota).where(Rota.status == "published")))
    else:
        rows = _week_rows(session, week_start, "published")
    for row in rows:
        row.status = "archived"
    session.commit()
    logger.info("Archived %d rotas for week starting %s", len(rows), week_start)
    return [row.id for row in rows]


def delete_archived_rotas(
    session,
    confirmation: str,
    *,
    week_start: Optional[datetime.date] = None,
    before: Optional[datetime.date] = None,
) -> Dict[str, Any]:
    if confirmation != DELETE_ARCHIVED_CONFIRMATION:
        raise ValueError(f"Invalid confirmation. Type {DELETE_ARCHIVED_CONFIRMATION} to proceed.")
    stmt = select(Rota).where(Rota.status == "archived")
    if week_start is not None:
        stmt = stmt.where(Rota.date >= week_start, Rota.date <= week_start + datetime.timedelta(days=6))
    if before is not None:
        stmt = stmt.where(Rota.date < before)
    rows = list(session.scalars(stmt))
    deleted_ids = [row.id for row in rows]
    if deleted_ids:
        session.execute(delete(RotaAssignment).where(RotaAssignment.rota_id.in_(deleted_ids)))
        session.execute(delete(Rota).where(Rota.id.in_(deleted_ids)))
    session.commit()
    return {
        "deleted_count": len(deleted_ids),
        "deleted_ids": deleted_ids,
        "message": f"Successfully deleted {len(deleted_ids)} archived rotas.",
    }


# ---------------------------------------------------------------------------
# Weekly configuration and audit
# ---------------------------------------------------------------------------


def save_rota_configuration(
    session,
    week_start: datetime.date,
    settings: Dict[str, Any],
    *,
    user_name: Optional[str] = None,
    is_generated: bool = False,
) -> RotaConfiguration:
    week_start = normalize_week_start(week_start)
    config = session.scalars(
        select(RotaConfiguration).where(RotaConfiguration.week_start_date == week_start)
    ).first()
    now = _utcnow()
    if config is None:
        config = RotaConfiguration(week_start_date=week_start)
        session.add(config)
    config.settingsJSON = json.dumps(settings or {})
    config.last_modified = now
    config.last_modified_by = user_name or "Unknown user"
    if is_generated:
        config.rota_generated_at = now
    config.is_generated = bool(is_generated or config.is_generated)
    session.commit()
    session.refresh(config)
    return config


def get_rota_configuration(session, week_start: datetime.date) -> Optional[Dict[str, Any]]:
    week_start = normalize_week_start(week_start)
    config = session.scalars(
        select(RotaConfiguration).where(RotaConfiguration.week_start_date == week_start)
    ).first()
    if config is None:
        return None
    settings = _load_json(config.settingsJSON, {})
    return {
        "week_start_date": week_start.isoformat(),
        "settings": settings if isinstance(settings, dict) else {},
        "last_modified": config.last_modified.isoformat() if config.last_modified else None,
        "last_modified_by": config.last_modified_by,
        "rota_generated_at": config.rota_generated_at.isoformat() if config.rota_generated_at else None,
        "is_generated": bool(config.is_generated),
    }


def record_audit_log(
    session,
    user_id: str,
    action: str,
    target_type: str = "Rota",
    target_id: Optional[int] = None,
    payload: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    log = AuditLog(
        user_id=user_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        payloadJSON=json.dumps(payload or {}, default=str),
    )
    session.add(log)
    session.commit()
    return log
