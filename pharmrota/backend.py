"""Collaborator contract the editing engine talks to, plus its SQL implementation."""

from __future__ import annotations

import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol

from fastapi.concurrency import run_in_threadpool

from . import database
from .generator import GenerationRequest, generate_weekly_rota
from .models import Assignment, Clinic, Directorate, Pharmacist, Rota


class RotaBackend(Protocol):
    async def list_pharmacists(self) -> List[Pharmacist]: ...

    async def list_clinics(self) -> List[Clinic]: ...

    async def list_directorates(self) -> List[Directorate]: ...

    async def list_rotas(self, status: Optional[str] = None) -> List[Rota]: ...

    async def generate_weekly_rota(self, request: GenerationRequest) -> Dict[str, Any]: ...

    async def update_rota_assignment(
        self,
        rota_id: int,
        index: int,
        pharmacist_id: int,
        new_assignment: Optional[Assignment] = None,
    ) -> int: ...

    async def publish_rota(self, rota_id: int, user_name: str, week_start: datetime.date) -> Dict[str, Any]: ...

    async def save_free_cell_text(self, rota_id: int, free_cell_text: Dict[str, str]) -> None: ...

    async def save_rota_configuration(
        self,
        week_start: datetime.date,
        settings: Dict[str, Any],
        *,
        user_name: Optional[str] = None,
        is_generated: bool = False,
    ) -> Dict[str, Any]: ...


class SqlRotaBackend:
    """Implements ``RotaBackend`` on the SQLAlchemy helpers in ``database``.

    Every call opens its own short-lived session, commits, and closes it.
    The blocking work runs in the threadpool so the event loop stays free
    for other requests while a generation or write is in flight.
    """

    def __init__(
        self,
        session_factory: Optional[Callable] = None,
        staff_session_factory: Optional[Callable] = None,
        *,
        actor: str = "system",
    ) -> None:
        self.session_factory = session_factory or database.SessionLocal
        self.staff_session_factory = staff_session_factory or database.StaffSessionLocal
        self.actor = actor

    def _on_staff(self, helper: Callable, *args: Any, **kwargs: Any) -> Any:
        with self.staff_session_factory() as session:
            return helper(session, *args, **kwargs)

    def _on_rotas(self, helper: Callable, *args: Any, **kwargs: Any) -> Any:
        with self.session_factory() as session:
            return helper(session, *args, **kwargs)

    async def list_pharmacists(self) -> List[Pharmacist]:
        return await run_in_threadpool(self._on_staff, database.list_pharmacists)

    async def list_clinics(self) -> List[Clinic]:
        return await run_in_threadpool(self._on_staff, database.list_clinics)

    async def list_directorates(self) -> List[Directorate]:
        return await run_in_threadpool(self._on_staff, database.list_directorates)

    async def list_rotas(self, status: Optional[str] = None) -> List[Rota]:
        return await run_in_threadpool(self._on_rotas, database.list_rotas, status)

    async def get_rota(self, rota_id: int) -> Rota:
        return await run_in_threadpool(self._on_rotas, database.get_rota, rota_id)

    def _generate(self, request: GenerationRequest) -> Dict[str, Any]:
        with self.session_factory() as session, self.staff_session_factory() as staff_session:
            summary = generate_weekly_rota(session, staff_session, request)
            database.record_audit_log(
                session,
                user_id=request.actor,
                action="ROTA_GENERATED",
                payload={"week_start": request.start_date.isoformat(), "rota_ids": summary["rota_ids"]},
            )
            return summary

    async def generate_weekly_rota(self, request: GenerationRequest) -> Dict[str, Any]:
        return await run_in_threadpool(self._generate, request)

    def _update_assignment(
        self, rota_id: int, index: int, pharmacist_id: int, new_assignment: Optional[Assignment]
    ) -> int:
        with self.session_factory() as session:
            position = database.update_rota_assignment(session, rota_id, index, pharmacist_id, new_assignment)
            database.record_audit_log(
                session,
                user_id=self.actor,
                action="ASSIGNMENT_UPDATED",
                target_id=rota_id,
                payload={"index": index, "position": position, "pharmacist_id": pharmacist_id},
            )
            return position

    async def update_rota_assignment(
        self,
        rota_id: int,
        index: int,
        pharmacist_id: int,
        new_assignment: Optional[Assignment] = None,
    ) -> int:
        return await run_in_threadpool(self._update_assignment, rota_id, index, pharmacist_id, new_assignment)

    async def publish_rota(self, rota_id: int, user_name: str, week_start: datetime.date) -> Dict[str, Any]:
        return await run_in_threadpool(self._on_rotas, database.publish_rota, rota_id, user_name, week_start)

    async def save_free_cell_text(self, rota_id: int, free_cell_text: Dict[str, str]) -> None:
        await run_in_threadpool(self._on_rotas, database.save_free_cell_text, rota_id, free_cell_text)

    def _archive(self, week_start: datetime.date, archive_all: bool) -> List[int]:
        with self.session_factory() as session:
            archived = database.archive_rotas(session, week_start, archive_all)
            database.record_audit_log(
                session,
                user_id=self.actor,
                action="ROTAS_ARCHIVED",
                payload={"week_start": week_start.isoformat(), "rota_ids": archived},
            )
            return archived

    async def archive_rotas(self, week_start: datetime.date, archive_all: bool = False) -> List[int]:
        return await run_in_threadpool(self._archive, week_start, archive_all)

    def _save_configuration(
        self, week_start: datetime.date, settings: Dict[str, Any], user_name: Optional[str], is_generated: bool
    ) -> Dict[str, Any]:
        with self.session_factory() as session:
            database.save_rota_configuration(
                session, week_start, settings, user_name=user_name, is_generated=is_generated
            )
            return database.get_rota_configuration(session, week_start)

    async def save_rota_configuration(
        self,
        week_start: datetime.date,
        settings: Dict[str, Any],
        *,
        user_name: Optional[str] = None,
        is_generated: bool = False,
    ) -> Dict[str, Any]:
        return await run_in_threadpool(self._save_configuration, week_start, settings, user_name, is_generated)

    async def get_rota_configuration(self, week_start: datetime.date) -> Optional[Dict[str, Any]]:
        return await run_in_threadpool(self._on_rotas, database.get_rota_configuration, week_start)
