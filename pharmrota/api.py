"""FastAPI wrapper over the rota database and the editing engine.

Week endpoints open a short-lived editing session per request, built from
the stored weekly configuration, and run the same engine code path an
interactive client would.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
import datetime
import logging
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from . import database
from .accounts import AuditLogger, CurrentUser, CurrentUserStore
from .backend import SqlRotaBackend
from .editor import RotaEditor
from .exceptions import GENERIC_ERROR_MESSAGE, PartialWriteError, RotaError, RotaNotFoundError
from .models import Assignment, CellRef, RotaStatus, normalize_week_start
from .scope import Scope
from .session import EditSession
from .swap import SwapProtocol

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    database.init_database()
    yield


app = FastAPI(title="Pharmacy Rota API", version="0.1", lifespan=lifespan)


def get_backend() -> SqlRotaBackend:
    return SqlRotaBackend()


def get_audit_logger() -> AuditLogger:
    return AuditLogger(database.DATA_DIR / "audit_log.jsonl")


def _parse_week_start(value: str) -> datetime.date:
    try:
        return normalize_week_start(datetime.date.fromisoformat(value))
    except ValueError:
        raise HTTPException(status_code=400, detail="weekStart must be YYYY-MM-DD")


def get_user_store() -> CurrentUserStore:
    return CurrentUserStore(database.DATA_DIR / "session" / "current_user.json")


def get_current_user(users: CurrentUserStore = Depends(get_user_store)) -> Optional[CurrentUser]:
    return users.get()


def _actor(payload: Optional[Dict[str, Any]], user: Optional[CurrentUser] = None) -> str:
    named = str((payload or {}).get("actor") or "").strip()
    if named:
        return named
    return user.display_name if user is not None else "api"


def _engine_failure(exc: Exception) -> HTTPException:
    if isinstance(exc, RotaNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (ValueError, RotaError)) and not isinstance(exc, PartialWriteError):
        return HTTPException(status_code=400, detail=str(exc))
    logger.error("Rota engine failure: %s", exc)
    return HTTPException(status_code=502, detail=GENERIC_ERROR_MESSAGE)


async def _open_editor(
    backend: SqlRotaBackend, week_start: datetime.date, *, published: bool = False, actor: str = "api"
) -> RotaEditor:
    if published:
        rotas = [
            rota
            for rota in await backend.list_rotas(RotaStatus.PUBLISHED.value)
            if week_start <= rota.date < week_start + datetime.timedelta(days=7)
        ]
        if not rotas:
            raise HTTPException(status_code=404, detail="No published rotas for this week")
        session = EditSession.for_published_week(rotas)
    else:
        config = await backend.get_rota_configuration(week_start)
        if config is not None:
            session = EditSession.from_settings(week_start, config["settings"])
        else:
            session = EditSession.for_week(
                week_start, await backend.list_pharmacists(), await backend.list_clinics()
            )
    editor = RotaEditor(backend, session, actor=actor)
    await editor.load_reference_data()
    await editor.refresh()
    return editor


def _cell(raw: Any, field: str) -> CellRef:
    if not isinstance(raw, dict):
        raise HTTPException(status_code=400, detail=f"{field} is required")
    try:
        return CellRef.model_validate(raw)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=f"invalid {field}: {exc.errors()[0]['msg']}") from exc


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/api/v1/session")
def current_session(user=Depends(get_current_user)) -> Dict[str, Any]:
    if user is None:
        return {"user": None}
    return {"user": {**user.model_dump(), "displayName": user.display_name}}


@app.put("/api/v1/session")
def sign_in(payload: Dict[str, Any], users: CurrentUserStore = Depends(get_user_store)) -> Dict[str, Any]:
    try:
        user = CurrentUser.model_validate(payload)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=f"invalid user: {exc.errors()[0]['msg']}") from exc
    users.save(user)
    return {"user": {**user.model_dump(), "displayName": user.display_name}}


@app.delete("/api/v1/session")
def sign_out(users: CurrentUserStore = Depends(get_user_store)) -> Dict[str, bool]:
    users.clear()
    return {"success": True}


@app.get("/api/v1/rotas")
async def rotas(status: Optional[str] = Query(None), backend=Depends(get_backend)) -> JSONResponse:
    try:
        items = await backend.list_rotas(status)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return JSONResponse(content=jsonable_encoder({"rotas": items}))


@app.get("/api/v1/rotas/{rota_id}")
async def rota_detail(rota_id: int, backend=Depends(get_backend)) -> JSONResponse:
    try:
        rota = await backend.get_rota(rota_id)
    except RotaNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return JSONResponse(content=jsonable_encoder(rota))


@app.post("/api/v1/weeks/{week_start}/generate")
async def generate_week(
    week_start: str,
    payload: Dict[str, Any] | None = None,
    backend=Depends(get_backend),
    user=Depends(get_current_user),
) -> JSONResponse:
    start_date = _parse_week_start(week_start)
    payload = payload or {}
    editor = await _open_editor(backend, start_date, actor=_actor(payload, user))
    for day, selected in (payload.get("weekdays") or {}).items():
        try:
            editor.session.toggle_weekday(day, bool(selected))
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
    try:
        summary = await editor.generate(regenerate=bool(payload.get("regenerate")))
    except Exception as exc:  # noqa: BLE001
        raise _engine_failure(exc) from exc
    if summary is None:
        raise HTTPException(status_code=409, detail="Rota generation already in progress")
    return JSONResponse(content=jsonable_encoder(summary))


@app.post("/api/v1/rotas/{rota_id}/assignments")
async def update_assignment(
    rota_id: int, payload: Dict[str, Any], backend=Depends(get_backend), user=Depends(get_current_user)
) -> JSONResponse:
    if payload.get("index") is None or payload.get("pharmacistId") is None:
        raise HTTPException(status_code=400, detail="index and pharmacistId are required")
    new_assignment = None
    raw = payload.get("newAssignment")
    if raw is not None:
        try:
            new_assignment = Assignment.model_validate({**raw, "pharmacistId": payload["pharmacistId"]})
        except ValidationError as exc:
            raise HTTPException(status_code=400, detail=f"invalid newAssignment: {exc.errors()[0]['msg']}") from exc
    backend.actor = _actor(payload, user)
    try:
        position = await backend.update_rota_assignment(
            rota_id, int(payload["index"]), int(payload["pharmacistId"]), new_assignment
        )
    except Exception as exc:  # noqa: BLE001
        raise _engine_failure(exc) from exc
    return JSONResponse(content=jsonable_encoder({"rota_id": rota_id, "position": position}))


@app.post("/api/v1/weeks/{week_start}/assign")
async def assign(
    week_start: str, payload: Dict[str, Any], backend=Depends(get_backend), user=Depends(get_current_user)
) -> JSONResponse:
    start_date = _parse_week_start(week_start)
    cell = _cell(payload.get("cell"), "cell")
    if payload.get("pharmacistId") is None:
        raise HTTPException(status_code=400, detail="pharmacistId is required")
    try:
        scope = Scope(payload.get("scope") or "slot")
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="scope must be slot, day or week") from exc
    editor = await _open_editor(
        backend, start_date, published=bool(payload.get("published")), actor=_actor(payload, user)
    )
    backend.actor = editor.actor
    try:
        result = await editor.assign(cell, int(payload["pharmacistId"]), scope)
    except Exception as exc:  # noqa: BLE001
        raise _engine_failure(exc) from exc
    return JSONResponse(
        content=jsonable_encoder(
            {
                "writes": len(result.completed),
                "rotas": editor.index.rotas,
            }
        )
    )


@app.post("/api/v1/weeks/{week_start}/swap")
async def swap(
    week_start: str, payload: Dict[str, Any], backend=Depends(get_backend), user=Depends(get_current_user)
) -> JSONResponse:
    start_date = _parse_week_start(week_start)
    source = _cell(payload.get("source"), "source")
    target = _cell(payload.get("target"), "target")
    editor = await _open_editor(
        backend, start_date, published=bool(payload.get("published")), actor=_actor(payload, user)
    )
    backend.actor = editor.actor
    protocol = SwapProtocol(editor)
    protocol.arm(source)
    protocol.hover(target)
    try:
        swapped = await protocol.drop()
    except Exception as exc:  # noqa: BLE001
        raise _engine_failure(exc) from exc
    return JSONResponse(content=jsonable_encoder({"swapped": swapped, "rotas": editor.index.rotas}))


@app.post("/api/v1/weeks/{week_start}/publish")
async def publish_week(
    week_start: str,
    payload: Dict[str, Any] | None = None,
    backend=Depends(get_backend),
    audit=Depends(get_audit_logger),
    user=Depends(get_current_user),
) -> JSONResponse:
    start_date = _parse_week_start(week_start)
    payload = payload or {}
    editor = await _open_editor(backend, start_date, actor=_actor(payload, user))
    for key, text in (payload.get("freeCellText") or {}).items():
        editor.session.set_free_text(str(key), str(text))
    try:
        result = await editor.publish(
            payload.get("userName") or payload.get("actor") or (user.display_name if user is not None else None)
        )
    except Exception as exc:  # noqa: BLE001
        raise _engine_failure(exc) from exc
    audit.log("ROTA_PUBLISHED", editor.actor, details={"week_start": start_date.isoformat(), **result})
    return JSONResponse(content=jsonable_encoder(result))


@app.put("/api/v1/rotas/{rota_id}/free-text")
async def save_free_text(rota_id: int, payload: Dict[str, Any], backend=Depends(get_backend)) -> JSONResponse:
    mapping = payload.get("freeCellText")
    if not isinstance(mapping, dict):
        raise HTTPException(status_code=400, detail="freeCellText must be an object")
    try:
        await backend.save_free_cell_text(rota_id, mapping)
    except RotaNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return JSONResponse(content={"success": True})


@app.post("/api/v1/weeks/{week_start}/archive")
async def archive_week(
    week_start: str,
    payload: Dict[str, Any] | None = None,
    backend=Depends(get_backend),
    user=Depends(get_current_user),
) -> JSONResponse:
    start_date = _parse_week_start(week_start)
    backend.actor = _actor(payload, user)
    archived = await backend.archive_rotas(start_date, bool((payload or {}).get("archiveAll")))
    return JSONResponse(content=jsonable_encoder({"archived_rota_ids": archived}))


@app.get("/api/v1/weeks/{week_start}/configuration")
async def week_configuration(week_start: str, backend=Depends(get_backend)) -> JSONResponse:
    start_date = _parse_week_start(week_start)
    config = await backend.get_rota_configuration(start_date)
    if config is None:
        raise HTTPException(status_code=404, detail="No configuration saved for this week")
    return JSONResponse(content=jsonable_encoder(config))


@app.put("/api/v1/weeks/{week_start}/configuration")
async def save_week_configuration(
    week_start: str, payload: Dict[str, Any], backend=Depends(get_backend)
) -> JSONResponse:
    start_date = _parse_week_start(week_start)
    settings = payload.get("settings")
    if not isinstance(settings, dict):
        raise HTTPException(status_code=400, detail="settings must be an object")
    try:
        EditSession.from_settings(start_date, settings)
    except (ValueError, TypeError) as exc:
        raise HTTPException(status_code=400, detail=f"invalid settings: {exc}") from exc
    config = await backend.save_rota_configuration(
        start_date,
        settings,
        user_name=payload.get("userName"),
        is_generated=bool(payload.get("isGenerated")),
    )
    return JSONResponse(content=jsonable_encoder(config))


@app.get("/api/v1/weeks/{week_start}/days")
async def week_days(
    week_start: str, published: bool = Query(False), backend=Depends(get_backend)
) -> JSONResponse:
    start_date = _parse_week_start(week_start)
    editor = await _open_editor(backend, start_date, published=published)
    return JSONResponse(content=jsonable_encoder({"week_start": start_date.isoformat(), "days": editor.days()}))


@app.get("/api/v1/weeks/{week_start}/conflicts")
async def week_conflicts(
    week_start: str, published: bool = Query(False), backend=Depends(get_backend)
) -> JSONResponse:
    start_date = _parse_week_start(week_start)
    editor = await _open_editor(backend, start_date, published=published)
    return JSONResponse(
        content=jsonable_encoder({"week_start": start_date.isoformat(), "warnings": editor.conflicts()})
    )
