"""API routes for the Sludge study server."""
from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from fastapi.responses import HTMLResponse, StreamingResponse
from fastapi.templating import Jinja2Templates

from app.api.deps import get_confirmation, get_session_service, get_study, require_export_key
from app.models import (
    Ack,
    BehaviorSummary,
    EventBatchResponse,
    ImportRequest,
    ProgressUpdate,
    RemoveParticipantRequest,
    ResumeResponse,
    SessionCreate,
    SessionCreateResponse,
    SessionRef,
)
from app.services import SessionService, StudyContext
from app.services.event_store import utc_now
from app.services.export_service import all_data_json, enrich_sessions, sessions_csv, table_csv
from app.services.stats_service import build_stats
from app.study_config import EVENT_TABLES

router = APIRouter(prefix="/api", tags=["sludge"])
pages = APIRouter(tags=["dashboard"])
logger = logging.getLogger("sludge")
templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent.parent / "templates"))


def _audit(study: StudyContext, event: str, payload: dict[str, Any] | None = None) -> None:
    line = {"ts": utc_now(), "event": event, **(payload or {})}
    try:
        log_dir = Path(study.settings.log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        with open(log_dir / "audit.jsonl", "a") as f:
            f.write(json.dumps(line, default=str) + "\n")
    except OSError as e:
        logger.warning("audit write failed: %s", e)


@contextmanager
def _storage(action: str) -> Iterator[None]:
    """Turn a storage failure into a 500 for this request only."""
    try:
        yield
    except OSError as e:
        logger.exception("%s failed", action)
        raise HTTPException(status_code=500, detail=f"{action} failed: {e}")


def _require_session_id(session_id: str | None) -> str:
    if not session_id:
        raise HTTPException(status_code=400, detail="Missing session_id")
    return session_id


def _csv_response(data: str, filename: str) -> StreamingResponse:
    return StreamingResponse(
        iter([data]),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@pages.get("/health")
def health(study: StudyContext = Depends(get_study)) -> dict[str, Any]:
    return {"status": "ok", "app": study.settings.app_name, "sessions": len(study.index)}


# ============== SESSION LIFECYCLE ==============

@router.post("/session/create")
def create_session(
    req: SessionCreate,
    service: SessionService = Depends(get_session_service),
) -> SessionCreateResponse:
    """Create a session; a valid explicit condition bypasses randomization."""
    with _storage("Creating session"):
        session = service.create_session(
            device_info=req.device_info(),
            external_ids=req.external_ids(),
            requested_condition=req.condition_code,
            procedure_version=req.procedure_version,
            metadata=req.metadata,
        )
    return SessionCreateResponse(
        session_id=session["session_id"],
        condition=session["condition_code"],
        condition_forced=session["condition_forced"],
    )


@router.post("/session/consent")
def give_consent(req: SessionRef, service: SessionService = Depends(get_session_service)) -> Ack:
    session_id = _require_session_id(req.session_id)
    with _storage("Saving consent"):
        service.give_consent(session_id)
    return Ack()


@router.post("/session/progress")
def save_progress(req: ProgressUpdate, service: SessionService = Depends(get_session_service)) -> Ack:
    session_id = _require_session_id(req.session_id)
    with _storage("Saving progress"):
        service.save_progress(session_id, req.currentPageIndex, req.currentPageId, req.formData)
    return Ack()


@router.get("/session/resume")
def resume_session(
    pid: str | None = None,
    sid: str | None = None,
    service: SessionService = Depends(get_session_service),
) -> ResumeResponse:
    """Find a session to resume by Prolific PID, falling back to the session cookie id."""
    if not pid and not sid:
        return ResumeResponse(found=False)
    result = service.resume(pid=pid, sid=sid)
    return ResumeResponse(**result.to_dict())


@router.post("/session/snapshot")
def save_snapshot(req: BehaviorSummary, service: SessionService = Depends(get_session_service)) -> dict[str, Any]:
    """Store aggregates at submission so post-task drop-outs keep their procedure data."""
    session_id = _require_session_id(req.session_id)
    with _storage("Saving snapshot"):
        applied = service.save_snapshot(session_id, req.summary())
    return {"success": True, "applied": applied}


@router.post("/session/complete")
def complete_session(req: BehaviorSummary, service: SessionService = Depends(get_session_service)) -> Ack:
    session_id = _require_session_id(req.session_id)
    with _storage("Completing session"):
        service.complete_session(session_id, req.summary())
    return Ack()


@router.post("/events/batch")
def ingest_events(
    payload: dict[str, Any] = Body(...),
    study: StudyContext = Depends(get_study),
) -> EventBatchResponse:
    """Route a batch of tracker events to their category logs."""
    session_id = payload.get("session_id")
    events = payload.get("events")
    if not session_id or not isinstance(session_id, str) or not isinstance(events, list):
        raise HTTPException(status_code=400, detail="Invalid payload: session_id and an events array are required")
    if not all(isinstance(e, dict) for e in events):
        raise HTTPException(status_code=400, detail="Invalid payload: every event must be an object")
    if len(events) > study.settings.max_batch_events:
        raise HTTPException(status_code=413, detail=f"Too many events (max {study.settings.max_batch_events})")
    with _storage("Ingesting events"):
        count = study.sessions.ingest_events(session_id, events)
    return EventBatchResponse(count=count)


# ============== EXPORT & STATS ==============

@router.get("/export/sessions", dependencies=[Depends(require_export_key)])
def export_sessions(study: StudyContext = Depends(get_study)) -> list[dict[str, Any]]:
    with _storage("Reading sessions"):
        sessions = study.sessions.merged_sessions()
    _audit(study, "export_sessions", {"sessions_count": len(sessions)})
    return enrich_sessions(sessions, study.rules, study.answer_key)


@router.get("/export/all/json", dependencies=[Depends(require_export_key)])
def export_all_json(study: StudyContext = Depends(get_study)) -> dict[str, Any]:
    """Sessions plus every event table, for R (jsonlite) or pandas."""
    with _storage("Reading data"):
        sessions = study.sessions.merged_sessions()
        tables = {t: study.sessions.read_table(t) for t in EVENT_TABLES}
    _audit(study, "export_all_json", {"sessions_count": len(sessions)})
    return all_data_json(sessions, tables, study.rules, study.answer_key)


@router.get("/export/csv", dependencies=[Depends(require_export_key)])
def export_csv(study: StudyContext = Depends(get_study)) -> StreamingResponse:
    """One row per participant."""
    with _storage("Reading sessions"):
        sessions = study.sessions.merged_sessions()
    _audit(study, "export_csv", {"sessions_count": len(sessions)})
    return _csv_response(sessions_csv(sessions, study.rules, study.answer_key), "sludge_data.csv")


@router.get("/export/{table}", dependencies=[Depends(require_export_key)])
def export_table(table: str, format: str = "json", study: StudyContext = Depends(get_study)) -> Any:
    if table not in EVENT_TABLES:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid table. Valid: sessions, csv, all/json, {', '.join(EVENT_TABLES)}",
        )
    if format not in ("json", "csv"):
        raise HTTPException(status_code=400, detail="Invalid format. Valid: json, csv")
    with _storage(f"Reading {table}"):
        records = study.sessions.read_table(table)
    if format == "csv":
        return _csv_response(table_csv(records), f"{table}.csv")
    return records


@router.get("/stats", dependencies=[Depends(require_export_key)])
def stats(study: StudyContext = Depends(get_study)) -> dict[str, Any]:
    with _storage("Reading sessions"):
        sessions = study.sessions.merged_sessions()
    return _build_stats(study, sessions)


def _build_stats(study: StudyContext, sessions: list[dict[str, Any]]) -> dict[str, Any]:
    return build_stats(
        sessions,
        rules=study.rules,
        answer_key=study.answer_key,
        histogram_bin_seconds=study.settings.histogram_bin_seconds,
        estimate_field=study.settings.time_estimate_field,
        self_condition=study.settings.self_estimation_condition,
    )


# ============== ADMINISTRATION ==============

@router.post("/admin/delete-all-data", dependencies=[Depends(require_export_key)])
def delete_all_data(
    confirm: str | None = Depends(get_confirmation),
    study: StudyContext = Depends(get_study),
) -> dict[str, Any]:
    """Wipe every log. Run with participant traffic paused."""
    if confirm != study.settings.delete_confirmation_phrase:
        raise HTTPException(
            status_code=400,
            detail=f'Confirmation required: send {{"confirm": "{study.settings.delete_confirmation_phrase}"}}',
        )
    with _storage("Deleting data"):
        deleted = study.sessions.delete_all_data()
    _audit(study, "delete_all_data", {"files": deleted})
    return {"success": True, "deleted": deleted}


@router.post("/admin/remove-participant", dependencies=[Depends(require_export_key)])
def remove_participant(req: RemoveParticipantRequest, study: StudyContext = Depends(get_study)) -> dict[str, Any]:
    if not req.session_id and not req.prolific_pid:
        raise HTTPException(status_code=400, detail="session_id or prolific_pid required")
    with _storage("Removing participant"):
        removed = study.sessions.remove_participant(req.session_id, req.prolific_pid)
    if not removed:
        raise HTTPException(status_code=404, detail="Participant not found")
    _audit(study, "remove_participant", {"session_ids": removed})
    return {"success": True, "removed": removed}


@router.post("/admin/import", dependencies=[Depends(require_export_key)])
def import_data(req: ImportRequest, study: StudyContext = Depends(get_study)) -> dict[str, Any]:
    """Load a previous all-data JSON export."""
    with _storage("Importing data"):
        counts = study.sessions.import_data(req.model_dump(), replace=req.replace)
    _audit(study, "import", {"replace": req.replace, **counts})
    return {"success": True, "imported": counts}


# ============== DASHBOARD ==============

@pages.get("/dashboard", response_class=HTMLResponse, dependencies=[Depends(require_export_key)])
def dashboard(request: Request, key: str | None = None, study: StudyContext = Depends(get_study)) -> HTMLResponse:
    with _storage("Reading sessions"):
        sessions = study.sessions.merged_sessions()
    return templates.TemplateResponse(
        request,
        "dashboard.html",
        {"app_title": study.settings.app_name, "stats": _build_stats(study, sessions), "key": key},
    )
