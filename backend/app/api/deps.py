"""FastAPI dependencies: study services and the export key check."""
import json
import secrets

from fastapi import Depends, HTTPException, Query, Request

from app.services import SessionService, StudyContext


def get_study(request: Request) -> StudyContext:
    return request.app.state.study


def get_session_service(study: StudyContext = Depends(get_study)) -> SessionService:
    return study.sessions


def require_export_key(
    key: str | None = Query(default=None),
    study: StudyContext = Depends(get_study),
) -> None:
    """Reject export/maintenance calls without the shared secret."""
    if not key or not secrets.compare_digest(key, study.settings.export_key):
        raise HTTPException(status_code=403, detail="Invalid export key")


async def get_confirmation(request: Request) -> str | None:
    """The ``confirm`` string of a JSON object body, or None for any other body."""
    try:
        body = json.loads(await request.body() or b"null")
    except ValueError:
        return None
    confirm = body.get("confirm") if isinstance(body, dict) else None
    return confirm if isinstance(confirm, str) else None
