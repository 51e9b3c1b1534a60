import pytest
from fastapi.testclient import TestClient

from app.config import Settings
from app.main import create_app
from app.services import build_study
from app.services.event_store import EventLogStore

EXPORT_KEY = "test-key"


@pytest.fixture
def settings(tmp_path):
    return Settings(
        data_dir=tmp_path / "data",
        log_dir=tmp_path / "logs",
        export_key=EXPORT_KEY,
        random_seed=1234,
    )


@pytest.fixture
def store(tmp_path):
    return EventLogStore(tmp_path / "data")


@pytest.fixture
def study(settings):
    study = build_study(settings)
    study.index.load(study.store)
    return study


@pytest.fixture
def client(settings):
    app = create_app(settings)
    with TestClient(app) as client:
        yield client


def make_session(session_id="s1", **fields):
    """A merged session as returned by the log merge."""
    return {
        "session_id": session_id,
        "condition_code": "self_estimate",
        "condition_forced": False,
        "started_at": "2025-03-01T10:00:00+00:00",
        "consent_given": True,
        "is_complete": False,
        "currentPageIndex": 0,
        "currentPageId": None,
        "formData": {},
        **fields,
    }
