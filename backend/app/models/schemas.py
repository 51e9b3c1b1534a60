"""Pydantic schemas for the Sludge study API."""
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

Number = int | float


# ============== SESSION LIFECYCLE ==============

class SessionCreate(BaseModel):
    """New participant session. Accepts the tracker's camelCase names too."""
    model_config = ConfigDict(populate_by_name=True)

    prolific_pid: str | None = Field(default=None, validation_alias=AliasChoices("prolific_pid", "prolificPid"))
    study_id: str | None = Field(default=None, validation_alias=AliasChoices("study_id", "studyId"))
    session_id_prolific: str | None = Field(
        default=None, validation_alias=AliasChoices("session_id_prolific", "sessionId"),
    )
    condition_code: str | None = Field(default=None, validation_alias=AliasChoices("condition_code", "condition"))
    procedure_version: str | None = Field(
        default=None, validation_alias=AliasChoices("procedure_version", "procedureId"),
    )

    # Device / browser
    user_agent: str | None = Field(default=None, validation_alias=AliasChoices("user_agent", "userAgent"))
    screen_width: int | None = Field(default=None, validation_alias=AliasChoices("screen_width", "screenWidth"))
    screen_height: int | None = Field(default=None, validation_alias=AliasChoices("screen_height", "screenHeight"))
    window_width: int | None = Field(default=None, validation_alias=AliasChoices("window_width", "windowWidth"))
    window_height: int | None = Field(default=None, validation_alias=AliasChoices("window_height", "windowHeight"))
    timezone: str | None = None
    language: str | None = None
    platform: str | None = None
    metadata: dict[str, Any] | None = None

    def external_ids(self) -> dict[str, Any]:
        return {
            "prolific_pid": self.prolific_pid,
            "study_id": self.study_id,
            "session_id_prolific": self.session_id_prolific,
        }

    def device_info(self) -> dict[str, Any]:
        return self.model_dump(include={
            "user_agent", "screen_width", "screen_height", "window_width", "window_height",
            "timezone", "language", "platform",
        })


class SessionCreateResponse(BaseModel):
    success: bool = True
    session_id: str
    condition: str
    condition_forced: bool = False


class SessionRef(BaseModel):
    """Body carrying only a session id (consent)."""
    session_id: str | None = None


class ProgressUpdate(BaseModel):
    """Checkpoint sent on every page transition."""
    session_id: str | None = None
    currentPageIndex: int | None = None
    currentPageId: str | None = None
    formData: dict[str, Any] | None = None


class BehaviorSummary(BaseModel):
    """Tracker aggregates sent with a snapshot or at completion."""
    session_id: str | None = None
    totalDurationMs: Number | None = None
    applicationDurationMs: Number | None = None
    totalDocTimeMs: Number | None = None
    totalDocOpens: int | None = None
    totalErrors: int | None = None
    errorCountsByPage: dict[str, int] | None = None
    errorCountsByField: dict[str, int] | None = None
    pageTimings: list[dict[str, Any]] | None = None
    docInteractions: list[dict[str, Any]] | None = None
    formResponses: dict[str, Any] | None = None

    # Older clients
    total_duration_ms: Number | None = None
    total_errors: int | None = None

    def summary(self) -> dict[str, Any]:
        data = self.model_dump(exclude={"session_id", "total_duration_ms", "total_errors"})
        if data["totalDurationMs"] is None:
            data["totalDurationMs"] = self.total_duration_ms
        if data["totalErrors"] is None:
            data["totalErrors"] = self.total_errors
        return data


class ResumeResponse(BaseModel):
    found: bool
    session_id: str | None = None
    condition: str | None = None
    currentPageIndex: int = 0
    currentPageId: str | None = None
    formData: dict[str, Any] = Field(default_factory=dict)
    is_complete: bool = False


class Ack(BaseModel):
    success: bool = True


class EventBatchResponse(BaseModel):
    success: bool = True
    count: int


# ============== ADMINISTRATION ==============

class RemoveParticipantRequest(BaseModel):
    session_id: str | None = None
    prolific_pid: str | None = None


class ImportRequest(BaseModel):
    """A previous ``/export/all/json`` payload plus a replace flag."""
    model_config = ConfigDict(extra="allow")

    replace: bool = False
    sessions: list[dict[str, Any]] = Field(default_factory=list)
