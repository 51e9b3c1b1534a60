from .schemas import (
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

__all__ = [
    "Ack",
    "BehaviorSummary",
    "EventBatchResponse",
    "ImportRequest",
    "ProgressUpdate",
    "RemoveParticipantRequest",
    "ResumeResponse",
    "SessionCreate",
    "SessionCreateResponse",
    "SessionRef",
]
