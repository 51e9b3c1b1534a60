"""Session completion classification (pure functions, no I/O).

Canonical 5-state model: complete, submitted, ineligible, dropped, incomplete.
Older server builds wrote a 3-state model (complete / partial / incomplete)
and snake_case summary fields; ``migrate_legacy_record`` and
``normalize_status`` read those records into the canonical shape.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from app.study_config import PAGE_ORDER

COMPLETE = "complete"
SUBMITTED = "submitted"
INELIGIBLE = "ineligible"
DROPPED = "dropped"
INCOMPLETE = "incomplete"

COMPLETION_STATUSES = (COMPLETE, SUBMITTED, INELIGIBLE, DROPPED, INCOMPLETE)
EXPLOITABLE_STATUSES = frozenset({COMPLETE, SUBMITTED})
STOPPED_EARLY_STATUSES = frozenset({DROPPED, INCOMPLETE})

LEGACY_STATUS_MAP = {"partial": SUBMITTED}

# legacy name -> canonical name
LEGACY_FIELD_ALIASES = {
    "total_duration_ms": "totalDurationMs",
    "total_errors": "totalErrors",
    "errorsByPage": "errorCountsByPage",
    "errorsByField": "errorCountsByField",
    "documentInteractions": "docInteractions",
}


@dataclass
class CompletionRules:
    """Parameters of the completion state machine."""

    eligibility_field: str = "is_eligible"
    ineligible_value: str = "no"
    submission_page_id: str = "application_submitted"
    completion_page_id: str = "completion"
    post_submission_pages: frozenset[str] = field(default_factory=lambda: frozenset({
        "application_submitted", "demographics", "attention_check", "feedback", "debrief", "completion",
    }))
    submission_index_threshold: int | None = None
    page_order: list[str] = field(default_factory=lambda: list(PAGE_ORDER))

    @property
    def index_threshold(self) -> int | None:
        if self.submission_index_threshold is not None:
            return self.submission_index_threshold
        if self.submission_page_id in self.page_order:
            return self.page_order.index(self.submission_page_id)
        return None

    @classmethod
    def from_settings(cls, settings: Any) -> "CompletionRules":
        return cls(
            eligibility_field=settings.eligibility_field,
            ineligible_value=settings.ineligible_value,
            submission_page_id=settings.submission_page_id,
            completion_page_id=settings.completion_page_id,
            post_submission_pages=frozenset(settings.post_submission_pages),
            submission_index_threshold=settings.submission_index_threshold,
        )


DEFAULT_RULES = CompletionRules()


def migrate_legacy_record(record: dict[str, Any]) -> dict[str, Any]:
    """Copy legacy field spellings onto canonical names (canonical values win)."""
    if not any(k in record for k in LEGACY_FIELD_ALIASES):
        return record
    out = dict(record)
    for legacy, canonical in LEGACY_FIELD_ALIASES.items():
        if legacy in out and canonical not in out:
            out[canonical] = out[legacy]
    return out


def normalize_status(status: Any) -> str:
    """Map stored status values (any schema generation) onto the 5-state model."""
    if not isinstance(status, str):
        return INCOMPLETE
    status = status.strip().lower()
    status = LEGACY_STATUS_MAP.get(status, status)
    return status if status in COMPLETION_STATUSES else INCOMPLETE


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def flatten_responses(session: dict[str, Any]) -> dict[str, Any]:
    """Field -> value across all pages.

    ``formResponses`` (page-keyed, sent by snapshot/complete) is preferred;
    sessions that never sent one fall back to the flat ``formData`` of the
    last progress save.
    """
    flat: dict[str, Any] = {}
    responses = session.get("formResponses")
    if isinstance(responses, dict) and responses:
        for page_id, page_data in responses.items():
            if isinstance(page_data, dict):
                flat.update(page_data)
            else:
                flat[page_id] = page_data
        return flat
    form_data = session.get("formData")
    if isinstance(form_data, dict):
        flat.update(form_data)
    return flat


def visited_pages(session: dict[str, Any]) -> list[str]:
    timings = session.get("pageTimings")
    if not isinstance(timings, list):
        return []
    return [t.get("pageId") for t in timings if isinstance(t, dict) and t.get("pageId")]


def is_ineligible(session: dict[str, Any], rules: CompletionRules = DEFAULT_RULES) -> bool:
    value = flatten_responses(session).get(rules.eligibility_field)
    if value is None:
        return False
    return str(value).strip().lower() == str(rules.ineligible_value).strip().lower()


def reached_submission(session: dict[str, Any], rules: CompletionRules = DEFAULT_RULES) -> bool:
    if rules.submission_page_id in visited_pages(session):
        return True
    if session.get("currentPageId") in rules.post_submission_pages:
        return True
    threshold = rules.index_threshold
    if threshold is None:
        return False
    return _as_int(session.get("currentPageIndex")) >= threshold


def completion_status(session: dict[str, Any], rules: CompletionRules = DEFAULT_RULES) -> str:
    """Classify a merged session. Ineligibility is checked before anything else."""
    if is_ineligible(session, rules):
        return INELIGIBLE
    if session.get("is_complete"):
        return COMPLETE
    if reached_submission(session, rules):
        return SUBMITTED
    if session.get("consent_given"):
        return DROPPED
    return INCOMPLETE


def last_page(session: dict[str, Any], rules: CompletionRules = DEFAULT_RULES) -> str:
    """Last page reached, for drop-off tables."""
    if session.get("is_complete"):
        return rules.completion_page_id
    pages = visited_pages(session)
    if pages:
        return pages[-1]
    idx = _as_int(session.get("currentPageIndex"))
    if 0 <= idx < len(rules.page_order):
        return rules.page_order[idx]
    return f"page_{idx}"
