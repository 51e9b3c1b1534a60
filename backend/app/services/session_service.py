"""Participant session lifecycle: create, consent, progress, snapshot, resume, complete."""
from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import dataclass, field
from typing import Any

from app.services.completion import normalize_status
from app.services.event_store import EventLogStore, utc_now
from app.services.randomizer import BlockRandomizer
from app.services.session_index import SessionIndex, merge_session_records
from app.study_config import (
    EVENT_TABLES,
    SESSIONS_CATEGORY,
    UPDATES_CATEGORY,
    category_for_event,
)

logger = logging.getLogger("sludge.sessions")

# Fields derived on read; never stored on creation records
DERIVED_FIELDS = ("completion_status", "last_page", "quality", "update_type")


@dataclass
class ResumeResult:
    found: bool = False
    session: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        if not self.found:
            return {"found": False}
        s = self.session
        return {
            "found": True,
            "session_id": s.get("session_id"),
            "condition": s.get("condition_code"),
            "currentPageIndex": s.get("currentPageIndex") or 0,
            "currentPageId": s.get("currentPageId"),
            "formData": s.get("formData") or {},
            "is_complete": bool(s.get("is_complete")),
        }


def _summary_record(summary: dict[str, Any]) -> dict[str, Any]:
    """Fill tracker aggregates with defaults; derive document totals when absent."""
    doc_interactions = summary.get("docInteractions") or []
    total_doc_time = summary.get("totalDocTimeMs")
    if total_doc_time is None:
        total_doc_time = sum(d.get("durationMs") or 0 for d in doc_interactions if isinstance(d, dict))
    total_doc_opens = summary.get("totalDocOpens")
    if total_doc_opens is None:
        total_doc_opens = len(doc_interactions)
    return {
        "totalDurationMs": summary.get("totalDurationMs") or 0,
        "applicationDurationMs": summary.get("applicationDurationMs") or 0,
        "totalDocTimeMs": total_doc_time,
        "totalDocOpens": total_doc_opens,
        "totalErrors": summary.get("totalErrors") or 0,
        "errorCountsByPage": summary.get("errorCountsByPage") or {},
        "errorCountsByField": summary.get("errorCountsByField") or {},
        "pageTimings": summary.get("pageTimings") or [],
        "docInteractions": doc_interactions,
        "formResponses": summary.get("formResponses") or {},
    }


class SessionService:
    """Manages participant sessions on top of the event log and the session index."""

    def __init__(
        self,
        store: EventLogStore,
        index: SessionIndex,
        randomizer: BlockRandomizer,
    ) -> None:
        self.store = store
        self.index = index
        self.randomizer = randomizer
        self._create_lock = threading.Lock()

    def _update(self, session_id: str, update_type: str, fields: dict[str, Any]) -> dict[str, Any]:
        return self.store.append(UPDATES_CATEGORY, {
            "session_id": session_id,
            "update_type": update_type,
            **fields,
        })

    # ============== SESSION MANAGEMENT ==============

    def create_session(
        self,
        device_info: dict[str, Any] | None = None,
        external_ids: dict[str, Any] | None = None,
        requested_condition: str | None = None,
        procedure_version: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Create a session and assign its condition. Returns the stored creation record."""
        external_ids = external_ids or {}
        with self._create_lock:
            session_id = str(uuid.uuid4())
            if self.randomizer.is_valid(requested_condition):
                condition, forced = requested_condition, True
            else:
                condition = self.randomizer.assign(self.merged_sessions())
                forced = False

            session = {
                "session_id": session_id,
                "prolific_pid": external_ids.get("prolific_pid"),
                "study_id": external_ids.get("study_id"),
                "session_id_prolific": external_ids.get("session_id_prolific"),
                "condition_code": condition,
                "condition_forced": forced,
                "procedure_version": procedure_version or "v1",
                **(device_info or {}),
                "started_at": utc_now(),
                "completed_at": None,
                "is_complete": False,
                "consent_given": False,
                "currentPageIndex": 0,
                "currentPageId": None,
                "formData": {},
                "metadata": metadata,
            }
            stored = self.store.append(SESSIONS_CATEGORY, session)
            self.index.upsert(session_id, stored)

        logger.info("Created session %s (condition=%s, forced=%s)", session_id, condition, forced)
        return stored

    def give_consent(self, session_id: str) -> None:
        record = self._update(session_id, "consent", {"consent_given": True})
        if session_id in self.index:
            self.index.upsert(session_id, {"consent_given": True, "_written_at": record["_written_at"]})

    def save_progress(
        self,
        session_id: str,
        page_index: int | None,
        page_id: str | None = None,
        form_data: dict[str, Any] | None = None,
    ) -> None:
        fields = {
            "currentPageIndex": page_index if page_index is not None else 0,
            "currentPageId": page_id,
            "formData": form_data or {},
        }
        record = self._update(session_id, "progress", fields)
        if session_id in self.index:
            self.index.upsert(session_id, {**fields, "_written_at": record["_written_at"]})

    def save_snapshot(self, session_id: str, summary: dict[str, Any]) -> bool:
        """Record in-progress aggregates. Returns False if the cache already holds a completion."""
        fields = {"snapshot_at": utc_now(), **_summary_record(summary)}
        record = self._update(session_id, "snapshot", fields)
        cached = self.index.get(session_id)
        if cached is None or cached.get("is_complete"):
            return False
        self.index.upsert(session_id, {**fields, "_written_at": record["_written_at"]})
        return True

    def complete_session(self, session_id: str, summary: dict[str, Any]) -> dict[str, Any]:
        fields = {
            "completed_at": utc_now(),
            "is_complete": True,
            **_summary_record(summary),
        }
        record = self._update(session_id, "complete", fields)
        if session_id in self.index:
            self.index.upsert(session_id, {**fields, "_written_at": record["_written_at"]})
        logger.info("Session %s complete", session_id)
        return record

    def get_session(self, session_id: str) -> dict[str, Any] | None:
        return self.index.get(session_id)

    def resume(self, pid: str | None = None, sid: str | None = None) -> ResumeResult:
        """Most recent session for an external participant id, else the given session id."""
        session = None
        if pid and pid != "unknown":
            matches = [s for s in self.index.all() if s.get("prolific_pid") == pid]
            if matches:
                session = matches[-1]
        if session is None and sid:
            session = self.index.get(sid)
        if session is None:
            return ResumeResult(found=False)
        return ResumeResult(found=True, session=session)

    # ============== EVENT INGESTION ==============

    def ingest_events(self, session_id: str, events: list[dict[str, Any]]) -> int:
        """Route each event to its category log. Returns the number written."""
        for event in events:
            self.store.append(category_for_event(event.get("type")), {**event, "session_id": session_id})
        return len(events)

    # ============== MERGED VIEW ==============

    def merged_sessions(self) -> list[dict[str, Any]]:
        """Authoritative sessions recomputed from the log, in creation order."""
        merged = merge_session_records(
            self.store.read_all(SESSIONS_CATEGORY),
            self.store.read_all(UPDATES_CATEGORY),
        )
        return list(merged.values())

    def read_table(self, table: str) -> list[dict[str, Any]]:
        return self.store.read_all(table)

    # ============== ADMINISTRATION ==============

    def delete_all_data(self) -> list[str]:
        with self.store.maintenance():
            deleted = self.store.delete_all()
            self.index.clear()
            self.randomizer.reset()
        logger.warning("All study data deleted (%d files)", len(deleted))
        return deleted

    def remove_participant(self, session_id: str | None = None, prolific_pid: str | None = None) -> list[str]:
        """Remove matching sessions and all of their events. Returns removed session ids."""
        with self.store.maintenance():
            ids = {
                s["session_id"] for s in self.merged_sessions()
                if (session_id and s.get("session_id") == session_id)
                or (prolific_pid and s.get("prolific_pid") == prolific_pid)
            }
            if not ids:
                return []
            for category in self.store.categories():
                records = self.store.read_all(category)
                kept = [r for r in records if r.get("session_id") not in ids and r.get("sessionId") not in ids]
                if len(kept) != len(records):
                    self.store.rewrite_category(category, kept)
            for sid in ids:
                self.index.remove(sid)
        logger.info("Removed %d session(s) and their events", len(ids))
        return sorted(ids)

    def import_data(self, payload: dict[str, Any], replace: bool = False) -> dict[str, int]:
        """Load a previous all-data export. Sessions become creation records."""
        counts: dict[str, int] = {}
        with self.store.maintenance():
            if replace:
                self.store.delete_all()
                self.index.clear()
                self.randomizer.reset()

            existing = self.store.read_all(SESSIONS_CATEGORY)
            known = {s.get("session_id") for s in existing}
            new_sessions = []
            for s in payload.get("sessions") or []:
                if not isinstance(s, dict) or not s.get("session_id") or s["session_id"] in known:
                    continue
                known.add(s["session_id"])
                record = {k: v for k, v in s.items() if k not in DERIVED_FIELDS}
                # Keep the status the exporting server reported (older exports use "partial")
                if s.get("completion_status") is not None:
                    record["imported_completion_status"] = normalize_status(s["completion_status"])
                new_sessions.append(record)
            if new_sessions:
                self.store.rewrite_category(SESSIONS_CATEGORY, existing + new_sessions)
            counts["sessions"] = len(new_sessions)

            for table in EVENT_TABLES:
                rows = [r for r in payload.get(table) or [] if isinstance(r, dict)]
                if not rows:
                    continue
                self.store.rewrite_category(table, self.store.read_all(table) + rows)
                counts[table] = len(rows)

            self.index.load(self.store)
        logger.info("Imported data: %s", counts)
        return counts
