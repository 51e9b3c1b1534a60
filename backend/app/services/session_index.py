"""In-memory session cache and the log merge rule."""
from __future__ import annotations

import logging
from typing import Any, Iterable

from app.services.completion import migrate_legacy_record
from app.services.event_store import EventLogStore
from app.study_config import SESSIONS_CATEGORY, UPDATES_CATEGORY

logger = logging.getLogger("sludge.index")


def merge_session_records(
    creations: Iterable[dict[str, Any]],
    updates: Iterable[dict[str, Any]],
    skip_late_snapshots: bool = False,
) -> dict[str, dict[str, Any]]:
    """Authoritative per-session view: session_id -> merged record.

    Updates are applied in write order with a shallow, per-field merge.
    Updates for ids without a creation record are dropped. With
    ``skip_late_snapshots`` a snapshot written after a completion is not
    applied, which is how the session cache treats it.
    """
    merged: dict[str, dict[str, Any]] = {}
    for record in creations:
        sid = record.get("session_id")
        if sid:
            merged[sid] = migrate_legacy_record(dict(record))
    for update in updates:
        session = merged.get(update.get("session_id"))
        if session is None:
            continue
        if skip_late_snapshots and update.get("update_type") == "snapshot" and session.get("is_complete"):
            continue
        session.update(migrate_legacy_record(update))
    return merged


class SessionIndex:
    """Session id -> latest known state.

    A cache over the event log: used for progress/resume lookups, never for
    exports or statistics.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, dict[str, Any]] = {}

    def load(self, store: EventLogStore) -> int:
        """Rebuild from the log. Only ids with a creation record exist.

        Late snapshots are skipped so a restart keeps the completion values.
        """
        merged = merge_session_records(
            store.read_all(SESSIONS_CATEGORY),
            store.read_all(UPDATES_CATEGORY),
            skip_late_snapshots=True,
        )
        self._sessions = merged
        logger.info("Loaded %d existing sessions", len(self._sessions))
        return len(self._sessions)

    def get(self, session_id: str) -> dict[str, Any] | None:
        session = self._sessions.get(session_id)
        return dict(session) if session is not None else None

    def upsert(self, session_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        """Create or shallow-merge ``patch`` into the cached record."""
        session = self._sessions.setdefault(session_id, {"session_id": session_id})
        for key, value in patch.items():
            session[key] = value
        return dict(session)

    def remove(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    def clear(self) -> None:
        self._sessions.clear()

    def all(self) -> list[dict[str, Any]]:
        """Copies of all cached sessions in creation order."""
        return [dict(s) for s in self._sessions.values()]

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
