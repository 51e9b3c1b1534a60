"""Append-only JSONL storage, one file per record category."""
from __future__ import annotations

import json
import logging
import os
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Iterator

logger = logging.getLogger("sludge.store")


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class EventLogStore:
    """Durable substrate for sessions and tracked events.

    Each category lives in ``<data_dir>/<category>.jsonl``. Records are only
    ever appended; whole-file rewrites are reserved for the administrative
    operations run inside :meth:`maintenance`.
    """

    def __init__(self, data_dir: Path) -> None:
        self.data_dir = Path(data_dir)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()

    def _path(self, category: str) -> Path:
        if not category or "/" in category or "\\" in category or category.startswith("."):
            raise ValueError(f"Invalid category name: {category!r}")
        return self.data_dir / f"{category}.jsonl"

    # ============== APPEND / READ ==============

    def append(self, category: str, record: dict[str, Any]) -> dict[str, Any]:
        """Append one record stamped with ``_written_at``. Returns the stored record."""
        stored = {**record, "_written_at": utc_now()}
        line = json.dumps(stored, default=str) + "\n"
        path = self._path(category)
        with self._lock:
            with open(path, "a", encoding="utf-8") as f:
                f.write(line)
        return stored

    def read_all(self, category: str) -> list[dict[str, Any]]:
        """All parseable records of a category in write order."""
        path = self._path(category)
        if not path.exists():
            return []
        records: list[dict[str, Any]] = []
        skipped = 0
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                if not line.strip():
                    continue
                try:
                    record = json.loads(line)
                except ValueError:
                    skipped += 1
                    continue
                if isinstance(record, dict):
                    records.append(record)
                else:
                    skipped += 1
        if skipped:
            logger.debug("Skipped %d unreadable lines in %s", skipped, path.name)
        return records

    def categories(self) -> list[str]:
        """Categories that currently have a file on disk."""
        return sorted(p.stem for p in self.data_dir.glob("*.jsonl"))

    # ============== MAINTENANCE ==============

    @contextmanager
    def maintenance(self) -> Iterator["EventLogStore"]:
        """Hold the store lock for a multi-step administrative rewrite."""
        with self._lock:
            yield self

    def rewrite_category(self, category: str, records: Iterable[dict[str, Any]]) -> int:
        """Replace a category's contents. Records are written as given (no restamping)."""
        path = self._path(category)
        tmp = path.with_suffix(".jsonl.tmp")
        count = 0
        with self._lock:
            with open(tmp, "w", encoding="utf-8") as f:
                for record in records:
                    f.write(json.dumps(record, default=str) + "\n")
                    count += 1
            os.replace(tmp, path)
        return count

    def delete_category(self, category: str) -> bool:
        path = self._path(category)
        with self._lock:
            if path.exists():
                path.unlink()
                return True
        return False

    def delete_all(self) -> list[str]:
        """Remove every category file. Returns the deleted category names."""
        with self._lock:
            deleted = []
            for category in self.categories():
                if self.delete_category(category):
                    deleted.append(category)
        logger.info("Deleted %d data files", len(deleted))
        return deleted
