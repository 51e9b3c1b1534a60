"""Permuted-block condition assignment."""
from __future__ import annotations

import logging
import random
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable

from app.services.completion import (
    DEFAULT_RULES,
    EXPLOITABLE_STATUSES,
    CompletionRules,
    completion_status,
)

logger = logging.getLogger("sludge.randomizer")


def _parse_datetime(dt_str: Any) -> datetime | None:
    """Parse an ISO timestamp; naive values are taken as UTC."""
    if not isinstance(dt_str, str) or not dt_str:
        return None
    try:
        dt = datetime.fromisoformat(dt_str.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


class BlockRandomizer:
    """Assign conditions in shuffled blocks of ``block_size``.

    The current block lives only in this object. When the recorded
    assignments no longer match it (e.g. after a restart) the least-used
    condition is assigned instead, so groups stay balanced.
    """

    def __init__(
        self,
        conditions: list[str],
        block_size: int,
        rng: random.Random | None = None,
        inactivity_timeout_minutes: float | None = None,
        rules: CompletionRules = DEFAULT_RULES,
    ) -> None:
        if not conditions:
            raise ValueError("At least one condition is required")
        if block_size <= 0 or block_size % len(conditions) != 0:
            raise ValueError(
                f"block_size ({block_size}) must be a positive multiple of the number of conditions ({len(conditions)})"
            )
        self.conditions = list(conditions)
        self.block_size = block_size
        self.rng = rng or random.Random()
        self.inactivity_timeout_minutes = inactivity_timeout_minutes
        self.rules = rules
        self._block: list[str] | None = None

    def is_valid(self, condition: Any) -> bool:
        return isinstance(condition, str) and condition in self.conditions

    def reset(self) -> None:
        self._block = None

    @property
    def current_block(self) -> list[str] | None:
        return list(self._block) if self._block is not None else None

    # ============== BOOKKEEPING ==============

    def _timed_out(self, session: dict[str, Any], now: datetime) -> bool:
        if not self.inactivity_timeout_minutes:
            return False
        if session.get("is_complete"):
            return False
        if completion_status(session, self.rules) in EXPLOITABLE_STATUSES:
            return False
        last_seen = _parse_datetime(session.get("_written_at")) or _parse_datetime(session.get("started_at"))
        if last_seen is None:
            return False
        return now - last_seen > timedelta(minutes=self.inactivity_timeout_minutes)

    def history(self, sessions: Iterable[dict[str, Any]], now: datetime | None = None) -> list[str]:
        """Conditions of the organically assigned, still-active sessions, in creation order."""
        now = now or datetime.now(timezone.utc)
        out = []
        for s in sessions:
            if s.get("condition_forced"):
                continue
            condition = s.get("condition_code")
            if not self.is_valid(condition):
                continue
            if self._timed_out(s, now):
                continue
            out.append(condition)
        return out

    # ============== ASSIGNMENT ==============

    def new_block(self) -> list[str]:
        block = [c for c in self.conditions for _ in range(self.block_size // len(self.conditions))]
        self.rng.shuffle(block)
        return block

    def next_condition(self, history: list[str]) -> str:
        n = len(history)
        pos = n % self.block_size
        if pos == 0:
            self._block = self.new_block()
            return self._block[0]
        if self._block is not None and history[n - pos:] == self._block[:pos]:
            return self._block[pos]
        logger.info("Randomization block cache mismatch at position %d; using balanced assignment", pos)
        return self.balanced_choice(history)

    def balanced_choice(self, history: list[str]) -> str:
        counts = {c: 0 for c in self.conditions}
        for c in history:
            if c in counts:
                counts[c] += 1
        lowest = min(counts.values())
        return self.rng.choice([c for c in self.conditions if counts[c] == lowest])

    def assign(self, sessions: Iterable[dict[str, Any]], now: datetime | None = None) -> str:
        return self.next_condition(self.history(sessions, now))
