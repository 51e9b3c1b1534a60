import random
from collections import Counter
from datetime import datetime, timedelta, timezone

import pytest

from app.services.randomizer import BlockRandomizer

CONDITIONS = ["self_estimate", "other_estimate"]
NOW = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)


def _run(randomizer, sessions, n):
    for _ in range(n):
        sessions.append({"condition_code": randomizer.assign(sessions, now=NOW)})
    return sessions


@pytest.mark.parametrize("seed", [0, 1, 2, 42])
def test_every_block_is_balanced(seed):
    randomizer = BlockRandomizer(CONDITIONS, 4, rng=random.Random(seed))
    sessions = _run(randomizer, [], 12)

    for start in range(0, 12, 4):
        block = Counter(s["condition_code"] for s in sessions[start:start + 4])
        assert block == {"self_estimate": 2, "other_estimate": 2}


def test_six_conditions_block():
    conditions = ["a", "b", "c"]
    randomizer = BlockRandomizer(conditions, 6, rng=random.Random(3))
    sessions = _run(randomizer, [], 18)
    assert Counter(s["condition_code"] for s in sessions) == {"a": 6, "b": 6, "c": 6}


def test_restart_mid_block_favors_under_represented_condition():
    first = BlockRandomizer(CONDITIONS, 4, rng=random.Random(5))
    sessions = _run(first, [], 1)
    assigned = sessions[0]["condition_code"]

    # A fresh instance has lost the cached block
    restarted = BlockRandomizer(CONDITIONS, 4, rng=random.Random(5))
    assert restarted.current_block is None
    nxt = restarted.assign(sessions, now=NOW)
    assert nxt != assigned


def test_restart_keeps_block_balanced():
    first = BlockRandomizer(CONDITIONS, 4, rng=random.Random(11))
    sessions = _run(first, [], 2)
    restarted = BlockRandomizer(CONDITIONS, 4, rng=random.Random(99))
    _run(restarted, sessions, 2)
    assert Counter(s["condition_code"] for s in sessions) == {"self_estimate": 2, "other_estimate": 2}


def test_prefix_mismatch_uses_balanced_choice():
    randomizer = BlockRandomizer(CONDITIONS, 4, rng=random.Random(0))
    randomizer.assign([], now=NOW)
    block = randomizer.current_block
    other = next(c for c in CONDITIONS if c != block[0])

    # Recorded history disagrees with the cached block
    nxt = randomizer.assign([{"condition_code": other}], now=NOW)
    assert nxt == block[0]


def test_forced_and_invalid_sessions_are_not_counted():
    randomizer = BlockRandomizer(CONDITIONS, 4)
    sessions = [
        {"condition_code": "self_estimate", "condition_forced": True},
        {"condition_code": "unknown_condition"},
        {"condition_code": "other_estimate"},
    ]
    assert randomizer.history(sessions, now=NOW) == ["other_estimate"]


def test_timed_out_sessions_leave_the_bookkeeping():
    randomizer = BlockRandomizer(CONDITIONS, 4, inactivity_timeout_minutes=60)
    stale = (NOW - timedelta(hours=3)).isoformat()
    fresh = (NOW - timedelta(minutes=5)).isoformat()
    sessions = [
        {"condition_code": "self_estimate", "_written_at": stale, "currentPageIndex": 2},
        {"condition_code": "other_estimate", "_written_at": stale, "currentPageIndex": 13},
        {"condition_code": "self_estimate", "_written_at": stale, "is_complete": True},
        {"condition_code": "other_estimate", "_written_at": fresh, "currentPageIndex": 1},
    ]
    assert randomizer.history(sessions, now=NOW) == ["other_estimate", "self_estimate", "other_estimate"]


def test_timeout_disabled():
    randomizer = BlockRandomizer(CONDITIONS, 4, inactivity_timeout_minutes=None)
    stale = (NOW - timedelta(days=3)).isoformat()
    assert randomizer.history([{"condition_code": "self_estimate", "_written_at": stale}], now=NOW) == ["self_estimate"]


@pytest.mark.parametrize("block_size", [0, 3, -2])
def test_block_size_must_be_multiple_of_conditions(block_size):
    with pytest.raises(ValueError):
        BlockRandomizer(CONDITIONS, block_size)


def test_is_valid():
    randomizer = BlockRandomizer(CONDITIONS, 2)
    assert randomizer.is_valid("self_estimate")
    assert not randomizer.is_valid("nope")
    assert not randomizer.is_valid(None)
