import random
from dataclasses import dataclass

from app.config import Settings

from .completion import CompletionRules
from .event_store import EventLogStore
from .randomizer import BlockRandomizer
from .scoring import AnswerKey, load_answer_key
from .session_index import SessionIndex
from .session_service import ResumeResult, SessionService


@dataclass
class StudyContext:
    """Everything a request handler needs, built once per application."""

    settings: Settings
    store: EventLogStore
    index: SessionIndex
    randomizer: BlockRandomizer
    sessions: SessionService
    rules: CompletionRules
    answer_key: AnswerKey


def build_study(settings: Settings) -> StudyContext:
    """Wire the services. The index is empty until ``index.load(store)`` runs."""
    rules = CompletionRules.from_settings(settings)
    store = EventLogStore(settings.data_dir)
    index = SessionIndex()
    rng = random.Random(settings.random_seed) if settings.random_seed is not None else random.Random()
    randomizer = BlockRandomizer(
        settings.conditions,
        settings.block_size,
        rng=rng,
        inactivity_timeout_minutes=settings.randomization_inactivity_minutes,
        rules=rules,
    )
    sessions = SessionService(store, index, randomizer)
    return StudyContext(
        settings=settings,
        store=store,
        index=index,
        randomizer=randomizer,
        sessions=sessions,
        rules=rules,
        answer_key=load_answer_key(settings.answer_key_path),
    )


__all__ = [
    "BlockRandomizer",
    "CompletionRules",
    "EventLogStore",
    "ResumeResult",
    "SessionIndex",
    "SessionService",
    "StudyContext",
    "build_study",
]
