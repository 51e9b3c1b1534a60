"""Application-quality scoring against the case-file answer key.

A quality error is a factual mistake in the submitted application (wrong
date of birth, missing document), as opposed to a live validation error.
Fields the participant never reached are not scored.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

from app.study_config import GREENZONE_ANSWER_KEY, FieldAnswer

# ============== NORMALIZERS ==============


def normalize_text(value: Any) -> str:
    """Case-insensitive, whitespace-collapsed string form."""
    if isinstance(value, (list, tuple)):
        value = ";".join(str(v) for v in value)
    return re.sub(r"\s+", " ", str(value)).strip().lower()


def normalize_id(value: Any) -> str:
    """ID-like values: all whitespace removed, lowercased."""
    return re.sub(r"\s+", "", str(value)).lower()


def normalize_date(value: Any) -> str:
    """'12/06/1990' and '12/6/1990' compare equal."""
    parts = [p for p in re.split(r"[/\-.\s]+", str(value).strip()) if p]
    out = []
    for p in parts:
        if p.isdigit():
            out.append(p.lstrip("0") or "0")
        else:
            out.append(p.lower())
    return "/".join(out)


def dates_match(submitted: Any, expected: Any) -> bool:
    return normalize_date(submitted) == normalize_date(expected)


NORMALIZERS: dict[str, Callable[[Any], str]] = {
    "text": normalize_text,
    "id": normalize_id,
    "none": str,
}


def is_unanswered(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    if isinstance(value, (list, tuple, set, dict)) and not value:
        return True
    return False


def _as_list(value: Any) -> list[str]:
    if isinstance(value, (list, tuple, set)):
        return [str(v) for v in value]
    if isinstance(value, str) and ";" in value:
        return [v for v in value.split(";") if v]
    return [str(value)]


# ============== RULES ==============


@dataclass
class FieldError:
    field: str
    submitted: Any
    expected: Any
    description: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "field": self.field,
            "submitted": self.submitted,
            "expected": self.expected,
            "description": self.description,
        }


class AnswerRule:
    """Base rule. ``check`` returns a description of the mistake, or None."""

    def check(self, submitted: Any) -> str | None:
        raise NotImplementedError


@dataclass
class ExactRule(AnswerRule):
    expected: Any
    normalize: Callable[[Any], str] = normalize_text

    def check(self, submitted: Any) -> str | None:
        if self.normalize(submitted) == self.normalize(self.expected):
            return None
        return "incorrect value"


@dataclass
class IncludesAllRule(AnswerRule):
    """Multi-select: every required value must be selected. Extras are not errors."""

    expected: list[str]

    def missing(self, submitted: Any) -> list[str]:
        selected = {normalize_text(v) for v in _as_list(submitted)}
        return [r for r in self.expected if normalize_text(r) not in selected]

    def extras(self, submitted: Any) -> list[str]:
        required = {normalize_text(r) for r in self.expected}
        out = []
        for v in _as_list(submitted):
            if normalize_text(v) not in required and v not in out:
                out.append(v)
        return out

    def check(self, submitted: Any) -> str | None:
        missing = self.missing(submitted)
        if not missing:
            return None
        return f"missing required document(s): {', '.join(missing)}"


@dataclass
class OneOfRule(AnswerRule):
    options: list[str]

    @property
    def expected(self) -> list[str]:  # type: ignore[override]
        return list(self.options)

    def check(self, submitted: Any) -> str | None:
        allowed = {normalize_text(o) for o in self.options}
        values = _as_list(submitted)
        if len(values) == 1 and normalize_text(values[0]) in allowed:
            return None
        return "invalid choice"


@dataclass
class CustomRule(AnswerRule):
    expected: Any
    compare: Callable[[Any, Any], bool]
    description: str = "incorrect value"

    def check(self, submitted: Any) -> str | None:
        if self.compare(submitted, self.expected):
            return None
        return self.description


AnswerKey = dict[str, AnswerRule]


def rule_from_answer(answer: FieldAnswer) -> AnswerRule:
    if answer.rule == "exact":
        normalize = NORMALIZERS.get(answer.normalize)
        if normalize is None:
            raise ValueError(f"Unknown normalizer: {answer.normalize}")
        return ExactRule(answer.expected, normalize)
    if answer.rule == "includes_all":
        return IncludesAllRule(_as_list(answer.expected))
    if answer.rule == "one_of":
        return OneOfRule(list(answer.options or _as_list(answer.expected)))
    if answer.rule == "date":
        return CustomRule(answer.expected, dates_match, "incorrect date")
    raise ValueError(f"Unknown answer rule: {answer.rule}")


def answer_key_from_dict(data: dict[str, Any]) -> AnswerKey:
    """Build a key from its JSON form: {field: {rule, expected, normalize, options}}."""
    key: AnswerKey = {}
    for name, entry in data.items():
        if not isinstance(entry, dict):
            raise ValueError(f"Answer for {name!r} must be an object")
        answer = FieldAnswer(
            rule=entry.get("rule", "exact"),
            expected=entry.get("expected"),
            normalize=entry.get("normalize", "text"),
            label=entry.get("label", ""),
            options=list(entry.get("options") or []),
        )
        key[name] = rule_from_answer(answer)
    return key


def default_answer_key() -> AnswerKey:
    return {name: rule_from_answer(a) for name, a in GREENZONE_ANSWER_KEY.items()}


def load_answer_key(path: str | Path | None = None) -> AnswerKey:
    """Answer key from a JSON file, or the built-in Green Zone key."""
    if not path:
        return default_answer_key()
    with open(path, "r", encoding="utf-8") as f:
        return answer_key_from_dict(json.load(f))


# ============== SCORING ==============


@dataclass
class ScoreResult:
    total_errors: int = 0
    errors: list[FieldError] = field(default_factory=list)
    over_documentation: dict[str, dict[str, Any]] = field(default_factory=dict)
    scored_fields: list[str] = field(default_factory=list)

    @property
    def would_reject(self) -> bool:
        # Any substantive error is grounds for rejection
        return self.total_errors > 0

    @property
    def error_fields(self) -> list[str]:
        return [e.field for e in self.errors]

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalErrors": self.total_errors,
            "errors": [e.to_dict() for e in self.errors],
            "wouldReject": self.would_reject,
            "overDocumentation": self.over_documentation,
            "scoredFields": list(self.scored_fields),
        }


def score_application(responses: dict[str, Any], answer_key: AnswerKey | None = None) -> ScoreResult:
    """Score flattened form responses (field -> value)."""
    if answer_key is None:
        answer_key = default_answer_key()
    result = ScoreResult()
    for name, rule in answer_key.items():
        submitted = responses.get(name)
        if is_unanswered(submitted):
            continue
        result.scored_fields.append(name)
        description = rule.check(submitted)
        if description is not None:
            result.errors.append(FieldError(name, submitted, rule.expected, description))
        if isinstance(rule, IncludesAllRule):
            extras = rule.extras(submitted)
            if extras:
                result.over_documentation[name] = {"extraDocs": extras, "extraCount": len(extras)}
    result.total_errors = len(result.errors)
    return result
