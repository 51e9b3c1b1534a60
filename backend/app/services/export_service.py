"""CSV / JSON exports for analysis in R or Python."""
from __future__ import annotations

import csv
import io
import json
from typing import Any, Iterable

import pandas as pd

from app.services.completion import DEFAULT_RULES, CompletionRules, flatten_responses
from app.services.scoring import AnswerKey, IncludesAllRule, default_answer_key, score_application
from app.services.stats_service import classify, session_doc_totals, session_page_totals

BASE_HEADERS = [
    "session_id", "prolific_pid", "study_id", "session_id_prolific",
    "condition_code", "condition_forced", "procedure_version",
    "started_at", "completed_at", "completion_status", "last_page",
    "consent_given", "is_complete", "currentPageIndex", "currentPageId",
    "totalDurationMs", "applicationDurationMs", "totalDocTimeMs", "totalDocOpens", "totalErrors",
    "user_agent", "screen_width", "screen_height", "window_width", "window_height",
    "timezone", "language", "platform",
]

QUALITY_HEADERS = ["quality_total_errors", "quality_would_reject", "quality_error_fields"]


def _cell(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ";".join(str(v) for v in value)
    if isinstance(value, dict):
        return json.dumps(value, default=str)
    return value


def enrich_sessions(
    sessions: Iterable[dict[str, Any]],
    rules: CompletionRules = DEFAULT_RULES,
    answer_key: AnswerKey | None = None,
) -> list[dict[str, Any]]:
    """Sessions with derived status, last page and application-quality score."""
    answer_key = answer_key if answer_key is not None else default_answer_key()
    return [
        {**s, "quality": score_application(flatten_responses(s), answer_key).to_dict()}
        for s in classify(sessions, rules)
    ]


def sessions_csv(
    sessions: Iterable[dict[str, Any]],
    rules: CompletionRules = DEFAULT_RULES,
    answer_key: AnswerKey | None = None,
) -> str:
    """One row per session. An empty session set gives an empty string."""
    answer_key = answer_key if answer_key is not None else default_answer_key()
    rows = classify(sessions, rules)
    if not rows:
        return ""

    page_totals = [session_page_totals(s) for s in rows]
    doc_totals = [session_doc_totals(s) for s in rows]
    responses = [flatten_responses(s) for s in rows]

    page_ids = sorted({pid for t in page_totals for pid in t})
    doc_ids = sorted({did for t in doc_totals for did in t})
    form_fields = sorted({f for r in responses for f in r})
    overdoc_fields = [f for f, rule in answer_key.items() if isinstance(rule, IncludesAllRule)]

    headers = list(BASE_HEADERS)
    headers += [f"time_{pid}_ms" for pid in page_ids]
    for did in doc_ids:
        headers += [f"doc_{did}_opens", f"doc_{did}_totalMs"]
    headers += [f"errors_{pid}" for pid in page_ids]
    trailing = list(QUALITY_HEADERS)
    for f in overdoc_fields:
        trailing += [f"overdoc_{f}_extra", f"overdoc_{f}_count"]

    # Form answers sharing a name with a generated column get a form_ prefix
    taken = set(headers) | set(trailing)
    form_columns = {f: f"form_{f}" if f in taken else f for f in form_fields}
    headers += list(form_columns.values()) + trailing

    output = io.StringIO()
    writer = csv.DictWriter(output, fieldnames=headers, extrasaction="ignore")
    writer.writeheader()
    for s, timings, docs, answers in zip(rows, page_totals, doc_totals, responses):
        row = {h: _cell(s.get(h)) for h in BASE_HEADERS}
        for pid in page_ids:
            row[f"time_{pid}_ms"] = round(timings[pid]) if pid in timings else ""
        for did in doc_ids:
            d = docs.get(did)
            row[f"doc_{did}_opens"] = int(d["opens"]) if d else 0
            row[f"doc_{did}_totalMs"] = round(d["totalMs"]) if d else 0
        by_page = s.get("errorCountsByPage") if isinstance(s.get("errorCountsByPage"), dict) else {}
        for pid in page_ids:
            row[f"errors_{pid}"] = by_page.get(pid) or 0
        for f in form_fields:
            row[form_columns[f]] = _cell(answers.get(f))

        score = score_application(answers, answer_key)
        row["quality_total_errors"] = score.total_errors
        row["quality_would_reject"] = score.would_reject
        row["quality_error_fields"] = ";".join(score.error_fields)
        for f in overdoc_fields:
            extra = score.over_documentation.get(f)
            row[f"overdoc_{f}_extra"] = ";".join(extra["extraDocs"]) if extra else ""
            row[f"overdoc_{f}_count"] = extra["extraCount"] if extra else 0
        writer.writerow(row)

    return output.getvalue()


def table_csv(records: list[dict[str, Any]]) -> str:
    """Generic per-table CSV; nested values are JSON-encoded."""
    if not records:
        return ""
    flat = [
        {k: json.dumps(v, default=str) if isinstance(v, (dict, list)) else v for k, v in r.items()}
        for r in records
    ]
    df = pd.DataFrame(flat, dtype=object)
    return df.to_csv(index=False)


def all_data_json(
    sessions: list[dict[str, Any]],
    tables: dict[str, list[dict[str, Any]]],
    rules: CompletionRules = DEFAULT_RULES,
    answer_key: AnswerKey | None = None,
) -> dict[str, Any]:
    return {"sessions": enrich_sessions(sessions, rules, answer_key), **tables}
