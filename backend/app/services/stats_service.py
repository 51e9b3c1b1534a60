"""Dashboard statistics over merged sessions.

All timing, document and quality figures use the exploitable set only
(``complete`` + ``submitted``). Repeated visits to a page or document are
first summed per session so every participant contributes one data point.
"""
from __future__ import annotations

import math
from collections import Counter, defaultdict
from typing import Any, Iterable

import numpy as np

from app.services.completion import (
    COMPLETION_STATUSES,
    DEFAULT_RULES,
    EXPLOITABLE_STATUSES,
    STOPPED_EARLY_STATUSES,
    CompletionRules,
    completion_status,
    flatten_responses,
    last_page,
)
from app.services.scoring import AnswerKey, default_answer_key, score_application
from app.study_config import (
    DOC_NAMES,
    FORM_PAGES,
    NON_APPLICATION_PAGES,
    PAGE_ORDER,
    doc_name,
    page_name,
)

# ============== HELPERS ==============


def _num(value: Any, default: float = 0.0) -> float:
    try:
        out = float(value)
    except (TypeError, ValueError):
        return default
    return out if math.isfinite(out) else default


def mean(values: Iterable[float]) -> float:
    arr = np.asarray(list(values), dtype=float)
    return float(arr.mean()) if arr.size else 0.0


def median(values: Iterable[float]) -> float:
    """Middle value; average of the two middle values for even lengths."""
    arr = np.asarray(list(values), dtype=float)
    return float(np.median(arr)) if arr.size else 0.0


def summarize(values: Iterable[float]) -> dict[str, Any]:
    values = list(values)
    return {"mean": round(mean(values), 2), "median": round(median(values), 2), "n": len(values)}


def format_ms(ms: Any) -> str:
    ms = _num(ms)
    if ms <= 0:
        return "0s"
    s = int(ms // 1000)
    m = s // 60
    return f"{m}m {s % 60}s" if m > 0 else f"{s}s"


def _ordered(keys: Iterable[str], order: list[str]) -> list[str]:
    keys = set(keys)
    known = [k for k in order if k in keys]
    return known + sorted(k for k in keys if k not in order)


def classify(sessions: Iterable[dict[str, Any]], rules: CompletionRules = DEFAULT_RULES) -> list[dict[str, Any]]:
    """Copies of the sessions with ``completion_status`` and ``last_page`` set."""
    return [
        {**s, "completion_status": completion_status(s, rules), "last_page": last_page(s, rules)}
        for s in sessions
    ]


# ============== PER-SESSION COLLAPSING ==============


def session_page_totals(session: dict[str, Any]) -> dict[str, float]:
    """Page id -> total ms across all visits in this session."""
    totals: dict[str, float] = defaultdict(float)
    for pt in session.get("pageTimings") or []:
        if isinstance(pt, dict) and pt.get("pageId"):
            totals[pt["pageId"]] += _num(pt.get("durationMs"))
    return dict(totals)


def session_doc_totals(session: dict[str, Any]) -> dict[str, dict[str, float]]:
    """Doc id -> {opens, totalMs} for this session."""
    totals: dict[str, dict[str, float]] = {}
    for di in session.get("docInteractions") or []:
        if not isinstance(di, dict) or not di.get("docId"):
            continue
        d = totals.setdefault(di["docId"], {"opens": 0, "totalMs": 0.0})
        d["opens"] += 1
        d["totalMs"] += _num(di.get("durationMs"))
    return totals


def application_duration_ms(session: dict[str, Any]) -> float | None:
    """Reported application time, else the sum of application-page timings."""
    value = session.get("applicationDurationMs")
    if value is not None and _num(value) > 0:
        return _num(value)
    totals = session_page_totals(session)
    if not totals:
        return None
    return sum(ms for pid, ms in totals.items() if pid not in NON_APPLICATION_PAGES)


def _present(sessions: list[dict[str, Any]], key: str, *aliases: str) -> list[float]:
    out = []
    for s in sessions:
        for k in (key, *aliases):
            if s.get(k) is not None:
                out.append(_num(s[k]))
                break
    return out


# ============== SECTIONS ==============


def timing_stats(exploitable: list[dict[str, Any]]) -> dict[str, Any]:
    app_durations = [d for d in (application_duration_ms(s) for s in exploitable) if d is not None]
    return {
        "total_duration_ms": summarize(_present(exploitable, "totalDurationMs", "total_duration_ms")),
        "application_duration_ms": summarize(app_durations),
        "tracked_errors": summarize(_present(exploitable, "totalErrors", "total_errors")),
        "doc_time_ms": summarize(_present(exploitable, "totalDocTimeMs")),
        "doc_opens": summarize(_present(exploitable, "totalDocOpens")),
    }


def page_stats(exploitable: list[dict[str, Any]]) -> list[dict[str, Any]]:
    times: dict[str, list[float]] = defaultdict(list)
    errors: dict[str, list[float]] = defaultdict(list)
    for s in exploitable:
        by_page = s.get("errorCountsByPage") if isinstance(s.get("errorCountsByPage"), dict) else {}
        for pid, total_ms in session_page_totals(s).items():
            times[pid].append(total_ms)
            errors[pid].append(_num(by_page.get(pid)))

    out = []
    for pid in _ordered(times, PAGE_ORDER):
        t, e = times[pid], errors[pid]
        n = len(t)
        out.append({
            "pageId": pid,
            "pageName": page_name(pid),
            "n": n,
            "avgTimeMs": round(mean(t)),
            "medianTimeMs": round(median(t)),
            "avgTimeFormatted": format_ms(mean(t)),
            "totalErrors": int(sum(e)),
            "avgErrors": round(mean(e), 2),
            "medianErrors": round(median(e), 2),
            "errorRate": round(sum(1 for x in e if x > 0) / n * 100) if n else 0,
            "hasErrors": pid in FORM_PAGES,
        })
    return out


def doc_stats(exploitable: list[dict[str, Any]]) -> list[dict[str, Any]]:
    per_session: dict[str, list[float]] = defaultdict(list)
    opens: Counter[str] = Counter()
    for s in exploitable:
        for did, d in session_doc_totals(s).items():
            per_session[did].append(d["totalMs"])
            opens[did] += int(d["opens"])

    n_sessions = len(exploitable)
    out = []
    for did in _ordered(per_session, list(DOC_NAMES)):
        totals = per_session[did]
        total_ms = sum(totals)
        viewers = len(totals)
        out.append({
            "docId": did,
            "docName": doc_name(did),
            "totalOpens": opens[did],
            "uniqueViewers": viewers,
            "viewedByPct": round(viewers / n_sessions * 100) if n_sessions else 0,
            "totalTimeMs": round(total_ms),
            "avgTimeMs": round(mean(totals)),
            "medianTimeMs": round(median(totals)),
            "avgTimeFormatted": format_ms(mean(totals)),
            "avgTimePerOpenMs": round(total_ms / opens[did]) if opens[did] else 0,
            "avgOpensPerViewer": round(opens[did] / viewers, 2) if viewers else 0,
        })
    return out


def drop_off(stopped: list[dict[str, Any]], rules: CompletionRules = DEFAULT_RULES) -> list[dict[str, Any]]:
    """Where participants who stopped early left the procedure."""
    counts = Counter(s.get("last_page") or last_page(s, rules) for s in stopped)
    total = len(stopped)
    return [
        {
            "pageId": pid,
            "pageName": page_name(pid),
            "count": counts[pid],
            "pct": round(counts[pid] / total * 100) if total else 0,
        }
        for pid in _ordered(counts, PAGE_ORDER)
    ]


def duration_histogram(exploitable: list[dict[str, Any]], bin_seconds: int = 60) -> dict[str, Any]:
    """Fixed-width bins over application duration in seconds."""
    seconds = [d / 1000 for d in (application_duration_ms(s) for s in exploitable) if d is not None]
    result: dict[str, Any] = {"bin_seconds": bin_seconds, "n": len(seconds), "bins": []}
    if not seconds or bin_seconds <= 0:
        return result
    values = np.maximum(np.asarray(seconds, dtype=float), 0.0)
    n_bins = max(1, math.ceil(values.max() / bin_seconds))
    idx = np.minimum((values // bin_seconds).astype(int), n_bins - 1)
    counts = np.bincount(idx, minlength=n_bins)
    result["bins"] = [
        {"start_s": i * bin_seconds, "end_s": (i + 1) * bin_seconds, "count": int(c)}
        for i, c in enumerate(counts)
    ]
    return result


def quality_stats(exploitable: list[dict[str, Any]], answer_key: AnswerKey | None = None) -> dict[str, Any]:
    answer_key = answer_key if answer_key is not None else default_answer_key()
    n = len(exploitable)
    rejected = 0
    error_totals: list[float] = []
    field_errors: Counter[str] = Counter()
    field_answered: Counter[str] = Counter()
    overdoc_sessions = 0
    extra_counts: list[float] = []
    extra_values: dict[str, Counter[str]] = defaultdict(Counter)

    for s in exploitable:
        result = score_application(flatten_responses(s), answer_key)
        rejected += int(result.would_reject)
        error_totals.append(result.total_errors)
        field_errors.update(result.error_fields)
        field_answered.update(result.scored_fields)
        extras = sum(v["extraCount"] for v in result.over_documentation.values())
        extra_counts.append(extras)
        if extras:
            overdoc_sessions += 1
        for fname, v in result.over_documentation.items():
            extra_values[fname].update(v["extraDocs"])

    per_field = [
        {
            "field": fname,
            "errors": field_errors[fname],
            "answered": field_answered[fname],
            "rate": round(field_errors[fname] / n, 4) if n else 0.0,
        }
        for fname in answer_key
    ]
    return {
        "n": n,
        "rejected": rejected,
        "rejection_rate": round(rejected / n, 4) if n else 0.0,
        "quality_errors": summarize(error_totals),
        "per_field": per_field,
        "over_documentation": {
            "sessions": overdoc_sessions,
            "rate": round(overdoc_sessions / n, 4) if n else 0.0,
            "mean_extra": round(mean(extra_counts), 2),
            "extra_values": {f: dict(c) for f, c in extra_values.items()},
        },
    }


def _estimate_minutes(session: dict[str, Any], field: str) -> float | None:
    value = flatten_responses(session).get(field)
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    est = _num(value, default=-1.0)
    return est if est >= 0 else None


def time_estimation_stats(
    exploitable: list[dict[str, Any]],
    estimate_field: str = "time_estimate_minutes",
    self_condition: str = "self_estimate",
) -> dict[str, Any]:
    """Between-group estimate vs actual, plus within-subject accuracy for self-estimators."""
    actual_minutes = [d / 60000 for d in (application_duration_ms(s) for s in exploitable) if d]
    actual = summarize(actual_minutes)

    by_condition: dict[str, list[float]] = defaultdict(list)
    within: list[tuple[float, float]] = []
    for s in exploitable:
        est = _estimate_minutes(s, estimate_field)
        if est is None:
            continue
        condition = s.get("condition_code") or "default"
        by_condition[condition].append(est)
        if condition == self_condition:
            own = application_duration_ms(s)
            if own:
                within.append((est, own / 60000))

    conditions = {}
    for condition in sorted(by_condition):
        est = summarize(by_condition[condition])
        conditions[condition] = {
            **est,
            "ratio_mean": round(est["mean"] / actual["mean"], 4) if actual["mean"] else None,
            "ratio_median": round(est["median"] / actual["median"], 4) if actual["median"] else None,
        }

    within_subject: dict[str, Any] = {"condition": self_condition, "n": len(within)}
    if within:
        signed = [e - a for e, a in within]
        absolute = [abs(x) for x in signed]
        n = len(within)
        within_subject.update({
            "mean_signed_error": round(mean(signed), 2),
            "median_signed_error": round(median(signed), 2),
            "mean_abs_error": round(mean(absolute), 2),
            "median_abs_error": round(median(absolute), 2),
            "mean_ratio": round(mean(e / a for e, a in within), 4),
            "prop_over": round(sum(1 for x in signed if x > 0) / n, 4),
            "prop_under": round(sum(1 for x in signed if x < 0) / n, 4),
            "prop_exact": round(sum(1 for x in signed if x == 0) / n, 4),
        })

    return {
        "field": estimate_field,
        "actual_minutes": actual,
        "by_condition": conditions,
        "within_subject": within_subject,
    }


# ============== FULL PAYLOAD ==============


def build_stats(
    sessions: Iterable[dict[str, Any]],
    rules: CompletionRules = DEFAULT_RULES,
    answer_key: AnswerKey | None = None,
    histogram_bin_seconds: int = 60,
    estimate_field: str = "time_estimate_minutes",
    self_condition: str = "self_estimate",
) -> dict[str, Any]:
    classified = classify(sessions, rules)
    status_counts = Counter(s["completion_status"] for s in classified)
    exploitable = [s for s in classified if s["completion_status"] in EXPLOITABLE_STATUSES]
    stopped = [s for s in classified if s["completion_status"] in STOPPED_EARLY_STATUSES]
    total = len(classified)

    by_condition: dict[str, dict[str, int]] = {}
    for s in classified:
        cond = by_condition.setdefault(
            s.get("condition_code") or "default", {"total": 0, **{k: 0 for k in COMPLETION_STATUSES}}
        )
        cond["total"] += 1
        cond[s["completion_status"]] += 1

    timing = timing_stats(exploitable)
    return {
        "total_sessions": total,
        "status_counts": {k: status_counts.get(k, 0) for k in COMPLETION_STATUSES},
        "complete_sessions": status_counts.get("complete", 0),
        "submitted_sessions": status_counts.get("submitted", 0),
        "ineligible_sessions": status_counts.get("ineligible", 0),
        "dropped_sessions": status_counts.get("dropped", 0),
        "incomplete_sessions": status_counts.get("incomplete", 0),
        "exploitable_sessions": len(exploitable),
        "consented_sessions": sum(1 for s in classified if s.get("consent_given")),
        "completion_rate": round(status_counts.get("complete", 0) / total, 4) if total else 0.0,
        "by_condition": by_condition,
        "timing": timing,
        "avg_total_duration_formatted": format_ms(timing["total_duration_ms"]["mean"]),
        "avg_task_duration_formatted": format_ms(timing["application_duration_ms"]["mean"]),
        "median_task_duration_formatted": format_ms(timing["application_duration_ms"]["median"]),
        "avg_doc_time_formatted": format_ms(timing["doc_time_ms"]["mean"]),
        "page_stats": page_stats(exploitable),
        "doc_stats": doc_stats(exploitable),
        "drop_off": drop_off(stopped, rules),
        "duration_histogram": duration_histogram(exploitable, histogram_bin_seconds),
        "quality": quality_stats(exploitable, answer_key),
        "time_estimation": time_estimation_stats(exploitable, estimate_field, self_condition),
    }
