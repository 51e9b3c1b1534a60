import pytest
from conftest import make_session

from app.services.stats_service import (
    build_stats,
    doc_stats,
    drop_off,
    duration_histogram,
    format_ms,
    median,
    page_stats,
    quality_stats,
    time_estimation_stats,
)


def _complete(session_id, **fields):
    return make_session(session_id, is_complete=True, **fields)


def test_page_average_counts_each_session_once():
    sessions = [
        _complete("s1", pageTimings=[
            {"pageId": "applicant_details", "durationMs": 3000},
            {"pageId": "vehicle_info", "durationMs": 1000},
            {"pageId": "applicant_details", "durationMs": 4000},
        ]),
        _complete("s2", pageTimings=[{"pageId": "applicant_details", "durationMs": 5000}]),
    ]
    stats = {p["pageId"]: p for p in page_stats(sessions)}

    assert stats["applicant_details"]["n"] == 2
    assert stats["applicant_details"]["avgTimeMs"] == 6000
    assert stats["applicant_details"]["medianTimeMs"] == 6000
    assert stats["applicant_details"]["pageName"] == "Applicant details"
    assert list(stats) == ["applicant_details", "vehicle_info"]


def test_page_errors_are_per_session():
    sessions = [
        _complete("s1", pageTimings=[{"pageId": "vehicle_info", "durationMs": 100}],
                  errorCountsByPage={"vehicle_info": 3}),
        _complete("s2", pageTimings=[{"pageId": "vehicle_info", "durationMs": 100}]),
    ]
    [stats] = page_stats(sessions)
    assert stats["totalErrors"] == 3
    assert stats["avgErrors"] == 1.5
    assert stats["errorRate"] == 50


@pytest.mark.parametrize("values,expected", [
    ([1, 2, 3, 4], 2.5),
    ([5, 1, 3], 3.0),
    ([], 0.0),
])
def test_median(values, expected):
    assert median(values) == expected


def test_doc_stats():
    sessions = [
        _complete("s1", docInteractions=[
            {"docId": "water_bill", "durationMs": 1000},
            {"docId": "water_bill", "durationMs": 3000},
        ]),
        _complete("s2"),
    ]
    [stats] = doc_stats(sessions)
    assert stats["docId"] == "water_bill"
    assert stats["docName"] == "Water Bill"
    assert stats["totalOpens"] == 2
    assert stats["uniqueViewers"] == 1
    assert stats["viewedByPct"] == 50
    assert stats["totalTimeMs"] == 4000
    assert stats["avgTimeMs"] == 4000
    assert stats["avgTimePerOpenMs"] == 2000
    assert stats["avgOpensPerViewer"] == 2.0


def test_histogram_bins():
    sessions = [
        _complete("s1", applicationDurationMs=30_000),
        _complete("s2", applicationDurationMs=90_000),
        _complete("s3", applicationDurationMs=125_000),
    ]
    hist = duration_histogram(sessions, 60)
    assert hist["n"] == 3
    assert [b["count"] for b in hist["bins"]] == [1, 1, 1]
    assert hist["bins"][-1] == {"start_s": 120, "end_s": 180, "count": 1}


def test_histogram_max_value_clamped_to_last_bin():
    sessions = [
        _complete("s1", applicationDurationMs=30_000),
        _complete("s2", applicationDurationMs=120_000),
    ]
    hist = duration_histogram(sessions, 60)
    assert [b["count"] for b in hist["bins"]] == [1, 1]


def test_histogram_empty():
    assert duration_histogram([], 60) == {"bin_seconds": 60, "n": 0, "bins": []}


def test_drop_off_uses_last_page():
    stopped = [
        make_session("s1", pageTimings=[{"pageId": "consent"}, {"pageId": "vehicle_info"}]),
        make_session("s2", consent_given=False),
    ]
    rows = drop_off(stopped)
    assert [(r["pageId"], r["count"], r["pct"]) for r in rows] == [("consent", 1, 50), ("vehicle_info", 1, 50)]


def test_quality_stats():
    sessions = [
        _complete("s1", formResponses={"applicant_details": {"first_name": "Elena", "last_name": "Vargo"}}),
        _complete("s2", formResponses={
            "applicant_details": {"first_name": "Elena", "last_name": "Varga"},
            "doc_upload_eligibility": {"eligibility_documents": [
                "vehicle_registration", "insurance_certificate", "technical_inspection", "water_bill",
            ]},
        }),
    ]
    quality = quality_stats(sessions)
    assert quality["n"] == 2
    assert quality["rejected"] == 1
    assert quality["rejection_rate"] == 0.5
    per_field = {f["field"]: f for f in quality["per_field"]}
    assert per_field["last_name"] == {"field": "last_name", "errors": 1, "answered": 2, "rate": 0.5}
    assert per_field["national_id"]["answered"] == 0
    assert quality["over_documentation"]["sessions"] == 1
    assert quality["over_documentation"]["extra_values"] == {"eligibility_documents": {"water_bill": 1}}


def test_time_estimation_between_and_within():
    sessions = [
        _complete("s1", condition_code="self_estimate", applicationDurationMs=600_000,
                  formResponses={"feedback": {"time_estimate_minutes": "12"}}),
        _complete("s2", condition_code="other_estimate", applicationDurationMs=1_200_000,
                  formResponses={"feedback": {"time_estimate_minutes": 15}}),
        _complete("s3", condition_code="other_estimate", applicationDurationMs=1_200_000),
    ]
    result = time_estimation_stats(sessions)

    assert result["actual_minutes"]["n"] == 3
    by_condition = result["by_condition"]
    assert by_condition["self_estimate"]["mean"] == 12
    assert by_condition["other_estimate"]["n"] == 1

    within = result["within_subject"]
    assert within["n"] == 1
    assert within["mean_signed_error"] == 2
    assert within["mean_abs_error"] == 2
    assert within["mean_ratio"] == 1.2
    assert within["prop_over"] == 1.0
    assert within["prop_under"] == 0.0


def test_format_ms():
    assert format_ms(185_000) == "3m 5s"
    assert format_ms(5_000) == "5s"
    assert format_ms(None) == "0s"


def test_build_stats_uses_exploitable_sessions_only():
    sessions = [
        _complete("complete", applicationDurationMs=60_000, totalDurationMs=100_000),
        make_session("submitted", currentPageId="demographics", applicationDurationMs=120_000, totalDurationMs=140_000),
        make_session("ineligible", formData={"is_eligible": "no"}, currentPageIndex=15, totalDurationMs=5_000),
        make_session("dropped", currentPageIndex=4, totalDurationMs=2_000),
        make_session("incomplete", consent_given=False),
    ]
    stats = build_stats(sessions)

    assert stats["total_sessions"] == 5
    assert stats["status_counts"] == {
        "complete": 1, "submitted": 1, "ineligible": 1, "dropped": 1, "incomplete": 1,
    }
    assert stats["exploitable_sessions"] == 2
    assert stats["timing"]["total_duration_ms"] == {"mean": 120_000, "median": 120_000, "n": 2}
    assert stats["timing"]["application_duration_ms"]["mean"] == 90_000
    assert stats["avg_task_duration_formatted"] == "1m 30s"
    assert sum(r["count"] for r in stats["drop_off"]) == 2
    assert stats["by_condition"]["self_estimate"]["total"] == 5
    assert stats["completion_rate"] == 0.2


def test_build_stats_on_empty_set():
    stats = build_stats([])
    assert stats["total_sessions"] == 0
    assert stats["page_stats"] == []
    assert stats["quality"]["n"] == 0
    assert stats["time_estimation"]["within_subject"] == {"condition": "self_estimate", "n": 0}
