from app.services import build_study


def test_consent_twice_is_harmless(study):
    sid = study.sessions.create_session()["session_id"]
    study.sessions.give_consent(sid)
    study.sessions.give_consent(sid)

    assert study.sessions.get_session(sid)["consent_given"] is True
    [merged] = study.sessions.merged_sessions()
    assert merged["consent_given"] is True
    assert len(study.store.read_all("sessions_updates")) == 2


def test_updates_for_unknown_sessions_are_logged_not_indexed(study):
    study.sessions.save_progress("ghost", 4, "eligibility_rules", {"a": 1})
    assert study.sessions.get_session("ghost") is None
    assert study.sessions.merged_sessions() == []
    assert len(study.store.read_all("sessions_updates")) == 1


def test_progress_with_missing_index_defaults_to_zero(study):
    sid = study.sessions.create_session()["session_id"]
    study.sessions.save_progress(sid, None)
    session = study.sessions.get_session(sid)
    assert session["currentPageIndex"] == 0
    assert session["formData"] == {}


def test_cache_and_log_agree(study):
    sid = study.sessions.create_session(external_ids={"prolific_pid": "P1"})["session_id"]
    study.sessions.give_consent(sid)
    study.sessions.save_progress(sid, 6, "doc_upload_eligibility", {"is_eligible": "yes"})
    study.sessions.complete_session(sid, {"totalDurationMs": 5000})

    cached = study.sessions.get_session(sid)
    [merged] = study.sessions.merged_sessions()
    for key in ("consent_given", "currentPageIndex", "formData", "is_complete", "totalDurationMs"):
        assert cached[key] == merged[key]


def test_late_snapshot_is_logged_but_not_cached(study):
    sid = study.sessions.create_session()["session_id"]
    study.sessions.complete_session(sid, {"totalDurationMs": 5000})
    assert study.sessions.save_snapshot(sid, {"totalDurationMs": 100}) is False

    assert study.sessions.get_session(sid)["totalDurationMs"] == 5000
    [merged] = study.sessions.merged_sessions()
    assert merged["totalDurationMs"] == 100
    assert merged["is_complete"] is True

    study.index.load(study.store)
    assert study.sessions.get_session(sid)["totalDurationMs"] == 5000


def test_forced_condition_recorded(study):
    session = study.sessions.create_session(requested_condition="self_estimate", procedure_version="short")
    assert session["condition_forced"] is True
    assert session["procedure_version"] == "short"


def test_resume_ignores_unknown_pid(study):
    study.sessions.create_session(external_ids={"prolific_pid": "unknown"})
    assert study.sessions.resume(pid="unknown").found is False


def test_import_reads_legacy_status(study):
    counts = study.sessions.import_data({
        "sessions": [
            {"session_id": "old-1", "completion_status": "partial", "currentPageIndex": 14, "last_page": "feedback"},
            {"session_id": ""},
            "not a session",
        ],
        "click_events": [{"session_id": "old-1", "type": "click"}],
    })
    assert counts == {"sessions": 1, "click_events": 1}

    [session] = study.sessions.merged_sessions()
    assert session["imported_completion_status"] == "submitted"
    assert "completion_status" not in session
    assert "last_page" not in session
    assert study.index.get("old-1") is not None


def test_delete_all_resets_randomizer(study):
    study.sessions.create_session()
    assert study.randomizer.current_block is not None

    study.sessions.delete_all_data()
    assert study.randomizer.current_block is None
    assert study.sessions.merged_sessions() == []
    assert len(study.index) == 0


def test_seeded_studies_assign_identically(settings):
    first = build_study(settings)
    sequence = [first.sessions.create_session()["condition_code"] for _ in range(4)]
    first.sessions.delete_all_data()

    second = build_study(settings)
    assert [second.sessions.create_session()["condition_code"] for _ in range(4)] == sequence
