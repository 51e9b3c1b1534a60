import json

import pytest

from app.services.scoring import (
    CustomRule,
    answer_key_from_dict,
    load_answer_key,
    normalize_date,
    score_application,
)

CORRECT = {
    "first_name": "Elena",
    "last_name": "Varga",
    "date_of_birth": "12/06/1990",
    "national_id": "id-458921",
    "is_eligible": "yes",
    "eligibility_documents": ["vehicle_registration", "insurance_certificate", "technical_inspection"],
    "residence_document": "water_bill",
    "vehicle_registration_number": "GZ-4821-KT",
    "vehicle_owner_type": "private",
    "vehicle_category": "M1",
    "vehicle_fuel_type": "hybrid_petrol",
    "vehicle_env_classification": "green_b",
}


def test_correct_application_has_no_errors():
    result = score_application(CORRECT)
    assert result.total_errors == 0
    assert result.would_reject is False
    assert result.over_documentation == {}
    assert len(result.scored_fields) == len(CORRECT)


def test_id_normalization_ignores_case_and_whitespace():
    result = score_application({"national_id": " ID-458921 "})
    assert result.total_errors == 0
    assert result.scored_fields == ["national_id"]


def test_text_normalization():
    result = score_application({"first_name": "  elena ", "vehicle_category": "m1"})
    assert result.total_errors == 0


@pytest.mark.parametrize("value", ["", "   ", None, []])
def test_unanswered_fields_are_skipped(value):
    result = score_application({"first_name": value, "eligibility_documents": value})
    assert result.total_errors == 0
    assert result.scored_fields == []


def test_missing_documents_give_one_error():
    result = score_application({"eligibility_documents": ["vehicle_registration"]})
    assert result.total_errors == 1
    error = result.errors[0]
    assert error.field == "eligibility_documents"
    assert error.description == "missing required document(s): insurance_certificate, technical_inspection"
    assert result.would_reject is True


def test_over_documentation_is_not_an_error():
    result = score_application({
        "eligibility_documents": [
            "vehicle_registration", "insurance_certificate", "technical_inspection", "water_bill",
        ],
    })
    assert result.total_errors == 0
    assert result.over_documentation == {
        "eligibility_documents": {"extraDocs": ["water_bill"], "extraCount": 1},
    }


def test_semicolon_joined_selection():
    result = score_application({
        "eligibility_documents": "vehicle_registration;insurance_certificate;technical_inspection",
    })
    assert result.total_errors == 0


@pytest.mark.parametrize("submitted,ok", [
    ("water_bill", True),
    (["electricity_bill"], True),
    ("insurance_certificate", False),
    (["water_bill", "electricity_bill"], False),
])
def test_one_of_rule(submitted, ok):
    result = score_application({"residence_document": submitted})
    assert (result.total_errors == 0) is ok
    if not ok:
        assert result.errors[0].description == "invalid choice"


@pytest.mark.parametrize("submitted,ok", [
    ("12/6/1990", True),
    ("12/06/1990", True),
    ("12-06-1990", True),
    ("06/12/1990", False),
])
def test_date_rule(submitted, ok):
    result = score_application({"date_of_birth": submitted})
    assert (result.total_errors == 0) is ok


def test_custom_rule_uses_its_comparator():
    rule = CustomRule(expected=10, compare=lambda got, want: int(got) >= want, description="too small")
    assert rule.check("12") is None
    assert rule.check("3") == "too small"

    result = score_application({"seats": "3"}, {"seats": rule})
    assert result.to_dict()["errors"] == [
        {"field": "seats", "submitted": "3", "expected": 10, "description": "too small"},
    ]


def test_normalize_date_strips_leading_zeros():
    assert normalize_date("01/02/2003") == "1/2/2003"
    assert normalize_date("00/00/2003") == "0/0/2003"


def test_wrong_values_are_reported():
    result = score_application({**CORRECT, "last_name": "Vargas", "vehicle_fuel_type": "diesel"})
    assert result.total_errors == 2
    assert result.error_fields == ["last_name", "vehicle_fuel_type"]
    payload = result.to_dict()
    assert payload["wouldReject"] is True
    assert payload["errors"][0] == {
        "field": "last_name",
        "submitted": "Vargas",
        "expected": "Varga",
        "description": "incorrect value",
    }


def test_answer_key_from_json_file(tmp_path):
    path = tmp_path / "key.json"
    path.write_text(json.dumps({
        "pet": {"rule": "exact", "expected": "Cat"},
        "code": {"rule": "exact", "expected": "AB 12", "normalize": "id"},
        "docs": {"rule": "includes_all", "expected": ["a", "b"]},
    }))
    key = load_answer_key(path)

    result = score_application({"pet": "cat", "code": "ab12", "docs": ["a"], "first_name": "Nobody"}, key)
    assert result.error_fields == ["docs"]
    assert result.scored_fields == ["pet", "code", "docs"]


def test_unknown_rule_rejected():
    with pytest.raises(ValueError):
        answer_key_from_dict({"x": {"rule": "fuzzy"}})
