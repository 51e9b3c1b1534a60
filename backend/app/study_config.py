"""Study design for the Green Zone permit procedure.

Defines:
- Page order and human-readable page names (dashboard, drop-off tables)
- Case-file documents participants can open
- Which pages count towards application time
- Event type -> log category routing
- The answer key used for application-quality scoring
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

# ============== PROCEDURE PAGES ==============

PAGE_ORDER: list[str] = [
    "consent", "instructions", "confirm_instructions",
    "applicant_details",
    "eligibility_rules", "eligibility_decision", "doc_upload_eligibility", "doc_upload_residence",
    "vehicle_info", "vehicle_category", "vehicle_fuel", "vehicle_env_class",
    "declaration", "application_submitted",
    "demographics", "attention_check",
    "feedback", "debrief", "completion",
]

PAGE_NAMES: dict[str, str] = {
    "consent": "Consent",
    "instructions": "Instructions",
    "confirm_instructions": "Confirm instructions",
    "applicant_details": "Applicant details",
    "eligibility_rules": "Eligibility rules",
    "eligibility_decision": "Eligibility decision",
    "doc_upload_eligibility": "Upload eligibility docs",
    "doc_upload_residence": "Upload residence docs",
    "vehicle_info": "Vehicle information",
    "vehicle_category": "Vehicle category",
    "vehicle_fuel": "Vehicle fuel type",
    "vehicle_env_class": "Vehicle environmental class",
    "declaration": "Declaration",
    "application_submitted": "Application submitted",
    "demographics": "Demographics",
    "attention_check": "Attention check",
    "feedback": "Feedback",
    "debrief": "Debrief",
    "completion": "Completion",
}

# Pages that make up the permit application itself
APPLICATION_PAGES: list[str] = [
    "applicant_details",
    "eligibility_rules", "eligibility_decision", "doc_upload_eligibility", "doc_upload_residence",
    "vehicle_info", "vehicle_category", "vehicle_fuel", "vehicle_env_class",
    "declaration",
]

# Research pages excluded from application time
NON_APPLICATION_PAGES: frozenset[str] = frozenset({
    "consent", "instructions", "confirm_instructions",
    "application_submitted", "demographics", "attention_check",
    "feedback", "debrief", "completion",
})

# Pages with form fields (error columns are meaningful)
FORM_PAGES: list[str] = APPLICATION_PAGES + ["demographics", "attention_check", "feedback"]

# ============== CASE-FILE DOCUMENTS ==============

DOC_NAMES: dict[str, str] = {
    "driving_license": "Driving License",
    "vehicle_registration": "Vehicle Registration",
    "insurance_cert": "Insurance Certificate",
    "technical_inspection": "Technical Inspection",
    "electricity_bill": "Electricity Bill",
    "water_bill": "Water Bill",
}

# ============== EVENT ROUTING ==============

SESSIONS_CATEGORY = "sessions"
UPDATES_CATEGORY = "sessions_updates"
MISC_CATEGORY = "misc_events"

EVENT_CATEGORIES: dict[str, str] = {
    "page_enter": "page_events",
    "page_exit": "page_events",
    "page": "page_events",
    "doc_open": "document_events",
    "doc_close": "document_events",
    "document": "document_events",
    "validation_errors": "validation_events",
    "validation": "validation_events",
    "form_responses": "form_responses",
    "form_response": "form_responses",
    "navigation": "navigation_events",
    "click": "click_events",
    "scroll": "scroll_events",
    "visibility_change": "visibility_events",
    "visibility": "visibility_events",
    "field": "field_events",
    "session_complete": "session_events",
}

EVENT_TABLES: list[str] = sorted(set(EVENT_CATEGORIES.values())) + [MISC_CATEGORY]


def page_name(page_id: str) -> str:
    return PAGE_NAMES.get(page_id, page_id)


def doc_name(doc_id: str) -> str:
    return DOC_NAMES.get(doc_id, doc_id)


def category_for_event(event_type: Any) -> str:
    """Log category for an event type; unknown types go to the misc log."""
    if not isinstance(event_type, str):
        return MISC_CATEGORY
    return EVENT_CATEGORIES.get(event_type, MISC_CATEGORY)


# ============== ANSWER KEY ==============

@dataclass
class FieldAnswer:
    """Expected answer for one application field (JSON-friendly form)."""

    rule: str  # exact | includes_all | one_of | date
    expected: Any = None
    normalize: str = "text"  # text | id | none
    label: str = ""
    options: list[str] = field(default_factory=list)


# Facts from the fictional case file handed to participants
GREENZONE_ANSWER_KEY: dict[str, FieldAnswer] = {
    "first_name": FieldAnswer(rule="exact", expected="Elena", label="First name"),
    "last_name": FieldAnswer(rule="exact", expected="Varga", label="Last name"),
    "date_of_birth": FieldAnswer(rule="date", expected="12/06/1990", label="Date of birth"),
    "national_id": FieldAnswer(rule="exact", expected="id-458921", normalize="id", label="National ID"),
    "is_eligible": FieldAnswer(rule="exact", expected="yes", label="Eligibility decision"),
    "eligibility_documents": FieldAnswer(
        rule="includes_all",
        expected=["vehicle_registration", "insurance_certificate", "technical_inspection"],
        label="Eligibility documents",
    ),
    "residence_document": FieldAnswer(
        rule="one_of",
        options=["water_bill", "electricity_bill"],
        label="Proof of residence",
    ),
    "vehicle_registration_number": FieldAnswer(
        rule="exact", expected="GZ-4821-KT", normalize="id", label="Registration number",
    ),
    "vehicle_owner_type": FieldAnswer(rule="exact", expected="private", label="Owner type"),
    "vehicle_category": FieldAnswer(rule="exact", expected="M1", label="Vehicle category"),
    "vehicle_fuel_type": FieldAnswer(rule="exact", expected="hybrid_petrol", label="Fuel type"),
    "vehicle_env_classification": FieldAnswer(rule="exact", expected="green_b", label="Environmental class"),
}
