"""Sludge study configuration."""
from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Sludge study server settings."""

    app_name: str = "Sludge Experiment"
    debug: bool = False
    cors_origins: str = "*"

    # Paths
    base_dir: Path = Path(__file__).resolve().parent.parent
    data_dir: Path = Path(__file__).resolve().parent.parent / "data"
    log_dir: Path = Path(__file__).resolve().parent.parent / "logs"

    # Export / maintenance access
    export_key: str = "research2025"
    delete_confirmation_phrase: str = "DELETE ALL DATA"

    # ============== CONDITION ASSIGNMENT ==============
    conditions: list[str] = ["self_estimate", "other_estimate"]
    block_size: int = 4  # Must be a multiple of len(conditions)
    random_seed: int | None = None
    # Sessions idle longer than this (and not submitted) leave the balance bookkeeping.
    # None or 0 disables the exclusion.
    randomization_inactivity_minutes: float | None = 60.0

    # ============== COMPLETION STATUS ==============
    eligibility_field: str = "is_eligible"
    ineligible_value: str = "no"
    submission_page_id: str = "application_submitted"
    completion_page_id: str = "completion"
    post_submission_pages: list[str] = [
        "application_submitted",
        "demographics",
        "attention_check",
        "feedback",
        "debrief",
        "completion",
    ]
    # Last-resort fallback for sessions without tracker state.
    # None = position of submission_page_id in the page order.
    submission_index_threshold: int | None = None

    # ============== STATISTICS ==============
    histogram_bin_seconds: int = 60
    time_estimate_field: str = "time_estimate_minutes"
    self_estimation_condition: str = "self_estimate"

    # Scoring: JSON answer key file; empty = built-in key
    answer_key_path: str = ""

    # API
    max_batch_events: int = 5_000

    class Config:
        env_prefix = "SLUDGE_"
        env_file = ".env"


settings = Settings()
