import os

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEPRECATED_MODEL_ID = "gemini-2.5-flash-preview-09-2025"


class Settings(BaseSettings):
    """Global configuration for the OmniTech field backend."""

    model_id: str = "gemini-2.5-flash"
    api_key: str = ""
    api_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    use_vertex: bool = False
    location: str = "us-central1"
    project_id: str = Field(
        default_factory=lambda: (
            os.getenv("GOOGLE_CLOUD_PROJECT")
            or os.getenv("GCLOUD_PROJECT")
            or os.getenv("GOOGLE_CLOUD_PROJECT_ID")
            or ""
        )
    )
    offline_mode: bool = False
    fallback_on_unreachable: bool = True
    request_timeout_seconds: float = 30.0
    max_output_tokens: int = 600
    temperature: float = 0.4

    cooldown_seconds: float = 3.0
    max_calls_per_minute: int = 10

    report_entry_limit: int = 20
    degraded_notice_after: int = 3
    frame_max_age_seconds: float = 5.0
    allow_anonymous: bool = True
    persist_events: bool = True

    model_config = SettingsConfigDict(env_prefix="OMNITECH_", extra="ignore")

    @field_validator("model_id")
    @classmethod
    def validate_model_id(cls, value: str) -> str:
        if value == DEPRECATED_MODEL_ID:
            raise ValueError("The deprecated preview Gemini model is not allowed.")
        return value

    @field_validator("max_calls_per_minute", "report_entry_limit", "degraded_notice_after")
    @classmethod
    def validate_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("Limits must be at least 1.")
        return value

    @field_validator("cooldown_seconds", "request_timeout_seconds", "frame_max_age_seconds")
    @classmethod
    def validate_non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("Durations cannot be negative.")
        return value

    @property
    def inference_configured(self) -> bool:
        if self.offline_mode:
            return False
        if self.use_vertex:
            return bool(self.project_id)
        return bool(self.api_key)


settings = Settings()  # type: ignore[call-arg]
