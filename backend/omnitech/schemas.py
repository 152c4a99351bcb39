"""Pydantic schemas for inference results and persisted safety events.

``AnalysisResult`` is the canonical shape of every classification,
whether it came from the inference service or from the fallback pool.
It accepts the snake_case keys requested in the output contract as
well as lowerCamelCase variants the model sometimes produces.
``SafetyEventOut`` mirrors the SQLAlchemy model for the events API.
"""

import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


RESULT_STATUSES = ("SAFE", "DANGER", "UNCERTAIN")


class AnalysisResult(BaseModel):
    """Structured classification of a single frame."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    status: str = Field("UNCERTAIN", description="SAFE, DANGER or UNCERTAIN")
    headline: str = Field("", description="Short 3-5 word alert")
    reasoning: str = Field("", description="One sentence on the visual evidence")
    action_required: str = Field(
        "",
        validation_alias=AliasChoices("action_required", "actionRequired"),
        description="Direct instruction to the user",
    )
    repair_steps: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("repair_steps", "repairSteps"),
        description="Ordered repair steps, only populated in repair_guide mode",
    )

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, value: Any) -> str:
        # An incomplete classification is still a signal, so it reads as UNCERTAIN.
        if isinstance(value, str) and value.strip().upper() in RESULT_STATUSES:
            return value.strip().upper()
        return "UNCERTAIN"

    @field_validator("headline", "reasoning", "action_required", mode="before")
    @classmethod
    def empty_text_for_null(cls, value: Any) -> Any:
        if value is None:
            return ""
        return value

    @field_validator("repair_steps", mode="before")
    @classmethod
    def clean_repair_steps(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, list):
            return [str(step).strip() for step in value if str(step).strip()]
        return value

    def spoken_text(self) -> str:
        parts = [part.strip().rstrip(".") for part in (self.headline, self.action_required) if part.strip()]
        return ". ".join(parts) + "." if parts else ""


class SafetyEventOut(BaseModel):
    """Schema for persisted safety event responses."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: str
    mode: str
    status: str
    headline: Optional[str]
    reasoning: Optional[str]
    action_required: Optional[str]
    payload: Optional[Any]
    model_id: Optional[str]
    created_at: Optional[datetime]
