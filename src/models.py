"""Shared Pydantic data models for the strategy webhook relay."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

# --- Enums ---


class Step(str, Enum):
    AUDIENCE_ARCHITECT = "audienceArchitect"
    CONTENT_COMPASS = "contentCompass"
    MESSAGE_MULTIPLIER = "messageMultiplier"
    EVENT_FUNNEL = "eventFunnel"
    LANDING_PAGE = "landingPage"
    OFFER_PROMPT = "offerPrompt"


class StepStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"


class ComponentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    NOT_REQUESTED = "not_requested"


class SubmissionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class SubmissionKind(str, Enum):
    ICP = "icp"
    OFFER = "offer"


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


# --- Webhook Models ---


class WebhookPayload(BaseModel):
    """Outbound request body before step-specific augmentation."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    submission_id: str = Field(alias="submissionId")
    inputs: dict[str, Any]
    timestamp: str | None = None


class StepResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    payload: Any
    status: StepStatus


class CallbackPayload(BaseModel):
    """Result pushed back by an N8N workflow for one step."""

    model_config = ConfigDict(populate_by_name=True)

    submission_id: str = Field(alias="submissionId", min_length=1)
    step: str = Field(min_length=1)
    payload: Any
    status: StepStatus | None = None
    timestamp: str | None = None


# --- Submission Models ---


class Submission(BaseModel):
    id: str
    kind: SubmissionKind
    title: str | None = None
    inputs: dict[str, Any] = Field(default_factory=dict)
    components: dict[str, Any] = Field(default_factory=dict)
    component_status: dict[str, ComponentStatus] = Field(default_factory=dict)
    status: SubmissionStatus = SubmissionStatus.PENDING
    error: str | None = None
    created_at: str = Field(default_factory=_now_iso)
    updated_at: str = Field(default_factory=_now_iso)
    completed_at: str | None = None


# --- Form Request Models ---

EVENT_FIELDS = (
    "eventName",
    "eventDates",
    "eventLocation",
    "uniqueSellingPoints",
    "ticketTiers",
)
OPTIONAL_EVENT_FIELDS = (
    "speakers",
    "keyTransformations",
    "testimonials",
    "leadCaptureStrategy",
)


class AudienceArchitectRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    target_market: str = Field(alias="targetMarket", min_length=1)
    product: str = Field(min_length=1)
    generate_landing_page: bool = Field(default=False, alias="generateLandingPage")
    event_name: str | None = Field(default=None, alias="eventName")
    event_dates: str | None = Field(default=None, alias="eventDates")
    event_location: str | None = Field(default=None, alias="eventLocation")
    unique_selling_points: str | None = Field(default=None, alias="uniqueSellingPoints")
    ticket_tiers: str | None = Field(default=None, alias="ticketTiers")
    speakers: str | None = None
    key_transformations: str | None = Field(default=None, alias="keyTransformations")
    testimonials: str | None = None
    lead_capture_strategy: str | None = Field(default=None, alias="leadCaptureStrategy")
    timestamp: str | None = None

    @model_validator(mode="after")
    def _require_event_fields(self) -> AudienceArchitectRequest:
        if not self.generate_landing_page:
            return self
        required = (
            self.event_name,
            self.event_dates,
            self.event_location,
            self.unique_selling_points,
            self.ticket_tiers,
        )
        if not all(v and v.strip() for v in required):
            raise ValueError(
                "Event name, dates, location, unique selling points, and ticket "
                "tiers are required when generating landing page"
            )
        return self

    def to_inputs(self) -> dict[str, Any]:
        """Inputs as stored on the submission (camelCase keys)."""
        inputs: dict[str, Any] = {
            "targetMarket": self.target_market,
            "product": self.product,
            "generateLandingPage": self.generate_landing_page,
        }
        if self.generate_landing_page:
            data = self.model_dump(by_alias=True)
            for name in EVENT_FIELDS + OPTIONAL_EVENT_FIELDS:
                inputs[name] = data[name]
        inputs["timestamp"] = self.timestamp or _now_iso()
        return inputs


class LandingPageRequest(BaseModel):
    """Event details added to an existing audience submission."""

    model_config = ConfigDict(populate_by_name=True)

    submission_id: str = Field(alias="submissionId", min_length=1)
    event_name: str = Field(alias="eventName", min_length=1)
    event_dates: str = Field(alias="eventDates", min_length=1)
    event_location: str = Field(alias="eventLocation", min_length=1)
    unique_selling_points: str = Field(alias="uniqueSellingPoints", min_length=1)
    ticket_tiers: str = Field(alias="ticketTiers", min_length=1)
    speakers: str | None = None
    key_transformations: str | None = Field(default=None, alias="keyTransformations")
    testimonials: str | None = None
    lead_capture_strategy: str | None = Field(default=None, alias="leadCaptureStrategy")
    generate_landing_page: bool = Field(default=True, alias="generateLandingPage")

    def event_inputs(self) -> dict[str, Any]:
        """Event fields to merge into the submission inputs; unset optionals are left out."""
        data = self.model_dump(by_alias=True)
        inputs = {name: data[name] for name in EVENT_FIELDS}
        for name in OPTIONAL_EVENT_FIELDS:
            if data[name]:
                inputs[name] = data[name]
        return inputs


class RegenerateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    submission_id: str = Field(alias="submissionId", min_length=1)
    component: str = Field(min_length=1)


class OfferPromptRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    program_name: str = Field(alias="programName", min_length=1)
    target_audience: str = Field(alias="targetAudience", min_length=1)
    core_promise: str = Field(alias="corePromise", min_length=1)
    program_structure: str = Field(alias="programStructure", min_length=1)
    investment_details: str = Field(alias="investmentDetails", min_length=1)
    ideal_candidate_criteria: str = Field(alias="idealCandidateCriteria", min_length=1)
    quick_start_bonus: str = Field(alias="quickStartBonus", min_length=1)

    def to_inputs(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)
