"""
Response schemas for the plan workflow API.
PHI note: suggestion and plan payloads contain PHI - NEVER log.
"""
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from careplan.schemas.plan_content import PlanContent
from careplan.schemas.safety import SafetyCheckResult
from careplan.schemas.suggestion import GoalTimeline, PlanVersionSummary, PlanVersionView, SuggestionView
from careplan.services.plan_diff import PlanDiff


# === Envelope ===

class ResponseMetadata(BaseModel):
    """Metadata included in error responses."""
    model_config = ConfigDict(populate_by_name=True)

    request_id: str = Field(..., alias="requestId", description="Request ID for tracing")


class ErrorDetail(BaseModel):
    """Error details for failed requests."""
    model_config = ConfigDict(populate_by_name=True)

    code: Literal[
        "UNAUTHORIZED",
        "BAD_REQUEST",
        "INTERNAL_ERROR",
        "VALIDATION_ERROR",
        "NOT_FOUND",
        "SAFETY_BLOCKED",
        "ALREADY_REVIEWED",
        "VERSION_CONFLICT",
        "PLAN_EXISTS",
        "MODEL_ERROR",
        "BACKEND_UNAVAILABLE",
        "TIMEOUT",
        "RATE_LIMITED",
        "PERSISTENCE_ERROR",
    ] = Field(..., description="Error code")
    message: str = Field(..., description="Human-readable error message")
    retryable: bool = Field(default=False, description="Whether the request can be retried")
    current_status: Optional[str] = Field(
        default=None, alias="currentStatus", description="Suggestion status when already reviewed"
    )


class ErrorResponse(BaseModel):
    """Error response."""
    model_config = ConfigDict(populate_by_name=True)

    success: Literal[False] = False
    error: ErrorDetail = Field(..., description="Error details")
    metadata: ResponseMetadata = Field(..., description="Response metadata")


class SafetyBlockedResponse(ErrorResponse):
    """422 body when the safety check refused generation."""
    safety_result: SafetyCheckResult = Field(..., alias="safetyResult")


# === Sessions ===

class AnalyzeResponse(BaseModel):
    """Suggestion awaiting review for a session."""
    model_config = ConfigDict(populate_by_name=True)

    success: Literal[True] = True
    suggestion_id: str = Field(..., alias="suggestionId")
    suggestion: SuggestionView
    safety_result: SafetyCheckResult = Field(..., alias="safetyResult")
    requires_review: Literal[True] = Field(default=True, alias="requiresReview")
    reused: bool = Field(default=False, description="True when an existing PENDING suggestion was returned")


class PendingSuggestionResponse(BaseModel):
    """Pending suggestion of a session, if any, with the plan it would change."""
    model_config = ConfigDict(populate_by_name=True)

    suggestion: Optional[SuggestionView] = None
    current_plan: Optional[PlanContent] = Field(default=None, alias="currentPlan")
    current_version: Optional[int] = Field(default=None, alias="currentVersion")


# === Suggestions ===

class ApproveResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: Literal[True] = True
    plan_version: PlanVersionView = Field(..., alias="planVersion")
    change_summary: str = Field(..., alias="changeSummary")


class RejectResponse(BaseModel):
    success: Literal[True] = True
    message: str


class PendingListResponse(BaseModel):
    suggestions: list[SuggestionView] = Field(default_factory=list)


# === Plans ===

class PlanVersionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: Literal[True] = True
    plan_version: PlanVersionView = Field(..., alias="planVersion")


class VersionListResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    treatment_plan_id: str = Field(..., alias="treatmentPlanId")
    versions: list[PlanVersionSummary] = Field(default_factory=list)


class PlanDiffResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    treatment_plan_id: str = Field(..., alias="treatmentPlanId")
    suggestion_id: str = Field(..., alias="suggestionId")
    current_version: Optional[int] = Field(default=None, alias="currentVersion")
    diff: PlanDiff
    summary: str


class GoalHistoryResponse(BaseModel):
    """Goal status timelines of a plan."""
    model_config = ConfigDict(populate_by_name=True)

    treatment_plan_id: str = Field(..., alias="treatmentPlanId")
    goals: list[GoalTimeline] = Field(default_factory=list)
    total_history_entries: int = Field(default=0, alias="totalHistoryEntries")
