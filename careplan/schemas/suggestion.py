"""
Suggestion review state and generation output.

The review state is a closed tagged union: a suggestion is Pending, or it was
Approved by a reviewer at a time, or Rejected by a reviewer at a time for a
reason. Only Pending can move, and only once.
PHI note: session summaries, progress notes and reasons contain PHI - NEVER log.
"""
from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from careplan.schemas.plan_content import PlanContent
from careplan.services.exceptions import AlreadyReviewedError, ValidationError


class SuggestionStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class ChangeType(str, Enum):
    """Provenance tag of a plan version."""
    INITIAL = "INITIAL"
    MANUAL_EDIT = "MANUAL_EDIT"
    SESSION_UPDATE = "SESSION_UPDATE"


class Pending(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["PENDING"] = "PENDING"


class Approved(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["APPROVED"] = "APPROVED"
    reviewer: str
    at: datetime
    notes: Optional[str] = None


class Rejected(BaseModel):
    model_config = ConfigDict(frozen=True)
    kind: Literal["REJECTED"] = "REJECTED"
    reviewer: str
    at: datetime
    reason: str = Field(..., min_length=1)


ReviewState = Annotated[Union[Pending, Approved, Rejected], Field(discriminator="kind")]
review_state_adapter: TypeAdapter = TypeAdapter(ReviewState)


def approve_state(
    state: ReviewState, reviewer: str, at: datetime, notes: Optional[str] = None
) -> Approved:
    if not isinstance(state, Pending):
        raise AlreadyReviewedError(state.kind)
    return Approved(reviewer=reviewer, at=at, notes=notes)


def reject_state(state: ReviewState, reviewer: str, at: datetime, reason: str) -> Rejected:
    if not isinstance(state, Pending):
        raise AlreadyReviewedError(state.kind)
    if not reason or not reason.strip():
        raise ValidationError("Rejection reason is required")
    return Rejected(reviewer=reviewer, at=at, reason=reason.strip())


class GeneratedSuggestion(BaseModel):
    """What the generative model must return for one session."""
    model_config = ConfigDict(populate_by_name=True)

    session_summary: str = Field(..., min_length=1, alias="sessionSummary",
                                 description="2-3 sentence summary of the session")
    progress_notes: Optional[str] = Field(default=None, alias="progressNotes",
                                          description="Clinical progress notes (SOAP preferred)")
    suggested_changes: PlanContent = Field(..., alias="suggestedChanges",
                                           description="Full proposed plan content")


class SuggestionView(BaseModel):
    """Suggestion as returned to reviewers."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    treatment_plan_id: str = Field(..., alias="treatmentPlanId")
    session_id: str = Field(..., alias="sessionId")
    status: SuggestionStatus
    session_summary: str = Field(..., alias="sessionSummary")
    progress_notes: Optional[str] = Field(default=None, alias="progressNotes")
    suggested_changes: PlanContent = Field(..., alias="suggestedChanges")
    created_at: datetime = Field(..., alias="createdAt")
    reviewed_at: Optional[datetime] = Field(default=None, alias="reviewedAt")
    reviewed_by: Optional[str] = Field(default=None, alias="reviewedBy")
    therapist_notes: Optional[str] = Field(default=None, alias="therapistNotes")


class PlanVersionView(BaseModel):
    """Immutable plan version as returned to clients."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    treatment_plan_id: str = Field(..., alias="treatmentPlanId")
    version: int
    content: PlanContent
    change_type: ChangeType = Field(..., alias="changeType")
    change_reason: Optional[str] = Field(default=None, alias="changeReason")
    change_summary: Optional[str] = Field(default=None, alias="changeSummary")
    suggestion_id: Optional[str] = Field(default=None, alias="suggestionId")
    created_by: Optional[str] = Field(default=None, alias="createdBy")
    created_at: datetime = Field(..., alias="createdAt")


class PlanVersionSummary(BaseModel):
    """History list entry (no content)."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    version: int
    change_type: ChangeType = Field(..., alias="changeType")
    change_reason: Optional[str] = Field(default=None, alias="changeReason")
    change_summary: Optional[str] = Field(default=None, alias="changeSummary")
    created_at: datetime = Field(..., alias="createdAt")


class GoalHistoryEntry(BaseModel):
    """One recorded goal status transition."""
    model_config = ConfigDict(populate_by_name=True)

    id: int
    goal_id: str = Field(..., alias="goalId")
    goal_description: Optional[str] = Field(default=None, alias="goalDescription")
    previous_status: str = Field(..., alias="previousStatus", description="NEW for a goal added by the approval")
    new_status: str = Field(..., alias="newStatus")
    changed_at: datetime = Field(..., alias="changedAt")
    changed_by: Optional[str] = Field(default=None, alias="changedBy")
    reason: Optional[str] = None
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    plan_version_id: Optional[str] = Field(default=None, alias="planVersionId")


class GoalTimeline(BaseModel):
    """A goal with its status history, oldest entry first."""
    model_config = ConfigDict(populate_by_name=True)

    goal_id: str = Field(..., alias="goalId")
    description: str
    current_status: str = Field(..., alias="currentStatus")
    history: list[GoalHistoryEntry] = Field(default_factory=list)
