"""
Request schemas for the plan workflow API.
PHI note: request bodies contain PHI - NEVER log.
"""
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from careplan.schemas.plan_content import PlanContent


class ApproveRequest(BaseModel):
    """Approve a suggestion, optionally with reviewer-edited content."""
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    modifications: Optional[PlanContent] = Field(
        default=None, description="Full plan content replacing the suggested one"
    )
    therapist_notes: Optional[str] = Field(
        default=None, alias="therapistNotes", max_length=5000, description="Reviewer notes"
    )


class RejectRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reason: str = Field(..., min_length=1, max_length=5000, description="Why the suggestion was rejected")


class CreatePlanRequest(BaseModel):
    """Create the initial plan version for a patient."""
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    patient_id: str = Field(..., min_length=1, alias="patientId")
    plan: PlanContent
