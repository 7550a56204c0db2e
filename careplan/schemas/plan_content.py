"""
Treatment plan content schema.

Shared by plan versions (committed content) and suggestions (proposed
content). Stored as JSON with camelCase keys.
PHI note: PlanContent contains clinical data - NEVER log.
"""
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class RiskLevel(str, Enum):
    """Risk levels shared by plan content and safety checks."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


GoalStatus = Literal["IN_PROGRESS", "COMPLETED", "DEFERRED"]


class _ContentModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")


class ClinicalGoal(_ContentModel):
    """A clinician-facing goal."""
    id: str = Field(..., min_length=1, description="Stable goal identifier")
    description: str = Field(..., min_length=1, description="Clinical goal description")
    status: GoalStatus = Field(default="IN_PROGRESS", description="Goal status")
    target_date: Optional[str] = Field(
        default=None, alias="targetDate", description="Target date, ISO or relative ('3 months')"
    )


class ClientGoal(_ContentModel):
    """Client-facing restatement of a clinical goal (same id)."""
    id: str = Field(..., min_length=1, description="Must match a clinical goal id")
    description: str = Field(..., min_length=1, description="Simplified, empowering version of the goal")
    emoji: str = Field(default="🎯", description="A single relevant emoji")


class Diagnosis(_ContentModel):
    """An ICD-10 diagnosis."""
    code: str = Field(..., min_length=1, description="ICD-10 code")
    description: str = Field(..., min_length=1, description="Diagnosis description")


class ClientDiagnosis(_ContentModel):
    """Patient-friendly diagnosis summary; hidden until the therapist releases it."""
    summary: str = Field(..., description="Warm explanation of what is being worked on")
    hidden: bool = Field(default=False, description="True while not yet shown to the client")


class PlanContent(_ContentModel):
    """
    Validated treatment plan content.
    CRITICAL: This contains PHI - NEVER log this object.
    """
    risk_score: RiskLevel = Field(default=RiskLevel.LOW, alias="riskScore")
    risk_rationale: Optional[str] = Field(default=None, alias="riskRationale")
    risk_flags: list[str] = Field(default_factory=list, alias="riskFlags")
    therapist_note: str = Field(default="", alias="therapistNote", description="Professional SOAP note summary")
    client_summary: str = Field(default="", alias="clientSummary", description="Warm summary for the client")
    clinical_goals: list[ClinicalGoal] = Field(default_factory=list, alias="clinicalGoals")
    client_goals: list[ClientGoal] = Field(default_factory=list, alias="clientGoals")
    primary_diagnosis: Optional[Diagnosis] = Field(default=None, alias="primaryDiagnosis")
    secondary_diagnoses: list[Diagnosis] = Field(default_factory=list, alias="secondaryDiagnoses")
    client_diagnosis: Optional[ClientDiagnosis] = Field(default=None, alias="clientDiagnosis")
    interventions: list[str] = Field(default_factory=list, description="Clinical techniques in use")
    homework: str = Field(default="", description="Actionable tasks for next session")

    @model_validator(mode="after")
    def check_goal_ids(self) -> "PlanContent":
        clinical_ids = [goal.id for goal in self.clinical_goals]
        if len(set(clinical_ids)) != len(clinical_ids):
            raise ValueError("clinicalGoals ids must be unique")
        client_ids = [goal.id for goal in self.client_goals]
        if len(set(client_ids)) != len(client_ids):
            raise ValueError("clientGoals ids must be unique")
        orphans = set(client_ids) - set(clinical_ids)
        if orphans:
            raise ValueError("clientGoals must reference existing clinicalGoals ids")
        return self

    def to_storage(self) -> dict[str, Any]:
        """JSON-ready dict with camelCase keys, as stored in the database."""
        return self.model_dump(by_alias=True, mode="json")

    @classmethod
    def from_storage(cls, raw: Any) -> "PlanContent":
        """Parse stored JSON; raises pydantic.ValidationError on bad content."""
        return cls.model_validate(raw)
