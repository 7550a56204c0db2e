"""SQLAlchemy models for patients, sessions, treatment plans, versions, suggestions and goal history."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

import sqlalchemy as sa
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import declarative_base, relationship

from careplan.schemas.plan_content import PlanContent, RiskLevel
from careplan.schemas.safety import SafetyCheckResult
from careplan.schemas.suggestion import (
    Approved,
    ChangeType,
    GoalHistoryEntry,
    Pending,
    PlanVersionSummary,
    PlanVersionView,
    Rejected,
    ReviewState,
    SuggestionStatus,
    SuggestionView,
)
from careplan.services.exceptions import ValidationError

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class Patient(Base):
    __tablename__ = "patients"

    id = sa.Column(String, primary_key=True, default=_new_id)
    clinician_id = sa.Column(String, nullable=False, index=True)
    name = sa.Column(String, nullable=True)
    created_at = sa.Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    treatment_plan = relationship("TreatmentPlan", back_populates="patient", uselist=False)


class TherapySession(Base):
    __tablename__ = "therapy_sessions"

    id = sa.Column(String, primary_key=True, default=_new_id)
    # A session may be uploaded before it is linked to a patient.
    patient_id = sa.Column(String, ForeignKey("patients.id"), nullable=True, index=True)
    transcript = sa.Column(Text, nullable=True)
    progress_note = sa.Column(Text, nullable=True)
    created_at = sa.Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    patient = relationship("Patient")


class TreatmentPlan(Base):
    __tablename__ = "treatment_plans"

    id = sa.Column(String, primary_key=True, default=_new_id)
    patient_id = sa.Column(String, ForeignKey("patients.id"), nullable=False, unique=True)
    created_at = sa.Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    last_reviewed_at = sa.Column(DateTime(timezone=True), nullable=True)
    next_review_due = sa.Column(DateTime(timezone=True), nullable=True)

    patient = relationship("Patient", back_populates="treatment_plan")


class PlanVersion(Base):
    __tablename__ = "plan_versions"
    __table_args__ = (
        sa.UniqueConstraint("treatment_plan_id", "version", name="uq_plan_versions_plan_version"),
        sa.CheckConstraint("version >= 1", name="ck_plan_versions_positive"),
    )

    id = sa.Column(String, primary_key=True, default=_new_id)
    treatment_plan_id = sa.Column(String, ForeignKey("treatment_plans.id"), nullable=False, index=True)
    version = sa.Column(Integer, nullable=False)
    content = sa.Column(sa.JSON, nullable=False)
    change_type = sa.Column(sa.Enum(ChangeType, native_enum=False, length=20), nullable=False)
    change_reason = sa.Column(Text, nullable=True)
    change_summary = sa.Column(Text, nullable=True)
    suggestion_id = sa.Column(String, ForeignKey("plan_suggestions.id"), nullable=True, unique=True)
    created_by = sa.Column(String, nullable=True)
    created_at = sa.Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def plan_content(self) -> PlanContent:
        return PlanContent.from_storage(self.content)

    def to_view(self) -> PlanVersionView:
        return PlanVersionView(
            id=self.id,
            treatment_plan_id=self.treatment_plan_id,
            version=self.version,
            content=self.plan_content(),
            change_type=self.change_type,
            change_reason=self.change_reason,
            change_summary=self.change_summary,
            suggestion_id=self.suggestion_id,
            created_by=self.created_by,
            created_at=self.created_at,
        )

    def to_summary(self) -> PlanVersionSummary:
        return PlanVersionSummary(
            id=self.id,
            version=self.version,
            change_type=self.change_type,
            change_reason=self.change_reason,
            change_summary=self.change_summary,
            created_at=self.created_at,
        )


class PlanSuggestion(Base):
    __tablename__ = "plan_suggestions"
    __table_args__ = (
        sa.Index(
            "uq_plan_suggestions_pending_session",
            "session_id",
            unique=True,
            sqlite_where=sa.text("status = 'PENDING'"),
            postgresql_where=sa.text("status = 'PENDING'"),
        ),
    )

    id = sa.Column(String, primary_key=True, default=_new_id)
    treatment_plan_id = sa.Column(String, ForeignKey("treatment_plans.id"), nullable=False, index=True)
    session_id = sa.Column(String, ForeignKey("therapy_sessions.id"), nullable=False, index=True)
    session_summary = sa.Column(Text, nullable=False)
    progress_notes = sa.Column(Text, nullable=True)
    suggested_changes = sa.Column(sa.JSON, nullable=False)
    status = sa.Column(
        sa.Enum(SuggestionStatus, native_enum=False, length=20),
        nullable=False,
        default=SuggestionStatus.PENDING,
    )
    reviewed_at = sa.Column(DateTime(timezone=True), nullable=True)
    reviewed_by = sa.Column(String, nullable=True)
    therapist_notes = sa.Column(Text, nullable=True)
    # Audit note of the safety check that allowed generation
    safety_risk_level = sa.Column(sa.Enum(RiskLevel, native_enum=False, length=10), nullable=False)
    safety_flags = sa.Column(sa.JSON, nullable=False, default=list)
    safety_reasoning = sa.Column(Text, nullable=True)
    created_at = sa.Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    session = relationship("TherapySession")
    treatment_plan = relationship("TreatmentPlan")

    @property
    def review_state(self) -> ReviewState:
        try:
            if self.status == SuggestionStatus.APPROVED:
                return Approved(reviewer=self.reviewed_by or "", at=self.reviewed_at, notes=self.therapist_notes)
            if self.status == SuggestionStatus.REJECTED:
                return Rejected(
                    reviewer=self.reviewed_by or "", at=self.reviewed_at, reason=self.therapist_notes or "-"
                )
        except PydanticValidationError:
            raise ValidationError("Stored review state is inconsistent")
        return Pending()

    @staticmethod
    def review_columns(state: ReviewState) -> dict:
        """Column values representing a review state."""
        if isinstance(state, Approved):
            return {"status": SuggestionStatus.APPROVED, "reviewed_by": state.reviewer,
                    "reviewed_at": state.at, "therapist_notes": state.notes}
        if isinstance(state, Rejected):
            return {"status": SuggestionStatus.REJECTED, "reviewed_by": state.reviewer,
                    "reviewed_at": state.at, "therapist_notes": state.reason}
        return {"status": SuggestionStatus.PENDING, "reviewed_by": None,
                "reviewed_at": None, "therapist_notes": None}

    def safety_result(self) -> SafetyCheckResult:
        return SafetyCheckResult(
            safe_to_generate=True,
            risk_level=self.safety_risk_level,
            risk_flags=list(self.safety_flags or []),
            reasoning=self.safety_reasoning,
        )

    def suggested_content(self) -> PlanContent:
        return PlanContent.from_storage(self.suggested_changes)

    def to_view(self) -> SuggestionView:
        return SuggestionView(
            id=self.id,
            treatment_plan_id=self.treatment_plan_id,
            session_id=self.session_id,
            status=self.status,
            session_summary=self.session_summary,
            progress_notes=self.progress_notes,
            suggested_changes=self.suggested_content(),
            created_at=self.created_at,
            reviewed_at=self.reviewed_at,
            reviewed_by=self.reviewed_by,
            therapist_notes=self.therapist_notes,
        )


class GoalHistory(Base):
    """One goal status transition recorded when a suggestion was approved."""

    __tablename__ = "goal_history"

    id = sa.Column(Integer, primary_key=True, autoincrement=True)
    treatment_plan_id = sa.Column(String, ForeignKey("treatment_plans.id"), nullable=False, index=True)
    plan_version_id = sa.Column(String, ForeignKey("plan_versions.id"), nullable=True)
    goal_id = sa.Column(String, nullable=False)
    goal_description = sa.Column(Text, nullable=True)
    previous_status = sa.Column(String(20), nullable=False)
    new_status = sa.Column(String(20), nullable=False)
    changed_by = sa.Column(String, nullable=True)
    reason = sa.Column(Text, nullable=True)
    session_id = sa.Column(String, ForeignKey("therapy_sessions.id"), nullable=True)
    changed_at = sa.Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_view(self) -> GoalHistoryEntry:
        return GoalHistoryEntry(
            id=self.id,
            goal_id=self.goal_id,
            goal_description=self.goal_description,
            previous_status=self.previous_status,
            new_status=self.new_status,
            changed_at=self.changed_at,
            changed_by=self.changed_by,
            reason=self.reason,
            session_id=self.session_id,
            plan_version_id=self.plan_version_id,
        )
