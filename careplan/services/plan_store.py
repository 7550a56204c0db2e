"""
Append-only ledger of treatment plan versions.

The store works inside the caller's transaction and never commits: wrap calls
in core.database.unit_of_work(). Version numbers per plan are gapless 1..N;
the highest is the current plan content.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from careplan.core.config import Settings, get_settings
from careplan.core.logging import get_safe_logger
from careplan.db.models import GoalHistory, Patient, PlanVersion, TreatmentPlan
from careplan.schemas.plan_content import PlanContent
from careplan.schemas.suggestion import ChangeType
from careplan.services.exceptions import (
    NotFoundError,
    PlanAlreadyExistsError,
    ValidationError,
    VersionConflictError,
)
from careplan.services.goal_history import goal_history_rows
from careplan.services.plan_diff import PlanDiff

logger = get_safe_logger(__name__)

INITIAL_CHANGE_REASON = "Initial Plan Creation"


class PlanVersionStore:
    """Reads and appends plan versions through an explicit Session."""

    def __init__(self, db: Session, settings: Optional[Settings] = None):
        self.db = db
        self._settings = settings or get_settings()

    # -- reads ---------------------------------------------------------------

    def get_plan(self, plan_id: str) -> Optional[TreatmentPlan]:
        return self.db.get(TreatmentPlan, plan_id)

    def get_plan_for_patient(self, patient_id: str) -> Optional[TreatmentPlan]:
        return self.db.execute(
            select(TreatmentPlan).where(TreatmentPlan.patient_id == patient_id)
        ).scalar_one_or_none()

    def current_version(self, plan_id: str) -> Optional[PlanVersion]:
        """Version row with the highest number, or None if the plan has no content yet."""
        return self.db.execute(
            select(PlanVersion)
            .where(PlanVersion.treatment_plan_id == plan_id)
            .order_by(PlanVersion.version.desc())
            .limit(1)
        ).scalar_one_or_none()

    def list_versions(self, plan_id: str) -> list[PlanVersion]:
        """History of a plan, newest first."""
        return list(self.db.execute(
            select(PlanVersion)
            .where(PlanVersion.treatment_plan_id == plan_id)
            .order_by(PlanVersion.version.desc())
        ).scalars())

    def get_version(self, plan_id: str, version: int) -> Optional[PlanVersion]:
        return self.db.execute(
            select(PlanVersion).where(
                PlanVersion.treatment_plan_id == plan_id,
                PlanVersion.version == version,
            )
        ).scalar_one_or_none()

    def list_goal_history(self, plan_id: str) -> list[GoalHistory]:
        """Goal status history of a plan, oldest first."""
        return list(self.db.execute(
            select(GoalHistory)
            .where(GoalHistory.treatment_plan_id == plan_id)
            .order_by(GoalHistory.changed_at.asc(), GoalHistory.id.asc())
        ).scalars())

    def _max_version(self, plan_id: str) -> int:
        value = self.db.execute(
            select(func.max(PlanVersion.version)).where(PlanVersion.treatment_plan_id == plan_id)
        ).scalar_one()
        return value or 0

    # -- writes --------------------------------------------------------------

    def get_or_create_plan(self, patient_id: str) -> TreatmentPlan:
        """Identity-only plan for the patient; created without versions if missing."""
        plan = self.get_plan_for_patient(patient_id)
        if plan is not None:
            return plan
        if self.db.get(Patient, patient_id) is None:
            raise NotFoundError("Patient", patient_id)

        plan = TreatmentPlan(patient_id=patient_id)
        self.db.add(plan)
        self.db.flush()
        logger.info("Treatment plan created", plan_id=plan.id)
        return plan

    def mark_reviewed(self, plan: TreatmentPlan, at: datetime) -> None:
        plan.last_reviewed_at = at
        plan.next_review_due = at + timedelta(days=self._settings.plan_review_interval_days)

    def record_goal_changes(
        self,
        version: PlanVersion,
        diff: PlanDiff,
        content: PlanContent,
        changed_by: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> list[GoalHistory]:
        """Append goal history rows for the changes a committed version made."""
        rows = goal_history_rows(
            version.treatment_plan_id,
            diff,
            content,
            changed_by=changed_by,
            session_id=session_id,
            plan_version_id=version.id,
        )
        self.db.add_all(rows)
        self.db.flush()
        if rows:
            logger.info("Goal history recorded", plan_id=version.treatment_plan_id,
                        version=version.version, goal_change_count=len(rows))
        return rows

    def create_initial(
        self,
        patient_id: str,
        content: PlanContent,
        created_by: Optional[str] = None,
        change_reason: str = INITIAL_CHANGE_REASON,
    ) -> PlanVersion:
        """
        Version 1 of a patient's plan.

        Raises NotFoundError for an unknown patient and PlanAlreadyExistsError
        when the patient's plan already has content. A plan created empty by a
        pending suggestion is initialised in place.
        """
        if self.db.get(Patient, patient_id) is None:
            raise NotFoundError("Patient", patient_id)

        plan = self.get_plan_for_patient(patient_id)
        if plan is not None and self.current_version(plan.id) is not None:
            raise PlanAlreadyExistsError(plan.id)

        if plan is None:
            plan = TreatmentPlan(patient_id=patient_id)
            self.db.add(plan)
            try:
                self.db.flush()
            except IntegrityError:
                # Lost the race on the one-plan-per-patient constraint
                raise PlanAlreadyExistsError()

        self.mark_reviewed(plan, datetime.now(timezone.utc))
        return self.commit(
            plan.id,
            content,
            ChangeType.INITIAL,
            created_by=created_by,
            change_reason=change_reason,
        )

    def commit(
        self,
        plan_id: str,
        content: PlanContent,
        change_type: ChangeType,
        suggestion_id: Optional[str] = None,
        created_by: Optional[str] = None,
        change_reason: Optional[str] = None,
        change_summary: Optional[str] = None,
    ) -> PlanVersion:
        """
        Append version max+1 to the plan.

        The plan row is locked where the dialect supports it and the max is
        re-read inside the transaction; the (plan, version) unique constraint
        rejects a concurrent writer that computed the same number.
        Raises VersionConflictError in that case.
        """
        if not isinstance(content, PlanContent):
            raise ValidationError("Plan content failed validation")

        plan = self.db.execute(
            select(TreatmentPlan).where(TreatmentPlan.id == plan_id).with_for_update()
        ).scalar_one_or_none()
        if plan is None:
            raise NotFoundError("Treatment plan", plan_id)

        next_version = self._max_version(plan_id) + 1
        row = PlanVersion(
            treatment_plan_id=plan_id,
            version=next_version,
            content=content.to_storage(),
            change_type=change_type,
            change_reason=change_reason,
            change_summary=change_summary,
            suggestion_id=suggestion_id,
            created_by=created_by,
        )
        self.db.add(row)
        try:
            self.db.flush()
        except IntegrityError:
            logger.warning("Version number already taken", plan_id=plan_id, version=next_version,
                           error_code="VERSION_CONFLICT")
            raise VersionConflictError(plan_id)

        logger.info("Plan version appended", plan_id=plan_id, version=next_version,
                    change_type=change_type.value)
        return row
