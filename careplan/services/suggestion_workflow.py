"""
Suggestion workflow: classify -> generate -> persist as PENDING -> review.

Every operation receives the Session it runs in and returns Ok/Err instead of
raising across the boundary. No database transaction is held open while a
model call is awaited: reads end before the await and all writes happen in a
single transaction afterwards, so a cancelled request persists nothing.
PHI-safe: logs identifiers, statuses and risk levels only.
"""
import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from careplan.core.config import Settings, get_settings
from careplan.core.database import unit_of_work
from careplan.core.logging import get_safe_logger
from careplan.core.metrics import get_metrics_collector
from careplan.db.models import Patient, PlanSuggestion, PlanVersion, TherapySession, TreatmentPlan
from careplan.schemas.plan_content import PlanContent
from careplan.schemas.safety import SafetyCheckResult
from careplan.schemas.suggestion import (
    ChangeType,
    GeneratedSuggestion,
    SuggestionStatus,
    approve_state,
    reject_state,
)
from careplan.services.exceptions import (
    AlreadyReviewedError,
    NotFoundError,
    PersistenceError,
    PlanWorkflowError,
    SafetyBlockedError,
    UpstreamGenerationError,
    ValidationError,
    VersionConflictError,
)
from careplan.services.plan_diff import diff_plan_content, summarize
from careplan.services.plan_store import PlanVersionStore
from careplan.services.prompts import PatientContext, transcript_tail
from careplan.services.results import Err, Ok, Result
from careplan.services.safety_classifier import SafetyClassifier
from careplan.services.suggestion_generator import SuggestionGenerator

logger = get_safe_logger(__name__)

MODIFIED_PREFIX = "Modified by reviewer"


@dataclass
class SuggestionCreated:
    suggestion: PlanSuggestion
    safety_result: SafetyCheckResult
    reused: bool = False


@dataclass
class ApprovalOutcome:
    suggestion: PlanSuggestion
    plan_version: PlanVersion
    change_summary: str


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def load_plan_content(version: Optional[PlanVersion]) -> Optional[PlanContent]:
    """Content of a stored version; unparseable content counts as no plan."""
    if version is None:
        return None
    try:
        return version.plan_content()
    except PydanticValidationError:
        logger.warning("Stored plan content failed validation; treating as no plan",
                       plan_id=version.treatment_plan_id, version=version.version)
        return None


class SuggestionWorkflow:
    """Owns the PlanSuggestion state machine and the approval transaction."""

    def __init__(
        self,
        classifier: SafetyClassifier,
        generator: SuggestionGenerator,
        settings: Optional[Settings] = None,
    ):
        self.classifier = classifier
        self.generator = generator
        self._settings = settings or get_settings()
        self._metrics = get_metrics_collector()

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "SuggestionWorkflow":
        settings = settings or get_settings()
        return cls(
            SafetyClassifier.from_settings(settings),
            SuggestionGenerator.from_settings(settings),
            settings,
        )

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_suggestion(
        self, db: Session, session_id: str, requested_by: str
    ) -> Result[SuggestionCreated]:
        """
        Get-or-create the PENDING suggestion for a session on behalf of
        requested_by (ownership is checked by the caller).

        A safety block returns Err(SafetyBlockedError) and writes nothing.
        """
        try:
            created = await self._create_suggestion(db, session_id)
        except SafetyBlockedError as exc:
            self._metrics.record_event("safety_blocked")
            logger.warning(
                "Generation blocked by safety check",
                session_id=session_id,
                risk_level=exc.safety_result.risk_level.value,
                flag_count=len(exc.safety_result.risk_flags),
                error_code=exc.error_code.value,
            )
            return Err(exc)
        except UpstreamGenerationError as exc:
            self._metrics.record_event("generation_failures")
            logger.error("Suggestion generation failed", error_code=exc.error_code.value,
                         session_id=session_id)
            return Err(exc)
        except PlanWorkflowError as exc:
            logger.warning("Suggestion not created", error_code=exc.error_code.value,
                           session_id=session_id)
            return Err(exc)
        except SQLAlchemyError as exc:
            await asyncio.to_thread(db.rollback)
            logger.error("Suggestion persistence failed", error_code="PERSISTENCE_ERROR",
                         session_id=session_id, exception_class=type(exc).__name__)
            return Err(PersistenceError("suggestion", type(exc).__name__))

        self._metrics.record_event("suggestions_reused" if created.reused else "suggestions_created")
        logger.info(
            "Suggestion ready for review",
            session_id=session_id,
            suggestion_id=created.suggestion.id,
            plan_id=created.suggestion.treatment_plan_id,
            risk_level=created.safety_result.risk_level.value,
            status="reused" if created.reused else "created",
        )
        return Ok(created)

    async def _create_suggestion(self, db: Session, session_id: str) -> SuggestionCreated:
        # Database steps run in a worker thread; only the model calls are awaited on the loop.
        loaded = await asyncio.to_thread(self._load_session, db, session_id)
        if isinstance(loaded, SuggestionCreated):
            return loaded
        transcript, patient_id = loaded

        safety_result = await self.classifier.classify(transcript)
        if not safety_result.safe_to_generate:
            raise SafetyBlockedError(safety_result)

        current_plan, patient_context = await asyncio.to_thread(
            self._gather_context, db, session_id, patient_id
        )

        generated = await self.generator.generate(transcript, current_plan, patient_context)

        return await asyncio.to_thread(
            self._persist_suggestion, db, session_id, patient_id, safety_result, generated
        )

    def _load_session(self, db: Session, session_id: str) -> Union[SuggestionCreated, tuple[str, str]]:
        """The existing PENDING suggestion, else the transcript and patient to generate for."""
        session = db.get(TherapySession, session_id)
        if session is None:
            raise NotFoundError("Session", session_id)
        if not session.transcript or not session.transcript.strip():
            raise ValidationError("Session has no transcript")
        if session.patient_id is None:
            raise ValidationError("Session is not linked to a patient")

        existing = self.get_pending_suggestion(db, session_id)
        if existing is not None:
            return SuggestionCreated(existing, existing.safety_result(), reused=True)

        transcript, patient_id = session.transcript, session.patient_id
        db.rollback()
        return transcript, patient_id

    def _persist_suggestion(
        self,
        db: Session,
        session_id: str,
        patient_id: str,
        safety_result: SafetyCheckResult,
        generated: GeneratedSuggestion,
    ) -> SuggestionCreated:
        try:
            with unit_of_work(db):
                plan = PlanVersionStore(db, self._settings).get_or_create_plan(patient_id)
                suggestion = PlanSuggestion(
                    treatment_plan_id=plan.id,
                    session_id=session_id,
                    session_summary=generated.session_summary,
                    progress_notes=generated.progress_notes,
                    suggested_changes=generated.suggested_changes.to_storage(),
                    status=SuggestionStatus.PENDING,
                    safety_risk_level=safety_result.risk_level,
                    safety_flags=list(safety_result.risk_flags),
                    safety_reasoning=safety_result.reasoning,
                )
                db.add(suggestion)
                session = db.get(TherapySession, session_id)
                if session is not None:
                    session.progress_note = generated.progress_notes or generated.session_summary
                db.flush()
        except IntegrityError:
            # A concurrent request created the PENDING suggestion first
            winner = self.get_pending_suggestion(db, session_id)
            if winner is None:
                raise
            return SuggestionCreated(winner, winner.safety_result(), reused=True)

        return SuggestionCreated(suggestion, safety_result)

    def _gather_context(
        self, db: Session, session_id: str, patient_id: str
    ) -> tuple[Optional[PlanContent], Optional[PatientContext]]:
        """Current plan content plus history of earlier sessions; ends the read transaction."""
        store = PlanVersionStore(db, self._settings)
        plan = store.get_plan_for_patient(patient_id)
        current_plan = load_plan_content(store.current_version(plan.id)) if plan else None

        summaries = list(db.execute(
            select(PlanSuggestion.session_summary)
            .join(TreatmentPlan, PlanSuggestion.treatment_plan_id == TreatmentPlan.id)
            .where(
                TreatmentPlan.patient_id == patient_id,
                PlanSuggestion.status == SuggestionStatus.APPROVED,
            )
            .order_by(PlanSuggestion.reviewed_at.desc())
            .limit(self._settings.recent_summary_limit)
        ).scalars())

        current_session = db.get(TherapySession, session_id)
        prior_query = select(TherapySession.transcript).where(
            TherapySession.patient_id == patient_id,
            TherapySession.id != session_id,
            TherapySession.transcript.is_not(None),
        )
        if current_session is not None:
            prior_query = prior_query.where(TherapySession.created_at <= current_session.created_at)
        prior_transcript = db.execute(
            prior_query.order_by(TherapySession.created_at.desc()).limit(1)
        ).scalar_one_or_none()

        context = PatientContext(
            recent_session_summaries=summaries,
            prior_transcript_excerpt=transcript_tail(
                prior_transcript, self._settings.transcript_excerpt_chars
            ),
        )
        db.rollback()
        return current_plan, (context if context.has_history else None)

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get_pending_suggestion(self, db: Session, session_id: str) -> Optional[PlanSuggestion]:
        return db.execute(
            select(PlanSuggestion).where(
                PlanSuggestion.session_id == session_id,
                PlanSuggestion.status == SuggestionStatus.PENDING,
            )
        ).scalar_one_or_none()

    def list_pending_for_clinician(self, db: Session, clinician_id: str) -> list[PlanSuggestion]:
        """PENDING suggestions across the clinician's patients, newest first."""
        return list(db.execute(
            select(PlanSuggestion)
            .join(TreatmentPlan, PlanSuggestion.treatment_plan_id == TreatmentPlan.id)
            .join(Patient, TreatmentPlan.patient_id == Patient.id)
            .where(
                Patient.clinician_id == clinician_id,
                PlanSuggestion.status == SuggestionStatus.PENDING,
            )
            .order_by(PlanSuggestion.created_at.desc())
        ).scalars())

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    def approve(
        self,
        db: Session,
        suggestion_id: str,
        reviewer_id: str,
        modified_content: Optional[PlanContent] = None,
        therapist_notes: Optional[str] = None,
    ) -> Result[ApprovalOutcome]:
        """
        Mark the suggestion APPROVED and append its content as the next plan
        version, atomically. Version conflicts are retried commit_max_retries times.
        """
        attempts = self._settings.commit_max_retries + 1
        attempt = 0
        while True:
            attempt += 1
            try:
                with unit_of_work(db):
                    outcome = self._approve_once(
                        db, suggestion_id, reviewer_id, modified_content, therapist_notes
                    )
            except VersionConflictError as exc:
                self._metrics.record_event("version_conflicts")
                logger.warning("Approval lost a version race", suggestion_id=suggestion_id,
                               plan_id=exc.plan_id, attempt=attempt, error_code=exc.error_code.value)
                if attempt == attempts:
                    return Err(exc)
                continue
            except PlanWorkflowError as exc:
                logger.warning("Approval refused", suggestion_id=suggestion_id,
                               error_code=exc.error_code.value)
                return Err(exc)
            except SQLAlchemyError as exc:
                logger.error("Approval transaction failed", error_code="PERSISTENCE_ERROR",
                             suggestion_id=suggestion_id, exception_class=type(exc).__name__)
                return Err(PersistenceError("approval", type(exc).__name__))

            self._metrics.record_event("approvals")
            logger.info("Suggestion approved", suggestion_id=suggestion_id,
                        plan_id=outcome.plan_version.treatment_plan_id,
                        version=outcome.plan_version.version,
                        modified=modified_content is not None)
            return Ok(outcome)

    def _approve_once(
        self,
        db: Session,
        suggestion_id: str,
        reviewer_id: str,
        modified_content: Optional[PlanContent],
        therapist_notes: Optional[str],
    ) -> ApprovalOutcome:
        suggestion = db.get(PlanSuggestion, suggestion_id)
        if suggestion is None:
            raise NotFoundError("Suggestion", suggestion_id)

        now = _utcnow()
        approved = approve_state(suggestion.review_state, reviewer_id, now, therapist_notes)

        if modified_content is not None:
            content = modified_content
        else:
            try:
                content = suggestion.suggested_content()
            except PydanticValidationError:
                raise ValidationError("Suggested plan content failed validation")

        store = PlanVersionStore(db, self._settings)
        plan = store.get_plan(suggestion.treatment_plan_id)
        if plan is None:
            raise NotFoundError("Treatment plan", suggestion.treatment_plan_id)

        current = load_plan_content(store.current_version(plan.id))
        diff = diff_plan_content(current, content)
        change_summary = summarize(diff)
        if modified_content is not None:
            change_summary = f"{MODIFIED_PREFIX}; {change_summary}"

        self._transition(db, suggestion, approved)
        version = store.commit(
            plan.id,
            content,
            ChangeType.SESSION_UPDATE,
            suggestion_id=suggestion.id,
            created_by=reviewer_id,
            change_summary=change_summary,
        )
        store.record_goal_changes(version, diff, content, changed_by=reviewer_id,
                                  session_id=suggestion.session_id)
        store.mark_reviewed(plan, now)
        return ApprovalOutcome(suggestion, version, change_summary)

    def reject(
        self, db: Session, suggestion_id: str, reviewer_id: str, reason: str
    ) -> Result[PlanSuggestion]:
        """Mark the suggestion REJECTED. Plan versions are never touched."""
        try:
            with unit_of_work(db):
                suggestion = db.get(PlanSuggestion, suggestion_id)
                if suggestion is None:
                    raise NotFoundError("Suggestion", suggestion_id)
                rejected = reject_state(suggestion.review_state, reviewer_id, _utcnow(), reason)
                self._transition(db, suggestion, rejected)
        except PlanWorkflowError as exc:
            logger.warning("Rejection refused", suggestion_id=suggestion_id,
                           error_code=exc.error_code.value)
            return Err(exc)
        except SQLAlchemyError as exc:
            logger.error("Rejection transaction failed", error_code="PERSISTENCE_ERROR",
                         suggestion_id=suggestion_id, exception_class=type(exc).__name__)
            return Err(PersistenceError("rejection", type(exc).__name__))

        self._metrics.record_event("rejections")
        logger.info("Suggestion rejected", suggestion_id=suggestion_id,
                    plan_id=suggestion.treatment_plan_id)
        return Ok(suggestion)

    def _transition(self, db: Session, suggestion: PlanSuggestion, state) -> None:
        """
        Conditional single-row update out of PENDING.

        A concurrent reviewer that got there first leaves rowcount 0, which
        surfaces as AlreadyReviewedError.
        """
        result = db.execute(
            update(PlanSuggestion)
            .where(
                PlanSuggestion.id == suggestion.id,
                PlanSuggestion.status == SuggestionStatus.PENDING,
            )
            .values(**PlanSuggestion.review_columns(state))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.refresh(suggestion)
            raise AlreadyReviewedError(suggestion.status.value)
        db.refresh(suggestion)
