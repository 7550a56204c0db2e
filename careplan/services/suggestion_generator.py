"""
Generates a proposed plan update for one session.

Single model call per session; the output must validate against
GeneratedSuggestion or the whole generation fails (no partial results).
Knows nothing about persistence or review state.
PHI-safe: NEVER log transcript, prompts or generated content.
"""
import time
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from careplan.core.config import Settings, get_settings
from careplan.core.logging import get_safe_logger
from careplan.schemas.plan_content import ClientGoal, ClinicalGoal, PlanContent, RiskLevel
from careplan.schemas.suggestion import GeneratedSuggestion
from careplan.services.exceptions import ModelError, ValidationError
from careplan.services.llm_client import ChatModel, build_chat_model
from careplan.services.prompts import PatientContext, build_system_prompt, build_user_prompt

logger = get_safe_logger(__name__)


# ---------------------------------------------------------------------------
# Mock backend
# ---------------------------------------------------------------------------

_MOCK_SUMMARY = "Client attended the session and discussed current stressors and coping strategies."
_MOCK_NOTES = "S: Client reports ongoing stress. O: Engaged, appropriate affect. A: Progressing. P: Continue plan."


def _mock_generate(current_plan: Optional[PlanContent]) -> GeneratedSuggestion:
    """Return a deterministic suggestion for local runs and tests."""
    if current_plan is None:
        content = PlanContent(
            risk_score=RiskLevel.LOW,
            therapist_note="Initial assessment completed.",
            client_summary="Welcome to your treatment journey.",
            clinical_goals=[ClinicalGoal(id="goal-1", description="Reduce reported stress levels",
                                         target_date="3 months")],
            client_goals=[ClientGoal(id="goal-1", description="Feel calmer day to day", emoji="🌱")],
            interventions=["Psychoeducation"],
            homework="Practice breathing exercises daily",
        )
    else:
        content = current_plan.model_copy(update={"therapist_note": _MOCK_NOTES})
    return GeneratedSuggestion(
        session_summary=_MOCK_SUMMARY,
        progress_notes=_MOCK_NOTES,
        suggested_changes=content,
    )


class SuggestionGenerator:
    """Builds context prompts and asks the model for a full proposed plan."""

    def __init__(self, model: Optional[ChatModel] = None, settings: Optional[Settings] = None):
        self._model = model
        self._settings = settings or get_settings()

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "SuggestionGenerator":
        settings = settings or get_settings()
        return cls(build_chat_model(settings.llm_model, settings), settings)

    async def generate(
        self,
        transcript: str,
        current_plan: Optional[PlanContent] = None,
        patient_context: Optional[PatientContext] = None,
    ) -> GeneratedSuggestion:
        """
        Returns the validated suggestion.
        Raises UpstreamGenerationError subclasses on model failure.
        """
        if not transcript or not transcript.strip():
            raise ValidationError("Transcript is empty")

        if self._model is None:
            return _mock_generate(current_plan)

        start = time.perf_counter()
        system_prompt = build_system_prompt(
            self._settings.clinical_modality, is_new_patient=current_plan is None
        )
        user_prompt = build_user_prompt(transcript, current_plan, patient_context)

        raw = await self._model.complete_json(
            system_prompt,
            user_prompt,
            max_tokens=self._settings.llm_max_tokens,
            temperature=0.3,
        )

        try:
            suggestion = GeneratedSuggestion.model_validate(raw)
        except PydanticValidationError as exc:
            # Count only; messages may echo PHI values
            logger.warning("Generated suggestion failed validation",
                           error_code="MODEL_ERROR", flag_count=exc.error_count())
            raise ModelError("Model output does not match the plan schema")

        logger.info("Suggestion generated",
                    inference_ms=int((time.perf_counter() - start) * 1000),
                    risk_level=suggestion.suggested_changes.risk_score.value)
        return suggestion
