"""
Tests for suggestion generation and prompt construction.
PHI-safe: all transcripts are synthetic.
"""
import pytest

from careplan.schemas.plan_content import ClinicalGoal, PlanContent, RiskLevel
from careplan.services.exceptions import BackendUnavailableError, ModelError, ValidationError
from careplan.services.prompts import (
    MODALITY_INTERVENTIONS,
    PatientContext,
    build_system_prompt,
    build_user_prompt,
    modality_interventions,
    transcript_tail,
)
from careplan.services.suggestion_generator import SuggestionGenerator


def _generated(**overrides) -> dict:
    payload = {
        "sessionSummary": "Client reviewed sleep diary.",
        "progressNotes": "S: tired. O: calm. A: improving. P: continue.",
        "suggestedChanges": {
            "riskScore": "LOW",
            "clinicalGoals": [{"id": "g1", "description": "Improve sleep", "status": "IN_PROGRESS"}],
            "interventions": ["Sleep hygiene"],
            "homework": "Keep the sleep diary",
        },
    }
    payload.update(overrides)
    return payload


class TestPrompts:

    def test_unknown_modality_falls_back_to_integrative(self):
        assert modality_interventions("Gestalt") == MODALITY_INTERVENTIONS["Integrative"]

    def test_system_prompt_new_patient(self):
        prompt = build_system_prompt("CBT", is_new_patient=True)

        assert "NEW PATIENT MODE" in prompt
        assert "CBT FRAMEWORK" in prompt
        assert MODALITY_INTERVENTIONS["CBT"] in prompt

    def test_system_prompt_existing_patient(self):
        prompt = build_system_prompt("DBT", is_new_patient=False)

        assert "EXISTING PATIENT MODE" in prompt
        assert "NEW PATIENT MODE" not in prompt

    def test_user_prompt_for_new_patient(self):
        prompt = build_user_prompt("Intake transcript", None, None)

        assert "PATIENT STATUS: NEW PATIENT" in prompt
        assert "CURRENT TREATMENT PLAN" not in prompt
        assert prompt.index("## SESSION TRANSCRIPT") < prompt.index("## YOUR TASK")

    def test_user_prompt_with_plan_and_history(self):
        plan = PlanContent(homework="Walk daily")
        context = PatientContext(
            recent_session_summaries=["Most recent summary", "Older summary"],
            prior_transcript_excerpt="...end of last session",
        )

        prompt = build_user_prompt("Today transcript", plan, context)

        assert "## CURRENT TREATMENT PLAN" in prompt
        assert '"homework": "Walk daily"' in prompt
        assert "### 1 session(s) ago:\nMost recent summary" in prompt
        assert "### 2 session(s) ago:\nOlder summary" in prompt
        assert "## PREVIOUS SESSION (EXCERPT)\n\n...end of last session" in prompt
        assert "Today transcript" in prompt

    def test_empty_context_adds_no_sections(self):
        prompt = build_user_prompt("Today transcript", PlanContent(), PatientContext())

        assert "RECENT SESSION CONTEXT" not in prompt
        assert "PREVIOUS SESSION" not in prompt

    @pytest.mark.parametrize("transcript,expected", [
        (None, None),
        ("   ", None),
        ("short", "short"),
        ("abcdefghij", "...fghij"),
    ])
    def test_transcript_tail(self, transcript, expected):
        assert transcript_tail(transcript, 5) == expected

    def test_patient_context_history(self):
        assert PatientContext().has_history is False
        assert PatientContext(prior_transcript_excerpt="x").has_history is True


class TestMockGeneration:

    @pytest.mark.asyncio
    async def test_new_patient_gets_initial_plan(self, settings):
        generated = await SuggestionGenerator(None, settings).generate("Intake transcript")

        content = generated.suggested_changes
        assert [goal.id for goal in content.clinical_goals] == ["goal-1"]
        assert content.homework == "Practice breathing exercises daily"
        assert generated.session_summary

    @pytest.mark.asyncio
    async def test_existing_plan_is_carried_forward(self, settings):
        plan = PlanContent(
            clinical_goals=[ClinicalGoal(id="g7", description="Return to work")],
            homework="Update resume",
        )

        generated = await SuggestionGenerator(None, settings).generate("Session transcript", plan)

        content = generated.suggested_changes
        assert content.clinical_goals == plan.clinical_goals
        assert content.homework == "Update resume"
        assert content.therapist_note != plan.therapist_note


class TestModelGeneration:

    @pytest.mark.asyncio
    async def test_valid_output_is_parsed(self, fake_model, settings):
        model = fake_model(responses=[_generated()])

        generated = await SuggestionGenerator(model, settings).generate("Session transcript")

        assert generated.session_summary == "Client reviewed sleep diary."
        assert generated.suggested_changes.risk_score == RiskLevel.LOW
        assert generated.suggested_changes.homework == "Keep the sleep diary"

    @pytest.mark.asyncio
    async def test_prompts_reflect_patient_state(self, fake_model, settings):
        model = fake_model(responses=[_generated()])
        context = PatientContext(recent_session_summaries=["Last week summary"])

        await SuggestionGenerator(model, settings).generate(
            "Session transcript", PlanContent(homework="Walk"), context
        )

        system_prompt, user_prompt = model.calls[0]
        assert "EXISTING PATIENT MODE" in system_prompt
        assert f"{settings.clinical_modality.upper()} FRAMEWORK" in system_prompt
        assert "Last week summary" in user_prompt
        assert "Session transcript" in user_prompt

    @pytest.mark.asyncio
    async def test_schema_violation_raises_model_error(self, fake_model, settings):
        bad = _generated(suggestedChanges={"riskScore": "EXTREME"})
        generator = SuggestionGenerator(fake_model(responses=[bad]), settings)

        with pytest.raises(ModelError):
            await generator.generate("Session transcript")

    @pytest.mark.asyncio
    async def test_missing_summary_raises_model_error(self, fake_model, settings):
        bad = _generated()
        del bad["sessionSummary"]
        generator = SuggestionGenerator(fake_model(responses=[bad]), settings)

        with pytest.raises(ModelError):
            await generator.generate("Session transcript")

    @pytest.mark.asyncio
    async def test_backend_errors_propagate(self, fake_model, settings):
        generator = SuggestionGenerator(fake_model(error=BackendUnavailableError("openai_compat")), settings)

        with pytest.raises(BackendUnavailableError):
            await generator.generate("Session transcript")

    @pytest.mark.asyncio
    async def test_blank_transcript_rejected(self, fake_model, settings):
        model = fake_model(responses=[_generated()])

        with pytest.raises(ValidationError):
            await SuggestionGenerator(model, settings).generate("  ")
        assert model.calls == []
