"""
Tests for the PlanContent schema.
PHI-safe: all clinical text is synthetic.
"""
import pytest
from pydantic import ValidationError

from careplan.schemas.plan_content import PlanContent, RiskLevel


def _full_plan() -> dict:
    return {
        "riskScore": "MEDIUM",
        "riskRationale": "Elevated distress",
        "riskFlags": ["sleep disruption"],
        "therapistNote": "S: ... O: ... A: ... P: ...",
        "clientSummary": "You worked hard today.",
        "clinicalGoals": [
            {"id": "g1", "description": "Reduce panic episodes", "status": "IN_PROGRESS", "targetDate": "3 months"},
            {"id": "g2", "description": "Improve sleep hygiene", "status": "COMPLETED"},
        ],
        "clientGoals": [{"id": "g1", "description": "Feel calmer", "emoji": "🌊"}],
        "primaryDiagnosis": {"code": "F41.0", "description": "Panic disorder"},
        "secondaryDiagnoses": [{"code": "G47.00", "description": "Insomnia"}],
        "clientDiagnosis": {"summary": "We are working on anxiety.", "hidden": True},
        "interventions": ["Exposure Therapy"],
        "homework": "Breathing practice twice daily",
    }


class TestPlanContent:

    def test_parses_camel_case_payload(self):
        plan = PlanContent.model_validate(_full_plan())

        assert plan.risk_score == RiskLevel.MEDIUM
        assert plan.clinical_goals[0].target_date == "3 months"
        assert plan.client_diagnosis.hidden is True
        assert plan.primary_diagnosis.code == "F41.0"

    def test_defaults_for_empty_content(self):
        plan = PlanContent()

        assert plan.risk_score == RiskLevel.LOW
        assert plan.clinical_goals == []
        assert plan.homework == ""
        assert plan.client_diagnosis is None

    def test_goal_status_defaults_to_in_progress(self):
        plan = PlanContent.model_validate({"clinicalGoals": [{"id": "g1", "description": "x"}]})
        assert plan.clinical_goals[0].status == "IN_PROGRESS"

    def test_client_goal_default_emoji(self):
        plan = PlanContent.model_validate({
            "clinicalGoals": [{"id": "g1", "description": "x"}],
            "clientGoals": [{"id": "g1", "description": "y"}],
        })
        assert plan.client_goals[0].emoji == "🎯"

    def test_unknown_key_rejected(self):
        payload = _full_plan()
        payload["currentContent"] = {}
        with pytest.raises(ValidationError):
            PlanContent.model_validate(payload)

    def test_invalid_risk_score_rejected(self):
        with pytest.raises(ValidationError):
            PlanContent.model_validate({"riskScore": "CRITICAL"})

    def test_invalid_goal_status_rejected(self):
        with pytest.raises(ValidationError):
            PlanContent.model_validate({"clinicalGoals": [{"id": "g1", "description": "x", "status": "ACTIVE"}]})

    def test_duplicate_clinical_goal_ids_rejected(self):
        with pytest.raises(ValidationError):
            PlanContent.model_validate({"clinicalGoals": [
                {"id": "g1", "description": "x"},
                {"id": "g1", "description": "y"},
            ]})

    def test_client_goal_must_reference_clinical_goal(self):
        with pytest.raises(ValidationError):
            PlanContent.model_validate({
                "clinicalGoals": [{"id": "g1", "description": "x"}],
                "clientGoals": [{"id": "g9", "description": "y"}],
            })

    def test_storage_uses_camel_case_keys(self):
        stored = PlanContent.model_validate(_full_plan()).to_storage()

        assert stored["riskScore"] == "MEDIUM"
        assert "clinicalGoals" in stored
        assert "clinical_goals" not in stored
        assert PlanContent.from_storage(stored) == PlanContent.model_validate(_full_plan())

    def test_from_storage_rejects_malformed_json(self):
        with pytest.raises(ValidationError):
            PlanContent.from_storage({"clinicalGoals": "not a list"})
