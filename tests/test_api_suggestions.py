"""
API tests for suggestion review: approve, reject and the pending list.
PHI-safe: all clinical text is synthetic.
"""
import pytest
from sqlalchemy import select

from careplan.core.metrics import get_metrics_collector
from careplan.db.models import PlanSuggestion, PlanVersion
from careplan.schemas.plan_content import PlanContent


@pytest.fixture
def pending(factory):
    """Plan with versions [1, 2] and one PENDING suggestion."""
    session = factory.session(factory.patient())
    plan = factory.plan(session.patient, versions=2)
    suggestion = factory.suggestion(plan, session, PlanContent(homework="Practice breathing"))
    return plan, suggestion


def _versions(db, plan_id):
    db.expire_all()
    return sorted(db.execute(
        select(PlanVersion.version).where(PlanVersion.treatment_plan_id == plan_id)
    ).scalars())


def test_approve_without_body(client, db, pending):
    plan, suggestion = pending

    response = client.post(f"/v1/suggestions/{suggestion.id}/approve")

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["planVersion"]["version"] == 3
    assert data["planVersion"]["changeType"] == "SESSION_UPDATE"
    assert data["planVersion"]["suggestionId"] == suggestion.id
    assert data["planVersion"]["createdBy"] == "test_user"
    assert data["planVersion"]["content"]["homework"] == "Practice breathing"
    assert data["changeSummary"] == "Updated homework assignment"
    assert _versions(db, plan.id) == [1, 2, 3]
    assert db.get(PlanSuggestion, suggestion.id).status.value == "APPROVED"


def test_approve_with_modifications_and_notes(client, db, pending):
    _, suggestion = pending
    body = {
        "modifications": {
            "riskScore": "MEDIUM",
            "clinicalGoals": [{"id": "g1", "description": "Reduce avoidance"}],
            "homework": "Reviewer homework",
        },
        "therapistNotes": "Adjusted homework",
    }

    response = client.post(f"/v1/suggestions/{suggestion.id}/approve", json=body)

    assert response.status_code == 200
    data = response.json()
    assert data["planVersion"]["content"]["homework"] == "Reviewer homework"
    assert data["changeSummary"].startswith("Modified by reviewer; ")
    assert "Risk level: LOW → MEDIUM" in data["changeSummary"]
    db.expire_all()
    assert db.get(PlanSuggestion, suggestion.id).therapist_notes == "Adjusted homework"


def test_approve_twice_is_conflict_with_current_status(client, db, pending):
    plan, suggestion = pending
    client.post(f"/v1/suggestions/{suggestion.id}/approve")

    response = client.post(f"/v1/suggestions/{suggestion.id}/approve")

    assert response.status_code == 409
    error = response.json()["error"]
    assert error["code"] == "ALREADY_REVIEWED"
    assert error["currentStatus"] == "APPROVED"
    assert _versions(db, plan.id) == [1, 2, 3]


def test_approve_missing_suggestion(client):
    response = client.post("/v1/suggestions/missing/approve")

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_FOUND"


def test_approve_rejects_unknown_fields(client, pending):
    _, suggestion = pending

    response = client.post(f"/v1/suggestions/{suggestion.id}/approve", json={"status": "APPROVED"})

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "BAD_REQUEST"


def test_approve_rejects_invalid_modifications(client, db, pending):
    plan, suggestion = pending
    body = {"modifications": {"clientGoals": [{"id": "orphan", "description": "x"}]}}

    response = client.post(f"/v1/suggestions/{suggestion.id}/approve", json=body)

    assert response.status_code == 400
    assert _versions(db, plan.id) == [1, 2]


def test_reject(client, db, pending):
    plan, suggestion = pending

    response = client.post(
        f"/v1/suggestions/{suggestion.id}/reject", json={"reason": "Not clinically relevant"}
    )

    assert response.status_code == 200
    assert response.json() == {"success": True, "message": "Suggestion rejected"}
    db.expire_all()
    stored = db.get(PlanSuggestion, suggestion.id)
    assert stored.status.value == "REJECTED"
    assert stored.therapist_notes == "Not clinically relevant"
    assert _versions(db, plan.id) == [1, 2]


def test_reject_twice_is_conflict(client, pending):
    _, suggestion = pending
    client.post(f"/v1/suggestions/{suggestion.id}/reject", json={"reason": "Not clinically relevant"})

    response = client.post(f"/v1/suggestions/{suggestion.id}/reject", json={"reason": "Again"})

    assert response.status_code == 409
    assert response.json()["error"]["currentStatus"] == "REJECTED"


@pytest.mark.parametrize("body,code", [
    ({}, "BAD_REQUEST"),
    ({"reason": ""}, "BAD_REQUEST"),
    ({"reason": "   "}, "VALIDATION_ERROR"),
])
def test_reject_requires_reason(client, pending, body, code):
    _, suggestion = pending

    response = client.post(f"/v1/suggestions/{suggestion.id}/reject", json=body)

    assert response.status_code == 400
    assert response.json()["error"]["code"] == code


def test_pending_list_only_contains_callers_patients(client, factory, pending):
    _, mine = pending
    other_patient = factory.patient(clinician_id="someone-else")
    factory.suggestion(factory.plan(other_patient), factory.session(other_patient))

    response = client.get("/v1/suggestions/pending")

    assert response.status_code == 200
    assert [s["id"] for s in response.json()["suggestions"]] == [mine.id]


def test_review_outcomes_are_counted(client, pending):
    _, suggestion = pending
    client.post(f"/v1/suggestions/{suggestion.id}/approve")
    client.post(f"/v1/suggestions/{suggestion.id}/approve")

    snapshot = get_metrics_collector().get_snapshot()

    assert snapshot["workflow"]["approvals"] == 1
    assert snapshot["success_count"] == 1
    assert snapshot["error_codes"] == {"ALREADY_REVIEWED": 1}
