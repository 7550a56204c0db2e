"""
API tests for session analysis.
PHI-safe: all transcripts are synthetic.
"""
from fastapi.testclient import TestClient

from careplan.api.deps import get_workflow
from careplan.core.database import get_db
from careplan.main import create_app
from careplan.schemas.plan_content import PlanContent
from careplan.services.exceptions import BackendTimeoutError
from careplan.services.safety_classifier import SafetyClassifier
from careplan.services.suggestion_generator import SuggestionGenerator
from careplan.services.suggestion_workflow import SuggestionWorkflow


def test_analyze_creates_pending_suggestion(client, factory):
    session = factory.session(factory.patient())

    response = client.post(f"/v1/sessions/{session.id}/analyze")

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["requiresReview"] is True
    assert data["reused"] is False
    assert data["suggestionId"] == data["suggestion"]["id"]
    assert data["suggestion"]["status"] == "PENDING"
    assert data["suggestion"]["sessionId"] == session.id
    assert data["safetyResult"]["safeToGenerate"] is True
    assert data["safetyResult"]["riskLevel"] == "LOW"
    assert "clinicalGoals" in data["suggestion"]["suggestedChanges"]


def test_analyze_twice_returns_same_suggestion(client, factory):
    session = factory.session(factory.patient())

    first = client.post(f"/v1/sessions/{session.id}/analyze").json()
    second = client.post(f"/v1/sessions/{session.id}/analyze").json()

    assert second["suggestionId"] == first["suggestionId"]
    assert second["reused"] is True


def test_analyze_safety_block_returns_422_with_result(client, factory):
    session = factory.session(factory.patient(), transcript="Client mentioned a bomb threat at school.")

    response = client.post(
        f"/v1/sessions/{session.id}/analyze",
        headers={"X-Request-ID": "req-safety-1"},
    )

    assert response.status_code == 422
    data = response.json()
    assert data["success"] is False
    assert data["error"]["code"] == "SAFETY_BLOCKED"
    assert data["error"]["retryable"] is False
    assert data["metadata"]["requestId"] == "req-safety-1"
    assert data["safetyResult"]["safeToGenerate"] is False
    assert data["safetyResult"]["riskLevel"] == "HIGH"
    assert data["safetyResult"]["riskFlags"] == ["Detected keyword pattern: bomb"]
    # Transcript text never echoed back
    assert "school" not in response.text


def test_analyze_missing_session(client):
    response = client.post("/v1/sessions/missing/analyze")

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_FOUND"


def test_analyze_session_without_transcript(client, factory):
    session = factory.session(factory.patient(), transcript=None)

    response = client.post(f"/v1/sessions/{session.id}/analyze")

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "VALIDATION_ERROR"


def test_analyze_upstream_timeout_is_retryable(test_app, factory, fake_model, settings):
    session = factory.session(factory.patient())
    failing = SuggestionWorkflow(
        SafetyClassifier(None, settings),
        SuggestionGenerator(fake_model(error=BackendTimeoutError(300000)), settings),
        settings,
    )
    test_app.dependency_overrides[get_workflow] = lambda: failing

    response = TestClient(test_app).post(f"/v1/sessions/{session.id}/analyze")

    assert response.status_code == 504
    error = response.json()["error"]
    assert error["code"] == "TIMEOUT"
    assert error["retryable"] is True


def test_get_analysis_without_suggestion(client, factory):
    session = factory.session(factory.patient())

    response = client.get(f"/v1/sessions/{session.id}/analyze")

    assert response.status_code == 200
    assert response.json()["suggestion"] is None


def test_get_analysis_with_pending_suggestion(client, factory):
    session = factory.session(factory.patient())
    plan = factory.plan(session.patient, versions=2)
    suggestion = factory.suggestion(plan, session, PlanContent(homework="Practice breathing"))

    response = client.get(f"/v1/sessions/{session.id}/analyze")

    assert response.status_code == 200
    data = response.json()
    assert data["suggestion"]["id"] == suggestion.id
    assert data["suggestion"]["suggestedChanges"]["homework"] == "Practice breathing"
    assert data["currentVersion"] == 2
    assert data["currentPlan"]["homework"] == "Homework 2"


def test_get_analysis_missing_session(client):
    response = client.get("/v1/sessions/missing/analyze")

    assert response.status_code == 404


def test_analyze_requires_auth(session_factory, workflow):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app = create_app()
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_workflow] = lambda: workflow

    response = TestClient(app).post("/v1/sessions/any/analyze")

    assert response.status_code == 401
    data = response.json()
    assert data["error"]["code"] == "UNAUTHORIZED"
    assert data["success"] is False
