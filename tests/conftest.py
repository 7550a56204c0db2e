"""
Shared fixtures: per-test SQLite database, fake chat models, record factories
and a TestClient with auth and DB overrides.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import pytest
from fastapi import Request
from fastapi.testclient import TestClient

from careplan.api.deps import get_workflow
from careplan.core.auth import verify_auth_header
from careplan.core.config import Settings
from careplan.core.database import build_engine, build_session_factory, get_db, init_db
from careplan.core.metrics import get_metrics_collector
from careplan.db.models import Patient, PlanSuggestion, PlanVersion, TherapySession, TreatmentPlan
from careplan.main import create_app
from careplan.schemas.plan_content import PlanContent, RiskLevel
from careplan.schemas.suggestion import ChangeType, SuggestionStatus
from careplan.services.safety_classifier import SafetyClassifier
from careplan.services.suggestion_generator import SuggestionGenerator
from careplan.services.suggestion_workflow import SuggestionWorkflow

TEST_UID = "test_user"


class FakeChatModel:
    """ChatModel returning queued responses (or raising) and recording prompts."""

    def __init__(self, responses: Optional[list[Any]] = None, error: Optional[BaseException] = None):
        self.responses = list(responses or [])
        self.error = error
        self.calls: list[tuple[str, str]] = []

    async def complete_json(self, system_prompt, user_prompt, *, max_tokens=1024, temperature=0.2):
        self.calls.append((system_prompt, user_prompt))
        if self.error is not None:
            raise self.error
        return self.responses.pop(0)


# Helper to bypass auth - MUST have Request type annotation!
async def mock_verify_auth_header(request: Request) -> None:
    request.state.uid = TEST_UID


@pytest.fixture(autouse=True)
def reset_metrics():
    get_metrics_collector().reset()
    yield
    get_metrics_collector().reset()


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        llm_backend="mock",
        auth_mode="dev",
        commit_max_retries=2,
        transcript_excerpt_chars=200,
    )


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'careplan-test.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def fake_model():
    return FakeChatModel


@pytest.fixture
def workflow(settings):
    """Workflow on the mock backend (keyword screen + deterministic generation)."""
    return SuggestionWorkflow(
        SafetyClassifier(None, settings),
        SuggestionGenerator(None, settings),
        settings,
    )


class Factory:
    """Creates committed records for tests."""

    def __init__(self, db):
        self.db = db

    def patient(self, clinician_id: str = TEST_UID) -> Patient:
        patient = Patient(clinician_id=clinician_id, name="Test Patient")
        self.db.add(patient)
        self.db.commit()
        return patient

    def session(
        self,
        patient: Optional[Patient],
        transcript: Optional[str] = "Client talked about work stress and sleeping badly.",
        created_at: Optional[datetime] = None,
    ) -> TherapySession:
        row = TherapySession(
            patient_id=patient.id if patient is not None else None,
            transcript=transcript,
            created_at=created_at or datetime.now(timezone.utc),
        )
        self.db.add(row)
        self.db.commit()
        return row

    def plan(self, patient: Patient, versions: int = 0) -> TreatmentPlan:
        plan = TreatmentPlan(patient_id=patient.id)
        self.db.add(plan)
        self.db.flush()
        for number in range(1, versions + 1):
            self.db.add(PlanVersion(
                treatment_plan_id=plan.id,
                version=number,
                content=PlanContent(homework=f"Homework {number}").to_storage(),
                change_type=ChangeType.INITIAL if number == 1 else ChangeType.MANUAL_EDIT,
            ))
        self.db.commit()
        return plan

    def suggestion(
        self,
        plan: TreatmentPlan,
        session: TherapySession,
        content: Optional[PlanContent] = None,
        created_at: Optional[datetime] = None,
    ) -> PlanSuggestion:
        row = PlanSuggestion(
            treatment_plan_id=plan.id,
            session_id=session.id,
            session_summary="Client discussed coping strategies.",
            progress_notes="S: stressed. P: continue.",
            suggested_changes=(content or PlanContent(homework="Practice breathing")).to_storage(),
            status=SuggestionStatus.PENDING,
            safety_risk_level=RiskLevel.LOW,
            safety_flags=[],
            safety_reasoning="No concerns",
            created_at=created_at or datetime.now(timezone.utc),
        )
        self.db.add(row)
        self.db.commit()
        return row


@pytest.fixture
def factory(db):
    return Factory(db)


@pytest.fixture
def earlier():
    """Timestamp helper: earlier(minutes) is that many minutes ago."""
    now = datetime.now(timezone.utc)
    return lambda minutes: now - timedelta(minutes=minutes)


@pytest.fixture
def test_app(session_factory, workflow):
    """Create a fresh app instance using create_app() for realistic testing."""
    app = create_app()

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[verify_auth_header] = mock_verify_auth_header
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_workflow] = lambda: workflow
    return app


@pytest.fixture
def client(test_app):
    """Create TestClient with properly configured app."""
    return TestClient(test_app)
