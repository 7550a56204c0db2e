"""
Tests for settings loading and validation.
"""
import pytest
from pydantic import ValidationError

from careplan.core.config import Settings


def test_defaults():
    settings = Settings(_env_file=None)

    assert settings.llm_backend == "mock"
    assert settings.commit_max_retries == 2
    assert settings.plan_review_interval_days == 90
    assert settings.clinical_modality == "Integrative"


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("LLM_BACKEND", "openai_compat")
    monkeypatch.setenv("LLM_MODEL", "clinical-7b")
    monkeypatch.setenv("COMMIT_MAX_RETRIES", "5")

    settings = Settings(_env_file=None)

    assert settings.llm_backend == "openai_compat"
    assert settings.llm_model == "clinical-7b"
    assert settings.commit_max_retries == 5


def test_safety_model_falls_back_to_llm_model():
    assert Settings(_env_file=None, llm_model="base").effective_safety_model == "base"
    assert Settings(_env_file=None, llm_model="base", safety_model="guard").effective_safety_model == "guard"


def test_dev_auth_forbidden_in_prod():
    with pytest.raises(ValidationError) as exc_info:
        Settings(_env_file=None, service_env="prod", auth_mode="dev", llm_backend="openai_compat")

    assert "AUTH_MODE=dev is forbidden" in str(exc_info.value)


def test_mock_backend_forbidden_in_prod():
    with pytest.raises(ValidationError) as exc_info:
        Settings(_env_file=None, service_env="prod", auth_mode="firebase", llm_backend="mock")

    assert "LLM_BACKEND=mock is forbidden" in str(exc_info.value)


def test_mock_backend_forbidden_in_prod_from_env(monkeypatch):
    monkeypatch.setenv("SERVICE_ENV", "prod")

    with pytest.raises(ValidationError):
        Settings(_env_file=None)


def test_real_backend_allowed_in_prod():
    settings = Settings(_env_file=None, service_env="prod", llm_backend="openai_compat", llm_model="guard")

    assert settings.llm_backend == "openai_compat"


def test_invalid_credentials_json_rejected():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, firebase_credentials_json="{not json")


def test_empty_credentials_json_is_none():
    assert Settings(_env_file=None, firebase_credentials_json="").firebase_credentials_json is None


@pytest.mark.parametrize("field,value", [
    ("commit_max_retries", 11),
    ("transcript_excerpt_chars", 10),
    ("llm_timeout_ms", 10),
    ("llm_backend", "vllm"),
])
def test_out_of_range_values_rejected(field, value):
    with pytest.raises(ValidationError):
        Settings(_env_file=None, **{field: value})
