"""
Application configuration from environment variables.
PHI-safe: no sensitive data in defaults or logs.
"""
import json
from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Firebase configuration
    firebase_project_id: str = Field(
        default="",
        description="Firebase project ID for token verification (required in firebase auth mode)"
    )
    firebase_credentials_json: Optional[str] = Field(
        default=None,
        description="Firebase service account JSON string (optional, uses ADC if not set)"
    )
    google_application_credentials: Optional[str] = Field(
        default=None,
        description="Path to service account JSON file (GOOGLE_APPLICATION_CREDENTIALS)"
    )

    # Service configuration
    service_env: Literal["dev", "staging", "prod"] = Field(
        default="dev",
        description="Service environment"
    )

    # Authentication mode
    auth_mode: Literal["firebase", "dev"] = Field(
        default="firebase",
        description="Auth mode: 'firebase' for production, 'dev' for local testing without Firebase"
    )
    dev_bearer_token: str = Field(
        default="dev-token",
        description="Bearer token accepted in dev auth mode (only used when AUTH_MODE=dev)"
    )

    # Database
    database_url: str = Field(
        default="sqlite:///./careplan.db",
        description="SQLAlchemy database URL"
    )
    database_echo: bool = Field(
        default=False,
        description="Echo SQL statements (dev only)"
    )

    # Generation backend configuration
    llm_backend: Literal["mock", "openai_compat"] = Field(
        default="mock",
        description="Generation backend: 'mock' for testing, 'openai_compat' for any OpenAI-compatible server"
    )
    llm_base_url: str = Field(
        default="http://127.0.0.1:1234/v1",
        description="Base URL for the OpenAI-compatible API (vLLM, LM Studio, Ollama, ...)"
    )
    llm_model: str = Field(
        default="",
        description="Model name used for plan suggestion generation"
    )
    safety_model: str = Field(
        default="",
        description="Model name used for the safety classifier (falls back to llm_model)"
    )
    llm_timeout_ms: int = Field(
        default=300000,
        ge=1000,
        le=600000,
        description="Timeout for generation requests in milliseconds (generation can take minutes)"
    )
    llm_max_tokens: int = Field(
        default=4096,
        ge=256,
        le=32768,
        description="Max tokens for the plan suggestion response"
    )

    # Suggestion context
    clinical_modality: str = Field(
        default="Integrative",
        description="Clinical modality framing the generated suggestions (CBT, DBT, ACT, ...)"
    )
    transcript_excerpt_chars: int = Field(
        default=2000,
        ge=200,
        le=20000,
        description="Maximum characters of the previous session transcript included as context"
    )
    recent_summary_limit: int = Field(
        default=3,
        ge=0,
        le=10,
        description="Number of recent approved session summaries included as context"
    )

    # Versioning
    commit_max_retries: int = Field(
        default=2,
        ge=0,
        le=10,
        description="Retries for an approval that lost a concurrent version race"
    )
    plan_review_interval_days: int = Field(
        default=90,
        ge=1,
        le=365,
        description="Days until the next plan review after an approval"
    )

    # Server configuration
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8080, description="Server port")

    @field_validator("firebase_credentials_json", mode="before")
    @classmethod
    def validate_credentials_json(cls, v: Optional[str]) -> Optional[str]:
        """Validate that credentials JSON is valid if provided."""
        if v is None or v == "":
            return None
        try:
            json.loads(v)
            return v
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in FIREBASE_CREDENTIALS_JSON: {e}")

    @field_validator("auth_mode", mode="after")
    @classmethod
    def validate_auth_mode_not_dev_in_prod(cls, v: str, info) -> str:
        """Prevent dev auth mode in production environment."""
        service_env = info.data.get("service_env", "dev")
        if v == "dev" and service_env == "prod":
            raise ValueError(
                "SECURITY ERROR: AUTH_MODE=dev is forbidden when SERVICE_ENV=prod. "
                "This would bypass Firebase authentication in production."
            )
        return v

    @field_validator("llm_backend", mode="after")
    @classmethod
    def validate_backend_not_mock_in_prod(cls, v: str, info) -> str:
        """Prevent the mock backend in production (it skips the semantic safety screen)."""
        service_env = info.data.get("service_env", "dev")
        if v == "mock" and service_env == "prod":
            raise ValueError(
                "SECURITY ERROR: LLM_BACKEND=mock is forbidden when SERVICE_ENV=prod. "
                "The safety check would run the keyword screen only."
            )
        return v

    @property
    def effective_safety_model(self) -> str:
        return self.safety_model or self.llm_model

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
