"""
Error taxonomy for the suggestion and versioning workflow.
PHI-safe: These exceptions carry identifiers and codes only, never clinical text.
"""
from enum import Enum
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from careplan.schemas.safety import SafetyCheckResult


class WorkflowErrorCode(str, Enum):
    """PHI-safe error codes for logging and responses."""
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    SAFETY_BLOCKED = "SAFETY_BLOCKED"
    ALREADY_REVIEWED = "ALREADY_REVIEWED"
    VERSION_CONFLICT = "VERSION_CONFLICT"
    PLAN_EXISTS = "PLAN_EXISTS"
    MODEL_ERROR = "MODEL_ERROR"
    BACKEND_UNAVAILABLE = "BACKEND_UNAVAILABLE"
    TIMEOUT = "TIMEOUT"
    RATE_LIMITED = "RATE_LIMITED"
    PERSISTENCE_ERROR = "PERSISTENCE_ERROR"


class PlanWorkflowError(Exception):
    """
    Base exception for workflow errors.

    Attributes:
        error_code: PHI-safe error code for logging and response
        status_code: HTTP status code the request layer returns
        retryable: Whether the client should retry
        message: PHI-safe message (no sensitive data)
    """

    def __init__(
        self,
        error_code: WorkflowErrorCode,
        message: str,
        status_code: int = 500,
        retryable: bool = False
    ):
        self.error_code = error_code
        self.message = message
        self.status_code = status_code
        self.retryable = retryable
        super().__init__(message)


class ValidationError(PlanWorkflowError):
    """Malformed input or plan content that fails the schema."""

    def __init__(self, reason: str = "Invalid input"):
        super().__init__(
            error_code=WorkflowErrorCode.VALIDATION_ERROR,
            message=reason,
            status_code=400,
        )


class NotFoundError(PlanWorkflowError):
    """Session, suggestion, patient or plan does not exist."""

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(
            error_code=WorkflowErrorCode.NOT_FOUND,
            message=f"{entity} not found",
            status_code=404,
        )


class SafetyBlockedError(PlanWorkflowError):
    """The safety classifier refused generation for this transcript."""

    def __init__(self, safety_result: "SafetyCheckResult"):
        self.safety_result = safety_result
        super().__init__(
            error_code=WorkflowErrorCode.SAFETY_BLOCKED,
            message="Safety alert detected; manual clinical review required",
            status_code=422,
        )


class AlreadyReviewedError(PlanWorkflowError):
    """Transition attempted on a suggestion that is no longer PENDING."""

    def __init__(self, current_status: str):
        self.current_status = current_status
        super().__init__(
            error_code=WorkflowErrorCode.ALREADY_REVIEWED,
            message=f"Suggestion already {current_status.lower()}",
            status_code=409,
        )


class VersionConflictError(PlanWorkflowError):
    """A concurrent commit won the next version number of the same plan."""

    def __init__(self, plan_id: str):
        self.plan_id = plan_id
        super().__init__(
            error_code=WorkflowErrorCode.VERSION_CONFLICT,
            message="Concurrent update on the treatment plan; retry",
            status_code=409,
            retryable=True,
        )


class PlanAlreadyExistsError(PlanWorkflowError):
    """The patient already has an initialised treatment plan."""

    def __init__(self, plan_id: Optional[str] = None):
        self.plan_id = plan_id
        super().__init__(
            error_code=WorkflowErrorCode.PLAN_EXISTS,
            message="Patient already has a treatment plan. Use the update endpoint instead.",
            status_code=409,
        )


class UpstreamGenerationError(PlanWorkflowError):
    """The classifier or generator call failed."""


class BackendUnavailableError(UpstreamGenerationError):
    """Raised when the model backend is not reachable."""

    def __init__(self, backend: str = "unknown"):
        super().__init__(
            error_code=WorkflowErrorCode.BACKEND_UNAVAILABLE,
            message=f"Backend unavailable: {backend}",
            status_code=503,
            retryable=True
        )


class BackendTimeoutError(UpstreamGenerationError):
    """Raised when the model backend request times out."""

    def __init__(self, timeout_ms: int = 0):
        super().__init__(
            error_code=WorkflowErrorCode.TIMEOUT,
            message=f"Backend timeout after {timeout_ms}ms",
            status_code=504,
            retryable=True
        )


class RateLimitedError(UpstreamGenerationError):
    """Raised when the model backend returns 429."""

    def __init__(self):
        super().__init__(
            error_code=WorkflowErrorCode.RATE_LIMITED,
            message="Rate limited by backend",
            status_code=429,
            retryable=True
        )


class ModelError(UpstreamGenerationError):
    """Raised when the model returns invalid or schema-violating output."""

    def __init__(self, reason: str = "Invalid model output"):
        super().__init__(
            error_code=WorkflowErrorCode.MODEL_ERROR,
            message=reason,
            status_code=502,
            retryable=True
        )


class PersistenceError(PlanWorkflowError):
    """A database transaction failed."""

    def __init__(self, operation: str, exception_class: Optional[str] = None):
        self.operation = operation
        self.exception_class = exception_class
        super().__init__(
            error_code=WorkflowErrorCode.PERSISTENCE_ERROR,
            message=f"Failed to persist {operation}",
            status_code=500,
            retryable=True,
        )
