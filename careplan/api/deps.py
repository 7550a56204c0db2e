"""
Shared API dependencies and the error envelope.
PHI-safe: responses and logs carry codes and identifiers only.
"""
import time
import uuid
from typing import Annotated, Optional

from fastapi import Header
from fastapi.responses import JSONResponse

from careplan.core.logging import get_safe_logger
from careplan.core.metrics import get_metrics_collector
from careplan.schemas.response import (
    ErrorDetail,
    ErrorResponse,
    ResponseMetadata,
    SafetyBlockedResponse,
)
from careplan.services.exceptions import (
    AlreadyReviewedError,
    PlanWorkflowError,
    SafetyBlockedError,
)
from careplan.services.suggestion_workflow import SuggestionWorkflow

logger = get_safe_logger(__name__)


def get_request_id(
    x_request_id: Annotated[Optional[str], Header(alias="X-Request-ID")] = None
) -> str:
    """
    Get or generate request ID from header.
    """
    if x_request_id and len(x_request_id) <= 100:
        return x_request_id
    return str(uuid.uuid4())


def get_workflow() -> SuggestionWorkflow:
    """Workflow wired to the configured model backend."""
    return SuggestionWorkflow.from_settings()


def elapsed_ms(start_time: float) -> int:
    return int((time.perf_counter() - start_time) * 1000)


def record_success(request_id: str, path: str, start_time: float, status_code: int = 200) -> None:
    latency_ms = elapsed_ms(start_time)
    logger.info(
        "Request completed",
        request_id=request_id,
        path=path,
        status="success",
        status_code=status_code,
        latency_ms=latency_ms,
    )
    get_metrics_collector().record_request(latency_ms=latency_ms, success=True)


def error_json(exc: PlanWorkflowError, request_id: str, path: str, start_time: float) -> JSONResponse:
    """Log, count and render a workflow error as the standard envelope."""
    latency_ms = elapsed_ms(start_time)
    code = exc.error_code.value

    logger.error(
        "Request failed",
        error_code=code,
        request_id=request_id,
        path=path,
        status="error",
        status_code=exc.status_code,
        latency_ms=latency_ms,
    )
    get_metrics_collector().record_request(latency_ms=latency_ms, success=False, error_code=code)

    detail = ErrorDetail(
        code=code,
        message=exc.message,
        retryable=exc.retryable,
        current_status=exc.current_status if isinstance(exc, AlreadyReviewedError) else None,
    )
    metadata = ResponseMetadata(request_id=request_id)

    if isinstance(exc, SafetyBlockedError):
        body = SafetyBlockedResponse(error=detail, metadata=metadata, safety_result=exc.safety_result)
    else:
        body = ErrorResponse(error=detail, metadata=metadata)

    return JSONResponse(
        status_code=exc.status_code,
        content=body.model_dump(by_alias=True, exclude_none=True, mode="json"),
    )
