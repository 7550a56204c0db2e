"""
Session analysis endpoints.
Runs the safety gate and suggestion generation for a session transcript.

PHI-safe: NEVER log request/response bodies - only requestId, ids, status, latency.
"""
import time
from typing import Annotated, Union

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from careplan.api.deps import error_json, get_request_id, get_workflow, record_success
from careplan.core.auth import get_current_user, verify_auth_header
from careplan.core.database import get_db
from careplan.core.logging import get_safe_logger
from careplan.db.models import TherapySession
from careplan.schemas.response import (
    AnalyzeResponse,
    ErrorResponse,
    PendingSuggestionResponse,
    SafetyBlockedResponse,
)
from careplan.services.exceptions import NotFoundError
from careplan.services.plan_store import PlanVersionStore
from careplan.services.results import Err
from careplan.services.suggestion_workflow import SuggestionWorkflow, load_plan_content

router = APIRouter(
    prefix="/v1/sessions",
    tags=["sessions"],
    dependencies=[Depends(verify_auth_header)],
)
logger = get_safe_logger(__name__)


@router.post(
    "/{session_id}/analyze",
    response_model=AnalyzeResponse,
    status_code=status.HTTP_200_OK,
    summary="Analyze a session",
    description=(
        "Runs the safety check on the session transcript and, if it passes, generates a "
        "PENDING plan suggestion for review. Returns the existing PENDING suggestion if any."
    ),
    responses={
        400: {"model": ErrorResponse, "description": "Session has no transcript or patient"},
        401: {"model": ErrorResponse, "description": "Unauthorized"},
        404: {"model": ErrorResponse, "description": "Session not found"},
        422: {"model": SafetyBlockedResponse, "description": "Blocked by the safety check"},
        502: {"model": ErrorResponse, "description": "Invalid model output"},
        503: {"model": ErrorResponse, "description": "Backend unavailable"},
        504: {"model": ErrorResponse, "description": "Backend timeout"},
    },
)
async def analyze_session(
    session_id: str,
    request_id: Annotated[str, Depends(get_request_id)],
    uid: Annotated[str, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
    workflow: Annotated[SuggestionWorkflow, Depends(get_workflow)],
) -> Union[AnalyzeResponse, JSONResponse]:
    """Create (or return) the PENDING suggestion for a session."""
    start_time = time.perf_counter()
    path = "/v1/sessions/{id}/analyze"

    logger.info("Analyze request started", request_id=request_id, method="POST",
                path=path, session_id=session_id)

    result = await workflow.create_suggestion(db, session_id, uid)
    if isinstance(result, Err):
        return error_json(result.error, request_id, path, start_time)

    created = result.value
    record_success(request_id, path, start_time)
    return AnalyzeResponse(
        suggestion_id=created.suggestion.id,
        suggestion=created.suggestion.to_view(),
        safety_result=created.safety_result,
        reused=created.reused,
    )


@router.get(
    "/{session_id}/analyze",
    response_model=PendingSuggestionResponse,
    status_code=status.HTTP_200_OK,
    summary="Pending suggestion of a session",
    responses={
        401: {"model": ErrorResponse, "description": "Unauthorized"},
        404: {"model": ErrorResponse, "description": "Session not found"},
    },
)
def get_pending_suggestion(
    session_id: str,
    request_id: Annotated[str, Depends(get_request_id)],
    db: Annotated[Session, Depends(get_db)],
    workflow: Annotated[SuggestionWorkflow, Depends(get_workflow)],
) -> Union[PendingSuggestionResponse, JSONResponse]:
    """Return the PENDING suggestion with the current plan content, or suggestion=null."""
    start_time = time.perf_counter()
    path = "/v1/sessions/{id}/analyze"

    if db.get(TherapySession, session_id) is None:
        return error_json(NotFoundError("Session", session_id), request_id, path, start_time)

    suggestion = workflow.get_pending_suggestion(db, session_id)
    if suggestion is None:
        record_success(request_id, path, start_time)
        return PendingSuggestionResponse()

    current = PlanVersionStore(db).current_version(suggestion.treatment_plan_id)
    record_success(request_id, path, start_time)
    return PendingSuggestionResponse(
        suggestion=suggestion.to_view(),
        current_plan=load_plan_content(current),
        current_version=current.version if current is not None else None,
    )
