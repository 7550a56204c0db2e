"""
Suggestion review endpoints: approve, reject, list pending.

PHI-safe: NEVER log request/response bodies - only requestId, ids, status, latency.
"""
import time
from typing import Annotated, Optional, Union

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from careplan.api.deps import error_json, get_request_id, get_workflow, record_success
from careplan.core.auth import get_current_user, verify_auth_header
from careplan.core.database import get_db
from careplan.core.logging import get_safe_logger
from careplan.schemas.request import ApproveRequest, RejectRequest
from careplan.schemas.response import (
    ApproveResponse,
    ErrorResponse,
    PendingListResponse,
    RejectResponse,
)
from careplan.services.results import Err
from careplan.services.suggestion_workflow import SuggestionWorkflow

router = APIRouter(
    prefix="/v1/suggestions",
    tags=["suggestions"],
    dependencies=[Depends(verify_auth_header)],
)
logger = get_safe_logger(__name__)


@router.get(
    "/pending",
    response_model=PendingListResponse,
    status_code=status.HTTP_200_OK,
    summary="Pending suggestions of the caller's patients",
)
def list_pending(
    request_id: Annotated[str, Depends(get_request_id)],
    uid: Annotated[str, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
    workflow: Annotated[SuggestionWorkflow, Depends(get_workflow)],
) -> PendingListResponse:
    start_time = time.perf_counter()
    suggestions = workflow.list_pending_for_clinician(db, uid)
    record_success(request_id, "/v1/suggestions/pending", start_time)
    return PendingListResponse(suggestions=[s.to_view() for s in suggestions])


@router.post(
    "/{suggestion_id}/approve",
    response_model=ApproveResponse,
    status_code=status.HTTP_200_OK,
    summary="Approve a suggestion",
    description=(
        "Marks the suggestion APPROVED and commits its content (or the reviewer's "
        "modifications) as the next plan version in one transaction."
    ),
    responses={
        400: {"model": ErrorResponse, "description": "Invalid content"},
        401: {"model": ErrorResponse, "description": "Unauthorized"},
        404: {"model": ErrorResponse, "description": "Suggestion not found"},
        409: {"model": ErrorResponse, "description": "Already reviewed or version conflict"},
        500: {"model": ErrorResponse, "description": "Persistence error"},
    },
)
def approve_suggestion(
    suggestion_id: str,
    request_id: Annotated[str, Depends(get_request_id)],
    uid: Annotated[str, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
    workflow: Annotated[SuggestionWorkflow, Depends(get_workflow)],
    request_body: Optional[ApproveRequest] = None,
) -> Union[ApproveResponse, JSONResponse]:
    start_time = time.perf_counter()
    path = "/v1/suggestions/{id}/approve"
    request_body = request_body or ApproveRequest()

    logger.info("Approve request started", request_id=request_id, method="POST",
                path=path, suggestion_id=suggestion_id)

    result = workflow.approve(
        db,
        suggestion_id,
        uid,
        modified_content=request_body.modifications,
        therapist_notes=request_body.therapist_notes,
    )
    if isinstance(result, Err):
        return error_json(result.error, request_id, path, start_time)

    outcome = result.value
    record_success(request_id, path, start_time)
    return ApproveResponse(
        plan_version=outcome.plan_version.to_view(),
        change_summary=outcome.change_summary,
    )


@router.post(
    "/{suggestion_id}/reject",
    response_model=RejectResponse,
    status_code=status.HTTP_200_OK,
    summary="Reject a suggestion",
    responses={
        400: {"model": ErrorResponse, "description": "Missing reason"},
        401: {"model": ErrorResponse, "description": "Unauthorized"},
        404: {"model": ErrorResponse, "description": "Suggestion not found"},
        409: {"model": ErrorResponse, "description": "Already reviewed"},
    },
)
def reject_suggestion(
    suggestion_id: str,
    request_body: RejectRequest,
    request_id: Annotated[str, Depends(get_request_id)],
    uid: Annotated[str, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
    workflow: Annotated[SuggestionWorkflow, Depends(get_workflow)],
) -> Union[RejectResponse, JSONResponse]:
    start_time = time.perf_counter()
    path = "/v1/suggestions/{id}/reject"

    result = workflow.reject(db, suggestion_id, uid, request_body.reason)
    if isinstance(result, Err):
        return error_json(result.error, request_id, path, start_time)

    record_success(request_id, path, start_time)
    return RejectResponse(message="Suggestion rejected")
