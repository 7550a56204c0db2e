"""
Treatment plan endpoints: initial creation, manual edits, history, goal history and diff.

PHI-safe: NEVER log request/response bodies - only requestId, ids, status, latency.
"""
import time
from typing import Annotated, Optional, Union

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from careplan.api.deps import error_json, get_request_id, record_success
from careplan.core.auth import get_current_user, verify_auth_header
from careplan.core.database import get_db, unit_of_work
from careplan.core.logging import get_safe_logger
from careplan.core.metrics import get_metrics_collector
from careplan.db.models import PlanSuggestion
from careplan.schemas.plan_content import PlanContent
from careplan.schemas.request import CreatePlanRequest
from careplan.schemas.response import (
    ErrorResponse,
    GoalHistoryResponse,
    PlanDiffResponse,
    PlanVersionResponse,
    VersionListResponse,
)
from careplan.schemas.suggestion import ChangeType, SuggestionStatus
from careplan.services.exceptions import (
    NotFoundError,
    PersistenceError,
    PlanWorkflowError,
    ValidationError,
    VersionConflictError,
)
from careplan.services.goal_history import goal_timeline
from careplan.services.plan_diff import diff_plan_content, summarize
from careplan.services.plan_store import PlanVersionStore
from careplan.services.suggestion_workflow import load_plan_content

router = APIRouter(
    prefix="/v1/plans",
    tags=["plans"],
    dependencies=[Depends(verify_auth_header)],
)
logger = get_safe_logger(__name__)

MANUAL_CHANGE_REASON = "Manual Update"


@router.post(
    "",
    response_model=PlanVersionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a patient's treatment plan",
    responses={
        400: {"model": ErrorResponse, "description": "Invalid plan content"},
        401: {"model": ErrorResponse, "description": "Unauthorized"},
        404: {"model": ErrorResponse, "description": "Patient not found"},
        409: {"model": ErrorResponse, "description": "Patient already has a plan"},
    },
)
def create_plan(
    request_body: CreatePlanRequest,
    request_id: Annotated[str, Depends(get_request_id)],
    uid: Annotated[str, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
) -> Union[PlanVersionResponse, JSONResponse]:
    start_time = time.perf_counter()
    path = "/v1/plans"

    try:
        with unit_of_work(db):
            version = PlanVersionStore(db).create_initial(
                request_body.patient_id, request_body.plan, created_by=uid
            )
    except PlanWorkflowError as exc:
        return error_json(exc, request_id, path, start_time)
    except SQLAlchemyError as exc:
        return error_json(PersistenceError("plan", type(exc).__name__), request_id, path, start_time)

    get_metrics_collector().record_event("plans_created")
    logger.info("Treatment plan initialised", request_id=request_id,
                plan_id=version.treatment_plan_id, version=version.version)
    record_success(request_id, path, start_time, status_code=201)
    return PlanVersionResponse(plan_version=version.to_view())


@router.post(
    "/{plan_id}/update",
    response_model=PlanVersionResponse,
    status_code=status.HTTP_200_OK,
    summary="Manually edit a treatment plan",
    description="Appends the submitted content as a MANUAL_EDIT version.",
    responses={
        400: {"model": ErrorResponse, "description": "Invalid plan content"},
        401: {"model": ErrorResponse, "description": "Unauthorized"},
        404: {"model": ErrorResponse, "description": "Plan not found"},
        409: {"model": ErrorResponse, "description": "Concurrent update; retry"},
    },
)
def update_plan(
    plan_id: str,
    content: PlanContent,
    request_id: Annotated[str, Depends(get_request_id)],
    uid: Annotated[str, Depends(get_current_user)],
    db: Annotated[Session, Depends(get_db)],
    change_reason: Annotated[Optional[str], Query(alias="changeReason", max_length=500)] = None,
) -> Union[PlanVersionResponse, JSONResponse]:
    start_time = time.perf_counter()
    path = "/v1/plans/{id}/update"

    try:
        with unit_of_work(db):
            store = PlanVersionStore(db)
            if store.get_plan(plan_id) is None:
                raise NotFoundError("Treatment plan", plan_id)
            current = load_plan_content(store.current_version(plan_id))
            version = store.commit(
                plan_id,
                content,
                ChangeType.MANUAL_EDIT,
                created_by=uid,
                change_reason=change_reason or MANUAL_CHANGE_REASON,
                change_summary=summarize(diff_plan_content(current, content)),
            )
    except PlanWorkflowError as exc:
        if isinstance(exc, VersionConflictError):
            get_metrics_collector().record_event("version_conflicts")
        return error_json(exc, request_id, path, start_time)
    except SQLAlchemyError as exc:
        return error_json(PersistenceError("plan version", type(exc).__name__), request_id, path, start_time)

    get_metrics_collector().record_event("manual_edits")
    record_success(request_id, path, start_time)
    return PlanVersionResponse(plan_version=version.to_view())


@router.get(
    "/{plan_id}/versions",
    response_model=VersionListResponse,
    status_code=status.HTTP_200_OK,
    summary="Version history of a plan (newest first)",
    responses={404: {"model": ErrorResponse, "description": "Plan not found"}},
)
def list_versions(
    plan_id: str,
    request_id: Annotated[str, Depends(get_request_id)],
    db: Annotated[Session, Depends(get_db)],
) -> Union[VersionListResponse, JSONResponse]:
    start_time = time.perf_counter()
    path = "/v1/plans/{id}/versions"

    store = PlanVersionStore(db)
    if store.get_plan(plan_id) is None:
        return error_json(NotFoundError("Treatment plan", plan_id), request_id, path, start_time)

    versions = store.list_versions(plan_id)
    record_success(request_id, path, start_time)
    return VersionListResponse(
        treatment_plan_id=plan_id,
        versions=[v.to_summary() for v in versions],
    )


@router.get(
    "/{plan_id}/versions/{version}",
    response_model=PlanVersionResponse,
    status_code=status.HTTP_200_OK,
    summary="One version of a plan",
    responses={404: {"model": ErrorResponse, "description": "Version not found"}},
)
def get_version(
    plan_id: str,
    version: int,
    request_id: Annotated[str, Depends(get_request_id)],
    db: Annotated[Session, Depends(get_db)],
) -> Union[PlanVersionResponse, JSONResponse]:
    start_time = time.perf_counter()
    path = "/v1/plans/{id}/versions/{version}"

    row = PlanVersionStore(db).get_version(plan_id, version)
    if row is None:
        return error_json(NotFoundError("Plan version", f"{plan_id}:{version}"), request_id, path, start_time)

    record_success(request_id, path, start_time)
    return PlanVersionResponse(plan_version=row.to_view())


@router.get(
    "/{plan_id}/diff",
    response_model=PlanDiffResponse,
    status_code=status.HTTP_200_OK,
    summary="Diff of the current plan against a suggestion",
    description="Uses the latest PENDING suggestion of the plan when suggestionId is omitted.",
    responses={
        400: {"model": ErrorResponse, "description": "Stored suggestion content is invalid"},
        404: {"model": ErrorResponse, "description": "Plan or suggestion not found"},
    },
)
def diff_plan(
    plan_id: str,
    request_id: Annotated[str, Depends(get_request_id)],
    db: Annotated[Session, Depends(get_db)],
    suggestion_id: Annotated[Optional[str], Query(alias="suggestionId")] = None,
) -> Union[PlanDiffResponse, JSONResponse]:
    start_time = time.perf_counter()
    path = "/v1/plans/{id}/diff"

    store = PlanVersionStore(db)
    if store.get_plan(plan_id) is None:
        return error_json(NotFoundError("Treatment plan", plan_id), request_id, path, start_time)

    if suggestion_id is not None:
        suggestion = db.get(PlanSuggestion, suggestion_id)
        if suggestion is not None and suggestion.treatment_plan_id != plan_id:
            suggestion = None
    else:
        suggestion = db.execute(
            select(PlanSuggestion)
            .where(
                PlanSuggestion.treatment_plan_id == plan_id,
                PlanSuggestion.status == SuggestionStatus.PENDING,
            )
            .order_by(PlanSuggestion.created_at.desc())
            .limit(1)
        ).scalar_one_or_none()

    if suggestion is None:
        return error_json(
            NotFoundError("Suggestion", suggestion_id or plan_id), request_id, path, start_time
        )

    try:
        proposed = suggestion.suggested_content()
    except PydanticValidationError:
        return error_json(
            ValidationError("Suggested plan content failed validation"), request_id, path, start_time
        )

    current_row = store.current_version(plan_id)
    diff = diff_plan_content(load_plan_content(current_row), proposed)
    record_success(request_id, path, start_time)
    return PlanDiffResponse(
        treatment_plan_id=plan_id,
        suggestion_id=suggestion.id,
        current_version=current_row.version if current_row is not None else None,
        diff=diff,
        summary=summarize(diff),
    )


@router.get(
    "/{plan_id}/goal-history",
    response_model=GoalHistoryResponse,
    status_code=status.HTTP_200_OK,
    summary="Status history of every goal in a plan",
    description="History recorded by approvals, grouped by goal id. Current goals without history are included.",
    responses={404: {"model": ErrorResponse, "description": "Plan not found"}},
)
def goal_history(
    plan_id: str,
    request_id: Annotated[str, Depends(get_request_id)],
    db: Annotated[Session, Depends(get_db)],
) -> Union[GoalHistoryResponse, JSONResponse]:
    start_time = time.perf_counter()
    path = "/v1/plans/{id}/goal-history"

    store = PlanVersionStore(db)
    if store.get_plan(plan_id) is None:
        return error_json(NotFoundError("Treatment plan", plan_id), request_id, path, start_time)

    entries = store.list_goal_history(plan_id)
    current = load_plan_content(store.current_version(plan_id))
    record_success(request_id, path, start_time)
    return GoalHistoryResponse(
        treatment_plan_id=plan_id,
        goals=goal_timeline(entries, current),
        total_history_entries=len(entries),
    )
