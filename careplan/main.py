"""
Careplan Service - FastAPI Application Entry Point.

Safety-gated treatment plan suggestions with human review and versioned plans.
"""
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from careplan.api.deps import error_json
from careplan.api.health import router as health_router
from careplan.api.plans import router as plans_router
from careplan.api.sessions import router as sessions_router
from careplan.api.suggestions import router as suggestions_router
from careplan.core.auth import init_firebase
from careplan.core.config import get_settings
from careplan.core.database import init_db
from careplan.core.logging import get_safe_logger, setup_logging
from careplan.schemas.response import ErrorDetail, ErrorResponse, ResponseMetadata
from careplan.services.exceptions import PlanWorkflowError

# Initialize logging first
setup_logging()
logger = get_safe_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan handler.
    Initializes resources on startup and cleans up on shutdown.
    """
    settings = get_settings()
    logger.info("Starting Careplan Service", backend=settings.llm_backend)

    try:
        init_db()
        logger.info("Database schema ready")
    except SQLAlchemyError as exc:
        # Readiness probe reports the database as down
        logger.error("Failed to initialize database", error_code="DATABASE_INIT_ERROR",
                     exception_class=type(exc).__name__)

    if settings.auth_mode == "firebase":
        try:
            init_firebase()
        except Exception:
            # Don't prevent startup - auth will fail at request time
            logger.error("Failed to initialize Firebase", error_code="FIREBASE_INIT_ERROR")

    yield

    logger.info("Shutting down Careplan Service")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Careplan Service",
        description="Safety-gated treatment plan suggestions with human review and versioning",
        version="0.1.0",
        docs_url="/docs" if settings.service_env == "dev" else None,
        redoc_url="/redoc" if settings.service_env == "dev" else None,
        openapi_url="/openapi.json" if settings.service_env == "dev" else None,
        lifespan=lifespan
    )

    # Register routes
    app.include_router(health_router)
    app.include_router(sessions_router)
    app.include_router(suggestions_router)
    app.include_router(plans_router)

    # Register exception handlers
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(PlanWorkflowError, workflow_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    return app


def _request_id(request: Request) -> str:
    return request.headers.get("X-Request-ID", str(uuid.uuid4()))


def _envelope(request_id: str, code: str, message: str, retryable: bool) -> dict:
    error_response = ErrorResponse(
        success=False,
        error=ErrorDetail(code=code, message=message, retryable=retryable),
        metadata=ResponseMetadata(request_id=request_id),
    )
    return error_response.model_dump(by_alias=True, exclude_none=True)


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError
) -> JSONResponse:
    """
    Handle Pydantic validation errors.
    PHI-safe: Don't include validation details that might contain PHI.
    """
    request_id = _request_id(request)

    # Log error without validation details (may contain PHI)
    logger.error(
        "Request validation failed",
        error_code="BAD_REQUEST",
        request_id=request_id,
        status_code=400
    )

    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=_envelope(request_id, "BAD_REQUEST", "Invalid request format", False),
    )


async def http_exception_handler(
    request: Request,
    exc: HTTPException
) -> JSONResponse:
    """
    Handle HTTP exceptions (including auth errors).
    """
    request_id = _request_id(request)

    # Map status codes to error codes
    if exc.status_code == 401:
        error_code = "UNAUTHORIZED"
    elif exc.status_code == 404:
        error_code = "NOT_FOUND"
    elif exc.status_code < 500:
        error_code = "BAD_REQUEST"
    else:
        error_code = "INTERNAL_ERROR"

    logger.error(
        "HTTP exception",
        error_code=error_code,
        request_id=request_id,
        status_code=exc.status_code
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=_envelope(
            request_id,
            error_code,
            exc.detail if isinstance(exc.detail, str) else "Request failed",
            exc.status_code >= 500,
        ),
        headers=exc.headers,
    )


async def workflow_exception_handler(
    request: Request,
    exc: PlanWorkflowError
) -> JSONResponse:
    """Workflow errors that escaped a route are rendered like handled ones."""
    return error_json(exc, _request_id(request), request.url.path, time.perf_counter())


async def generic_exception_handler(
    request: Request,
    exc: Exception
) -> JSONResponse:
    """
    Handle unexpected exceptions.
    PHI-safe: Never log exception details.
    """
    request_id = _request_id(request)

    logger.error(
        "Unexpected error",
        error_code="INTERNAL_ERROR",
        request_id=request_id,
        status_code=500,
        exception_class=type(exc).__name__,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_envelope(request_id, "INTERNAL_ERROR", "Internal server error", True),
    )


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "careplan.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.service_env == "dev"
    )
