"""
Health check and metrics endpoints.
PHI-safe: no user data in responses.
"""
from typing import Any, Dict

from fastapi import APIRouter, status
from pydantic import BaseModel, ConfigDict, Field

from careplan.core.config import get_settings
from careplan.core.database import check_database
from careplan.core.metrics import get_metrics_collector

router = APIRouter(tags=["health"])


# === Response Models ===

class HealthResponse(BaseModel):
    """Basic health check response."""
    ok: bool


class ReadyResponse(BaseModel):
    """Readiness check response."""
    ready: bool
    checks: Dict[str, bool]


class MetricsResponse(BaseModel):
    """Metrics response."""
    model_config = ConfigDict(populate_by_name=True)

    uptime_seconds: int = Field(alias="uptimeSeconds")
    total_requests: int = Field(alias="totalRequests")
    success_count: int = Field(alias="successCount")
    error_count: int = Field(alias="errorCount")
    error_codes: Dict[str, int] = Field(alias="errorCodes")
    latency: Dict[str, Any]
    inference_latency: Dict[str, Any] = Field(alias="inferenceLatency")
    workflow: Dict[str, int]
    backend: str


# === Endpoints ===

@router.get(
    "/healthz",
    response_model=HealthResponse,
    status_code=status.HTTP_200_OK,
    summary="Liveness probe",
    description="Returns 200 if the service is alive"
)
async def health_check() -> HealthResponse:
    """
    Liveness probe for Kubernetes/Cloud Run.
    Simply returns ok=true if the service is running.
    """
    return HealthResponse(ok=True)


@router.get(
    "/readyz",
    response_model=ReadyResponse,
    status_code=status.HTTP_200_OK,
    summary="Readiness probe",
    description="Returns 200 with ready=false while the database is unreachable"
)
def readiness_check() -> ReadyResponse:
    checks = {"database": check_database()}
    return ReadyResponse(ready=all(checks.values()), checks=checks)


@router.get(
    "/v1/metrics",
    response_model=MetricsResponse,
    status_code=status.HTTP_200_OK,
    summary="Service metrics",
    description="Returns aggregated service metrics (PHI-safe)"
)
async def get_metrics() -> MetricsResponse:
    """
    Get aggregated metrics.

    PHI-safe: No user identifiers or PHI in response.
    All metrics are aggregated counters/sums.
    """
    snapshot = get_metrics_collector().get_snapshot()

    return MetricsResponse(
        uptime_seconds=snapshot["uptime_seconds"],
        total_requests=snapshot["total_requests"],
        success_count=snapshot["success_count"],
        error_count=snapshot["error_count"],
        error_codes=snapshot["error_codes"],
        latency=snapshot["latency"],
        inference_latency=snapshot["inference_latency"],
        workflow=snapshot["workflow"],
        backend=get_settings().llm_backend,
    )
