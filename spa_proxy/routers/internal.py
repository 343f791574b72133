"""
Internal router - health checks and forwarding metrics.
"""
from typing import Dict

from fastapi import APIRouter
from pydantic import BaseModel, Field

from spa_proxy.services.stats import stats_collector
from spa_proxy.state import app_state

router = APIRouter(prefix="/_spa-proxy", tags=["internal"])


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = Field(example="healthy")
    forwarding: bool = Field(example=True, description="Whether the SPA catch-all route is installed")


class DestinationStatsResponse(BaseModel):
    """Statistics for a single forwarding destination."""
    request_count: int = Field(example=100, description="Total number of forwards")
    error_count: int = Field(example=5, description="Number of failed forwards")
    error_rate_percent: float = Field(example=5.0, description="Percentage of failed forwards")
    avg_response_time_ms: float = Field(example=12.5, description="Average time to response headers in milliseconds")
    errors_by_reason: Dict[str, int] = Field(
        example={"destination-unreachable": 4, "timed-out": 1},
        description="Failed forwards per error reason"
    )


@router.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Health check endpoint."""
    return HealthResponse(status="healthy", forwarding=app_state.forwarder is not None)


@router.get("/stats", response_model=Dict[str, DestinationStatsResponse])
async def stats() -> Dict[str, DestinationStatsResponse]:
    """
    Get forwarding statistics per destination since server start.

    Returns a dictionary where keys are destination URLs and values contain:
    - **request_count**: Total number of forwards
    - **error_count**: Number of failed forwards
    - **error_rate_percent**: Percentage of failed forwards
    - **avg_response_time_ms**: Average time to response headers
    - **errors_by_reason**: Failed forwards per error reason
    """
    return await stats_collector.get_all_stats()
