"""Daily platform metrics snapshot endpoints."""

import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from health_engine.api.deps import get_database, get_platform_metrics_job, require_admin_api_key
from health_engine.db.models import DailyPlatformMetrics
from health_engine.worker.platform_metrics_job import InvalidTargetDayError, PlatformMetricsJob

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/platform-metrics", tags=["platform-metrics"])


class PlatformMetricsResponse(BaseModel):
    """Response model for one daily snapshot."""
    day: date
    computed_at: datetime
    search_zip_days: int
    search_zips: int
    pipeline_suppliers: int
    suppliers_clicked_7d: int
    suppliers_clicked_30d: int
    suppliers_called_7d: int
    suppliers_called_30d: int
    zip_days_with_click_7d: int
    zip_days_with_call_7d: int
    zips_with_call_7d: int
    calls_7d: int
    website_clicks_7d: int
    deliveries_7d: int
    deliveries_30d: int
    deliveries_oil_30d: int
    deliveries_propane_30d: int
    deliveries_propane_prev30d: int
    demand_density_top25: List[Dict[str, Any]]
    community_top_zips_30d: List[Dict[str, Any]]

    class Config:
        from_attributes = True


class ComputeResponse(BaseModel):
    success: bool
    day: str
    durationMs: int
    reason: Optional[str] = None


@router.get("", response_model=List[PlatformMetricsResponse])
async def list_platform_metrics(
    days: int = Query(30, ge=1, le=365),
    db: AsyncSession = Depends(get_database),
):
    """Most recent snapshots, newest first."""
    result = await db.execute(
        select(DailyPlatformMetrics).order_by(DailyPlatformMetrics.day.desc()).limit(days)
    )
    return list(result.scalars().all())


@router.get("/{day}", response_model=PlatformMetricsResponse)
async def get_platform_metrics(day: date, db: AsyncSession = Depends(get_database)):
    snapshot = await db.get(DailyPlatformMetrics, day)
    if snapshot is None:
        raise HTTPException(status_code=404, detail=f"No snapshot for {day.isoformat()}")
    return snapshot


@router.post(
    "/compute",
    response_model=ComputeResponse,
    dependencies=[Depends(require_admin_api_key)],
)
async def compute_platform_metrics(
    day: Optional[str] = Query(None, description="YYYY-MM-DD; defaults to yesterday"),
    job: PlatformMetricsJob = Depends(get_platform_metrics_job),
):
    """
    Compute (or recompute) one day's snapshot.

    Returns 409 when another run holds the metrics lock.
    """
    try:
        result = await job.compute_daily(day)
    except InvalidTargetDayError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    if result.get("reason") == "locked":
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=result)

    logger.info(f"Manual platform metrics run for {result['day']} in {result['durationMs']}ms")
    return result
