"""
Dashboard API Endpoints

Profit-first dashboard for one owner: Shopify orders, Meta ad spend and
Shiprocket shipping combined into summary cards, charts and product lists.
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import JSONResponse

from profitfirst.config import get_settings
from profitfirst.deps import get_current_owner, get_pipeline
from profitfirst.exceptions import InvalidDateRange, TotalFailure
from profitfirst.models.records import OwnerCredentials
from profitfirst.services.dashboard_service import DashboardPipeline
from profitfirst.utils.dates import resolve_range
from profitfirst.utils.logger import log

settings = get_settings()

router = APIRouter(prefix="/dashboard", tags=["dashboard"])


@router.get("")
async def get_dashboard(
    start_date: Optional[str] = Query(None, alias="startDate", description="YYYY-MM-DD (IST)"),
    end_date: Optional[str] = Query(None, alias="endDate", description="YYYY-MM-DD (IST)"),
    owner: OwnerCredentials = Depends(get_current_owner),
    pipeline: DashboardPipeline = Depends(get_pipeline),
):
    """
    Dashboard metrics for the range (defaults to the last 30 days, IST)

    Sources that fail are zeroed and listed under ``degradedSources``.
    """
    try:
        date_range = resolve_range(start_date, end_date, settings.default_range_days, pipeline.cache.clock())
    except InvalidDateRange as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        return await pipeline.run(owner, date_range)
    except TotalFailure as e:
        log.error(f"Dashboard unavailable for {owner.owner_id}: {str(e)}")
        return JSONResponse(
            status_code=502,
            content={"message": "Failed to load dashboard data", "error": str(e)},
        )


@router.get("/prediction")
async def get_prediction(
    use_ai: bool = Query(False, alias="useAI", description="Ask Claude for the forecast"),
    owner: OwnerCredentials = Depends(get_current_owner),
    pipeline: DashboardPipeline = Depends(get_pipeline),
):
    """Next months' revenue, costs and profit projected from the trailing months"""
    try:
        return await pipeline.prediction(owner, use_model=use_ai)
    except TotalFailure as e:
        log.error(f"Forecast unavailable for {owner.owner_id}: {str(e)}")
        return JSONResponse(
            status_code=502,
            content={"message": "Failed to build prediction", "error": str(e)},
        )
