"""
Dashboard API

Serves the composed dashboard and its individual slices:
- GET /api/dashboard: every slice in one call, cache-aside
- GET /api/dashboard/slices/{slice}: one slice, cache-aside

Both accept startDate / endDate (ISO dates) and shopId. Without shopId
the global (all shops) view is returned.
"""

import logging
from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from stockpulse.dashboard import DashboardComposer, DashboardFilters


logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/dashboard", tags=["Dashboard"])


# =============================================================================
# DEPENDENCIES
# =============================================================================

def get_composer(request: Request) -> DashboardComposer:
    return request.app.state.composer


def get_filters(
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    shop_id: Optional[int] = Query(None, alias="shopId"),
) -> DashboardFilters:
    """Parse and validate dashboard filters. Raises 400 on an inverted range."""
    if start_date and end_date and start_date > end_date:
        raise HTTPException(
            status_code=400,
            detail="startDate must be on or before endDate",
        )
    return DashboardFilters(start_date=start_date, end_date=end_date, shop_id=shop_id)


# =============================================================================
# RESPONSE MODELS
# =============================================================================

class SummaryItem(BaseModel):
    """One headline tile"""
    title: str
    value: str
    icon: str
    trend: str
    trend_up: bool
    raw_value: float = 0


class ShopPerformance(BaseModel):
    name: str
    sales: float
    stock: int


class CategoryShare(BaseModel):
    name: str
    value: int


class MonthlySales(BaseModel):
    month: str = Field(..., description="Month label, e.g. 'Jan 2024'")
    sales: float


class RecentTransfer(BaseModel):
    id: str = Field(..., description="Display id, e.g. 'TR-001'")
    source: Optional[str] = None
    destination: Optional[str] = None
    status: str
    date: str
    items: int


class DashboardMeta(BaseModel):
    scope: Optional[str] = None
    from_cache: bool = Field(False, alias="fromCache")
    generated_at: Optional[str] = Field(None, alias="generatedAt")

    class Config:
        populate_by_name = True


class DashboardResponse(BaseModel):
    """Composed dashboard. A slice that failed to load is null."""
    success: bool
    summary_data: Optional[List[SummaryItem]] = Field(None, alias="summaryData")
    shop_performance: Optional[List[ShopPerformance]] = Field(None, alias="shopPerformance")
    inventory_distribution: Optional[List[CategoryShare]] = Field(
        None, alias="inventoryDistribution"
    )
    monthly_sales: Optional[List[MonthlySales]] = Field(None, alias="monthlySales")
    recent_transfers: Optional[List[RecentTransfer]] = Field(None, alias="recentTransfers")
    errors: List[str] = []
    message: Optional[str] = None
    meta: DashboardMeta

    class Config:
        populate_by_name = True


class SliceResponse(BaseModel):
    """A single slice."""
    success: bool
    data: Any = None
    message: Optional[str] = None
    meta: Dict[str, Any] = {}


# =============================================================================
# ENDPOINTS
# =============================================================================

@router.get("", response_model=DashboardResponse)
async def get_dashboard(
    filters: DashboardFilters = Depends(get_filters),
    composer: DashboardComposer = Depends(get_composer),
):
    """
    Get the complete dashboard.

    Served from cache when a fresh entry exists for the same shop and
    date range. Slices that fail are null and listed in `errors`.
    """
    dashboard = await composer.compose(filters.scope_key, filters)

    if not dashboard.success:
        logger.error(f"Dashboard composition failed: {dashboard.message}")
        raise HTTPException(
            status_code=500,
            detail=dashboard.message or "Failed to load all dashboard data",
        )

    return dashboard.to_dict()


@router.get("/slices/{slice_name}", response_model=SliceResponse)
async def get_dashboard_slice(
    slice_name: str,
    filters: DashboardFilters = Depends(get_filters),
    composer: DashboardComposer = Depends(get_composer),
):
    """
    Get one dashboard slice.

    Slices: summary, total_retail_value, shop_performance,
    inventory_distribution, sales, transfers.
    """
    try:
        result, from_cache = await composer.fetch_slice(slice_name, filters)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return SliceResponse(
        success=result.success,
        data=result.data,
        message=result.message,
        meta={
            "slice": slice_name,
            "scope": filters.scope_key,
            "fromCache": from_cache,
        },
    )
