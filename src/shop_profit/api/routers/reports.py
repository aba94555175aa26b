"""Report API endpoints."""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from shop_profit.analytics.costs import CostConfiguration
from shop_profit.analytics.reports import FINANCIAL_STATUS, OFFLINE_REPORTS, ReportFilters, ReportType
from shop_profit.api.deps import get_order_feed, get_report_type
from shop_profit.integrations.shopify import OrderFeed
from shop_profit.services.report_service import (
    ReportError,
    ReportRequest,
    ReportResult,
    ReportService,
)

router = APIRouter(prefix="/reports", tags=["reports"])


class ReportTypeInfo(BaseModel):
    """Available report type."""

    type: ReportType
    financial_status: Optional[str]
    uses_feed: bool


class ReportBody(BaseModel):
    """Report request body; the report type comes from the path."""

    start: date
    end: date
    filters: ReportFilters = Field(default_factory=ReportFilters)
    config: CostConfiguration = Field(default_factory=CostConfiguration)
    compare: bool = True
    today: Optional[date] = None


@router.get("/types", response_model=list[ReportTypeInfo])
async def list_report_types() -> list[ReportTypeInfo]:
    """List report types the engine can build."""
    return [
        ReportTypeInfo(
            type=report_type,
            financial_status=FINANCIAL_STATUS[report_type] or None,
            uses_feed=report_type not in OFFLINE_REPORTS,
        )
        for report_type in ReportType
    ]


@router.post("/{report_type}", response_model=None)
async def run_report(
    body: ReportBody,
    report_type: ReportType = Depends(get_report_type),
    feed: OrderFeed = Depends(get_order_feed),
) -> ReportResult:
    """Compute one report.

    Feed failures come back as ``status="error"`` in a normal response;
    only malformed requests are HTTP errors.
    """
    request = ReportRequest(report_type=report_type, **body.model_dump())
    try:
        return await ReportService(feed).run(request)
    except ReportError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=e.message) from e
