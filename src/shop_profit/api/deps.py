"""FastAPI dependencies."""

from collections.abc import AsyncGenerator

from fastapi import Depends, HTTPException, status

from shop_profit.analytics.reports import OFFLINE_REPORTS, ReportType
from shop_profit.integrations.local_feed import LocalOrderFeed
from shop_profit.integrations.shopify import OrderFeed, ShopifyClient, ShopifyConfig
from shop_profit.services.report_service import UnknownReportError, parse_report_type


def get_report_type(report_type: str) -> ReportType:
    """Resolve the ``report_type`` path parameter, 404 when unknown."""
    try:
        return parse_report_type(report_type)
    except UnknownReportError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message) from e


async def get_order_feed(
    report_type: ReportType = Depends(get_report_type),
) -> AsyncGenerator[OrderFeed, None]:
    """Dependency providing the live Shopify order feed.

    Reports that never read orders get an empty local feed, so they work
    without store credentials.
    """
    if report_type in OFFLINE_REPORTS:
        yield LocalOrderFeed()
        return

    try:
        config = ShopifyConfig.from_settings()
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Order feed is not configured: {e}",
        ) from e

    async with ShopifyClient(config) as client:
        yield client
