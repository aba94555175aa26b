"""Report Service - fetches feed data and runs the report builders.

One call computes one report from scratch: fetch orders and refunds for the
range, aggregate, apply the cost waterfall. Nothing is cached or shared
between calls.

Usage:
    service = ReportService(feed)
    result = await service.run(ReportRequest(report_type="pl", start=..., end=...))
    if result.status == "error":
        print(result.error)
"""

import asyncio
import logging
from datetime import date
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field, SerializeAsAny

from shop_profit.analytics.costs import CostConfiguration
from shop_profit.analytics.models import Percent
from shop_profit.analytics.money import calc_lift
from shop_profit.analytics.periods import comparison_range, is_multi_year
from shop_profit.analytics.reports import (
    FINANCIAL_STATUS,
    OFFLINE_REPORTS,
    DashboardPayload,
    ReportContext,
    ReportFilters,
    ReportPayload,
    ReportType,
    build_report,
)
from shop_profit.config import Settings, get_settings
from shop_profit.integrations.shopify import FeedError, OrderFeed

logger = logging.getLogger(__name__)

# Dashboard figures compared year over year
LIFT_METRICS = (
    "gross_revenue",
    "discounts",
    "shipping_revenue",
    "returns",
    "net_revenue",
    "cogs",
    "gross_profit",
    "fulfillment_cost",
    "cm2",
    "ad_spend",
    "cm3",
    "opex",
    "net_profit",
)


class ReportError(Exception):
    """Report request is invalid."""

    def __init__(self, message: str, report_type: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.report_type = report_type


class UnknownReportError(ReportError):
    """No report with the requested type exists."""


def parse_report_type(name: str) -> ReportType:
    """Resolve a report type string such as "profitBySKU"."""
    try:
        return ReportType(name)
    except ValueError:
        raise UnknownReportError(f"Unknown report type: {name}", report_type=name) from None


class ReportRequest(BaseModel):
    """One report computation."""

    report_type: ReportType
    start: date
    end: date
    filters: ReportFilters = Field(default_factory=ReportFilters)
    config: CostConfiguration = Field(default_factory=CostConfiguration)
    compare: bool = Field(True, description="Year-over-year comparison (dashboard)")
    today: Optional[date] = None


class ReportResult(BaseModel):
    """Report outcome.

    ``status="ok"`` with ``has_data=False`` means the range had no orders;
    ``status="error"`` means the feed could not be read.
    ``comparison`` and ``lift`` values are None when no comparison applies
    (multi-year range or comparison fetch failed).
    """

    report_type: ReportType
    status: Literal["ok", "error"] = "ok"
    payload: Optional[SerializeAsAny[ReportPayload]] = None
    comparison: Optional[SerializeAsAny[ReportPayload]] = None
    lift: dict[str, Optional[Percent]] = Field(default_factory=dict)
    multi_year: bool = False
    error: Optional[str] = None

    @property
    def has_data(self) -> bool:
        return self.payload is not None and self.payload.has_data


def compute_lift(
    current: ReportPayload,
    previous: Optional[ReportPayload],
    multi_year: bool = False,
) -> dict[str, Optional[Decimal]]:
    """Year-over-year change per summary metric (None when not applicable)."""
    if not isinstance(current, DashboardPayload) or current.summary is None:
        return {}

    prev_summary = previous.summary if isinstance(previous, DashboardPayload) else None
    lift: dict[str, Optional[Decimal]] = {}
    for name in LIFT_METRICS:
        prev_value = getattr(prev_summary, name) if prev_summary is not None else None
        lift[name] = calc_lift(getattr(current.summary, name), prev_value, multi_year)

    prev_orders = prev_summary.order_count if prev_summary is not None else None
    lift["order_count"] = calc_lift(
        Decimal(current.summary.order_count),
        Decimal(prev_orders) if prev_orders is not None else None,
        multi_year,
    )
    return lift


async def gather_or_cancel(*aws):
    """Run awaitables concurrently; the first failure cancels the others.

    Cancelled siblings are awaited before the failure is re-raised, so no
    fetch outlives the report that started it.
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


class ReportService:
    """Runs report requests against an order feed.

    Usage:
        async with ShopifyClient(ShopifyConfig.from_settings()) as client:
            result = await ReportService(client).run(request)
    """

    def __init__(self, feed: OrderFeed, settings: Optional[Settings] = None):
        """Initialize report service.

        Args:
            feed: Order and refund source
            settings: Application settings (defaults to environment)
        """
        self.feed = feed
        self.settings = settings or get_settings()

    async def run(self, request: ReportRequest) -> ReportResult:
        """Compute a report.

        Args:
            request: Report type, range, filters and cost configuration

        Returns:
            ReportResult; feed failures are reported, not raised

        Raises:
            ReportError: If the date range is invalid
        """
        if request.end < request.start:
            raise ReportError(
                f"End date {request.end} is before start date {request.start}",
                report_type=request.report_type.value,
            )

        timeout = self.settings.report_timeout_seconds
        try:
            if timeout > 0:
                return await asyncio.wait_for(self._run(request), timeout)
            return await self._run(request)
        except FeedError as e:
            logger.error(f"Report {request.report_type.value} failed: {e}")
            return ReportResult(report_type=request.report_type, status="error", error=str(e))
        except asyncio.TimeoutError:
            logger.error(f"Report {request.report_type.value} timed out after {timeout}s")
            return ReportResult(
                report_type=request.report_type,
                status="error",
                error=f"Report timed out after {timeout} seconds",
            )

    async def _run(self, request: ReportRequest) -> ReportResult:
        multi_year = is_multi_year(request.start, request.end)
        wants_comparison = (
            request.report_type == ReportType.DASHBOARD
            and request.compare
            and not multi_year
        )

        comparison: Optional[ReportPayload] = None
        if wants_comparison:
            prev_start, prev_end = comparison_range(request.start, request.end)
            payload, previous = await asyncio.gather(
                self.compute(request, request.start, request.end),
                self.compute(request, prev_start, prev_end),
                return_exceptions=True,
            )
            if isinstance(payload, BaseException):
                raise payload
            if isinstance(previous, FeedError):
                logger.warning(f"Comparison period {prev_start}..{prev_end} unavailable: {previous}")
            elif isinstance(previous, BaseException):
                raise previous
            else:
                comparison = previous
        else:
            payload = await self.compute(request, request.start, request.end)

        return ReportResult(
            report_type=request.report_type,
            payload=payload,
            comparison=comparison,
            lift=compute_lift(payload, comparison, multi_year),
            multi_year=multi_year,
        )

    async def compute(self, request: ReportRequest, start: date, end: date) -> ReportPayload:
        """Fetch and build one report for ``[start, end]``."""
        report_type = request.report_type
        orders, refunds = [], []

        if report_type not in OFFLINE_REPORTS:
            # Dashboard filters channels itself so it can list every channel
            extra_filter = None
            if report_type != ReportType.DASHBOARD and request.filters.channel_filter:
                extra_filter = request.filters.matches_channel

            orders, refunds = await gather_or_cancel(
                self.feed.fetch_orders(
                    start,
                    end,
                    financial_status=FINANCIAL_STATUS[report_type] or None,
                    extra_filter=extra_filter,
                ),
                self.feed.fetch_refunds(start, end),
            )

        ctx = ReportContext(
            start=start,
            end=end,
            config=request.config,
            filters=request.filters,
            refunds=refunds,
            today=request.today or date.today(),
            epoch=self.settings.fiscal_epoch,
            default_currency=self.settings.default_currency,
        )
        payload = build_report(report_type, orders, ctx)
        logger.info(
            f"Built {report_type.value} for {start}..{end}: "
            f"{len(orders)} orders, {len(payload.rows)} rows"
        )
        return payload
