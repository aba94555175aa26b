"""Tests for the report service (fetch + build + comparison)."""

import asyncio
import json
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from shop_profit.analytics.costs import CostConfiguration
from shop_profit.analytics.reports import ReportFilters, ReportType
from shop_profit.analytics.waterfall import ShippingCostCascade, ShippingSource
from shop_profit.config import Settings
from shop_profit.integrations.local_feed import LocalOrderFeed
from shop_profit.integrations.shopify import ORDERS_QUERY, FeedError
from shop_profit.services.report_service import (
    ReportError,
    ReportRequest,
    ReportService,
    UnknownReportError,
    parse_report_type,
)


def settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


def request(report_type=ReportType.DASHBOARD, start=date(2025, 3, 1), end=date(2025, 3, 31), **kwargs):
    kwargs.setdefault("today", date(2025, 4, 1))
    return ReportRequest(report_type=report_type, start=start, end=end, **kwargs)


def at(year: int, month: int, day: int) -> datetime:
    return datetime(year, month, day, 12, tzinfo=timezone.utc)


class FailingFeed(LocalOrderFeed):
    """Fails for any range starting in ``fail_year``."""

    def __init__(self, fail_year: int, **kwargs):
        super().__init__(**kwargs)
        self.fail_year = fail_year

    async def fetch_orders(self, start, end_inclusive, financial_status="paid", extra_filter=None):
        if start.year == self.fail_year:
            raise FeedError("Shopify API error", status_code=500, page=0)
        return await super().fetch_orders(start, end_inclusive, financial_status, extra_filter)


class SlowFeed(LocalOrderFeed):
    async def fetch_orders(self, *args, **kwargs):
        await asyncio.sleep(1)
        return []


class OrdersFailFirst(LocalOrderFeed):
    """Order fetch fails while the refund fetch is still paging."""

    def __init__(self):
        super().__init__()
        self.refunds_cancelled = False

    async def fetch_orders(self, *args, **kwargs):
        await asyncio.sleep(0)
        raise FeedError("Shopify API error", status_code=500, page=0)

    async def fetch_refunds(self, start, end_inclusive):
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            self.refunds_cancelled = True
            raise
        return []


class TestParseReportType:
    def test_known(self):
        assert parse_report_type("profitBySKU") == ReportType.PROFIT_BY_SKU

    def test_unknown(self):
        with pytest.raises(UnknownReportError) as exc_info:
            parse_report_type("profitByWeather")
        assert exc_info.value.report_type == "profitByWeather"


class TestReportService:
    """Report runs against a local feed."""

    @pytest.mark.asyncio
    async def test_dashboard_with_comparison(self, make_order):
        feed = LocalOrderFeed(
            orders=[
                make_order(created_at=at(2025, 3, 5), subtotal="150", lines=None),
                make_order(created_at=at(2024, 3, 5), subtotal="100", lines=None),
            ]
        )
        result = await ReportService(feed, settings()).run(request())

        assert result.status == "ok"
        assert result.has_data
        assert result.comparison is not None
        assert result.comparison.summary.gross_revenue == Decimal("100.00")
        assert result.lift["gross_revenue"] == Decimal("50.0")
        assert result.lift["order_count"] == Decimal("0.0")
        assert sorted(feed.calls) == [
            (date(2024, 3, 1), date(2024, 3, 31)),
            (date(2025, 3, 1), date(2025, 3, 31)),
        ]

    @pytest.mark.asyncio
    async def test_multi_year_has_no_comparison(self, make_order):
        feed = LocalOrderFeed(orders=[make_order(created_at=at(2025, 1, 5))])
        result = await ReportService(feed, settings()).run(
            request(start=date(2024, 12, 1), end=date(2025, 1, 31))
        )
        assert result.multi_year
        assert result.comparison is None
        assert all(value is None for value in result.lift.values())
        assert len(feed.calls) == 1

    @pytest.mark.asyncio
    async def test_comparison_failure_is_not_fatal(self, make_order):
        """The current period still reports when last year's fetch fails."""
        feed = FailingFeed(2024, orders=[make_order(created_at=at(2025, 3, 5))])
        result = await ReportService(feed, settings()).run(request())

        assert result.status == "ok"
        assert result.comparison is None
        assert result.lift["net_revenue"] is None

    @pytest.mark.asyncio
    async def test_current_failure_is_an_error_result(self, make_order):
        feed = FailingFeed(2025, orders=[make_order(created_at=at(2025, 3, 5))])
        result = await ReportService(feed, settings()).run(request())

        assert result.status == "error"
        assert "Shopify API error" in result.error
        assert result.payload is None

    @pytest.mark.asyncio
    async def test_empty_is_not_an_error(self):
        result = await ReportService(LocalOrderFeed(), settings()).run(request(ReportType.PL))
        assert result.status == "ok"
        assert not result.has_data

    @pytest.mark.asyncio
    async def test_compare_disabled(self, make_order):
        feed = LocalOrderFeed(orders=[make_order(created_at=at(2025, 3, 5))])
        result = await ReportService(feed, settings()).run(request(compare=False))
        assert result.comparison is None
        assert len(feed.calls) == 1

    @pytest.mark.asyncio
    async def test_non_dashboard_channel_filter(self, make_order):
        feed = LocalOrderFeed(
            orders=[
                make_order(created_at=at(2025, 3, 5), channel="POS"),
                make_order(created_at=at(2025, 3, 6)),
            ]
        )
        result = await ReportService(feed, settings()).run(
            request(ReportType.PROFIT_BY_CHANNEL, filters=ReportFilters(channel="POS"))
        )
        assert [row.key for row in result.payload.rows] == ["POS"]
        assert result.lift == {}

    @pytest.mark.asyncio
    async def test_refunds_passed_through(self, make_order, refund):
        order = make_order(created_at=at(2025, 3, 5))
        feed = LocalOrderFeed(
            orders=[order],
            refunds=[
                refund(order.id, "4", at(2025, 3, 20)),
                refund(order.id, "9", at(2025, 4, 2)),
            ],
        )
        result = await ReportService(feed, settings()).run(request(ReportType.PL))
        assert result.payload.total_refunds == Decimal("4.00")

    @pytest.mark.asyncio
    async def test_expenses_skip_feed(self):
        feed = LocalOrderFeed()
        result = await ReportService(feed, settings()).run(request(ReportType.EXPENSES))
        assert result.status == "ok"
        assert feed.calls == []

    @pytest.mark.asyncio
    async def test_end_before_start(self):
        with pytest.raises(ReportError, match="before start"):
            await ReportService(LocalOrderFeed(), settings()).run(
                request(start=date(2025, 3, 31), end=date(2025, 3, 1))
            )

    @pytest.mark.asyncio
    async def test_failed_order_fetch_cancels_refunds(self):
        feed = OrdersFailFirst()
        result = await ReportService(feed, settings()).run(request(ReportType.PL))

        assert result.status == "error"
        assert feed.refunds_cancelled

    @pytest.mark.asyncio
    async def test_timeout(self):
        service = ReportService(SlowFeed(), settings(report_timeout_seconds=0.05))
        result = await service.run(request(ReportType.PL))
        assert result.status == "error"
        assert "timed out" in result.error

    @pytest.mark.asyncio
    async def test_serializes_dashboard_fields(self, make_order):
        feed = LocalOrderFeed(orders=[make_order(created_at=at(2025, 3, 5))])
        result = await ReportService(feed, settings()).run(request(compare=False))
        data = json.loads(result.model_dump_json())
        assert data["payload"]["type"] == "dashboard"
        assert "top_products" in data["payload"]
        assert isinstance(data["payload"]["summary"]["net_revenue"], float)


class TestLocalOrderFeed:
    @pytest.mark.asyncio
    async def test_from_file(self, tmp_path, raw_order):
        path = tmp_path / "orders.json"
        path.write_text(
            json.dumps({
                "orders": [raw_order("o1"), {"id": "broken"}],
                "refunds": [{"order_id": "o1", "amount": "3.00", "created_at": "2025-01-20T10:00:00Z"}],
            })
        )
        feed = LocalOrderFeed.from_file(path)
        orders = await feed.fetch_orders(date(2025, 1, 1), date(2025, 1, 31))
        refunds = await feed.fetch_refunds(date(2025, 1, 1), date(2025, 1, 31))

        assert [o.id for o in orders] == ["o1"]
        assert refunds[0].amount == Decimal("3.00")

    def test_bare_list(self, tmp_path, raw_order):
        path = tmp_path / "orders.json"
        path.write_text(json.dumps([raw_order("o1"), raw_order("o2")]))
        assert len(LocalOrderFeed.from_file(path).orders) == 2

    def test_unreadable(self, tmp_path):
        with pytest.raises(FeedError):
            LocalOrderFeed.from_file(tmp_path / "missing.json")

    def test_label_cost_from_export(self, tmp_path, raw_order):
        """Exports carrying a label cost feed the first shipping source."""
        node = raw_order("o1")
        node["shippingLabelCost"] = {"shopMoney": {"amount": "6.40"}}
        path = tmp_path / "orders.json"
        path.write_text(json.dumps([node]))

        (order,) = LocalOrderFeed.from_file(path).orders
        resolution = ShippingCostCascade.from_config(CostConfiguration()).resolve(order)

        assert order.shipping_label_cost == Decimal("6.40")
        assert resolution.cost == Decimal("6.40")
        assert resolution.source == ShippingSource.SHOPIFY

    def test_live_query_has_no_label_cost(self):
        assert "shippingLabelCost" not in ORDERS_QUERY
