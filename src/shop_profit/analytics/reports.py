"""Report builders.

Each builder is a pure function over already fetched orders and refunds:

    orders -> aggregation views -> cost waterfall -> payload

Returns and ad spend have no per-bucket attribution in the feed, so they are
split evenly across the rows of a report. Operating expenses are prorated by
the number of days each row covers.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel, Field

from shop_profit.analytics.aggregator import (
    ALL_KEY,
    Accumulator,
    Dimension,
    LineFilter,
    MultiAggregator,
    natural_sort_key,
)
from shop_profit.analytics.costs import (
    CostConfiguration,
    ExpensesSummary,
    prorated_opex,
    summarize_expenses,
)
from shop_profit.analytics.customers import (
    AcquisitionRow,
    LtvBucket,
    acquisition_by_period,
    ltv_buckets,
    total_customers,
)
from shop_profit.analytics.models import (
    Money,
    OrderRecord,
    Percent,
    RefundRecord,
    ReportRow,
)
from shop_profit.analytics.money import (
    ONE_HUNDRED,
    ZERO,
    even_share,
    round_money,
    round_percent,
)
from shop_profit.analytics.periods import (
    Granularity,
    chart_label,
    clip_range,
    fiscal_week,
    period_bounds,
    period_key,
    period_keys_in_range,
    period_label,
    weeks_to_seed,
)
from shop_profit.analytics.waterfall import CostWaterfall, sum_rows

logger = logging.getLogger(__name__)


class ReportType(str, Enum):
    """Report request types."""

    DASHBOARD = "dashboard"
    PL = "pl"
    PROFIT_BY_CHANNEL = "profitByChannel"
    PROFIT_BY_ORDER = "profitByOrder"
    PROFIT_BY_PRODUCT = "profitByProduct"
    PROFIT_BY_PRODUCT_TYPE = "profitByProductType"
    PROFIT_BY_SKU = "profitBySKU"
    PROFIT_BY_VENDOR = "profitByVendor"
    EXPENSES = "expenses"


# Order feed financial status each report reads ("" = any status)
FINANCIAL_STATUS: dict[ReportType, str] = {
    ReportType.DASHBOARD: "paid",
    ReportType.PL: "",
    ReportType.PROFIT_BY_CHANNEL: "",
    ReportType.PROFIT_BY_ORDER: "",
    ReportType.PROFIT_BY_PRODUCT: "paid",
    ReportType.PROFIT_BY_PRODUCT_TYPE: "paid",
    ReportType.PROFIT_BY_SKU: "paid",
    ReportType.PROFIT_BY_VENDOR: "paid",
    ReportType.EXPENSES: "",
}

# Reports that never touch the order feed
OFFLINE_REPORTS = {ReportType.EXPENSES}


class ReportFilters(BaseModel):
    """Report-specific filters. ``None`` or "all" disables a filter."""

    product_id: Optional[str] = None
    product_type: Optional[str] = None
    channel: Optional[str] = None
    tag: Optional[str] = None
    group_by: Granularity = Granularity.MONTH

    @property
    def line_filter(self) -> LineFilter:
        return LineFilter(
            product_id=self.product_id,
            product_type=self.product_type,
            tag=self.tag,
        )

    @property
    def channel_filter(self) -> Optional[str]:
        if not self.channel or self.channel == "all":
            return None
        return self.channel

    def matches_channel(self, order: OrderRecord) -> bool:
        wanted = self.channel_filter
        return wanted is None or order.channel_name == wanted


@dataclass
class ReportContext:
    """Everything a builder needs besides the orders."""

    start: date
    end: date
    config: CostConfiguration = field(default_factory=CostConfiguration)
    filters: ReportFilters = field(default_factory=ReportFilters)
    refunds: list[RefundRecord] = field(default_factory=list)
    today: date = field(default_factory=date.today)
    epoch: date = date(2025, 1, 1)
    default_currency: str = "USD"

    @property
    def total_refunds(self) -> Decimal:
        return sum((r.amount for r in self.refunds), ZERO)

    def refunds_for(self, order_id: str) -> Decimal:
        return sum((r.amount for r in self.refunds if r.order_id == order_id), ZERO)


# --- Payloads ---


class ReportPayload(BaseModel):
    """Common report shape: rows plus an optional totals row."""

    type: ReportType
    currency: str = "USD"
    rows: list[ReportRow] = Field(default_factory=list)
    totals: Optional[ReportRow] = None
    total_refunds: Money = ZERO
    has_data: bool = False


class TopProduct(BaseModel):
    """Product ranked by net revenue on the dashboard."""

    product_id: str
    title: str
    net_revenue: Money
    aov: Money
    avg_discount: Money
    gross_profit_rate: Percent
    order_count: int


class DashboardTotals(BaseModel):
    revenue: Money = ZERO
    discounts: Money = ZERO
    orders: int = 0
    shipping_revenue: Money = ZERO
    items: int = 0
    customers: int = 0
    refunds: Money = ZERO


class DashboardPayload(ReportPayload):
    """Dashboard charts, summary waterfall and customer analytics.

    ``rows`` holds the weekly chart; ``daily``, ``monthly`` and ``quarterly``
    hold the other granularities.
    """

    daily: list[ReportRow] = Field(default_factory=list)
    monthly: list[ReportRow] = Field(default_factory=list)
    quarterly: list[ReportRow] = Field(default_factory=list)
    summary: Optional[ReportRow] = None
    dashboard_totals: DashboardTotals = Field(default_factory=DashboardTotals)
    acquisition_weekly: list[AcquisitionRow] = Field(default_factory=list)
    acquisition_daily: list[AcquisitionRow] = Field(default_factory=list)
    ltv_buckets: list[LtvBucket] = Field(default_factory=list)
    top_products: list[TopProduct] = Field(default_factory=list)
    channels: list[str] = Field(default_factory=list)
    product_filter_active: bool = False


class ExpensesPayload(ReportPayload):
    summary: Optional[ExpensesSummary] = None


# --- Helpers ---


def report_currency(orders: list[OrderRecord], default: str = "USD") -> str:
    """Currency of the first order, or the default for an empty range."""
    return orders[0].currency if orders else default


def _by_channel(orders: list[OrderRecord], filters: ReportFilters) -> list[OrderRecord]:
    if filters.channel_filter is None:
        return orders
    return [o for o in orders if filters.matches_channel(o)]


def _sort_by_net_revenue(rows: list[ReportRow]) -> list[ReportRow]:
    return sorted(rows, key=lambda r: (-r.net_revenue, natural_sort_key(r.key)))


def _empty_bucket(period_key: str = "") -> Accumulator:
    return Accumulator(dimension_key=ALL_KEY, period_key=period_key)


def _granularity_key_fn(granularity: Granularity) -> Callable[[OrderRecord], str]:
    return lambda order: period_key(order.created_at, granularity)


# --- Dashboard ---


def build_dashboard(orders: list[OrderRecord], ctx: ReportContext) -> DashboardPayload:
    """Dashboard for one date range.

    Chart rows use the configured cost model but no returns, ad spend or
    OpEx; those only enter the whole-range summary. With a product filter
    active the summary leaves them out as well.
    """
    channels = sorted({o.channel_name for o in orders})
    orders = _by_channel(orders, ctx.filters)
    line_filter = ctx.filters.line_filter
    waterfall = CostWaterfall(ctx.config)

    week_keys = [str(week) for week in weeks_to_seed(ctx.start, ctx.end, ctx.today, ctx.epoch)]

    def week_fn(order: OrderRecord) -> str:
        return str(fiscal_week(order.created_at, ctx.epoch))

    agg = MultiAggregator()
    agg.add_view("weekly", period_fn=week_fn, line_filter=line_filter).seed(week_keys)
    agg.add_view("daily", period_fn=_granularity_key_fn(Granularity.DAY), line_filter=line_filter)
    agg.add_view("monthly", period_fn=_granularity_key_fn(Granularity.MONTH), line_filter=line_filter)
    agg.add_view("quarterly", period_fn=_granularity_key_fn(Granularity.QUARTER), line_filter=line_filter)
    agg.add_view("summary", line_filter=line_filter)
    agg.add_view("products", dimension=Dimension.PRODUCT)
    agg.fold(orders)

    def chart(view: str, granularity: Granularity) -> list[ReportRow]:
        return [
            waterfall.apply(bucket, label=chart_label(bucket.period_key, granularity))
            for bucket in agg.views[view].sorted_buckets()
        ]

    summary_bucket = agg.views["summary"].buckets.get((ALL_KEY, "")) or _empty_bucket()
    refunds = ctx.total_refunds
    if line_filter.is_active:
        summary = waterfall.apply(summary_bucket, key="summary", label="Summary")
    else:
        summary = waterfall.apply(
            summary_bucket,
            key="summary",
            label="Summary",
            returns=refunds,
            ad_spend=ctx.config.ad_spend,
            opex=prorated_opex(ctx.config.expenses, ctx.start, ctx.end),
        )

    weekly = chart("weekly", Granularity.WEEK)

    def week_label(key: str) -> str:
        return f"W{key}"

    def day_label(key: str) -> str:
        return chart_label(key, Granularity.DAY)

    payload = DashboardPayload(
        type=ReportType.DASHBOARD,
        currency=report_currency(orders, ctx.default_currency),
        rows=weekly,
        daily=chart("daily", Granularity.DAY),
        monthly=chart("monthly", Granularity.MONTH),
        quarterly=chart("quarterly", Granularity.QUARTER),
        summary=summary,
        totals=summary,
        total_refunds=round_money(refunds),
        dashboard_totals=DashboardTotals(
            revenue=round_money(summary_bucket.gross_revenue),
            discounts=round_money(summary_bucket.discounts),
            orders=summary_bucket.order_count,
            shipping_revenue=round_money(summary_bucket.shipping_revenue),
            items=summary_bucket.item_count,
            customers=total_customers(orders),
            refunds=round_money(refunds),
        ),
        acquisition_weekly=acquisition_by_period(orders, week_fn, week_label, week_keys),
        acquisition_daily=acquisition_by_period(
            orders, _granularity_key_fn(Granularity.DAY), day_label
        ),
        ltv_buckets=ltv_buckets(orders),
        top_products=_top_products(agg.views["products"].buckets.values(), ctx.config),
        channels=channels,
        product_filter_active=line_filter.is_active,
        has_data=summary_bucket.order_count > 0,
    )
    logger.info(
        f"Dashboard {ctx.start}..{ctx.end}: {summary_bucket.order_count} orders, "
        f"{len(payload.daily)} active days"
    )
    return payload


def _top_products(buckets, config: CostConfiguration) -> list[TopProduct]:
    """Products by net revenue (net of discounts, before shipping)."""
    products = []
    cogs_share = config.cogs_percent / ONE_HUNDRED
    for bucket in buckets:
        net = bucket.net_sales
        orders = bucket.order_count
        rate = (net - net * cogs_share) / net * ONE_HUNDRED if net > 0 else ZERO
        products.append(
            TopProduct(
                product_id=bucket.dimension_key,
                title=bucket.title or "",
                net_revenue=round_money(net),
                aov=round_money(net / orders) if orders else ZERO,
                avg_discount=round_money(bucket.discounts / orders) if orders else ZERO,
                gross_profit_rate=round_percent(rate),
                order_count=orders,
            )
        )
    return sorted(products, key=lambda p: (-p.net_revenue, p.product_id))


# --- P&L ---


def build_pl(orders: list[OrderRecord], ctx: ReportContext) -> ReportPayload:
    """Profit and loss per period of ``filters.group_by``.

    Every period in the range gets a row, with or without orders, so each
    day of the range carries its share of OpEx. The totals row sums the
    rounded period rows, so it always matches what the rows show.
    """
    granularity = ctx.filters.group_by
    orders = _by_channel(orders, ctx.filters)

    agg = MultiAggregator()
    view = agg.add_view(
        "periods",
        period_fn=_granularity_key_fn(granularity),
        line_filter=ctx.filters.line_filter,
    )
    view.seed(period_keys_in_range(ctx.start, ctx.end, granularity))
    agg.fold(orders)
    buckets = view.sorted_buckets()

    waterfall = CostWaterfall(ctx.config)
    returns = even_share(ctx.total_refunds, len(buckets))
    ad_spend = even_share(ctx.config.ad_spend, len(buckets))

    rows = []
    for bucket in buckets:
        first, last = clip_range(*period_bounds(bucket.period_key, granularity), ctx.start, ctx.end)
        rows.append(
            waterfall.apply(
                bucket,
                label=period_label(bucket.period_key, granularity),
                returns=returns,
                ad_spend=ad_spend,
                opex=prorated_opex(ctx.config.expenses, first, last),
            )
        )

    return ReportPayload(
        type=ReportType.PL,
        currency=report_currency(orders, ctx.default_currency),
        rows=rows,
        totals=sum_rows(rows),
        total_refunds=round_money(ctx.total_refunds),
        has_data=any(row.order_count for row in rows),
    )


# --- Dimension reports ---


def _dimension_report(
    report_type: ReportType,
    dimension: Dimension,
    orders: list[OrderRecord],
    ctx: ReportContext,
    with_product_count: bool = False,
) -> ReportPayload:
    orders = _by_channel(orders, ctx.filters)

    agg = MultiAggregator()
    view = agg.add_view("dimension", dimension=dimension, line_filter=ctx.filters.line_filter)
    agg.fold(orders)
    buckets = view.sorted_buckets()

    waterfall = CostWaterfall(ctx.config)
    returns = even_share(ctx.total_refunds, len(buckets))
    ad_spend = even_share(ctx.config.ad_spend, len(buckets))
    opex = even_share(prorated_opex(ctx.config.expenses, ctx.start, ctx.end), len(buckets))

    rows = []
    for bucket in buckets:
        extra = {}
        if with_product_count:
            extra["product_count"] = bucket.product_count
        if bucket.title is not None:
            extra["title"] = bucket.title
        label = bucket.title or bucket.dimension_key
        if dimension == Dimension.CHANNEL:
            extra["channel"] = bucket.dimension_key
        rows.append(
            waterfall.apply(
                bucket,
                key=bucket.dimension_key,
                label=label,
                returns=returns,
                ad_spend=ad_spend,
                opex=opex,
                **extra,
            )
        )

    rows = _sort_by_net_revenue(rows)
    return ReportPayload(
        type=report_type,
        currency=report_currency(orders, ctx.default_currency),
        rows=rows,
        totals=sum_rows(rows),
        total_refunds=round_money(ctx.total_refunds),
        has_data=bool(rows),
    )


def build_profit_by_channel(orders: list[OrderRecord], ctx: ReportContext) -> ReportPayload:
    return _dimension_report(ReportType.PROFIT_BY_CHANNEL, Dimension.CHANNEL, orders, ctx)


def build_profit_by_product(orders: list[OrderRecord], ctx: ReportContext) -> ReportPayload:
    """Per product; honours the product type and tag filters."""
    return _dimension_report(ReportType.PROFIT_BY_PRODUCT, Dimension.PRODUCT, orders, ctx)


def build_profit_by_product_type(orders: list[OrderRecord], ctx: ReportContext) -> ReportPayload:
    return _dimension_report(
        ReportType.PROFIT_BY_PRODUCT_TYPE,
        Dimension.PRODUCT_TYPE,
        orders,
        ctx,
        with_product_count=True,
    )


def build_profit_by_sku(orders: list[OrderRecord], ctx: ReportContext) -> ReportPayload:
    """Per SKU, titled "Product - Variant"."""
    return _dimension_report(ReportType.PROFIT_BY_SKU, Dimension.SKU, orders, ctx)


def build_profit_by_vendor(orders: list[OrderRecord], ctx: ReportContext) -> ReportPayload:
    return _dimension_report(
        ReportType.PROFIT_BY_VENDOR,
        Dimension.VENDOR,
        orders,
        ctx,
        with_product_count=True,
    )


def build_profit_by_order(orders: list[OrderRecord], ctx: ReportContext) -> ReportPayload:
    """One row per order, newest first.

    Returns are the order's own refunds inside the window. Ad spend and
    OpEx are not spread over orders, so rows stop at CM2 (CM3 = CM2).
    """
    orders = _by_channel(orders, ctx.filters)

    agg = MultiAggregator()
    view = agg.add_view("orders", dimension=Dimension.ORDER)
    agg.fold(orders)

    waterfall = CostWaterfall(ctx.config)
    rows = []
    for bucket in view.buckets.values():
        order = next(iter(bucket.orders.values())).order
        resolution = waterfall.shipping.resolve(order)
        rows.append(
            waterfall.apply(
                bucket,
                key=order.id,
                label=order.name or order.id,
                returns=ctx.refunds_for(order.id),
                title=order.name or order.id,
                created_at=order.created_at,
                channel=order.channel_name,
                payment_gateway=order.payment_gateway,
                shipping_source=resolution.source.value,
            )
        )

    rows.sort(key=lambda r: r.created_at, reverse=True)
    return ReportPayload(
        type=ReportType.PROFIT_BY_ORDER,
        currency=report_currency(orders, ctx.default_currency),
        rows=rows,
        totals=sum_rows(rows),
        total_refunds=round_money(ctx.total_refunds),
        has_data=bool(rows),
    )


# --- Expenses ---


def build_expenses(orders: list[OrderRecord], ctx: ReportContext) -> ExpensesPayload:
    """Operating expense breakdown for the year the range starts in."""
    summary = summarize_expenses(ctx.config.expenses, ctx.start.year)
    return ExpensesPayload(
        type=ReportType.EXPENSES,
        currency=report_currency(orders, ctx.default_currency),
        summary=summary,
        has_data=bool(ctx.config.expenses),
    )


BUILDERS: dict[ReportType, Callable[[list[OrderRecord], ReportContext], ReportPayload]] = {
    ReportType.DASHBOARD: build_dashboard,
    ReportType.PL: build_pl,
    ReportType.PROFIT_BY_CHANNEL: build_profit_by_channel,
    ReportType.PROFIT_BY_ORDER: build_profit_by_order,
    ReportType.PROFIT_BY_PRODUCT: build_profit_by_product,
    ReportType.PROFIT_BY_PRODUCT_TYPE: build_profit_by_product_type,
    ReportType.PROFIT_BY_SKU: build_profit_by_sku,
    ReportType.PROFIT_BY_VENDOR: build_profit_by_vendor,
    ReportType.EXPENSES: build_expenses,
}


def build_report(
    report_type: ReportType,
    orders: list[OrderRecord],
    ctx: ReportContext,
) -> ReportPayload:
    """Dispatch to the builder for ``report_type``."""
    return BUILDERS[report_type](orders, ctx)
