"""Order aggregation and profit waterfall."""

from shop_profit.analytics.aggregator import (
    Accumulator,
    AggregationView,
    Dimension,
    LineFilter,
    MultiAggregator,
    aggregate,
)
from shop_profit.analytics.costs import (
    CostConfiguration,
    Expense,
    ShippingCostOverride,
    ShippingSettings,
    TransactionFeeSettings,
    parse_shipping_cost_csv,
)
from shop_profit.analytics.customers import analyze_customers, ltv_buckets
from shop_profit.analytics.models import LineItem, OrderRecord, RefundRecord, ReportRow
from shop_profit.analytics.proration import allocate_discount
from shop_profit.analytics.reports import (
    ReportContext,
    ReportFilters,
    ReportPayload,
    ReportType,
    build_report,
)
from shop_profit.analytics.waterfall import CostWaterfall, apply_cost_waterfall, sum_rows

__all__ = [
    # Models
    "LineItem",
    "OrderRecord",
    "RefundRecord",
    "ReportRow",
    # Costs
    "CostConfiguration",
    "Expense",
    "ShippingCostOverride",
    "ShippingSettings",
    "TransactionFeeSettings",
    "parse_shipping_cost_csv",
    # Aggregation
    "Accumulator",
    "AggregationView",
    "Dimension",
    "LineFilter",
    "MultiAggregator",
    "aggregate",
    "allocate_discount",
    # Waterfall
    "CostWaterfall",
    "apply_cost_waterfall",
    "sum_rows",
    # Customers
    "analyze_customers",
    "ltv_buckets",
    # Reports
    "ReportContext",
    "ReportFilters",
    "ReportPayload",
    "ReportType",
    "build_report",
]
