"""Multi-dimensional order aggregation.

Orders are folded into keyed accumulators, one per (dimension key, period
key). Two modes:

    order mode  - order totals are used directly
                  (gross = subtotal + discounts, shipping revenue included)
    line mode   - every matching line item contributes its original total and
                  its prorated discount; shipping revenue is not attributed

Line mode is used for line-level dimensions (product, SKU, ...) and whenever
a line filter (product id, product type, tag) is active. An order counts at
most once towards ``order_count`` of any single bucket.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Callable, Iterable, Optional

from shop_profit.analytics.models import LineItem, OrderRecord
from shop_profit.analytics.money import ZERO
from shop_profit.analytics.proration import allocate_discount

logger = logging.getLogger(__name__)

BucketKey = tuple[str, str]
PeriodKeyFn = Callable[[OrderRecord], str]

ALL_KEY = "all"


class Dimension(str, Enum):
    """What a bucket is keyed on besides the period."""

    ALL = "all"
    CHANNEL = "channel"
    ORDER = "order"
    PRODUCT = "product"
    PRODUCT_TYPE = "product_type"
    VENDOR = "vendor"
    SKU = "sku"

    @property
    def line_level(self) -> bool:
        """Whether keys come from line items rather than the order."""
        return self in LINE_DIMENSIONS


LINE_DIMENSIONS = {
    Dimension.PRODUCT,
    Dimension.PRODUCT_TYPE,
    Dimension.VENDOR,
    Dimension.SKU,
}


def dimension_key(
    dimension: Dimension,
    order: OrderRecord,
    line_item: Optional[LineItem] = None,
) -> str:
    """Bucket key for an order (or one of its line items).

    Missing categorical values map to an empty string, never to "no bucket".
    """
    if dimension == Dimension.CHANNEL:
        return order.channel_name
    if dimension == Dimension.ORDER:
        return order.id
    if line_item is None:
        return ALL_KEY
    if dimension == Dimension.PRODUCT:
        return line_item.product_id or ""
    if dimension == Dimension.PRODUCT_TYPE:
        return line_item.product_type
    if dimension == Dimension.VENDOR:
        return line_item.vendor
    if dimension == Dimension.SKU:
        return line_item.sku
    return ALL_KEY


def _bucket_title(dimension: Dimension, order: OrderRecord, line_item: Optional[LineItem]) -> Optional[str]:
    if dimension == Dimension.ORDER:
        return order.name or order.id
    if line_item is None:
        return None
    if dimension == Dimension.PRODUCT:
        return line_item.product_title
    if dimension == Dimension.SKU:
        return line_item.sku_title
    return None


@dataclass
class LineFilter:
    """Optional line item filters; inactive fields match everything."""

    product_id: Optional[str] = None
    product_type: Optional[str] = None
    tag: Optional[str] = None

    def __post_init__(self):
        """Treat "all" and blank values as no filter."""
        for name in ("product_id", "product_type", "tag"):
            value = getattr(self, name)
            if value is not None and (value == "" or value == "all"):
                setattr(self, name, None)

    @property
    def is_active(self) -> bool:
        return any(v is not None for v in (self.product_id, self.product_type, self.tag))

    def matches(self, line_item: LineItem) -> bool:
        if self.product_id is not None and line_item.product_id != self.product_id:
            return False
        if self.product_type is not None and line_item.product_type != self.product_type:
            return False
        if self.tag is not None and self.tag not in line_item.tags:
            return False
        return True


@dataclass
class OrderShare:
    """What one order contributed to one bucket."""

    order: OrderRecord
    gross_revenue: Decimal = ZERO
    discounts: Decimal = ZERO
    shipping_revenue: Decimal = ZERO
    item_count: int = 0

    @property
    def net_revenue(self) -> Decimal:
        return self.gross_revenue - self.discounts + self.shipping_revenue


@dataclass
class Accumulator:
    """Running totals for one (dimension, period) bucket."""

    dimension_key: str
    period_key: str = ""
    gross_revenue: Decimal = ZERO
    discounts: Decimal = ZERO
    shipping_revenue: Decimal = ZERO
    item_count: int = 0
    title: Optional[str] = None
    orders: dict[str, OrderShare] = field(default_factory=dict)
    product_ids: set[str] = field(default_factory=set)

    @property
    def key(self) -> BucketKey:
        return (self.dimension_key, self.period_key)

    @property
    def order_count(self) -> int:
        """Distinct orders that touched this bucket."""
        return len(self.orders)

    @property
    def product_count(self) -> int:
        return len(self.product_ids)

    @property
    def net_sales(self) -> Decimal:
        return self.gross_revenue - self.discounts

    @property
    def net_revenue(self) -> Decimal:
        """Net revenue before returns."""
        return self.net_sales + self.shipping_revenue

    def add(
        self,
        order: OrderRecord,
        gross_revenue: Decimal,
        discounts: Decimal,
        shipping_revenue: Decimal = ZERO,
        item_count: int = 0,
        product_id: Optional[str] = None,
    ) -> None:
        """Fold one order (or one of its line items) into the bucket."""
        self.gross_revenue += gross_revenue
        self.discounts += discounts
        self.shipping_revenue += shipping_revenue
        self.item_count += item_count

        share = self.orders.get(order.id)
        if share is None:
            share = self.orders[order.id] = OrderShare(order=order)
        share.gross_revenue += gross_revenue
        share.discounts += discounts
        share.shipping_revenue += shipping_revenue
        share.item_count += item_count

        if product_id:
            self.product_ids.add(product_id)


@dataclass
class AggregationView:
    """One concurrently maintained set of accumulators."""

    dimension: Dimension = Dimension.ALL
    period_fn: Optional[PeriodKeyFn] = None
    line_filter: LineFilter = field(default_factory=LineFilter)
    buckets: dict[BucketKey, Accumulator] = field(default_factory=dict)

    @property
    def line_mode(self) -> bool:
        return self.dimension.line_level or self.line_filter.is_active

    def bucket(self, dim_key: str, period_key: str) -> Accumulator:
        """Get or lazily create the accumulator for a compound key."""
        key = (dim_key, period_key)
        acc = self.buckets.get(key)
        if acc is None:
            acc = self.buckets[key] = Accumulator(dimension_key=dim_key, period_key=period_key)
        return acc

    def seed(self, period_keys: Iterable[str], dim_key: str = ALL_KEY) -> None:
        """Pre-create zeroed buckets so empty periods still appear."""
        for period_key in period_keys:
            self.bucket(dim_key, period_key)

    def fold(self, order: OrderRecord) -> None:
        """Fold one order into this view's buckets."""
        period_key = self.period_fn(order) if self.period_fn else ""

        if not self.line_mode:
            acc = self.bucket(dimension_key(self.dimension, order), period_key)
            acc.add(
                order,
                gross_revenue=order.gross_merchandise_value,
                discounts=order.total_discounts,
                shipping_revenue=order.total_shipping,
                item_count=order.item_count,
            )
            if acc.title is None:
                acc.title = _bucket_title(self.dimension, order, None)
            return

        for line_item in order.line_items:
            if not self.line_filter.matches(line_item):
                continue
            acc = self.bucket(dimension_key(self.dimension, order, line_item), period_key)
            acc.add(
                order,
                gross_revenue=line_item.original_total,
                discounts=allocate_discount(line_item, order),
                item_count=line_item.quantity,
                product_id=line_item.product_id,
            )
            if acc.title is None:
                acc.title = _bucket_title(self.dimension, order, line_item)

    def sorted_buckets(self) -> list[Accumulator]:
        """Buckets in natural key order."""
        return [self.buckets[key] for key in sorted(self.buckets, key=bucket_sort_key)]


class MultiAggregator:
    """Folds one order set into several views in a single pass.

    Example:
        agg = MultiAggregator()
        agg.add_view("daily", period_fn=lambda o: period_key(o.created_at, Granularity.DAY))
        agg.add_view("channels", dimension=Dimension.CHANNEL)
        agg.fold(orders)
        agg.views["daily"].sorted_buckets()
    """

    def __init__(self):
        self.views: dict[str, AggregationView] = {}

    def add_view(
        self,
        name: str,
        dimension: Dimension = Dimension.ALL,
        period_fn: Optional[PeriodKeyFn] = None,
        line_filter: Optional[LineFilter] = None,
    ) -> AggregationView:
        view = AggregationView(
            dimension=dimension,
            period_fn=period_fn,
            line_filter=line_filter or LineFilter(),
        )
        self.views[name] = view
        return view

    def fold(self, orders: Iterable[OrderRecord]) -> "MultiAggregator":
        count = 0
        for order in orders:
            for view in self.views.values():
                view.fold(order)
            count += 1
        logger.debug(f"Aggregated {count} orders into {len(self.views)} views")
        return self


def aggregate(
    orders: Iterable[OrderRecord],
    dimension: Dimension = Dimension.ALL,
    period_fn: Optional[PeriodKeyFn] = None,
    line_filter: Optional[LineFilter] = None,
) -> dict[BucketKey, Accumulator]:
    """Aggregate orders into (dimension key, period key) buckets.

    Args:
        orders: Orders to fold, in any order
        dimension: Dimension to key buckets on
        period_fn: Period key for an order, None for a single all-time period
        line_filter: Restrict to matching line items (switches to line mode)

    Returns:
        Accumulators keyed by (dimension key, period key)
    """
    agg = MultiAggregator()
    view = agg.add_view("default", dimension, period_fn, line_filter)
    agg.fold(orders)
    return view.buckets


def natural_sort_key(key: str) -> tuple:
    """Numbers sort numerically, everything else as plain strings."""
    body = key[1:] if key.startswith("-") else key
    if body.isdigit():
        return (0, int(key), "")
    return (1, 0, key)


def bucket_sort_key(key: BucketKey) -> tuple:
    dim_key, period_key = key
    return natural_sort_key(dim_key), natural_sort_key(period_key)
