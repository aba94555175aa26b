"""Customer acquisition and lifetime value analysis.

Guest orders (no customer id) are singleton customers keyed by order id;
they are never merged with each other or with registered customers.

The acquisition "CAC" reported here is the average discount given on a new
buyer's first order. It is a proxy, not true acquisition cost, and every
row says so via ``cac_basis``.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Iterable, Optional

from pydantic import BaseModel

from shop_profit.analytics.aggregator import natural_sort_key
from shop_profit.analytics.models import Money, OrderRecord
from shop_profit.analytics.money import ZERO, round_money

CAC_BASIS = "first_order_discount"


@dataclass(frozen=True)
class LtvRange:
    """Half-open spend range ``[low, high)``; ``high=None`` is unbounded."""

    label: str
    low: Decimal
    high: Optional[Decimal]

    def contains(self, spend: Decimal) -> bool:
        if spend < self.low:
            return False
        return self.high is None or spend < self.high


LTV_RANGES: list[LtvRange] = [
    LtvRange("$0-25", Decimal("0"), Decimal("25")),
    LtvRange("$25-50", Decimal("25"), Decimal("50")),
    LtvRange("$50-100", Decimal("50"), Decimal("100")),
    LtvRange("$100-200", Decimal("100"), Decimal("200")),
    LtvRange("$200-500", Decimal("200"), Decimal("500")),
    LtvRange("$500-1K", Decimal("500"), Decimal("1000")),
    LtvRange("$1K+", Decimal("1000"), None),
]

# Buckets always shown even when empty
ALWAYS_SHOWN = 4


class LtvBucket(BaseModel):
    """Histogram bar of customers by lifetime spend."""

    range: str
    count: int
    min: Money
    max: Optional[Money] = None


class AcquisitionRow(BaseModel):
    """New buyers acquired in one period."""

    key: str
    label: str
    new_buyers: int = 0
    total_discounts: Money = ZERO
    avg_cac: Money = ZERO
    cac_basis: str = CAC_BASIS


def customer_key(order: OrderRecord) -> str:
    """Customer id, or a per-order guest key."""
    return order.customer_id or f"guest-{order.id}"


def customer_spend(orders: Iterable[OrderRecord]) -> dict[str, Decimal]:
    """Total order value per customer."""
    spend: dict[str, Decimal] = {}
    for order in orders:
        key = customer_key(order)
        spend[key] = spend.get(key, ZERO) + order.total_price
    return spend


def ltv_buckets(orders: Iterable[OrderRecord]) -> list[LtvBucket]:
    """Histogram of customers by lifetime spend.

    The first four ranges are always present. Higher ranges are kept up to
    the highest populated one, so there is never a hidden gap.
    """
    counts = [0] * len(LTV_RANGES)
    for spend in customer_spend(orders).values():
        for index, ltv_range in enumerate(LTV_RANGES):
            if ltv_range.contains(spend):
                counts[index] += 1
                break

    last_populated = max((i for i, c in enumerate(counts) if c > 0), default=-1)
    return [
        LtvBucket(range=r.label, count=counts[i], min=r.low, max=r.high)
        for i, r in enumerate(LTV_RANGES)
        if i < ALWAYS_SHOWN or i <= last_populated
    ]


@dataclass
class FirstOrder:
    order: OrderRecord
    discount: Decimal


def first_orders(orders: Iterable[OrderRecord]) -> dict[str, FirstOrder]:
    """Earliest order per customer; on equal timestamps the first seen wins."""
    first: dict[str, FirstOrder] = {}
    for order in orders:
        key = customer_key(order)
        existing = first.get(key)
        if existing is None or order.created_at < existing.order.created_at:
            first[key] = FirstOrder(order=order, discount=order.total_discounts)
    return first


@dataclass
class _AcquisitionTotals:
    new_buyers: int = 0
    total_discounts: Decimal = ZERO


def acquisition_by_period(
    orders: Iterable[OrderRecord],
    period_fn: Callable[[OrderRecord], str],
    label_fn: Callable[[str], str],
    seed_keys: Iterable[str] = (),
) -> list[AcquisitionRow]:
    """New buyers and average first-order discount per period.

    Args:
        orders: All orders in range
        period_fn: Period key for an order
        label_fn: Display label for a period key
        seed_keys: Periods to include even with no new buyers

    Returns:
        Rows in natural period order
    """
    periods: dict[str, _AcquisitionTotals] = {key: _AcquisitionTotals() for key in seed_keys}

    for first in first_orders(orders).values():
        totals = periods.setdefault(period_fn(first.order), _AcquisitionTotals())
        totals.new_buyers += 1
        totals.total_discounts += first.discount

    rows = []
    for key in sorted(periods, key=natural_sort_key):
        totals = periods[key]
        avg = totals.total_discounts / totals.new_buyers if totals.new_buyers else ZERO
        rows.append(
            AcquisitionRow(
                key=key,
                label=label_fn(key),
                new_buyers=totals.new_buyers,
                total_discounts=round_money(totals.total_discounts),
                avg_cac=round_money(avg),
            )
        )
    return rows


def total_customers(orders: Iterable[OrderRecord]) -> int:
    return len(customer_spend(orders))


class CustomerAnalysis(BaseModel):
    """LTV histogram plus acquisition per period."""

    ltv_buckets: list[LtvBucket]
    acquisition: list[AcquisitionRow]
    total_customers: int


def analyze_customers(
    orders: list[OrderRecord],
    period_fn: Optional[Callable[[OrderRecord], str]] = None,
    label_fn: Optional[Callable[[str], str]] = None,
    seed_keys: Iterable[str] = (),
) -> CustomerAnalysis:
    """Run both customer analyses over one order set (daily periods by default)."""
    if period_fn is None:
        period_fn = _day_key
    return CustomerAnalysis(
        ltv_buckets=ltv_buckets(orders),
        acquisition=acquisition_by_period(orders, period_fn, label_fn or str, seed_keys),
        total_customers=total_customers(orders),
    )


def _day_key(order: OrderRecord) -> str:
    return order.order_date.isoformat()