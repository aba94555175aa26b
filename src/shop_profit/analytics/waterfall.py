"""Cost waterfall calculator.

Applied per aggregate bucket, in fixed order:
    Net Sales    = Gross Revenue - Discounts
    Net Revenue  = Net Sales - Returns + Shipping Revenue
    COGS         = Net Sales × COGS %
    Gross Profit = Net Revenue - COGS                         (CM1)
    Fulfillment  = Shipping Cost + Transaction Fees
    CM2          = Gross Profit - Fulfillment
    CM3          = CM2 - Ad Spend
    Net Profit   = CM3 - OpEx

Shipping cost per order comes from the first resolver that has an answer:
authoritative label cost, uploaded override, configured estimate.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Iterable, Optional

from shop_profit.analytics.aggregator import Accumulator
from shop_profit.analytics.costs import (
    CostConfiguration,
    PlanTier,
    ShippingCostOverride,
    ShippingMethod,
    ShippingSettings,
    TransactionFeeSettings,
)
from shop_profit.analytics.models import OrderRecord, ReportRow
from shop_profit.analytics.money import (
    ONE_HUNDRED,
    ZERO,
    percent_of,
    round_money,
    round_percent,
)

logger = logging.getLogger(__name__)


class ShippingSource(str, Enum):
    """Where an order's shipping cost came from."""

    SHOPIFY = "shopify"
    CSV = "csv"
    ESTIMATE = "estimate"
    NONE = "none"


@dataclass(frozen=True)
class ShippingResolution:
    """Resolved shipping cost for one order."""

    cost: Decimal
    source: ShippingSource


class ShippingResolver:
    """One step of the shipping cost cascade."""

    def resolve(self, order: OrderRecord, item_count: int) -> Optional[ShippingResolution]:
        """Return a resolution, or None to defer to the next resolver."""
        raise NotImplementedError


class AuthoritativeShippingResolver(ShippingResolver):
    """Label cost reported by the platform itself."""

    def resolve(self, order: OrderRecord, item_count: int) -> Optional[ShippingResolution]:
        cost = order.shipping_label_cost
        if cost is not None and cost > 0:
            return ShippingResolution(cost, ShippingSource.SHOPIFY)
        return None


def _strip_hash(value: str) -> str:
    return value.strip().lstrip("#").strip()


class OverrideShippingResolver(ShippingResolver):
    """Merchant-uploaded cost, matched on order name with or without ``#``."""

    def __init__(self, overrides: Iterable[ShippingCostOverride]):
        self._costs: dict[str, Decimal] = {}
        for entry in overrides:
            normalized = _strip_hash(entry.order_id)
            for key in (entry.order_id.strip(), normalized, f"#{normalized}"):
                self._costs[key] = entry.shipping_cost

    def __len__(self) -> int:
        return len(self._costs)

    def lookup(self, order_name: str) -> Optional[Decimal]:
        """Find the override for an order name in any ``#`` format."""
        normalized = _strip_hash(order_name)
        for key in (order_name.strip(), normalized, f"#{normalized}"):
            if key in self._costs:
                return self._costs[key]
        return None

    def resolve(self, order: OrderRecord, item_count: int) -> Optional[ShippingResolution]:
        cost = self.lookup(order.name or order.id)
        if cost is None:
            return None
        return ShippingResolution(cost, ShippingSource.CSV)


class EstimateShippingResolver(ShippingResolver):
    """Configured fallback. Always answers, so it terminates the cascade."""

    def __init__(self, settings: ShippingSettings):
        self.settings = settings

    def resolve(self, order: OrderRecord, item_count: int) -> ShippingResolution:
        if self.settings.method == ShippingMethod.FLAT:
            return ShippingResolution(self.settings.flat_rate, ShippingSource.ESTIMATE)
        if self.settings.method == ShippingMethod.PER_ITEM:
            cost = self.settings.per_item_rate * (item_count or 1)
            return ShippingResolution(cost, ShippingSource.ESTIMATE)
        return ShippingResolution(ZERO, ShippingSource.NONE)


class ShippingCostCascade:
    """Ordered resolver chain; the first resolver with an answer wins."""

    def __init__(self, resolvers: list[ShippingResolver]):
        self.resolvers = resolvers

    @classmethod
    def from_config(cls, config: CostConfiguration) -> "ShippingCostCascade":
        return cls([
            AuthoritativeShippingResolver(),
            OverrideShippingResolver(config.shipping_overrides),
            EstimateShippingResolver(config.shipping),
        ])

    def resolve(self, order: OrderRecord, item_count: Optional[int] = None) -> ShippingResolution:
        """Resolve shipping cost for an order.

        Args:
            order: Order to cost
            item_count: Items to charge per-item estimates for (defaults to the whole order)
        """
        if item_count is None:
            item_count = order.item_count
        for resolver in self.resolvers:
            resolution = resolver.resolve(order, item_count)
            if resolution is not None:
                return resolution
        return ShippingResolution(ZERO, ShippingSource.NONE)


@dataclass(frozen=True)
class FeeRate:
    """Rate that applies to one payment gateway."""

    rate: Decimal
    fixed_fee: Decimal
    surcharge: Decimal = ZERO
    gateway: str = "shopify_payments"

    @property
    def total_rate(self) -> Decimal:
        return self.rate + self.surcharge

    def fee(self, amount: Decimal) -> Decimal:
        """Fee for one order: amount × (rate + surcharge) / 100 + fixed fee."""
        return amount * self.total_rate / ONE_HUNDRED + self.fixed_fee


class TransactionFeeResolver:
    """Maps a payment gateway name to its configured rate.

    Matching is a case-insensitive substring test, in this order:
    PayPal, Stripe, Shopify Payments / Shop Pay, merchant-added gateways.
    Anything else is charged at the Shopify Payments rate.
    """

    def __init__(self, settings: TransactionFeeSettings):
        self.settings = settings
        self._cache: dict[str, FeeRate] = {}

    @property
    def default_rate(self) -> FeeRate:
        sp = self.settings.shopify_payments
        return FeeRate(rate=sp.rate, fixed_fee=sp.fixed_fee)

    @property
    def surcharge(self) -> Decimal:
        if self.settings.plan == PlanTier.PLUS:
            return ZERO
        return self.settings.shopify_surcharge

    def rate_for(self, gateway: Optional[str]) -> FeeRate:
        name = (gateway or "").lower()
        cached = self._cache.get(name)
        if cached is None:
            cached = self._cache[name] = self._match(name)
        return cached

    def _match(self, name: str) -> FeeRate:
        s = self.settings

        if "paypal" in name and s.paypal.enabled:
            surcharge = ZERO if s.uses_shopify_payments else self.surcharge
            return FeeRate(s.paypal.rate, s.paypal.fixed_fee, surcharge, "paypal")

        if "stripe" in name and s.stripe.enabled:
            return FeeRate(s.stripe.rate, s.stripe.fixed_fee, self.surcharge, "stripe")

        if "shopify" in name or "shop_pay" in name:
            return self.default_rate

        for custom in s.additional_gateways:
            if custom.api_name and custom.api_name.lower() in name:
                return FeeRate(custom.rate, custom.fixed_fee, self.surcharge, custom.id)

        if name and name != "unknown":
            logger.warning(f"No fee table entry for gateway {name!r}, using Shopify Payments rate")
        return self.default_rate

    def fee(self, amount: Decimal, gateway: Optional[str]) -> Decimal:
        return self.rate_for(gateway).fee(amount)


class CostWaterfall:
    """Turns aggregate buckets into fully costed report rows."""

    def __init__(self, config: Optional[CostConfiguration] = None):
        self.config = config or CostConfiguration()
        self.shipping = ShippingCostCascade.from_config(self.config)
        self.fees = TransactionFeeResolver(self.config.transaction_fees)

    def shipping_cost(self, bucket: Accumulator) -> tuple[Decimal, dict[str, int]]:
        """Total shipping cost of a bucket's orders and a count per source."""
        total = ZERO
        sources: dict[str, int] = {}
        for share in bucket.orders.values():
            resolution = self.shipping.resolve(share.order, share.item_count)
            total += resolution.cost
            sources[resolution.source.value] = sources.get(resolution.source.value, 0) + 1
        return total, sources

    def transaction_fees(self, bucket: Accumulator, net_revenue: Decimal) -> Decimal:
        """Gateway-aware fees on ``net_revenue``, fixed fee once per order.

        ``net_revenue`` is split across orders by their share of the bucket,
        so each part is charged at its own gateway's rate.
        """
        shares = list(bucket.orders.values())
        share_total = sum((s.net_revenue for s in shares), ZERO)
        if not shares:
            return ZERO
        if share_total == 0:
            default = self.fees.default_rate
            return net_revenue * default.total_rate / ONE_HUNDRED + default.fixed_fee * len(shares)

        total = ZERO
        for share in shares:
            portion = net_revenue * share.net_revenue / share_total
            total += self.fees.fee(portion, share.order.payment_gateway)
        return total

    def apply(
        self,
        bucket: Accumulator,
        label: str = "",
        returns: Decimal = ZERO,
        ad_spend: Decimal = ZERO,
        opex: Decimal = ZERO,
        key: Optional[str] = None,
        **extra,
    ) -> ReportRow:
        """Run the waterfall for one bucket.

        Args:
            bucket: Raw aggregate
            label: Display label
            returns: Returns attributed to this bucket
            ad_spend: Ad spend share for this bucket
            opex: Operating expense share for this bucket
            key: Row key (defaults to the bucket's period or dimension key)
            **extra: Additional ReportRow fields (title, product_count, ...)

        Returns:
            ReportRow with every figure rounded for output
        """
        net_sales = bucket.gross_revenue - bucket.discounts
        net_revenue = net_sales - returns + bucket.shipping_revenue
        cogs = net_sales * self.config.cogs_percent / ONE_HUNDRED
        gross_profit = net_revenue - cogs

        shipping_cost, sources = self.shipping_cost(bucket)
        fees = self.transaction_fees(bucket, net_revenue)
        fulfillment = shipping_cost + fees
        cm2 = gross_profit - fulfillment
        cm3 = cm2 - ad_spend
        net_profit = cm3 - opex

        if key is None:
            key = bucket.period_key or bucket.dimension_key

        return ReportRow(
            key=key,
            label=label or key,
            gross_revenue=round_money(bucket.gross_revenue),
            discounts=round_money(bucket.discounts),
            net_sales=round_money(net_sales),
            shipping_revenue=round_money(bucket.shipping_revenue),
            returns=round_money(returns),
            net_revenue=round_money(net_revenue),
            cogs=round_money(cogs),
            gross_profit=round_money(gross_profit),
            gross_profit_percent=round_percent(percent_of(gross_profit, net_revenue)),
            shipping_cost=round_money(shipping_cost),
            transaction_fees=round_money(fees),
            fulfillment_cost=round_money(fulfillment),
            cm2=round_money(cm2),
            cm2_percent=round_percent(percent_of(cm2, net_revenue)),
            ad_spend=round_money(ad_spend),
            cm3=round_money(cm3),
            cm3_percent=round_percent(percent_of(cm3, net_revenue)),
            opex=round_money(opex),
            net_profit=round_money(net_profit),
            net_profit_percent=round_percent(percent_of(net_profit, net_revenue)),
            order_count=bucket.order_count,
            item_count=bucket.item_count,
            shipping_sources=sources,
            **extra,
        )


def apply_cost_waterfall(
    bucket: Accumulator,
    config: Optional[CostConfiguration] = None,
    **context,
) -> ReportRow:
    """Cost one bucket with a fresh calculator (see ``CostWaterfall.apply``)."""
    return CostWaterfall(config).apply(bucket, **context)


SUMMED_FIELDS = (
    "gross_revenue",
    "discounts",
    "net_sales",
    "shipping_revenue",
    "returns",
    "net_revenue",
    "cogs",
    "gross_profit",
    "shipping_cost",
    "transaction_fees",
    "fulfillment_cost",
    "cm2",
    "ad_spend",
    "cm3",
    "opex",
    "net_profit",
)


def sum_rows(rows: Iterable[ReportRow], key: str = "total", label: str = "Total") -> ReportRow:
    """Totals row: sums the already rounded row values, then recomputes percents."""
    totals = {name: ZERO for name in SUMMED_FIELDS}
    order_count = 0
    item_count = 0
    sources: dict[str, int] = {}

    for row in rows:
        for name in SUMMED_FIELDS:
            totals[name] += getattr(row, name)
        order_count += row.order_count
        item_count += row.item_count
        for source, count in row.shipping_sources.items():
            sources[source] = sources.get(source, 0) + count

    net_revenue = totals["net_revenue"]
    return ReportRow(
        key=key,
        label=label,
        **totals,
        gross_profit_percent=round_percent(percent_of(totals["gross_profit"], net_revenue)),
        cm2_percent=round_percent(percent_of(totals["cm2"], net_revenue)),
        cm3_percent=round_percent(percent_of(totals["cm3"], net_revenue)),
        net_profit_percent=round_percent(percent_of(totals["net_profit"], net_revenue)),
        order_count=order_count,
        item_count=item_count,
        shipping_sources=sources,
    )
