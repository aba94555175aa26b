"""Tests for the cost waterfall.

The worked example: subtotal $100 after a $10 discount, $5 shipping revenue,
COGS 40%, $5 flat shipping cost, 2.9% + $0.30 Shopify Payments fee.
"""

from decimal import Decimal

import pytest

from shop_profit.analytics.aggregator import ALL_KEY, Accumulator, Dimension, aggregate
from shop_profit.analytics.costs import (
    CostConfiguration,
    CustomGateway,
    GatewayRate,
    PlanTier,
    ShippingCostOverride,
    ShippingMethod,
    ShippingSettings,
    TransactionFeeSettings,
)
from shop_profit.analytics.waterfall import (
    CostWaterfall,
    ShippingCostCascade,
    ShippingSource,
    TransactionFeeResolver,
    apply_cost_waterfall,
    sum_rows,
)


def single_bucket(orders, **kwargs) -> Accumulator:
    return aggregate(orders, **kwargs)[(ALL_KEY, "")]


class TestWorkedExample:
    """End-to-end arithmetic for one order."""

    @pytest.fixture
    def row(self, example_order):
        return apply_cost_waterfall(single_bucket([example_order]), CostConfiguration())

    def test_revenue(self, row):
        assert row.gross_revenue == Decimal("110.00")
        assert row.discounts == Decimal("10.00")
        assert row.net_sales == Decimal("100.00")
        assert row.net_revenue == Decimal("105.00")

    def test_cm1(self, row):
        """COGS is taken on net sales, not on shipping revenue."""
        assert row.cogs == Decimal("40.00")
        assert row.gross_profit == Decimal("65.00")
        assert row.gross_profit_percent == Decimal("61.9")

    def test_cm2(self, row):
        """Rounding happens once, on the final figures."""
        assert row.shipping_cost == Decimal("5.00")
        assert row.transaction_fees == Decimal("3.35")
        assert row.fulfillment_cost == Decimal("8.35")
        assert row.cm2 == Decimal("56.66")
        assert row.cm2_percent == Decimal("54.0")

    def test_cm3_and_net_without_overheads(self, row):
        assert row.cm3 == row.cm2
        assert row.net_profit == row.cm2
        assert row.shipping_sources == {"estimate": 1}

    def test_ad_spend_and_opex(self, example_order):
        row = apply_cost_waterfall(
            single_bucket([example_order]),
            CostConfiguration(),
            ad_spend=Decimal("20"),
            opex=Decimal("6.66"),
        )
        assert row.cm3 == Decimal("36.66")
        assert row.net_profit == Decimal("30.00")

    def test_returns_reduce_net_revenue(self, example_order):
        row = apply_cost_waterfall(
            single_bucket([example_order]),
            CostConfiguration(),
            returns=Decimal("15"),
        )
        assert row.net_revenue == Decimal("90.00")
        # Returns do not change COGS
        assert row.cogs == Decimal("40.00")


class TestEdgeCases:
    def test_zero_revenue_percents_are_zero(self):
        """Empty buckets never divide by zero."""
        row = apply_cost_waterfall(Accumulator(dimension_key=ALL_KEY))
        assert row.net_revenue == Decimal("0")
        assert row.gross_profit_percent == Decimal("0")
        assert row.cm2_percent == Decimal("0")
        assert row.net_profit_percent == Decimal("0")
        assert row.transaction_fees == Decimal("0")

    def test_negative_net_revenue_percents_are_zero(self, example_order):
        row = apply_cost_waterfall(
            single_bucket([example_order]),
            CostConfiguration(),
            returns=Decimal("200"),
        )
        assert row.net_revenue < 0
        assert row.cm2_percent == Decimal("0")

    def test_cogs_percent_configurable(self, example_order):
        row = apply_cost_waterfall(single_bucket([example_order]), CostConfiguration(cogs_percent=Decimal("25")))
        assert row.cogs == Decimal("25.00")


class TestShippingCascade:
    """Authoritative cost, then override, then estimate."""

    def test_label_cost_wins(self, make_order):
        order = make_order(name="#1007", label_cost="6.40")
        config = CostConfiguration(
            shipping_overrides=[ShippingCostOverride(order_id="1007", shipping_cost=Decimal("9"))]
        )
        resolution = ShippingCostCascade.from_config(config).resolve(order)
        assert resolution.cost == Decimal("6.40")
        assert resolution.source == ShippingSource.SHOPIFY

    @pytest.mark.parametrize("uploaded", ["1007", "#1007", " #1007 "])
    def test_override_matches_with_or_without_hash(self, make_order, uploaded):
        order = make_order(name="#1007")
        config = CostConfiguration(
            shipping_overrides=[ShippingCostOverride(order_id=uploaded, shipping_cost=Decimal("9"))]
        )
        resolution = ShippingCostCascade.from_config(config).resolve(order)
        assert resolution.cost == Decimal("9")
        assert resolution.source == ShippingSource.CSV

    def test_zero_override_is_used(self, make_order):
        """A $0 override is a real answer, not a missing one."""
        order = make_order(name="#1008")
        config = CostConfiguration(
            shipping_overrides=[ShippingCostOverride(order_id="1008", shipping_cost=Decimal("0"))]
        )
        resolution = ShippingCostCascade.from_config(config).resolve(order)
        assert resolution.cost == Decimal("0")
        assert resolution.source == ShippingSource.CSV

    def test_flat_estimate(self, make_order):
        resolution = ShippingCostCascade.from_config(CostConfiguration()).resolve(make_order())
        assert resolution.cost == Decimal("5")
        assert resolution.source == ShippingSource.ESTIMATE

    def test_per_item_estimate(self, make_order, make_line):
        order = make_order(lines=[make_line(quantity=3), make_line(quantity=1)])
        config = CostConfiguration(
            shipping=ShippingSettings(method=ShippingMethod.PER_ITEM, per_item_rate=Decimal("2"))
        )
        resolution = ShippingCostCascade.from_config(config).resolve(order)
        assert resolution.cost == Decimal("8")

    def test_per_item_estimate_at_least_one_item(self, make_order, make_line):
        order = make_order(lines=[make_line(quantity=0)])
        config = CostConfiguration(shipping=ShippingSettings(method=ShippingMethod.PER_ITEM))
        assert ShippingCostCascade.from_config(config).resolve(order).cost == Decimal("2")

    def test_no_estimate(self, make_order):
        config = CostConfiguration(shipping=ShippingSettings(method=ShippingMethod.NONE))
        resolution = ShippingCostCascade.from_config(config).resolve(make_order())
        assert resolution.cost == Decimal("0")
        assert resolution.source == ShippingSource.NONE

    def test_bucket_counts_sources(self, make_order):
        orders = [make_order(name="#1"), make_order(name="#2", label_cost="4")]
        config = CostConfiguration(
            shipping_overrides=[ShippingCostOverride(order_id="#1", shipping_cost=Decimal("3"))]
        )
        cost, sources = CostWaterfall(config).shipping_cost(single_bucket(orders))
        assert cost == Decimal("7")
        assert sources == {"csv": 1, "shopify": 1}


class TestTransactionFees:
    """Gateway matching and surcharges."""

    def test_shopify_payments_default(self):
        resolver = TransactionFeeResolver(TransactionFeeSettings())
        rate = resolver.rate_for("shopify_payments")
        assert rate.rate == Decimal("2.9")
        assert rate.surcharge == Decimal("0")
        assert resolver.fee(Decimal("105"), "shopify_payments") == Decimal("3.345")

    def test_shop_pay_is_shopify(self):
        resolver = TransactionFeeResolver(TransactionFeeSettings())
        assert resolver.rate_for("Shop_Pay").gateway == "shopify_payments"

    def test_paypal_no_surcharge_with_shopify_payments(self):
        resolver = TransactionFeeResolver(TransactionFeeSettings())
        rate = resolver.rate_for("PayPal Express Checkout")
        assert rate.gateway == "paypal"
        assert rate.surcharge == Decimal("0")

    def test_paypal_surcharge_without_shopify_payments(self):
        resolver = TransactionFeeResolver(TransactionFeeSettings(uses_shopify_payments=False))
        assert resolver.rate_for("paypal").surcharge == Decimal("2.0")

    def test_stripe_only_when_enabled(self):
        disabled = TransactionFeeResolver(TransactionFeeSettings())
        assert disabled.rate_for("stripe").gateway == "shopify_payments"

        enabled = TransactionFeeResolver(
            TransactionFeeSettings(
                stripe=GatewayRate(rate=Decimal("2.9"), fixed_fee=Decimal("0.30"), enabled=True)
            )
        )
        rate = enabled.rate_for("stripe")
        assert rate.gateway == "stripe"
        assert rate.total_rate == Decimal("4.9")

    def test_custom_gateway_substring(self):
        settings = TransactionFeeSettings(additional_gateways=[CustomGateway.from_known("klarna")])
        rate = TransactionFeeResolver(settings).rate_for("Klarna Pay Later")
        assert rate.gateway == "klarna"
        assert rate.rate == Decimal("3.29")
        assert rate.surcharge == Decimal("2.0")

    def test_plus_plan_has_no_surcharge(self):
        settings = TransactionFeeSettings.for_plan(
            PlanTier.PLUS,
            additional_gateways=[CustomGateway.from_known("affirm")],
        )
        assert TransactionFeeResolver(settings).rate_for("affirm").surcharge == Decimal("0")

    def test_unknown_gateway_falls_back(self):
        resolver = TransactionFeeResolver(TransactionFeeSettings())
        assert resolver.rate_for("cash_on_delivery").gateway == "shopify_payments"
        assert resolver.rate_for(None).gateway == "shopify_payments"

    def test_fixed_fee_once_per_order(self, make_order, make_line):
        """Two lines of one order pay the fixed fee once."""
        order = make_order(lines=[make_line(original_total="50"), make_line(original_total="50")])
        bucket = aggregate([order], Dimension.PRODUCT)[("p1", "")]
        fees = CostWaterfall().transaction_fees(bucket, bucket.net_revenue)
        assert fees == Decimal("100") * Decimal("0.029") + Decimal("0.30")

    def test_mixed_gateways_in_bucket(self, make_order):
        orders = [make_order(gateway="shopify_payments"), make_order(gateway="paypal")]
        bucket = single_bucket(orders)
        fees = CostWaterfall().transaction_fees(bucket, bucket.net_revenue)
        expected = Decimal("10") * Decimal("0.029") + Decimal("0.30")
        expected += Decimal("10") * Decimal("0.0299") + Decimal("0.49")
        assert fees == expected


class TestSumRows:
    def test_totals_match_rounded_rows(self, make_order):
        orders = [make_order(shipping="1"), make_order(shipping="2")]
        waterfall = CostWaterfall()
        rows = [waterfall.apply(b) for b in aggregate(orders, Dimension.ORDER).values()]
        total = sum_rows(rows)

        assert total.key == "total"
        assert total.net_revenue == sum((r.net_revenue for r in rows), Decimal("0"))
        assert total.cm2 == sum((r.cm2 for r in rows), Decimal("0"))
        assert total.order_count == 2
        assert total.shipping_sources == {"estimate": 2}

    def test_percent_recomputed(self, make_order):
        rows = [CostWaterfall().apply(single_bucket([make_order()]))]
        total = sum_rows(rows)
        assert total.cm2_percent == rows[0].cm2_percent
