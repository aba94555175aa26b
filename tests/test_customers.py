"""Tests for customer lifetime value and acquisition."""

from datetime import datetime, timezone
from decimal import Decimal

from shop_profit.analytics.customers import (
    CAC_BASIS,
    analyze_customers,
    customer_key,
    first_orders,
    ltv_buckets,
    total_customers,
)


def at(day: int, hour: int = 12) -> datetime:
    return datetime(2025, 1, day, hour, tzinfo=timezone.utc)


class TestLtvBuckets:
    """Histogram of customers by lifetime spend."""

    def test_gap_ranges_kept(self, make_order):
        """Spends 10, 30, 1500 show every range up to $1K+, empty ones included."""
        orders = [
            make_order(customer_id="c1", total_price="10"),
            make_order(customer_id="c2", total_price="30"),
            make_order(customer_id="c3", total_price="1500"),
        ]
        buckets = ltv_buckets(orders)
        assert [b.range for b in buckets] == [
            "$0-25",
            "$25-50",
            "$50-100",
            "$100-200",
            "$200-500",
            "$500-1K",
            "$1K+",
        ]
        assert [b.count for b in buckets] == [1, 1, 0, 0, 0, 0, 1]

    def test_first_four_always_shown(self, make_order):
        buckets = ltv_buckets([make_order(customer_id="c1", total_price="10")])
        assert len(buckets) == 4

    def test_no_orders(self):
        buckets = ltv_buckets([])
        assert len(buckets) == 4
        assert all(b.count == 0 for b in buckets)

    def test_spend_summed_per_customer(self, make_order):
        orders = [
            make_order(customer_id="c1", total_price="30"),
            make_order(customer_id="c1", total_price="30"),
        ]
        buckets = ltv_buckets(orders)
        assert buckets[2].range == "$50-100"
        assert buckets[2].count == 1

    def test_boundaries_are_half_open(self, make_order):
        """$25 exactly belongs to $25-50."""
        buckets = ltv_buckets([make_order(customer_id="c1", total_price="25")])
        assert buckets[0].count == 0
        assert buckets[1].count == 1


class TestGuests:
    def test_each_guest_order_is_own_customer(self, make_order):
        orders = [make_order(customer_id=None), make_order(customer_id=None)]
        assert total_customers(orders) == 2

    def test_guest_key(self, make_order):
        order = make_order(order_id="o-9", customer_id=None)
        assert customer_key(order) == "guest-o-9"


class TestAcquisition:
    """New buyers by period of first order."""

    def test_first_order_is_earliest(self, make_order):
        later = make_order(customer_id="c1", created_at=at(5), discounts="1")
        earlier = make_order(customer_id="c1", created_at=at(2), discounts="4")
        first = first_orders([later, earlier])
        assert first["c1"].order is earlier
        assert first["c1"].discount == Decimal("4")

    def test_tie_keeps_first_seen(self, make_order):
        a = make_order(customer_id="c1", created_at=at(3))
        b = make_order(customer_id="c1", created_at=at(3))
        assert first_orders([a, b])["c1"].order is a

    def test_daily_acquisition(self, make_order):
        orders = [
            make_order(customer_id="c1", created_at=at(1), discounts="2"),
            make_order(customer_id="c2", created_at=at(1), discounts="4"),
            make_order(customer_id="c1", created_at=at(2), discounts="10"),
            make_order(customer_id="c3", created_at=at(2)),
        ]
        analysis = analyze_customers(orders)
        rows = {row.key: row for row in analysis.acquisition}

        assert rows["2025-01-01"].new_buyers == 2
        assert rows["2025-01-01"].avg_cac == Decimal("3.00")
        assert rows["2025-01-02"].new_buyers == 1
        assert rows["2025-01-02"].avg_cac == Decimal("0.00")
        assert rows["2025-01-01"].cac_basis == CAC_BASIS
        assert analysis.total_customers == 3

    def test_seeded_periods_and_natural_order(self, make_order):
        orders = [make_order(customer_id="c1", created_at=at(10))]
        analysis = analyze_customers(
            orders,
            period_fn=lambda o: "2",
            label_fn=lambda key: f"W{key}",
            seed_keys=["1", "2", "10"],
        )
        assert [row.key for row in analysis.acquisition] == ["1", "2", "10"]
        assert [row.new_buyers for row in analysis.acquisition] == [0, 1, 0]
        assert analysis.acquisition[0].label == "W1"
