"""Shared fixtures: order and line item factories."""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

import pytest

from shop_profit.analytics.models import LineItem, OrderRecord, ProductRef, RefundRecord


def _dec(value) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


@pytest.fixture
def make_line():
    """Factory for line items."""

    def _make(
        original_total="10",
        quantity: int = 1,
        discount="0",
        product_id: Optional[str] = "p1",
        title: str = "Widget",
        product_type: str = "",
        vendor: str = "",
        tags: Optional[list[str]] = None,
        sku: str = "",
        variant_title: Optional[str] = None,
    ) -> LineItem:
        product = None
        if product_id is not None:
            product = ProductRef(
                id=product_id,
                title=title,
                product_type=product_type,
                vendor=vendor,
                tags=tags or [],
            )
        return LineItem(
            quantity=quantity,
            original_total=_dec(original_total),
            discount_total=_dec(discount),
            product=product,
            sku=sku,
            title=title,
            variant_title=variant_title,
        )

    return _make


@pytest.fixture
def make_order(make_line):
    """Factory for orders.

    ``subtotal`` is after discounts; defaults to the sum of line originals
    minus ``discounts``.
    """
    counter = {"n": 1000}

    def _make(
        created_at: datetime = datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc),
        lines: Optional[list[LineItem]] = None,
        subtotal=None,
        discounts="0",
        shipping="0",
        total_price=None,
        order_id: Optional[str] = None,
        name: Optional[str] = None,
        gateway: Optional[str] = "shopify_payments",
        channel: Optional[str] = None,
        customer_id: Optional[str] = None,
        label_cost=None,
        currency: str = "USD",
    ) -> OrderRecord:
        counter["n"] += 1
        number = counter["n"]
        if lines is None:
            lines = [make_line()]
        discounts = _dec(discounts)
        shipping = _dec(shipping)
        if subtotal is None:
            subtotal = sum((line.original_total for line in lines), Decimal("0")) - discounts
        subtotal = _dec(subtotal)
        if total_price is None:
            total_price = subtotal + shipping
        return OrderRecord(
            id=order_id or f"gid://shopify/Order/{number}",
            name=name if name is not None else f"#{number}",
            created_at=created_at,
            currency=currency,
            customer_id=customer_id,
            subtotal=subtotal,
            total_discounts=discounts,
            total_shipping=shipping,
            total_price=_dec(total_price),
            payment_gateways=[gateway] if gateway else [],
            channel=channel,
            line_items=lines,
            shipping_label_cost=_dec(label_cost) if label_cost is not None else None,
        )

    return _make


@pytest.fixture
def example_order(make_order, make_line):
    """Subtotal $100 after a $10 discount, $5 shipping, Shopify Payments."""
    return make_order(
        lines=[make_line(original_total="110")],
        subtotal="100",
        discounts="10",
        shipping="5",
        name="#1001",
    )


def make_refund(order_id: str, amount, created_at: datetime) -> RefundRecord:
    return RefundRecord(order_id=order_id, amount=_dec(amount), created_at=created_at)


@pytest.fixture
def refund():
    """Factory for refunds."""
    return make_refund


def order_node(
    order_id: str = "gid://shopify/Order/1",
    created_at: str = "2025-01-15T12:00:00Z",
    subtotal: str = "90.00",
    discounts: str = "10.00",
    shipping: str = "5.00",
    gateway: str = "shopify_payments",
    channel: Optional[str] = "Online Store",
) -> dict:
    """Raw ``orders`` GraphQL node as the Admin API returns it."""
    total = str(Decimal(subtotal) + Decimal(shipping))
    return {
        "id": order_id,
        "name": "#1001",
        "createdAt": created_at,
        "customer": {"id": "gid://shopify/Customer/7"},
        "channelInformation": {"channelDefinition": {"channelName": channel}} if channel else None,
        "paymentGatewayNames": [gateway],
        "totalPriceSet": {"shopMoney": {"amount": total, "currencyCode": "USD"}},
        "totalDiscountsSet": {"shopMoney": {"amount": discounts}},
        "subtotalPriceSet": {"shopMoney": {"amount": subtotal}},
        "totalShippingPriceSet": {"shopMoney": {"amount": shipping}},
        "lineItems": {
            "edges": [
                {
                    "node": {
                        "sku": "W-1",
                        "title": "Widget",
                        "variantTitle": "Large",
                        "quantity": 2,
                        "product": {
                            "id": "gid://shopify/Product/1",
                            "title": "Widget",
                            "productType": "Gadgets",
                            "vendor": "Acme",
                            "tags": ["sale"],
                        },
                        "originalTotalSet": {"shopMoney": {"amount": "100.00"}},
                        "totalDiscountSet": {"shopMoney": {"amount": "0.00"}},
                    }
                }
            ]
        },
    }


@pytest.fixture
def raw_order():
    """Factory for raw order nodes."""
    return order_node
