"""Data models for order records and report output."""

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer

from shop_profit.analytics.money import ZERO, to_money

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL = "Online Store"
UNKNOWN_PRODUCT = "Unknown Product"

# Decimals stay exact in Python and become plain JSON numbers on the wire
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]
Percent = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


def _shop_money(node: Optional[dict], field: str) -> Decimal:
    """Read ``node[field].shopMoney.amount`` from a GraphQL money set."""
    money_set = (node or {}).get(field) or {}
    return to_money((money_set.get("shopMoney") or {}).get("amount"))


def _shop_currency(node: Optional[dict], field: str) -> Optional[str]:
    money_set = (node or {}).get(field) or {}
    return (money_set.get("shopMoney") or {}).get("currencyCode")


def _edges(connection: Optional[dict]) -> list[dict]:
    return [
        edge["node"]
        for edge in (connection or {}).get("edges") or []
        if edge and edge.get("node")
    ]


class ProductRef(BaseModel):
    """Product a line item belongs to."""

    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    title: str = UNKNOWN_PRODUCT
    product_type: str = ""
    vendor: str = ""
    tags: list[str] = Field(default_factory=list)

    @classmethod
    def from_api_response(cls, data: Optional[dict]) -> Optional["ProductRef"]:
        """Create from API response data, None when the product was deleted."""
        if not data:
            return None
        return cls(
            id=data.get("id"),
            title=data.get("title") or UNKNOWN_PRODUCT,
            product_type=data.get("productType") or "",
            vendor=data.get("vendor") or "",
            tags=list(data.get("tags") or []),
        )


class LineItem(BaseModel):
    """One line of an order."""

    model_config = ConfigDict(frozen=True)

    quantity: int = Field(0, ge=0)
    original_total: Money = Field(ZERO, description="Pre-discount line total")
    discount_total: Money = Field(ZERO, description="Discount applied to this line")
    product: Optional[ProductRef] = None
    sku: str = ""
    title: str = ""
    variant_title: Optional[str] = None

    @property
    def product_id(self) -> Optional[str]:
        return self.product.id if self.product else None

    @property
    def product_title(self) -> str:
        if self.product:
            return self.product.title
        return self.title or UNKNOWN_PRODUCT

    @property
    def product_type(self) -> str:
        return self.product.product_type if self.product else ""

    @property
    def vendor(self) -> str:
        return self.product.vendor if self.product else ""

    @property
    def tags(self) -> list[str]:
        return self.product.tags if self.product else []

    @property
    def sku_title(self) -> str:
        """Product title with the variant appended ("Tee - Large")."""
        if self.variant_title:
            return f"{self.product_title} - {self.variant_title}"
        return self.product_title

    @classmethod
    def from_api_response(cls, data: dict) -> "LineItem":
        """Create from API response data."""
        product = ProductRef.from_api_response(data.get("product"))
        if product is None:
            logger.debug("Line item without product reference")
        return cls(
            quantity=max(int(data.get("quantity") or 0), 0),
            original_total=_shop_money(data, "originalTotalSet"),
            discount_total=_shop_money(data, "totalDiscountSet"),
            product=product,
            sku=data.get("sku") or "",
            title=data.get("title") or "",
            variant_title=data.get("variantTitle") or None,
        )


class OrderRecord(BaseModel):
    """Immutable snapshot of one order from the feed."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str = ""
    created_at: datetime
    currency: str = "USD"
    customer_id: Optional[str] = None

    subtotal: Money = Field(ZERO, description="Subtotal after discounts")
    total_discounts: Money = ZERO
    total_shipping: Money = Field(ZERO, description="Shipping charged to the customer")
    total_price: Money = ZERO

    payment_gateways: list[str] = Field(default_factory=list)
    channel: Optional[str] = None
    line_items: list[LineItem] = Field(default_factory=list)

    # Label cost paid by the merchant; only local exports carry it
    shipping_label_cost: Optional[Money] = None

    @property
    def channel_name(self) -> str:
        return self.channel or DEFAULT_CHANNEL

    @property
    def gross_merchandise_value(self) -> Decimal:
        """Merchandise value before discounts (subtotal + discounts)."""
        return self.subtotal + self.total_discounts

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.line_items)

    @property
    def payment_gateway(self) -> str:
        """First gateway used, "unknown" when absent."""
        return self.payment_gateways[0] if self.payment_gateways else "unknown"

    @property
    def order_date(self) -> date:
        """Calendar date in the store's own timezone."""
        return self.created_at.date()

    @classmethod
    def from_api_response(cls, data: dict) -> "OrderRecord":
        """Create from an ``orders`` GraphQL node."""
        channel_info = data.get("channelInformation") or {}
        channel_def = channel_info.get("channelDefinition") or {}
        customer = data.get("customer") or {}

        label_cost = None
        if data.get("shippingLabelCost"):
            label_cost = _shop_money(data, "shippingLabelCost")

        return cls(
            id=data["id"],
            name=data.get("name") or "",
            created_at=data["createdAt"],
            currency=_shop_currency(data, "totalPriceSet") or "USD",
            customer_id=customer.get("id"),
            subtotal=_shop_money(data, "subtotalPriceSet"),
            total_discounts=_shop_money(data, "totalDiscountsSet"),
            total_shipping=_shop_money(data, "totalShippingPriceSet"),
            total_price=_shop_money(data, "totalPriceSet"),
            payment_gateways=list(data.get("paymentGatewayNames") or []),
            channel=channel_def.get("channelName"),
            line_items=[
                LineItem.from_api_response(node)
                for node in _edges(data.get("lineItems"))
            ],
            shipping_label_cost=label_cost,
        )


class RefundRecord(BaseModel):
    """A refund issued against an order."""

    model_config = ConfigDict(frozen=True)

    order_id: str
    amount: Money
    created_at: datetime

    @classmethod
    def from_api_response(cls, order_id: str, data: dict) -> "RefundRecord":
        """Create from one entry of an order's ``refunds`` list."""
        return cls(
            order_id=order_id,
            amount=_shop_money(data, "totalRefundedSet"),
            created_at=data["createdAt"],
        )


class ReportRow(BaseModel):
    """One output row: raw aggregates plus every waterfall metric.

    Currency fields are rounded to cents and percentages to one decimal.
    Percentages are of ``net_revenue`` and are 0 when it is not positive.
    """

    key: str = Field(..., description="Dimension or period key")
    label: str = ""

    # Revenue
    gross_revenue: Money = ZERO
    discounts: Money = ZERO
    net_sales: Money = ZERO
    shipping_revenue: Money = ZERO
    returns: Money = ZERO
    net_revenue: Money = ZERO

    # CM1
    cogs: Money = ZERO
    gross_profit: Money = ZERO
    gross_profit_percent: Percent = ZERO

    # CM2
    shipping_cost: Money = ZERO
    transaction_fees: Money = ZERO
    fulfillment_cost: Money = ZERO
    cm2: Money = ZERO
    cm2_percent: Percent = ZERO

    # CM3 / Net
    ad_spend: Money = ZERO
    cm3: Money = ZERO
    cm3_percent: Percent = ZERO
    opex: Money = ZERO
    net_profit: Money = ZERO
    net_profit_percent: Percent = ZERO

    # Counters
    order_count: int = 0
    item_count: int = 0
    product_count: Optional[int] = None

    # Where each order's shipping cost came from (shopify/csv/estimate/none)
    shipping_sources: dict[str, int] = Field(default_factory=dict)

    # Row-type specific detail (order rows, product rows)
    title: Optional[str] = None
    shipping_source: Optional[str] = None
    payment_gateway: Optional[str] = None
    channel: Optional[str] = None
    created_at: Optional[datetime] = None
