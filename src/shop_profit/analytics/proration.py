"""Discount proration across line items.

Allocation rules:
    line discount present  -> use it verbatim
    one line item          -> the whole order discount
    several line items     -> order discount × original / (subtotal + discount)

The share is of gross (pre-discount) merchandise value, not of the
discounted subtotal. A zero subtotal leaves nothing to prorate.
"""

from decimal import Decimal

from shop_profit.analytics.models import LineItem, OrderRecord
from shop_profit.analytics.money import ZERO


def allocate_discount(line_item: LineItem, order: OrderRecord) -> Decimal:
    """Discount attributable to one line item of an order.

    Args:
        line_item: Line item being aggregated
        order: Order the line item belongs to

    Returns:
        Unrounded discount amount for the line item
    """
    if line_item.discount_total != 0:
        return line_item.discount_total

    if order.total_discounts <= 0 or order.subtotal <= 0:
        return ZERO

    if len(order.line_items) == 1:
        return order.total_discounts

    gross = order.subtotal + order.total_discounts
    return order.total_discounts * (line_item.original_total / gross)


def allocate_order_discounts(order: OrderRecord) -> list[Decimal]:
    """Allocated discount for every line item, in line item order."""
    return [allocate_discount(item, order) for item in order.line_items]
