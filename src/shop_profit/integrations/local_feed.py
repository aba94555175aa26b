"""In-memory order feed.

Serves orders and refunds already held in memory (or loaded from a JSON
export of raw order nodes) through the same interface as ``ShopifyClient``.
Used by the CLI for offline runs and by tests.

File format, either a bare list of order nodes or:
    {"orders": [<order node>, ...],
     "refunds": [{"order_id": "...", "amount": "12.50", "created_at": "..."}]}
"""

import json
import logging
from datetime import date
from pathlib import Path
from typing import Optional, Union

from pydantic import ValidationError

from shop_profit.analytics.models import OrderRecord, RefundRecord
from shop_profit.analytics.periods import exclusive_end
from shop_profit.integrations.shopify import FeedError, OrderPredicate

logger = logging.getLogger(__name__)


class LocalOrderFeed:
    """Order feed over a fixed set of records."""

    def __init__(
        self,
        orders: Optional[list[OrderRecord]] = None,
        refunds: Optional[list[RefundRecord]] = None,
    ):
        self.orders = list(orders or [])
        self.refunds = list(refunds or [])
        self.calls: list[tuple[date, date]] = []

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "LocalOrderFeed":
        """Load an export file.

        Raises:
            FeedError: If the file cannot be read or is not valid JSON
        """
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise FeedError(f"Cannot read order file {path}: {e}") from e

        if isinstance(data, list):
            data = {"orders": data}

        orders = []
        for node in data.get("orders") or []:
            try:
                orders.append(OrderRecord.from_api_response(node))
            except (KeyError, ValidationError) as e:
                logger.warning(f"Skipping malformed order {node.get('id')!r}: {e}")

        refunds = []
        for entry in data.get("refunds") or []:
            try:
                refunds.append(RefundRecord.model_validate(entry))
            except ValidationError as e:
                logger.warning(f"Skipping malformed refund {entry!r}: {e}")

        logger.info(f"Loaded {len(orders)} orders and {len(refunds)} refunds from {path}")
        return cls(orders=orders, refunds=refunds)

    async def fetch_orders(
        self,
        start: date,
        end_inclusive: date,
        financial_status: Optional[str] = "paid",
        extra_filter: Optional[OrderPredicate] = None,
    ) -> list[OrderRecord]:
        """Orders created in ``[start, end_inclusive]``; status is not tracked locally."""
        self.calls.append((start, end_inclusive))
        end = exclusive_end(end_inclusive)
        return [
            order
            for order in self.orders
            if start <= order.order_date < end
            and (extra_filter is None or extra_filter(order))
        ]

    async def fetch_refunds(self, start: date, end_inclusive: date) -> list[RefundRecord]:
        end = exclusive_end(end_inclusive)
        return [r for r in self.refunds if start <= r.created_at.date() < end]
