"""Shopify Admin GraphQL client for the order and refund feed.

Implements the paged feed the report engine consumes:
- Orders for a date range (inclusive start, exclusive end), optional status
- Refunds issued inside a date range
- Product catalog for filter choices

Every page is fetched with one request of up to ``page_size`` records.
Any failed page aborts the whole fetch with ``FeedError``; nothing is retried.

The orders query does not request shipping label cost: label purchases live
in the fulfillments API. Live orders therefore resolve shipping from uploaded
overrides or the configured estimate, and only local exports that carry a
``shippingLabelCost`` money set reach the label cost source.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import AsyncIterator, Callable, Optional, Protocol

import httpx
from pydantic import ValidationError

from shop_profit.analytics.models import OrderRecord, ProductRef, RefundRecord
from shop_profit.analytics.periods import exclusive_end

logger = logging.getLogger(__name__)

OrderPredicate = Callable[[OrderRecord], bool]

REFUNDED_STATUSES = "refunded,partially_refunded"


class FeedError(Exception):
    """Order feed request failed; the report cannot be computed."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        errors: Optional[list] = None,
        page: Optional[int] = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.errors = errors or []
        self.page = page

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.status_code:
            parts.append(f"status={self.status_code}")
        if self.page is not None:
            parts.append(f"page={self.page}")
        return " ".join(parts)


class OrderFeed(Protocol):
    """What the report service needs from an order source."""

    async def fetch_orders(
        self,
        start: date,
        end_inclusive: date,
        financial_status: Optional[str] = "paid",
        extra_filter: Optional[OrderPredicate] = None,
    ) -> list[OrderRecord]: ...

    async def fetch_refunds(self, start: date, end_inclusive: date) -> list[RefundRecord]: ...


ORDERS_QUERY = """
query getOrders($query: String!, $cursor: String, $first: Int!) {
  orders(first: $first, query: $query, after: $cursor, sortKey: CREATED_AT) {
    edges {
      node {
        id
        name
        createdAt
        customer { id }
        channelInformation { channelDefinition { channelName } }
        paymentGatewayNames
        totalPriceSet { shopMoney { amount currencyCode } }
        totalDiscountsSet { shopMoney { amount } }
        subtotalPriceSet { shopMoney { amount } }
        totalShippingPriceSet { shopMoney { amount } }
        lineItems(first: 100) {
          edges {
            node {
              sku
              title
              variantTitle
              quantity
              product { id title productType vendor tags }
              originalTotalSet { shopMoney { amount } }
              totalDiscountSet { shopMoney { amount } }
            }
          }
        }
      }
    }
    pageInfo { hasNextPage endCursor }
  }
}
"""

REFUNDS_QUERY = """
query getRefunds($query: String!, $cursor: String, $first: Int!) {
  orders(first: $first, query: $query, after: $cursor) {
    edges {
      node {
        id
        refunds {
          createdAt
          totalRefundedSet { shopMoney { amount } }
        }
      }
    }
    pageInfo { hasNextPage endCursor }
  }
}
"""

PRODUCTS_QUERY = """
query getProducts($cursor: String, $first: Int!) {
  products(first: $first, after: $cursor) {
    edges {
      node { id title productType vendor tags }
    }
    pageInfo { hasNextPage endCursor }
  }
}
"""


def build_search_query(
    start: date,
    end_inclusive: date,
    financial_status: Optional[str] = None,
) -> str:
    """Orders search string for ``[start, end_inclusive]``.

    The end is sent as an exclusive bound one day later so the whole last
    day is included whatever its time of day.
    """
    parts = [
        f"created_at:>={start.isoformat()}",
        f"created_at:<{exclusive_end(end_inclusive).isoformat()}",
    ]
    if financial_status:
        parts.append(f"financial_status:{financial_status}")
    return " AND ".join(parts)


@dataclass
class ProductCatalog:
    """Products plus the distinct types and tags used for filter choices."""

    products: list[ProductRef] = field(default_factory=list)

    @property
    def product_types(self) -> list[str]:
        return sorted({p.product_type for p in self.products if p.product_type})

    @property
    def tags(self) -> list[str]:
        return sorted({tag for p in self.products for tag in p.tags})


@dataclass
class ShopifyConfig:
    """Configuration for Shopify Admin API access."""

    store_domain: str
    access_token: str
    api_version: str = "2024-10"
    page_size: int = 250
    max_pages: int = 400
    timeout: float = 30.0

    def __post_init__(self):
        """Validate configuration."""
        if not self.store_domain:
            raise ValueError("store_domain is required")
        if not self.access_token:
            raise ValueError("access_token is required")
        if not 1 <= self.page_size <= 250:
            raise ValueError("page_size must be between 1 and 250")
        if self.max_pages < 1:
            raise ValueError("max_pages must be positive")

    @property
    def endpoint(self) -> str:
        return f"https://{self.store_domain}/admin/api/{self.api_version}/graphql.json"

    @classmethod
    def from_settings(cls, settings=None) -> "ShopifyConfig":
        """Build from application settings."""
        if settings is None:
            from shop_profit.config import get_settings
            settings = get_settings()
        return cls(
            store_domain=settings.shopify_store_domain,
            access_token=settings.shopify_access_token,
            api_version=settings.shopify_api_version,
            page_size=settings.feed_page_size,
            max_pages=settings.feed_max_pages,
            timeout=settings.feed_timeout_seconds,
        )


class ShopifyClient:
    """Async client for the Shopify order feed.

    Usage:
        config = ShopifyConfig(store_domain="my-store.myshopify.com", access_token="shpat_...")
        async with ShopifyClient(config) as client:
            orders = await client.fetch_orders(date(2025, 1, 1), date(2025, 1, 31))
    """

    def __init__(
        self,
        config: ShopifyConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize client with configuration (``transport`` is for tests)."""
        self.config = config
        self._client = httpx.AsyncClient(
            timeout=config.timeout,
            transport=transport,
            headers={
                "X-Shopify-Access-Token": config.access_token,
                "Content-Type": "application/json",
            },
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.close()

    async def close(self):
        """Close the HTTP client."""
        await self._client.aclose()

    async def _request(self, query: str, variables: dict, page: int) -> dict:
        """Run one GraphQL request and return its ``data`` object."""
        try:
            response = await self._client.post(
                self.config.endpoint,
                json={"query": query, "variables": variables},
            )
        except httpx.TimeoutException as e:
            logger.error(f"Shopify request timeout on page {page}: {e}")
            raise FeedError(f"Request timeout: {e}", page=page) from e
        except httpx.HTTPError as e:
            logger.error(f"Shopify HTTP error on page {page}: {e}")
            raise FeedError(f"HTTP error: {e}", page=page) from e

        if response.status_code >= 400:
            logger.error(f"Shopify API error: {response.status_code} - {response.text}")
            raise FeedError(
                f"Shopify API error: {response.text}",
                status_code=response.status_code,
                page=page,
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise FeedError("Malformed response: not JSON", status_code=response.status_code, page=page) from e

        if payload.get("errors"):
            errors = payload["errors"]
            messages = "; ".join(str(err.get("message", err)) for err in errors if err)
            logger.error(f"Shopify GraphQL errors on page {page}: {messages}")
            raise FeedError(f"GraphQL error: {messages}", errors=errors, page=page)

        data = payload.get("data")
        if not isinstance(data, dict):
            raise FeedError("Malformed response: missing data", page=page)
        return data

    async def paginate(
        self,
        query: str,
        variables: dict,
        connection: str,
    ) -> AsyncIterator[list[dict]]:
        """Yield the nodes of each page of a connection, in server order.

        Every call starts again from the first page. Stops when the feed
        reports no further pages.

        Args:
            query: GraphQL query taking ``$cursor`` and ``$first``
            variables: Query variables besides the cursor
            connection: Name of the connection field in ``data``

        Raises:
            FeedError: On any failed or malformed page, or after ``max_pages``
        """
        cursor: Optional[str] = None
        for page in range(self.config.max_pages):
            data = await self._request(
                query,
                {**variables, "cursor": cursor, "first": self.config.page_size},
                page,
            )
            conn = data.get(connection)
            if not isinstance(conn, dict) or not isinstance(conn.get("edges"), list):
                raise FeedError(f"Malformed response: no '{connection}' connection", page=page)

            yield [edge["node"] for edge in conn["edges"] if edge and edge.get("node")]

            page_info = conn.get("pageInfo") or {}
            if not page_info.get("hasNextPage"):
                return
            cursor = page_info.get("endCursor")
            if not cursor:
                raise FeedError("Malformed response: hasNextPage without endCursor", page=page)

        raise FeedError(
            f"Pagination exceeded {self.config.max_pages} pages",
            page=self.config.max_pages,
        )

    async def fetch_orders(
        self,
        start: date,
        end_inclusive: date,
        financial_status: Optional[str] = "paid",
        extra_filter: Optional[OrderPredicate] = None,
    ) -> list[OrderRecord]:
        """Fetch every order created in ``[start, end_inclusive]``.

        Args:
            start: First day
            end_inclusive: Last day (whole day included)
            financial_status: Status filter, None or "" for any
            extra_filter: Client-side predicate (e.g. sales channel)

        Returns:
            Orders in feed order

        Raises:
            FeedError: If any page fails
        """
        search = build_search_query(start, end_inclusive, financial_status)
        logger.info(f"Fetching orders: {search}")

        orders: list[OrderRecord] = []
        pages = 0
        async for nodes in self.paginate(ORDERS_QUERY, {"query": search}, "orders"):
            pages += 1
            for node in nodes:
                try:
                    order = OrderRecord.from_api_response(node)
                except (KeyError, ValidationError) as e:
                    logger.warning(f"Skipping malformed order {node.get('id')!r}: {e}")
                    continue
                if extra_filter is None or extra_filter(order):
                    orders.append(order)

        logger.info(f"Fetched {len(orders)} orders in {pages} pages")
        return orders

    async def fetch_refunds(self, start: date, end_inclusive: date) -> list[RefundRecord]:
        """Fetch refunds whose own timestamp falls in ``[start, end_inclusive]``.

        Candidate orders are those created in the range with a refunded or
        partially refunded status; each refund is then checked on its own date.
        """
        search = build_search_query(start, end_inclusive, REFUNDED_STATUSES)
        end = exclusive_end(end_inclusive)
        logger.info(f"Fetching refunds: {search}")

        refunds: list[RefundRecord] = []
        async for nodes in self.paginate(REFUNDS_QUERY, {"query": search}, "orders"):
            for node in nodes:
                for data in node.get("refunds") or []:
                    if not data or not data.get("createdAt"):
                        continue
                    try:
                        refund = RefundRecord.from_api_response(node.get("id", ""), data)
                    except ValidationError as e:
                        logger.warning(f"Skipping malformed refund on {node.get('id')!r}: {e}")
                        continue
                    if start <= refund.created_at.date() < end:
                        refunds.append(refund)

        logger.info(f"Fetched {len(refunds)} refunds in range")
        return refunds

    async def fetch_products(self) -> ProductCatalog:
        """Fetch the product catalog (for filter choices)."""
        products: list[ProductRef] = []
        async for nodes in self.paginate(PRODUCTS_QUERY, {}, "products"):
            for node in nodes:
                product = ProductRef.from_api_response(node)
                if product is not None:
                    products.append(product)
        logger.info(f"Fetched {len(products)} products")
        return ProductCatalog(products=products)
