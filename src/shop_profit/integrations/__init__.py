"""Order feed integrations."""

from shop_profit.integrations.local_feed import LocalOrderFeed
from shop_profit.integrations.shopify import (
    FeedError,
    OrderFeed,
    ProductCatalog,
    ShopifyClient,
    ShopifyConfig,
)

__all__ = [
    # Shopify
    "FeedError",
    "OrderFeed",
    "ProductCatalog",
    "ShopifyClient",
    "ShopifyConfig",
    # Local
    "LocalOrderFeed",
]
