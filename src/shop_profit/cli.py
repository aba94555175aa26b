"""Command-line interface for running profit reports."""

import argparse
import asyncio
import logging
import sys
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from shop_profit.analytics.aggregator import ALL_KEY, aggregate
from shop_profit.analytics.costs import CostConfiguration, ShippingMethod, ShippingSettings
from shop_profit.analytics.models import LineItem, OrderRecord
from shop_profit.analytics.periods import DatePreset, Granularity, resolve_preset
from shop_profit.analytics.reports import ReportFilters
from shop_profit.analytics.waterfall import apply_cost_waterfall
from shop_profit.integrations.local_feed import LocalOrderFeed
from shop_profit.integrations.shopify import FeedError, ShopifyClient, ShopifyConfig
from shop_profit.services.report_service import (
    ReportError,
    ReportRequest,
    ReportService,
    parse_report_type,
)


def create_example_order() -> OrderRecord:
    """Single order used by the waterfall walkthrough."""
    return OrderRecord(
        id="example-1001",
        name="#1001",
        created_at=datetime(2025, 3, 14, 12, 0, tzinfo=timezone.utc),
        subtotal=Decimal("100"),
        total_discounts=Decimal("10"),
        total_shipping=Decimal("5"),
        total_price=Decimal("105"),
        payment_gateways=["shopify_payments"],
        line_items=[
            LineItem(quantity=1, original_total=Decimal("110"), title="Example Product"),
        ],
    )


def waterfall_command(args: argparse.Namespace) -> None:
    """Print the cost waterfall for one example order."""
    config = CostConfiguration(
        cogs_percent=Decimal("40"),
        shipping=ShippingSettings(method=ShippingMethod.FLAT, flat_rate=Decimal("5")),
    )
    order = create_example_order()
    bucket = aggregate([order])[(ALL_KEY, "")]
    row = apply_cost_waterfall(bucket, config, label=order.name)

    print(f"Order: {order.name}")
    print(f"{'=' * 50}")
    print(f"  Gross revenue:     ${row.gross_revenue:>9.2f}")
    print(f"  Discounts:        -${row.discounts:>9.2f}")
    print(f"  Shipping revenue: +${row.shipping_revenue:>9.2f}")
    print(f"  Returns:          -${row.returns:>9.2f}")
    print(f"  Net revenue:       ${row.net_revenue:>9.2f}")
    print(f"\nCM1:")
    print(f"  COGS ({config.cogs_percent}%):      -${row.cogs:>9.2f}")
    print(f"  Gross profit:      ${row.gross_profit:>9.2f}  ({row.gross_profit_percent}%)")
    print(f"\nCM2:")
    print(f"  Shipping cost:    -${row.shipping_cost:>9.2f}")
    print(f"  Transaction fees: -${row.transaction_fees:>9.2f}")
    print(f"  CM2:               ${row.cm2:>9.2f}  ({row.cm2_percent}%)")
    print(f"\nCM3 / Net:")
    print(f"  Ad spend:         -${row.ad_spend:>9.2f}")
    print(f"  OpEx:             -${row.opex:>9.2f}")
    print(f"  Net profit:        ${row.net_profit:>9.2f}  ({row.net_profit_percent}%)")
    print(f"{'=' * 50}")


def load_config(path: str) -> CostConfiguration:
    """Read a cost configuration JSON file."""
    return CostConfiguration.model_validate_json(Path(path).read_text(encoding="utf-8"))


def report_command(args: argparse.Namespace) -> int:
    """Run one report and print its JSON result."""
    if args.preset:
        start, end = resolve_preset(DatePreset(args.preset), date.today())
    else:
        start, end = args.start, args.end
    if start is None or end is None:
        print("Either --preset or both --start and --end are required", file=sys.stderr)
        return 2

    try:
        report_type = parse_report_type(args.type)
        config = load_config(args.config) if args.config else CostConfiguration()
    except (ReportError, OSError, ValidationError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    request = ReportRequest(
        report_type=report_type,
        start=start,
        end=end,
        filters=ReportFilters(
            product_id=args.product_id,
            product_type=args.product_type,
            channel=args.channel,
            tag=args.tag,
            group_by=Granularity(args.group_by),
        ),
        config=config,
        compare=not args.no_compare,
    )

    async def run():
        if args.orders:
            feed = LocalOrderFeed.from_file(args.orders)
            return await ReportService(feed).run(request)
        async with ShopifyClient(ShopifyConfig.from_settings()) as client:
            return await ReportService(client).run(request)

    try:
        result = asyncio.run(run())
    except (ReportError, FeedError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    print(result.model_dump_json(indent=2 if args.pretty else None))
    return 0 if result.status == "ok" else 1


def main(argv: Optional[list[str]] = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="shop-profit",
        description="Merchant order analytics and profit waterfall",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Report command
    report_parser = subparsers.add_parser("report", help="Run a report")
    report_parser.add_argument("type", help="Report type (dashboard, pl, profitByChannel, ...)")
    report_parser.add_argument("--start", type=date.fromisoformat, help="First day (YYYY-MM-DD)")
    report_parser.add_argument("--end", type=date.fromisoformat, help="Last day, inclusive")
    report_parser.add_argument(
        "--preset",
        choices=[p.value for p in DatePreset],
        help="Date range shortcut instead of --start/--end",
    )
    report_parser.add_argument(
        "--group-by",
        choices=[g.value for g in Granularity],
        default=Granularity.MONTH.value,
        help="P&L period size (default: month)",
    )
    report_parser.add_argument("--product-id", help="Only lines of this product")
    report_parser.add_argument("--product-type", help="Only lines of this product type")
    report_parser.add_argument("--channel", help="Only orders from this sales channel")
    report_parser.add_argument("--tag", help="Only lines whose product has this tag")
    report_parser.add_argument("--config", help="Cost configuration JSON file")
    report_parser.add_argument("--orders", help="Local JSON export instead of the live feed")
    report_parser.add_argument(
        "--no-compare",
        action="store_true",
        help="Skip the year-over-year comparison",
    )
    report_parser.add_argument("--pretty", action="store_true", help="Pretty print JSON")

    # Waterfall command
    subparsers.add_parser("waterfall", help="Show the cost waterfall for an example order")

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "report":
        return report_command(args)
    elif args.command == "waterfall":
        waterfall_command(args)
    else:
        parser.print_help()
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
