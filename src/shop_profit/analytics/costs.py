"""Merchant cost configuration.

Everything here is supplied by the caller with each report request and is
read-only to the engine. Missing configuration falls back to the defaults
below (40% COGS, $5/order shipping, 2.9% + $0.30 transaction fee).
"""

import csv
import io
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from shop_profit.analytics.models import Money, Percent
from shop_profit.analytics.money import ZERO, percent_of, round_money, round_percent
from shop_profit.analytics.periods import MONTH_ABBR, inclusive_day_span

logger = logging.getLogger(__name__)


class ShippingMethod(str, Enum):
    """How to estimate shipping when no real cost is known."""

    FLAT = "flat"
    PER_ITEM = "per-item"
    NONE = "none"


class PlanTier(str, Enum):
    """Shopify plans, which set the Shopify Payments rate and third-party surcharge."""

    BASIC = "basic"
    SHOPIFY = "shopify"
    ADVANCED = "advanced"
    PLUS = "plus"


class Frequency(str, Enum):
    """Operating expense recurrence."""

    ONE_TIME = "one-time"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"


class ExpenseCategory(str, Enum):
    """Operating expense categories."""

    ADVERTISING = "advertising"
    SOFTWARE = "software"
    RENT = "rent"
    PAYROLL = "payroll"
    PROFESSIONAL = "professional"
    SHIPPING = "shipping"
    OTHER = "other"


EXPENSE_CATEGORY_LABELS: dict[ExpenseCategory, str] = {
    ExpenseCategory.ADVERTISING: "Advertising & Marketing",
    ExpenseCategory.SOFTWARE: "Software & Subscriptions",
    ExpenseCategory.RENT: "Rent & Warehousing",
    ExpenseCategory.PAYROLL: "Payroll & Contractors",
    ExpenseCategory.PROFESSIONAL: "Professional Services",
    ExpenseCategory.SHIPPING: "Shipping & Fulfillment",
    ExpenseCategory.OTHER: "Other",
}

# Monthly-equivalent divisor per frequency
FREQUENCY_DIVISORS: dict[Frequency, Decimal] = {
    Frequency.ONE_TIME: Decimal("1"),
    Frequency.MONTHLY: Decimal("1"),
    Frequency.QUARTERLY: Decimal("3"),
    Frequency.ANNUAL: Decimal("12"),
}

DAYS_PER_MONTH = Decimal("30")

# (Shopify Payments rate %, third-party surcharge %) per plan, US pricing
PLAN_RATES: dict[PlanTier, tuple[Decimal, Decimal]] = {
    PlanTier.BASIC: (Decimal("2.9"), Decimal("2.0")),
    PlanTier.SHOPIFY: (Decimal("2.6"), Decimal("1.0")),
    PlanTier.ADVANCED: (Decimal("2.4"), Decimal("0.5")),
    PlanTier.PLUS: (Decimal("2.15"), Decimal("0")),
}


@dataclass(frozen=True)
class KnownGateway:
    """Third-party gateway with its typical published pricing."""

    id: str
    name: str
    api_name: str
    default_rate: Decimal
    default_fee: Decimal


KNOWN_GATEWAYS: list[KnownGateway] = [
    KnownGateway("amazon_payments", "Amazon Pay", "amazon_payments", Decimal("2.9"), Decimal("0.30")),
    KnownGateway("klarna", "Klarna", "klarna", Decimal("3.29"), Decimal("0.30")),
    KnownGateway("afterpay", "Afterpay", "afterpay", Decimal("6.0"), Decimal("0.30")),
    KnownGateway("affirm", "Affirm", "affirm", Decimal("5.99"), Decimal("0.30")),
    KnownGateway("sezzle", "Sezzle", "sezzle", Decimal("6.0"), Decimal("0.30")),
    KnownGateway("zip", "Zip (Quadpay)", "zip", Decimal("6.0"), Decimal("0.30")),
    KnownGateway("clearpay", "Clearpay", "clearpay", Decimal("6.0"), Decimal("0.30")),
    KnownGateway("authorize_net", "Authorize.net", "authorize_net", Decimal("2.9"), Decimal("0.30")),
    KnownGateway("braintree", "Braintree", "braintree", Decimal("2.59"), Decimal("0.49")),
    KnownGateway("square", "Square", "square", Decimal("2.9"), Decimal("0.30")),
    KnownGateway("2checkout", "2Checkout", "2checkout", Decimal("3.5"), Decimal("0.35")),
    KnownGateway("worldpay", "Worldpay", "worldpay", Decimal("2.75"), Decimal("0.30")),
]


class ShippingSettings(BaseModel):
    """Fallback shipping cost estimate."""

    method: ShippingMethod = Field(ShippingMethod.FLAT, description="Estimate method")
    flat_rate: Money = Field(Decimal("5"), ge=0, description="Cost per order (flat)")
    per_item_rate: Money = Field(Decimal("2"), ge=0, description="Cost per item (per-item)")


class GatewayRate(BaseModel):
    """Percentage rate plus fixed per-order fee."""

    rate: Percent = Field(..., ge=0, description="Percent of net revenue")
    fixed_fee: Money = Field(..., ge=0, description="Flat fee per order")
    enabled: bool = True


class CustomGateway(BaseModel):
    """Merchant-added gateway, matched by ``api_name`` substring."""

    id: str
    name: str
    api_name: str
    rate: Percent = Field(..., ge=0)
    fixed_fee: Money = Field(..., ge=0)

    @classmethod
    def from_known(cls, gateway_id: str) -> "CustomGateway":
        """Build from the known gateway catalog using its default pricing."""
        for known in KNOWN_GATEWAYS:
            if known.id == gateway_id:
                return cls(
                    id=known.id,
                    name=known.name,
                    api_name=known.api_name,
                    rate=known.default_rate,
                    fixed_fee=known.default_fee,
                )
        raise ValueError(f"Unknown gateway: {gateway_id}")


class TransactionFeeSettings(BaseModel):
    """Per-gateway fee table."""

    plan: Optional[PlanTier] = Field(PlanTier.BASIC, description="None means custom rates")
    shopify_payments: GatewayRate = Field(
        default_factory=lambda: GatewayRate(rate=Decimal("2.9"), fixed_fee=Decimal("0.30"))
    )
    paypal: GatewayRate = Field(
        default_factory=lambda: GatewayRate(rate=Decimal("2.99"), fixed_fee=Decimal("0.49"))
    )
    stripe: GatewayRate = Field(
        default_factory=lambda: GatewayRate(
            rate=Decimal("2.9"), fixed_fee=Decimal("0.30"), enabled=False
        )
    )
    shopify_surcharge: Percent = Field(
        Decimal("2.0"), ge=0, description="Third-party gateway surcharge, percent"
    )
    uses_shopify_payments: bool = True
    additional_gateways: list[CustomGateway] = Field(default_factory=list)

    @classmethod
    def for_plan(cls, plan: PlanTier, **overrides) -> "TransactionFeeSettings":
        """Settings preset for a Shopify plan tier."""
        rate, surcharge = PLAN_RATES[plan]
        return cls(
            plan=plan,
            shopify_payments=GatewayRate(rate=rate, fixed_fee=Decimal("0.30")),
            shopify_surcharge=surcharge,
            **overrides,
        )


class Expense(BaseModel):
    """Recurring or one-time operating expense."""

    id: str
    name: str
    category: ExpenseCategory = ExpenseCategory.OTHER
    amount: Money = Field(..., ge=0)
    frequency: Frequency = Frequency.MONTHLY
    start_date: date
    end_date: Optional[date] = None

    @property
    def monthly_equivalent(self) -> Decimal:
        """Amount normalized to one month (quarterly / 3, annual / 12)."""
        return self.amount / FREQUENCY_DIVISORS[self.frequency]

    def is_active(self, start: date, end: date) -> bool:
        """Whether the expense applies to any day of ``[start, end]``."""
        if self.frequency == Frequency.ONE_TIME:
            return start <= self.start_date <= end
        if self.start_date > end:
            return False
        return self.end_date is None or self.end_date >= start


class OverrideSource(str, Enum):
    """How a shipping cost override was entered."""

    CSV = "csv"
    MANUAL = "manual"


class ShippingCostOverride(BaseModel):
    """Manually supplied shipping cost for one order."""

    order_id: str = Field(..., description='Order reference as uploaded ("#1001" or "1001")')
    order_name: Optional[str] = None
    shipping_cost: Money = Field(..., ge=0)
    source: OverrideSource = OverrideSource.CSV
    uploaded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class CostConfiguration(BaseModel):
    """All merchant cost inputs for one report computation."""

    cogs_percent: Percent = Field(Decimal("40"), ge=0, le=100, description="COGS as % of net sales")
    shipping: ShippingSettings = Field(default_factory=ShippingSettings)
    transaction_fees: TransactionFeeSettings = Field(default_factory=TransactionFeeSettings)
    ad_spend: Money = Field(ZERO, ge=0, description="Ad spend for the whole report range")
    expenses: list[Expense] = Field(default_factory=list)
    shipping_overrides: list[ShippingCostOverride] = Field(default_factory=list)


# --- Shipping override upload ---

ORDER_ID_HEADERS = ("order_id", "orderid", "order id")
SHIPPING_COST_HEADERS = ("shipping_cost", "shippingcost", "shipping cost", "cost")
ORDER_NAME_HEADERS = ("order_name", "ordername", "order name", "name")


@dataclass
class OverrideImport:
    """Result of parsing an uploaded shipping cost sheet."""

    overrides: list[ShippingCostOverride]
    skipped_rows: int = 0


def _find_column(headers: list[str], aliases: tuple[str, ...]) -> int:
    for index, header in enumerate(headers):
        if header in aliases:
            return index
    return -1


def parse_shipping_cost_csv(text: str) -> OverrideImport:
    """Parse an uploaded sheet of per-order shipping costs.

    Required columns: order id and shipping cost (several header spellings
    accepted). Rows with a blank or unparseable cost are skipped and counted.

    Args:
        text: CSV file contents

    Returns:
        OverrideImport with parsed overrides and skipped row count

    Raises:
        ValueError: If required columns are missing or no row is usable
    """
    rows = [row for row in csv.reader(io.StringIO(text)) if any(cell.strip() for cell in row)]
    if len(rows) < 2:
        raise ValueError("CSV file is empty or has no data rows")

    headers = [h.strip().lower() for h in rows[0]]
    id_col = _find_column(headers, ORDER_ID_HEADERS)
    cost_col = _find_column(headers, SHIPPING_COST_HEADERS)
    name_col = _find_column(headers, ORDER_NAME_HEADERS)

    if id_col == -1:
        raise ValueError("CSV must have an 'order_id' column")
    if cost_col == -1:
        raise ValueError("CSV must have a 'shipping_cost' column")

    overrides: list[ShippingCostOverride] = []
    skipped = 0
    uploaded_at = datetime.now(timezone.utc)

    for row in rows[1:]:
        cells = [cell.strip() for cell in row]
        order_id = cells[id_col] if id_col < len(cells) else ""
        raw_cost = cells[cost_col] if cost_col < len(cells) else ""
        order_name = cells[name_col] if 0 <= name_col < len(cells) else ""

        if not order_id or not raw_cost:
            skipped += 1
            continue

        try:
            cost = Decimal(raw_cost.replace("$", "").replace(",", ""))
        except InvalidOperation:
            skipped += 1
            continue
        if not cost.is_finite() or cost < 0:
            skipped += 1
            continue

        overrides.append(
            ShippingCostOverride(
                order_id=order_id,
                order_name=order_name or order_id,
                shipping_cost=cost,
                source=OverrideSource.CSV,
                uploaded_at=uploaded_at,
            )
        )

    if not overrides:
        raise ValueError(
            "No valid shipping costs found in CSV. "
            "Make sure shipping_cost column has values."
        )

    logger.info(f"Parsed {len(overrides)} shipping overrides ({skipped} rows skipped)")
    return OverrideImport(overrides=overrides, skipped_rows=skipped)


def merge_overrides(
    existing: list[ShippingCostOverride],
    incoming: list[ShippingCostOverride],
) -> list[ShippingCostOverride]:
    """Update existing entries by order id and append new ones."""
    merged = {entry.order_id: entry for entry in existing}
    for entry in incoming:
        merged[entry.order_id] = entry
    return list(merged.values())


# --- Operating expenses ---


def active_expenses(expenses: list[Expense], start: date, end: date) -> list[Expense]:
    """Expenses that apply to at least one day of ``[start, end]``."""
    return [e for e in expenses if e.is_active(start, end)]


def monthly_opex(expenses: list[Expense]) -> Decimal:
    """Sum of monthly-equivalent amounts."""
    return sum((e.monthly_equivalent for e in expenses), ZERO)


def prorated_opex(expenses: list[Expense], start: date, end: date) -> Decimal:
    """Operating expenses for ``[start, end]``: monthly equivalent / 30 × days.

    Args:
        expenses: Configured expenses
        start: First day of the range
        end: Last day of the range (inclusive)

    Returns:
        Unrounded OpEx for the range
    """
    days = inclusive_day_span(start, end)
    daily = monthly_opex(active_expenses(expenses, start, end)) / DAYS_PER_MONTH
    return daily * days


class ExpenseCategoryTotal(BaseModel):
    """Monthly and annual totals for one category."""

    category: ExpenseCategory
    label: str
    expense_count: int
    monthly_total: Money
    annual_total: Money
    percent_of_total: Percent


class MonthlyExpense(BaseModel):
    month: str
    total: Money


class ExpensesSummary(BaseModel):
    """Operating expense breakdown."""

    year: int
    categories: list[ExpenseCategoryTotal]
    total_monthly: Money
    total_annual: Money
    monthly_breakdown: list[MonthlyExpense]
    expenses: list[Expense]


def summarize_expenses(expenses: list[Expense], year: int) -> ExpensesSummary:
    """Per-category monthly/annual totals and a flat twelve-month breakdown.

    Categories without expenses are left out. The monthly breakdown repeats
    the total monthly equivalent for every month of ``year``.
    """
    total_monthly = monthly_opex(expenses)
    categories = []
    for category in ExpenseCategory:
        members = [e for e in expenses if e.category == category]
        if not members:
            continue
        monthly = monthly_opex(members)
        categories.append(
            ExpenseCategoryTotal(
                category=category,
                label=EXPENSE_CATEGORY_LABELS[category],
                expense_count=len(members),
                monthly_total=round_money(monthly),
                annual_total=round_money(monthly * 12),
                percent_of_total=round_percent(percent_of(monthly, total_monthly)),
            )
        )

    return ExpensesSummary(
        year=year,
        categories=categories,
        total_monthly=round_money(total_monthly),
        total_annual=round_money(total_monthly * 12),
        monthly_breakdown=[
            MonthlyExpense(month=f"{name} {year}", total=round_money(total_monthly))
            for name in MONTH_ABBR
        ],
        expenses=list(expenses),
    )
