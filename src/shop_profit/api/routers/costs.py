"""Cost configuration helper endpoints."""

from decimal import Decimal

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from shop_profit.analytics.costs import (
    KNOWN_GATEWAYS,
    PlanTier,
    ShippingCostOverride,
    TransactionFeeSettings,
    merge_overrides,
    parse_shipping_cost_csv,
)
from shop_profit.analytics.models import Money, Percent

router = APIRouter(prefix="/costs", tags=["costs"])


class OverrideUpload(BaseModel):
    """Shipping cost CSV plus the overrides already saved."""

    csv: str
    existing: list[ShippingCostOverride] = Field(default_factory=list)


class OverrideUploadResponse(BaseModel):
    """Parsed rows and the merged override list."""

    imported: int
    skipped_rows: int
    overrides: list[ShippingCostOverride]


class GatewayResponse(BaseModel):
    id: str
    name: str
    api_name: str
    default_rate: Percent
    default_fee: Money


@router.post("/shipping-overrides/parse", response_model=OverrideUploadResponse)
async def parse_shipping_overrides(body: OverrideUpload) -> OverrideUploadResponse:
    """Parse an uploaded shipping cost sheet and merge it into existing overrides."""
    try:
        result = parse_shipping_cost_csv(body.csv)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    return OverrideUploadResponse(
        imported=len(result.overrides),
        skipped_rows=result.skipped_rows,
        overrides=merge_overrides(body.existing, result.overrides),
    )


@router.get("/gateways", response_model=list[GatewayResponse])
async def list_known_gateways() -> list[GatewayResponse]:
    """Catalog of third-party gateways with typical pricing."""
    return [
        GatewayResponse(
            id=g.id,
            name=g.name,
            api_name=g.api_name,
            default_rate=g.default_rate,
            default_fee=g.default_fee,
        )
        for g in KNOWN_GATEWAYS
    ]


@router.get("/plans/{plan}", response_model=TransactionFeeSettings)
async def get_plan_fees(plan: PlanTier) -> TransactionFeeSettings:
    """Default fee table for a Shopify plan tier."""
    return TransactionFeeSettings.for_plan(plan)


@router.get("/plans", response_model=dict[str, Percent])
async def list_plan_rates() -> dict[str, Decimal]:
    """Shopify Payments rate per plan tier."""
    return {plan.value: TransactionFeeSettings.for_plan(plan).shopify_payments.rate for plan in PlanTier}
