"""Currency arithmetic helpers.

All money is held as ``Decimal`` and only rounded at the point a figure is
emitted in a report row:
    currency -> 2 decimals, ROUND_HALF_UP
    percent  -> 1 decimal, ROUND_HALF_UP
"""

import logging
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Optional, Union

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
ONE_HUNDRED = Decimal("100")
CENT = Decimal("0.01")
TENTH = Decimal("0.1")

MoneyLike = Union[Decimal, float, int, str, None]


def to_money(value: MoneyLike) -> Decimal:
    """Parse a feed or user supplied amount into a Decimal.

    Accepts numbers and strings such as ``"12.50"`` or ``"$1,200.00"``.
    Missing or unparseable input becomes zero so one bad field cannot
    abort a whole report.

    Args:
        value: Raw amount

    Returns:
        Amount as Decimal
    """
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        return ZERO
    if isinstance(value, (int, float)):
        return Decimal(str(value))

    text = str(value).strip().replace("$", "").replace(",", "")
    if not text:
        return ZERO
    try:
        amount = Decimal(text)
    except InvalidOperation:
        logger.warning(f"Unparseable amount {value!r}, treating as 0")
        return ZERO
    if not amount.is_finite():
        logger.warning(f"Non-finite amount {value!r}, treating as 0")
        return ZERO
    return amount


def round_money(value: Decimal) -> Decimal:
    """Round to cents, half up."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def round_percent(value: Decimal) -> Decimal:
    """Round a percentage to one decimal place, half up."""
    return value.quantize(TENTH, rounding=ROUND_HALF_UP)


def percent_of(part: Decimal, whole: Decimal) -> Decimal:
    """Express ``part`` as an unrounded percentage of ``whole``.

    Returns 0 when ``whole`` is zero or negative, never raises.
    """
    if whole <= 0:
        return ZERO
    return part / whole * ONE_HUNDRED


def even_share(total: Decimal, bucket_count: int) -> Decimal:
    """Split ``total`` evenly across ``bucket_count`` buckets."""
    return total / max(bucket_count, 1)


def calc_lift(
    current: Decimal,
    previous: Optional[Decimal],
    multi_year: bool = False,
) -> Optional[Decimal]:
    """Year-over-year change in percent, rounded to one decimal.

    ``None`` means "not applicable" (multi-year range or no comparison
    data), which callers must keep distinct from a real 0% change.
    """
    if multi_year or previous is None:
        return None
    if previous == 0:
        return ONE_HUNDRED if current > 0 else ZERO
    return round_percent((current - previous) / previous * ONE_HUNDRED)
