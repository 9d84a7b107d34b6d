"""
Fee and settlement policy.

Two fees exist:
- product checkout: a fixed 8% of the item price, retained as an application fee
- steward claims: resolved from platform settings (percentage, then flat, then 5%)
"""

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional

from marketplace.services.platform_config import (
    STEWARD_FEE_FLAT_CENTS_KEY,
    STEWARD_FEE_PERCENTAGE_KEY,
    get_config,
)

PRODUCT_PLATFORM_FEE_RATE = Decimal("0.08")
DEFAULT_STEWARD_FEE_RATE = Decimal("0.05")


def round_cents(value: Decimal) -> int:
    """Round to the nearest cent, halves away from zero."""
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def product_application_fee(price_cents: int) -> int:
    """Platform share of a direct product sale, computed on the item price only."""
    return round_cents(Decimal(price_cents) * PRODUCT_PLATFORM_FEE_RATE)


def resolve_platform_fee(
    shipping_cents: int,
    donation_cents: int,
    percentage: Optional[str] = None,
    flat_cents: Optional[str] = None,
) -> int:
    """
    Resolve the steward platform fee from raw setting values.

    The first usable rule wins:
    1. percentage in (0, 1]  -> round((shipping + donation) * percentage)
    2. flat_cents >= 0       -> flat_cents
    3. otherwise             -> round((shipping + donation) * 0.05)
    """
    base = Decimal(shipping_cents + donation_cents)

    if percentage:
        try:
            ratio = Decimal(str(percentage).strip())
        except InvalidOperation:
            ratio = None
        if ratio is not None and ratio.is_finite() and Decimal("0") < ratio <= Decimal("1"):
            return round_cents(base * ratio)

    if flat_cents:
        try:
            flat = int(str(flat_cents).strip())
        except ValueError:
            flat = None
        if flat is not None and flat >= 0:
            return flat

    return round_cents(base * DEFAULT_STEWARD_FEE_RATE)


def calculate_steward_platform_fee(shipping_cents: int, donation_cents: int) -> int:
    """Platform fee for a steward claim, using the configured platform settings."""
    return resolve_platform_fee(
        shipping_cents,
        donation_cents,
        percentage=get_config(STEWARD_FEE_PERCENTAGE_KEY),
        flat_cents=get_config(STEWARD_FEE_FLAT_CENTS_KEY),
    )
