"""
Order pricing.

All amounts are `Decimal` rounded to cents with ROUND_HALF_UP so that
`total == subtotal + shipping + tax - discount` holds exactly.
"""
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from marketorders.core.config import settings
from marketorders.core.exceptions import ValidationFailed

CENT = Decimal("0.01")


def to_money(value: Decimal | float | int | str) -> Decimal:
    """Convert to a Decimal rounded to cents."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PricingBreakdown:
    subtotal: Decimal
    shipping_cost: Decimal
    tax: Decimal
    discount: Decimal
    total: Decimal


def line_total(unit_price: Decimal, quantity: int) -> Decimal:
    return to_money(unit_price * quantity)


def calculate_pricing(
    line_totals: Iterable[Decimal],
    *,
    discount: Decimal = Decimal("0"),
    free_shipping_threshold: Optional[float] = None,
    flat_shipping_fee: Optional[float] = None,
    tax_rate: Optional[float] = None,
) -> PricingBreakdown:
    """
    Price an order from its line totals.

    Shipping is free once the subtotal is strictly above the threshold,
    otherwise the flat fee applies. Tax is a flat rate on the subtotal.
    """
    threshold = to_money(
        settings.free_shipping_threshold if free_shipping_threshold is None else free_shipping_threshold
    )
    fee = to_money(settings.flat_shipping_fee if flat_shipping_fee is None else flat_shipping_fee)
    rate = Decimal(str(settings.tax_rate if tax_rate is None else tax_rate))

    subtotal = to_money(sum(line_totals, Decimal("0")))
    shipping = Decimal("0.00") if subtotal > threshold else fee
    tax = to_money(subtotal * rate)
    discount = to_money(discount)

    if discount < 0:
        raise ValidationFailed("Discount cannot be negative", discount=str(discount))
    if discount > subtotal + shipping + tax:
        raise ValidationFailed("Discount exceeds order total", discount=str(discount))

    return PricingBreakdown(
        subtotal=subtotal,
        shipping_cost=shipping,
        tax=tax,
        discount=discount,
        total=to_money(subtotal + shipping + tax - discount),
    )
