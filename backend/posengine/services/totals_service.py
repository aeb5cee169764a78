# Overview: Service-layer operations for sale totals; fixed-order tax, discount, loyalty and coupon math.

"""
Sale Totals Calculator

WHY: The preview shown at checkout and the amount actually charged must be
the same number. Both go through `compute_totals`, which reads nothing but
its arguments and the coupon tables.

ORDER OF OPERATIONS (fixed):
1. subtotal = sum(unit_price * quantity)
2. discount: fixed cents, or percentage (bps) of subtotal
3. tax on the post-discount amount
   - exclusive: added on top
   - inclusive: carved out of the amount, total unchanged
4. loyalty points discount, capped at the running total
5. coupon discount against the post-loyalty total, never below zero
The tip is carried alongside and is not part of total.

Rounding is half-up to the cent at every stage boundary.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from ..validation import DISCOUNT_PERCENTAGE, SaleRequest
from .coupon_service import quote_coupon
from .money import extract_inclusive_tax, percent_of, round_cents
from .settings_service import TAX_MODE_INCLUSIVE, Settings


@dataclass(frozen=True)
class Totals:
    subtotal_cents: int
    discount_cents: int
    after_discount_cents: int
    tax_cents: int
    points_discount_cents: int
    coupon_id: int | None
    coupon_discount_cents: int
    coupon_error: str | None
    tip_cents: int
    total_cents: int

    def to_dict(self) -> dict:
        return {
            "subtotal_cents": self.subtotal_cents,
            "discount_cents": self.discount_cents,
            "after_discount_cents": self.after_discount_cents,
            "tax_cents": self.tax_cents,
            "points_discount_cents": self.points_discount_cents,
            "coupon_id": self.coupon_id,
            "coupon_discount_cents": self.coupon_discount_cents,
            "coupon_error": self.coupon_error,
            "tip_cents": self.tip_cents,
            "total_cents": self.total_cents,
        }


def points_value_cents(points: int, settings: Settings) -> int:
    """Value of `points` given that 100 points are worth loyalty_redeem_value_cents."""
    return round_cents(Decimal(points) * Decimal(settings.loyalty_redeem_value_cents) / Decimal(100))


def compute_totals(request: SaleRequest, settings: Settings, *, now: datetime | None = None) -> Totals:
    subtotal = sum(item.unit_price_cents * item.quantity for item in request.items)

    if request.discount_type == DISCOUNT_PERCENTAGE:
        discount = percent_of(subtotal, request.discount)
    else:
        discount = request.discount
    after_discount = max(0, subtotal - discount)

    tax = 0
    running = after_discount
    if settings.tax_enabled and settings.tax_rate_bps > 0:
        if settings.tax_mode == TAX_MODE_INCLUSIVE:
            tax = extract_inclusive_tax(after_discount, settings.tax_rate_bps)
        else:
            tax = percent_of(after_discount, settings.tax_rate_bps)
            running = after_discount + tax

    points_discount = 0
    if settings.loyalty_enabled and request.points_redeemed > 0 and request.customer_id is not None:
        points_discount = min(points_value_cents(request.points_redeemed, settings), running)
        running -= points_discount

    coupon_id = None
    coupon_discount = 0
    coupon_error = None
    if request.coupon_code:
        coupon_id, coupon_discount, coupon_error = quote_coupon(
            request.coupon_code,
            running,
            request.customer_id,
            request.product_ids,
            now=now,
        )
        coupon_discount = min(coupon_discount, running)
        running -= coupon_discount

    return Totals(
        subtotal_cents=subtotal,
        discount_cents=discount,
        after_discount_cents=after_discount,
        tax_cents=tax,
        points_discount_cents=points_discount,
        coupon_id=coupon_id,
        coupon_discount_cents=coupon_discount,
        coupon_error=coupon_error,
        tip_cents=request.tip_cents,
        total_cents=running,
    )
