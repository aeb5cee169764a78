# Overview: Service-layer operations for coupons; eligibility, scope and usage-cap checks.

"""
Coupon Validation Service

Used two ways:
- Standalone at checkout (`validate_coupon`): every rejection raises
  CouponInvalid with a reason code the client can show.
- Inside totals calculation (`quote_coupon`): fails closed, returning a
  zero discount plus the reason instead of raising.

A coupon is never partially applied: it either passes every check or
grants nothing.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func

from ..extensions import db
from ..models import Coupon, CouponUsage, Product
from ..models.promotions import (
    COUPON_SCOPE_CATEGORY,
    COUPON_SCOPE_PRODUCT,
    COUPON_TYPE_PERCENTAGE,
)
from posengine.time_utils import WINDOW_EXPIRED, WINDOW_NOT_STARTED, utcnow, window_status
from .money import percent_of


REASON_NOT_FOUND = "not_found"
REASON_NOT_STARTED = "not_started"
REASON_EXPIRED = "expired"
REASON_USAGE_EXCEEDED = "usage_exceeded"
REASON_CUSTOMER_USAGE_EXCEEDED = "customer_usage_exceeded"
REASON_BELOW_MINIMUM = "below_minimum"
REASON_SCOPE_MISMATCH = "scope_mismatch"

_MESSAGES = {
    REASON_NOT_FOUND: "Coupon not found or inactive",
    REASON_NOT_STARTED: "Coupon is not yet active",
    REASON_EXPIRED: "Coupon has expired",
    REASON_USAGE_EXCEEDED: "Coupon usage limit reached",
    REASON_CUSTOMER_USAGE_EXCEEDED: "Coupon usage limit reached for this customer",
    REASON_BELOW_MINIMUM: "Minimum purchase not met",
    REASON_SCOPE_MISMATCH: "Coupon does not apply to any products in the cart",
}


class CouponInvalid(Exception):
    """Raised when a coupon cannot be applied. `reason` is a stable code."""

    code = "coupon_invalid"

    def __init__(self, reason: str, details: dict | None = None):
        super().__init__(_MESSAGES.get(reason, "Coupon cannot be applied"))
        self.reason = reason
        self.details = {"reason": reason, **(details or {})}


@dataclass(frozen=True)
class CouponQuote:
    coupon_id: int
    code: str
    type: str
    value: int
    discount_cents: int
    stackable: bool

    def to_dict(self) -> dict:
        return {
            "coupon_id": self.coupon_id,
            "code": self.code,
            "type": self.type,
            "value": self.value,
            "discount_cents": self.discount_cents,
            "stackable": self.stackable,
        }


def normalize_code(code: str) -> str:
    return code.strip().upper()


def count_usages(coupon_id: int, customer_id: int | None = None) -> int:
    q = db.session.query(func.count(CouponUsage.id)).filter(CouponUsage.coupon_id == coupon_id)
    if customer_id is not None:
        q = q.filter(CouponUsage.customer_id == customer_id)
    return q.scalar() or 0


def check_usage_caps(coupon: Coupon, customer_id: int | None) -> None:
    """Global and per-customer caps. Re-run inside the sale transaction."""
    if coupon.max_uses and count_usages(coupon.id) >= coupon.max_uses:
        raise CouponInvalid(REASON_USAGE_EXCEEDED, {"max_uses": coupon.max_uses})

    if coupon.max_uses_per_customer and customer_id is not None:
        if count_usages(coupon.id, customer_id) >= coupon.max_uses_per_customer:
            raise CouponInvalid(
                REASON_CUSTOMER_USAGE_EXCEEDED,
                {"max_uses_per_customer": coupon.max_uses_per_customer},
            )


def _check_scope(coupon: Coupon, item_product_ids: list[int] | None) -> None:
    if coupon.scope not in (COUPON_SCOPE_PRODUCT, COUPON_SCOPE_CATEGORY):
        return

    scope_ids = set(coupon.scope_ids or [])
    product_ids = list(item_product_ids or [])

    if coupon.scope == COUPON_SCOPE_PRODUCT:
        if not scope_ids.intersection(product_ids):
            raise CouponInvalid(REASON_SCOPE_MISMATCH, {"scope": coupon.scope})
        return

    if not product_ids or not scope_ids:
        raise CouponInvalid(REASON_SCOPE_MISMATCH, {"scope": coupon.scope})

    matches = db.session.query(func.count(Product.id)).filter(
        Product.id.in_(product_ids),
        Product.category_id.in_(scope_ids),
    ).scalar()
    if not matches:
        raise CouponInvalid(REASON_SCOPE_MISMATCH, {"scope": coupon.scope})


def compute_discount(coupon: Coupon, current_total_cents: int) -> int:
    if coupon.type == COUPON_TYPE_PERCENTAGE:
        discount = percent_of(Decimal(current_total_cents), coupon.value)
    else:
        discount = coupon.value

    if coupon.max_discount_cents and discount > coupon.max_discount_cents:
        discount = coupon.max_discount_cents

    return max(0, min(discount, current_total_cents))


def validate_coupon(
    code: str,
    current_total_cents: int,
    customer_id: int | None = None,
    item_product_ids: list[int] | None = None,
    *,
    now: datetime | None = None,
) -> CouponQuote:
    """
    Check a coupon against the running total and cart.

    Raises:
        CouponInvalid: with one of the REASON_* codes
    """
    now = now or utcnow()

    coupon = db.session.query(Coupon).filter_by(code=normalize_code(code), status="active").first()
    if not coupon:
        raise CouponInvalid(REASON_NOT_FOUND)

    window = window_status(now, coupon.starts_at, coupon.expires_at)
    if window == WINDOW_NOT_STARTED:
        raise CouponInvalid(REASON_NOT_STARTED)
    if window == WINDOW_EXPIRED:
        raise CouponInvalid(REASON_EXPIRED)

    check_usage_caps(coupon, customer_id)

    if coupon.min_purchase_cents and current_total_cents < coupon.min_purchase_cents:
        raise CouponInvalid(REASON_BELOW_MINIMUM, {"min_purchase_cents": coupon.min_purchase_cents})

    _check_scope(coupon, item_product_ids)

    return CouponQuote(
        coupon_id=coupon.id,
        code=coupon.code,
        type=coupon.type,
        value=coupon.value,
        discount_cents=compute_discount(coupon, current_total_cents),
        stackable=bool(coupon.stackable),
    )


def quote_coupon(
    code: str,
    current_total_cents: int,
    customer_id: int | None = None,
    item_product_ids: list[int] | None = None,
    *,
    now: datetime | None = None,
) -> tuple[int | None, int, str | None]:
    """Non-raising variant for the totals path: (coupon_id, discount_cents, reason)."""
    try:
        quote = validate_coupon(code, current_total_cents, customer_id, item_product_ids, now=now)
    except CouponInvalid as exc:
        return None, 0, exc.reason
    return quote.coupon_id, quote.discount_cents, None
