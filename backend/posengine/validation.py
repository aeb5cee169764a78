from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


# Maximum price: $9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999

# 100% in basis points
MAX_PERCENT_BPS = 10_000

PAYMENT_METHOD_CASH = "Cash"
PAYMENT_METHOD_CARD = "Card"
PAYMENT_METHOD_OTHER = "Other"
PAYMENT_METHOD_SPLIT = "Split"
PAYMENT_METHODS = (PAYMENT_METHOD_CASH, PAYMENT_METHOD_CARD, PAYMENT_METHOD_OTHER)

DISCOUNT_FIXED = "fixed"
DISCOUNT_PERCENTAGE = "percentage"
DISCOUNT_TYPES = (DISCOUNT_FIXED, DISCOUNT_PERCENTAGE)

REFUND_REASONS = ("Customer Return", "Cashier Error", "Defective", "Other")

MOVEMENT_TYPES = ("cash_in", "cash_out")


class ValidationError(ValueError):
    """400-level input problem. Raised before any transaction begins."""

    code = "validation_error"


# =============================================================================
# REQUEST TYPES
# =============================================================================

@dataclass(frozen=True)
class SaleLineInput:
    product_id: int
    quantity: int
    unit_price_cents: int
    variant_id: int | None = None
    memo: str | None = None


@dataclass(frozen=True)
class PaymentInput:
    method: str
    amount_cents: int


@dataclass(frozen=True)
class SaleRequest:
    """
    Candidate sale as submitted at checkout.

    `discount` is cents when discount_type is fixed and basis points when
    it is percentage. Optional fields carry explicit defaults here so the
    services never have to guess.
    """
    items: tuple[SaleLineInput, ...]
    discount: int = 0
    discount_type: str = DISCOUNT_FIXED
    payment_method: str = PAYMENT_METHOD_CASH
    payments: tuple[PaymentInput, ...] = ()
    customer_id: int | None = None
    points_redeemed: int = 0
    notes: str | None = None
    tip_cents: int = 0
    coupon_code: str | None = None

    @property
    def product_ids(self) -> list[int]:
        seen: list[int] = []
        for item in self.items:
            if item.product_id not in seen:
                seen.append(item.product_id)
        return seen

    @property
    def is_split(self) -> bool:
        return len(self.payments) > 1

    @property
    def effective_payment_method(self) -> str:
        if self.is_split:
            return PAYMENT_METHOD_SPLIT
        if len(self.payments) == 1:
            return self.payments[0].method
        return self.payment_method


@dataclass(frozen=True)
class RefundLineInput:
    product_id: int
    quantity: int
    unit_price_cents: int
    variant_id: int | None = None


@dataclass(frozen=True)
class RefundRequest:
    items: tuple[RefundLineInput, ...]
    reason: str
    restock: bool = True
    # Lines exactly as submitted, stored verbatim on the refund row
    raw_items: list[dict] = field(default_factory=list, compare=False)

    @property
    def amount_cents(self) -> int:
        return sum(line.unit_price_cents * line.quantity for line in self.items)


# =============================================================================
# COERCION HELPERS
# =============================================================================

def _to_int(value: Any, name: str) -> int:
    # Reject bools and floats explicitly; amounts are integer cents
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped or not stripped.lstrip("-").isdigit():
            raise ValidationError(f"{name} must be an integer")
        return int(stripped)
    raise ValidationError(f"{name} must be an integer")


def _optional_int(payload: dict, key: str) -> int | None:
    value = payload.get(key)
    if value is None or value == "":
        return None
    return _to_int(value, key)


def _optional_text(payload: dict, key: str, max_length: int = 1000) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    text = str(value).strip()
    if len(text) > max_length:
        raise ValidationError(f"{key} exceeds max length {max_length}")
    return text or None


def _require_object(payload: Any) -> dict:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


def _require_list(payload: dict, key: str) -> list:
    value = payload.get(key)
    if not isinstance(value, list) or not value:
        raise ValidationError(f"At least one item required in {key}")
    return value


def require_positive_amount(value: Any, name: str) -> int:
    amount = _to_int(value, name)
    if amount <= 0:
        raise ValidationError(f"{name} must be positive")
    if amount > MAX_PRICE_CENTS:
        raise ValidationError(f"{name} cannot exceed {MAX_PRICE_CENTS}")
    return amount


def require_non_negative_amount(value: Any, name: str) -> int:
    amount = _to_int(value, name)
    if amount < 0:
        raise ValidationError(f"{name} cannot be negative")
    if amount > MAX_PRICE_CENTS:
        raise ValidationError(f"{name} cannot exceed {MAX_PRICE_CENTS}")
    return amount


# =============================================================================
# SALE
# =============================================================================

def validate_sale_request(req: SaleRequest) -> None:
    """
    Business rules for a candidate sale that need no database access.
    """
    if not req.items:
        raise ValidationError("At least one item required")

    for i, item in enumerate(req.items, start=1):
        if item.quantity <= 0:
            raise ValidationError(f"Item {i}: quantity must be at least 1")
        if item.unit_price_cents < 0:
            raise ValidationError(f"Item {i}: unit_price_cents cannot be negative")
        if item.unit_price_cents > MAX_PRICE_CENTS:
            raise ValidationError(f"Item {i}: unit_price_cents cannot exceed {MAX_PRICE_CENTS}")

    if req.discount_type not in DISCOUNT_TYPES:
        raise ValidationError(f"discount_type must be one of {', '.join(DISCOUNT_TYPES)}")
    if req.discount < 0:
        raise ValidationError("discount cannot be negative")
    if req.discount_type == DISCOUNT_PERCENTAGE and req.discount > MAX_PERCENT_BPS:
        raise ValidationError("Percentage discount cannot exceed 100%")

    if req.payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of {', '.join(PAYMENT_METHODS)}")
    for payment in req.payments:
        if payment.method not in PAYMENT_METHODS:
            raise ValidationError(f"Payment method must be one of {', '.join(PAYMENT_METHODS)}")
        if payment.amount_cents <= 0:
            raise ValidationError("Payment amount must be positive")

    if req.points_redeemed < 0:
        raise ValidationError("points_redeemed cannot be negative")
    if req.points_redeemed > 0 and req.customer_id is None:
        raise ValidationError("customer_id is required to redeem points")
    if req.tip_cents < 0:
        raise ValidationError("tip cannot be negative")


def validate_payments_match_total(req: SaleRequest, total_cents: int) -> None:
    if not req.is_split:
        return
    paid = sum(p.amount_cents for p in req.payments)
    if paid != total_cents:
        raise ValidationError(
            f"Split payments total {paid} does not match sale total {total_cents}"
        )


def parse_sale_request(payload: Any) -> SaleRequest:
    data = _require_object(payload)

    items = []
    for i, raw in enumerate(_require_list(data, "items"), start=1):
        if not isinstance(raw, dict):
            raise ValidationError(f"Item {i} must be an object")
        if raw.get("product_id") is None or raw.get("quantity") is None or raw.get("unit_price_cents") is None:
            raise ValidationError(f"Item {i}: product_id, quantity and unit_price_cents required")
        items.append(SaleLineInput(
            product_id=_to_int(raw["product_id"], "product_id"),
            quantity=_to_int(raw["quantity"], "quantity"),
            unit_price_cents=_to_int(raw["unit_price_cents"], "unit_price_cents"),
            variant_id=_optional_int(raw, "variant_id"),
            memo=_optional_text(raw, "memo", 255),
        ))

    payments = []
    for raw in data.get("payments") or []:
        if not isinstance(raw, dict) or raw.get("method") is None or raw.get("amount_cents") is None:
            raise ValidationError("Each payment needs method and amount_cents")
        payments.append(PaymentInput(
            method=str(raw["method"]),
            amount_cents=_to_int(raw["amount_cents"], "amount_cents"),
        ))

    coupon_code = _optional_text(data, "coupon_code", 64)

    req = SaleRequest(
        items=tuple(items),
        discount=_optional_int(data, "discount") or 0,
        discount_type=data.get("discount_type") or DISCOUNT_FIXED,
        payment_method=data.get("payment_method") or PAYMENT_METHOD_CASH,
        payments=tuple(payments),
        customer_id=_optional_int(data, "customer_id"),
        points_redeemed=_optional_int(data, "points_redeemed") or 0,
        notes=_optional_text(data, "notes"),
        tip_cents=_optional_int(data, "tip_cents") or 0,
        coupon_code=coupon_code,
    )
    validate_sale_request(req)
    return req


# =============================================================================
# REFUND
# =============================================================================

def validate_refund_request(req: RefundRequest) -> None:
    if not req.items:
        raise ValidationError("At least one item required")
    for i, item in enumerate(req.items, start=1):
        if item.quantity <= 0:
            raise ValidationError(f"Item {i}: quantity must be at least 1")
        if item.unit_price_cents <= 0:
            raise ValidationError(f"Item {i}: unit_price_cents must be positive")
    if req.reason not in REFUND_REASONS:
        raise ValidationError(f"reason must be one of {', '.join(REFUND_REASONS)}")


def parse_refund_request(payload: Any) -> RefundRequest:
    data = _require_object(payload)

    raw_items = _require_list(data, "items")
    items = []
    for i, raw in enumerate(raw_items, start=1):
        if not isinstance(raw, dict):
            raise ValidationError(f"Item {i} must be an object")
        if raw.get("product_id") is None or raw.get("quantity") is None or raw.get("unit_price_cents") is None:
            raise ValidationError(f"Item {i}: product_id, quantity and unit_price_cents required")
        items.append(RefundLineInput(
            product_id=_to_int(raw["product_id"], "product_id"),
            quantity=_to_int(raw["quantity"], "quantity"),
            unit_price_cents=_to_int(raw["unit_price_cents"], "unit_price_cents"),
            variant_id=_optional_int(raw, "variant_id"),
        ))

    restock = data.get("restock", True)
    if not isinstance(restock, bool):
        raise ValidationError("restock must be a boolean")

    req = RefundRequest(
        items=tuple(items),
        reason=str(data.get("reason") or ""),
        restock=restock,
        raw_items=list(raw_items),
    )
    validate_refund_request(req)
    return req


# =============================================================================
# COUPON CHECK / REGISTER
# =============================================================================

def parse_coupon_check(payload: Any) -> dict:
    data = _require_object(payload)
    code = _optional_text(data, "code", 64)
    if not code:
        raise ValidationError("code required")

    if data.get("subtotal_cents") is None:
        raise ValidationError("subtotal_cents required")

    product_ids = data.get("item_product_ids")
    if product_ids is not None:
        if not isinstance(product_ids, list):
            raise ValidationError("item_product_ids must be a list")
        product_ids = [_to_int(pid, "item_product_ids") for pid in product_ids]

    return {
        "code": code,
        "current_total_cents": require_non_negative_amount(data["subtotal_cents"], "subtotal_cents"),
        "customer_id": _optional_int(data, "customer_id"),
        "item_product_ids": product_ids,
    }


def parse_movement(payload: Any) -> dict:
    data = _require_object(payload)
    movement_type = data.get("type")
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"type must be one of {', '.join(MOVEMENT_TYPES)}")
    if data.get("amount_cents") is None:
        raise ValidationError("amount_cents required")
    return {
        "movement_type": movement_type,
        "amount_cents": require_positive_amount(data["amount_cents"], "amount_cents"),
        "note": _optional_text(data, "note", 255),
    }
