# Overview: Service-layer operations for sales; executes a checkout as one atomic multi-table mutation.

"""
Sale Transaction Executor

WHY: A sale touches the sale header, its items and payments, coupon usage,
shared product stock and the customer's loyalty balance. Either all of it
lands or none of it does; a sale never exists with missing stock
deductions, and stock never moves for a sale that does not exist.

FLOW (create_sale):
1. Validate the request and its references (no transaction yet)
2. Load settings once, compute totals
3. execute_sale_transaction: every write, in one transaction
4. After commit: notify admins, register cash movement, audit row

Anything that is not a database write on the sale's own tables runs in
step 4. Those tasks are best-effort and never fail the sale.
"""

from __future__ import annotations

from decimal import ROUND_FLOOR, Decimal

from flask import current_app

from ..extensions import db
from ..models import Coupon, CouponUsage, Customer, Product, ProductVariant, Sale, SaleItem, SalePayment, User
from ..validation import (
    PAYMENT_METHOD_CASH,
    SaleRequest,
    ValidationError,
    validate_payments_match_total,
    validate_sale_request,
)
from .concurrency import atomic, lock_for_update, run_with_retry
from .coupon_service import check_usage_caps
from .inventory_service import REASON_SALE, decrement_stock
from .loyalty_service import earn_points, redeem_points
from .settings_service import Settings, load_settings
from .side_effects import PostCommitQueue, notify_sale, record_audit
from .totals_service import Totals, compute_totals


class SaleError(Exception):
    """Raised for sale operation errors."""

    code = "sale_error"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class InsufficientStock(SaleError):
    code = "insufficient_stock"

    def __init__(self, product_id: int, variant_id: int | None = None):
        target = f"variant ID {variant_id}" if variant_id is not None else f"product ID {product_id}"
        super().__init__(
            f"Insufficient stock for {target}",
            details={"product_id": product_id, "variant_id": variant_id},
        )
        self.product_id = product_id
        self.variant_id = variant_id


class InsufficientLoyaltyPoints(SaleError):
    code = "insufficient_loyalty_points"

    def __init__(self, customer_id: int, requested: int, available: int):
        super().__init__(
            "Insufficient loyalty points",
            details={"customer_id": customer_id, "requested": requested, "available": available},
        )
        self.customer_id = customer_id
        self.requested = requested
        self.available = available


def cash_portion(request: SaleRequest, total_cents: int) -> int:
    """Amount of the sale that goes into the cash drawer."""
    if request.is_split:
        return sum(p.amount_cents for p in request.payments if p.method == PAYMENT_METHOD_CASH)
    if request.effective_payment_method == PAYMENT_METHOD_CASH:
        return total_cents
    return 0


def earned_points(total_cents: int, settings: Settings) -> int:
    """floor(total in currency units * earn rate)."""
    points = Decimal(total_cents) * settings.loyalty_earn_rate / Decimal(100)
    return int(points.to_integral_value(rounding=ROUND_FLOOR))


def _check_references(request: SaleRequest) -> None:
    """Unknown products, variants or customers are input errors, not stock errors."""
    product_ids = request.product_ids
    found = {
        pid for (pid,) in db.session.query(Product.id).filter(Product.id.in_(product_ids)).all()
    }
    missing = [pid for pid in product_ids if pid not in found]
    if missing:
        raise ValidationError(f"Product {missing[0]} not found")

    for item in request.items:
        if item.variant_id is None:
            continue
        variant = db.session.get(ProductVariant, item.variant_id)
        if variant is None or variant.product_id != item.product_id:
            raise ValidationError(f"Variant {item.variant_id} not found for product {item.product_id}")

    if request.customer_id is not None and db.session.get(Customer, request.customer_id) is None:
        raise ValidationError(f"Customer {request.customer_id} not found")


def _cost_snapshot(product_id: int, variant_id: int | None) -> int:
    if variant_id is not None:
        variant = db.session.get(ProductVariant, variant_id)
        return variant.cost_price_cents if variant else 0
    product = db.session.get(Product, product_id)
    return product.cost_price_cents if product else 0


def execute_sale_transaction(
    request: SaleRequest,
    totals: Totals,
    cashier_id: int,
    settings: Settings,
) -> tuple[Sale, PostCommitQueue]:
    """
    Write the sale and everything it implies in one transaction.

    Returns the committed sale and the side effects to dispatch after commit.

    Raises:
        InsufficientLoyaltyPoints, InsufficientStock, CouponInvalid
        (the transaction is rolled back in every case)
    """
    loyalty_active = settings.loyalty_enabled and request.customer_id is not None
    points_to_redeem = request.points_redeemed if loyalty_active else 0

    with atomic():
        if points_to_redeem > 0:
            customer = lock_for_update(db.session.query(Customer).filter_by(id=request.customer_id)).first()
            available = customer.loyalty_points if customer else 0
            if available < points_to_redeem:
                raise InsufficientLoyaltyPoints(request.customer_id, points_to_redeem, available)

        sale = Sale(
            subtotal_cents=totals.subtotal_cents,
            discount=request.discount,
            discount_type=request.discount_type,
            discount_cents=totals.discount_cents,
            tax_cents=totals.tax_cents,
            tip_cents=totals.tip_cents,
            points_redeemed=points_to_redeem,
            points_discount_cents=totals.points_discount_cents,
            coupon_id=totals.coupon_id,
            coupon_discount_cents=totals.coupon_discount_cents,
            total_cents=totals.total_cents,
            payment_method=request.effective_payment_method,
            notes=request.notes,
            cashier_id=cashier_id,
            customer_id=request.customer_id,
        )
        db.session.add(sale)
        db.session.flush()

        if request.is_split:
            for payment in request.payments:
                db.session.add(SalePayment(sale_id=sale.id, method=payment.method, amount_cents=payment.amount_cents))

        if totals.coupon_id is not None:
            coupon = db.session.get(Coupon, totals.coupon_id)
            # Caps are re-counted here; another checkout may have used the last one
            check_usage_caps(coupon, request.customer_id)
            db.session.add(CouponUsage(
                coupon_id=coupon.id,
                sale_id=sale.id,
                customer_id=request.customer_id,
                discount_cents=totals.coupon_discount_cents,
            ))

        reference = f"sale:{sale.id}"
        for item in request.items:
            db.session.add(SaleItem(
                sale_id=sale.id,
                product_id=item.product_id,
                variant_id=item.variant_id,
                quantity=item.quantity,
                unit_price_cents=item.unit_price_cents,
                cost_price_cents=_cost_snapshot(item.product_id, item.variant_id),
                memo=item.memo,
            ))
            if not decrement_stock(item.product_id, item.variant_id, item.quantity, cashier_id, reference, reason=REASON_SALE):
                raise InsufficientStock(item.product_id, item.variant_id)

        if loyalty_active:
            if points_to_redeem > 0 and not redeem_points(request.customer_id, points_to_redeem, sale.id):
                available = db.session.query(Customer.loyalty_points).filter_by(id=request.customer_id).scalar()
                raise InsufficientLoyaltyPoints(request.customer_id, points_to_redeem, available or 0)
            earn_points(request.customer_id, earned_points(totals.total_cents, settings), sale.id)

        sale_id = sale.id

    queue = _sale_side_effects(request, totals, sale_id, cashier_id)
    return sale, queue


def _sale_side_effects(request: SaleRequest, totals: Totals, sale_id: int, cashier_id: int) -> PostCommitQueue:
    from .register_service import record_sale_movement

    queue = PostCommitQueue()
    total_cents = totals.total_cents
    cash_cents = cash_portion(request, total_cents)

    def _notify():
        cashier = db.session.get(User, cashier_id)
        notify_sale(total_cents, sale_id, cashier.name if cashier else None)

    queue.add("notify_sale", _notify)
    queue.add("register_sale_movement", lambda: record_sale_movement(cashier_id, sale_id, cash_cents))
    queue.add("audit_sale_create", lambda: record_audit(
        "sale_create",
        "sale",
        sale_id,
        cashier_id,
        {"total_cents": total_cents, "payment_method": request.effective_payment_method},
    ))
    return queue


def create_sale(request: SaleRequest, cashier_id: int) -> Sale:
    """
    Public checkout operation.

    Raises:
        ValidationError: before any write
        SaleError subclasses / CouponInvalid: transaction rolled back
    """
    validate_sale_request(request)
    _check_references(request)

    settings = load_settings()
    totals = compute_totals(request, settings)
    validate_payments_match_total(request, totals.total_cents)

    sale, queue = run_with_retry(lambda: execute_sale_transaction(request, totals, cashier_id, settings))
    current_app.logger.info("Sale %s committed: total_cents=%s cashier_id=%s", sale.id, totals.total_cents, cashier_id)

    queue.dispatch()
    return sale
