# Overview: Service-layer operations for refunds; partial and full refunds against a committed sale.

"""
Refund Transaction Executor

WHY: A sale may be refunded in several steps, possibly from two terminals
at once. The refunded total must never exceed what the customer paid.

DESIGN:
- The sale row is read with FOR UPDATE and carries a version counter.
  Two refunds that both read the same `refunded_amount_cents` cannot both
  commit: the loser gets StaleDataError and the whole transaction re-runs,
  reading the new refunded total.
- Refund rows are insert-only; the submitted lines are stored verbatim.
- Restocking uses the variant named on the refund line, or the variant of
  the original sale item for that product.
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..extensions import db
from ..models import Refund, Sale, SalePayment
from ..models.sales import REFUND_STATUS_FULL, REFUND_STATUS_PARTIAL
from ..validation import PAYMENT_METHOD_CASH, PAYMENT_METHOD_SPLIT, RefundRequest, validate_refund_request
from .concurrency import atomic, lock_for_update, run_with_retry
from .inventory_service import REASON_REFUND, increment_stock
from .side_effects import PostCommitQueue, record_audit


class RefundError(Exception):
    """Raised for refund operation errors."""

    code = "refund_error"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class SaleNotFound(RefundError):
    code = "sale_not_found"

    def __init__(self, sale_id: int):
        super().__init__("Sale not found", {"sale_id": sale_id})


class SaleAlreadyRefunded(RefundError):
    code = "already_refunded"

    def __init__(self, sale_id: int):
        super().__init__("Sale already fully refunded", {"sale_id": sale_id})


class RefundExceedsTotal(RefundError):
    code = "refund_exceeds_total"

    def __init__(self, sale_id: int, requested_cents: int, remaining_cents: int):
        super().__init__(
            "Refund amount exceeds sale total",
            {"sale_id": sale_id, "requested_cents": requested_cents, "remaining_cents": remaining_cents},
        )


class LineMismatch(RefundError):
    code = "line_mismatch"

    def __init__(self, product_id: int, requested_quantity: int, sold_quantity: int, refunded_quantity: int = 0):
        if sold_quantity == 0:
            message = f"Product {product_id} not in this sale"
        else:
            message = f"Refund quantity exceeds sold quantity for product {product_id}"
        super().__init__(
            message,
            {
                "product_id": product_id,
                "requested_quantity": requested_quantity,
                "sold_quantity": sold_quantity,
                "refunded_quantity": refunded_quantity,
            },
        )


@dataclass(frozen=True)
class RefundResult:
    refund: Refund
    refund_status: str
    refunded_amount_cents: int

    def to_dict(self) -> dict:
        return {
            "refund": self.refund.to_dict(),
            "refund_status": self.refund_status,
            "refunded_amount_cents": self.refunded_amount_cents,
        }


def refund_cash_portion(sale: Sale, amount_cents: int) -> int:
    """Cash handed back over the counter: never more than the sale took in cash."""
    if sale.payment_method == PAYMENT_METHOD_CASH:
        return amount_cents
    if sale.payment_method == PAYMENT_METHOD_SPLIT:
        cash_paid = (
            db.session.query(db.func.coalesce(db.func.sum(SalePayment.amount_cents), 0))
            .filter(SalePayment.sale_id == sale.id, SalePayment.method == PAYMENT_METHOD_CASH)
            .scalar()
        )
        return min(amount_cents, cash_paid)
    return 0


def _sold_quantities(sale: Sale) -> tuple[dict[int, int], dict[int, int | None]]:
    sold: dict[int, int] = {}
    variants: dict[int, int | None] = {}
    for item in sale.items:
        sold[item.product_id] = sold.get(item.product_id, 0) + item.quantity
        if variants.get(item.product_id) is None:
            variants[item.product_id] = item.variant_id
    return sold, variants


def _refunded_quantities(sale: Sale) -> dict[int, int]:
    # Refund.items holds the submitted lines as they were validated
    refunded: dict[int, int] = {}
    for refund in sale.refunds:
        for item in refund.items or []:
            product_id = int(item["product_id"])
            refunded[product_id] = refunded.get(product_id, 0) + int(item["quantity"])
    return refunded


def _requested_quantities(request: RefundRequest) -> dict[int, int]:
    requested: dict[int, int] = {}
    for line in request.items:
        requested[line.product_id] = requested.get(line.product_id, 0) + line.quantity
    return requested


def _execute_refund(sale_id: int, request: RefundRequest, cashier_id: int) -> tuple[RefundResult, PostCommitQueue]:
    with atomic():
        sale = lock_for_update(db.session.query(Sale).filter_by(id=sale_id)).first()
        if not sale:
            raise SaleNotFound(sale_id)
        if sale.refund_status == REFUND_STATUS_FULL:
            raise SaleAlreadyRefunded(sale_id)

        sold, sold_variants = _sold_quantities(sale)
        refunded = _refunded_quantities(sale)
        for product_id, requested_qty in _requested_quantities(request).items():
            sold_qty = sold.get(product_id, 0)
            refunded_qty = refunded.get(product_id, 0)
            if requested_qty > sold_qty - refunded_qty:
                raise LineMismatch(product_id, requested_qty, sold_qty, refunded_qty)

        amount = request.amount_cents
        previously_refunded = sale.refunded_amount_cents or 0
        new_total = previously_refunded + amount
        if new_total > sale.total_cents:
            raise RefundExceedsTotal(sale_id, amount, sale.total_cents - previously_refunded)

        status = REFUND_STATUS_FULL if new_total >= sale.total_cents else REFUND_STATUS_PARTIAL

        refund = Refund(
            sale_id=sale.id,
            amount_cents=amount,
            reason=request.reason,
            items=request.raw_items,
            restock=request.restock,
            cashier_id=cashier_id,
        )
        db.session.add(refund)

        sale.refund_status = status
        sale.refunded_amount_cents = new_total

        if request.restock:
            reference = f"sale:{sale.id}"
            for line in request.items:
                variant_id = line.variant_id if line.variant_id is not None else sold_variants.get(line.product_id)
                increment_stock(line.product_id, variant_id, line.quantity, cashier_id, reference, reason=REASON_REFUND)

        db.session.flush()
        cash_cents = refund_cash_portion(sale, amount)
        refund_id = refund.id

    result = RefundResult(refund=refund, refund_status=status, refunded_amount_cents=new_total)
    return result, _refund_side_effects(sale_id, refund_id, amount, cash_cents, cashier_id, request.reason)


def _refund_side_effects(sale_id, refund_id, amount_cents, cash_cents, cashier_id, reason) -> PostCommitQueue:
    from .register_service import record_refund_movement

    queue = PostCommitQueue()
    queue.add("register_refund_movement", lambda: record_refund_movement(cashier_id, cash_cents, sale_id=sale_id))
    queue.add("audit_refund_create", lambda: record_audit(
        "refund_create",
        "refund",
        refund_id,
        cashier_id,
        {"sale_id": sale_id, "amount_cents": amount_cents, "reason": reason},
    ))
    return queue


def refund_sale(sale_id: int, request: RefundRequest, cashier_id: int) -> RefundResult:
    """
    Refund some or all of a sale.

    Raises:
        ValidationError: malformed request
        SaleNotFound, SaleAlreadyRefunded, LineMismatch, RefundExceedsTotal
    """
    validate_refund_request(request)

    result, queue = run_with_retry(lambda: _execute_refund(sale_id, request, cashier_id))
    current_app.logger.info(
        "Refund committed for sale %s: amount_cents=%s status=%s",
        sale_id, request.amount_cents, result.refund_status,
    )

    queue.dispatch()
    return result
