# Overview: Service-layer operations for stock; guarded stock moves with an adjustment trail.

"""
Stock Store

Invariants:
- Stock never goes negative. Decrements are a single conditional UPDATE
  (`stock >= qty` in the WHERE clause), so two checkouts racing for the
  last unit cannot both win.
- Every stock change writes a StockAdjustment row in the same transaction.
- Neither function commits; the caller owns the transaction.
"""

from __future__ import annotations

from sqlalchemy import select, update

from ..extensions import db
from ..models import Product, ProductVariant, StockAdjustment


REASON_SALE = "Sale"
REASON_REFUND = "Refund"
REASON_MANUAL = "Manual"


def _stock_target(product_id: int, variant_id: int | None):
    if variant_id is not None:
        return ProductVariant, ProductVariant.id == variant_id
    return Product, Product.id == product_id


def current_stock(product_id: int, variant_id: int | None = None) -> int | None:
    model, match = _stock_target(product_id, variant_id)
    return db.session.execute(select(model.stock).where(match)).scalar()


def _record_adjustment(product_id, variant_id, new_qty, delta, reason, user_id, reference) -> StockAdjustment:
    adjustment = StockAdjustment(
        product_id=product_id,
        variant_id=variant_id,
        previous_qty=new_qty - delta,
        new_qty=new_qty,
        delta=delta,
        reason=reason,
        reference=reference,
        user_id=user_id,
    )
    db.session.add(adjustment)
    return adjustment


def decrement_stock(
    product_id: int,
    variant_id: int | None,
    qty: int,
    user_id: int | None,
    reference: str | None,
    *,
    reason: str = REASON_SALE,
) -> bool:
    """
    Take `qty` units off the product (or variant) shelf.

    Returns False, writing nothing, when fewer than `qty` units remain.
    """
    model, match = _stock_target(product_id, variant_id)
    result = db.session.execute(
        update(model)
        .where(match, model.stock >= qty)
        .values(stock=model.stock - qty)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        return False

    _record_adjustment(
        product_id, variant_id, current_stock(product_id, variant_id), -qty, reason, user_id, reference
    )
    return True


def increment_stock(
    product_id: int,
    variant_id: int | None,
    qty: int,
    user_id: int | None,
    reference: str | None,
    *,
    reason: str = REASON_REFUND,
) -> bool:
    """Put `qty` units back. Returns False if the product/variant no longer exists."""
    model, match = _stock_target(product_id, variant_id)
    result = db.session.execute(
        update(model)
        .where(match)
        .values(stock=model.stock + qty)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        return False

    _record_adjustment(
        product_id, variant_id, current_stock(product_id, variant_id), qty, reason, user_id, reference
    )
    return True
