# Overview: Service-layer operations for loyalty points; ledger rows plus the materialised balance.

"""
Loyalty Ledger

`Customer.loyalty_points` is a cache of SUM(LoyaltyTransaction.points).
Both functions that move points write the ledger row and move the cache in
the caller's transaction. Nothing here commits.
"""

from __future__ import annotations

from sqlalchemy import func, update

from ..extensions import db
from ..models import Customer, LoyaltyTransaction


TYPE_EARNED = "earned"
TYPE_REDEEMED = "redeemed"
TYPE_ADJUSTED = "adjusted"


def redeem_points(customer_id: int, points: int, sale_id: int | None) -> bool:
    """
    Spend points. Returns False when the balance is short; nothing is written then.
    """
    result = db.session.execute(
        update(Customer)
        .where(Customer.id == customer_id, Customer.loyalty_points >= points)
        .values(loyalty_points=Customer.loyalty_points - points)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        return False

    db.session.add(LoyaltyTransaction(
        customer_id=customer_id,
        sale_id=sale_id,
        points=-points,
        type=TYPE_REDEEMED,
        note=f"Redeemed on sale #{sale_id}" if sale_id else None,
    ))
    return True


def earn_points(customer_id: int, points: int, sale_id: int | None) -> LoyaltyTransaction | None:
    if points <= 0:
        return None

    db.session.execute(
        update(Customer)
        .where(Customer.id == customer_id)
        .values(loyalty_points=Customer.loyalty_points + points)
        .execution_options(synchronize_session=False)
    )
    txn = LoyaltyTransaction(
        customer_id=customer_id,
        sale_id=sale_id,
        points=points,
        type=TYPE_EARNED,
        note=f"Earned from sale #{sale_id}" if sale_id else None,
    )
    db.session.add(txn)
    return txn


def ledger_balance(customer_id: int) -> int:
    return (
        db.session.query(func.coalesce(func.sum(LoyaltyTransaction.points), 0))
        .filter(LoyaltyTransaction.customer_id == customer_id)
        .scalar()
    )


def verify_customer_balance(customer_id: int) -> dict:
    """Compare the cached balance with the ledger. Used by `flask loyalty verify`."""
    stored = db.session.query(Customer.loyalty_points).filter(Customer.id == customer_id).scalar()
    derived = ledger_balance(customer_id)
    return {
        "customer_id": customer_id,
        "stored_points": stored,
        "ledger_points": derived,
        "ok": stored == derived,
    }
