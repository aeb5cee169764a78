from __future__ import annotations

from ..extensions import db
from posengine.time_utils import to_utc_z


REFUND_STATUS_NONE = "none"
REFUND_STATUS_PARTIAL = "partial"
REFUND_STATUS_FULL = "full"


class Sale(db.Model):
    """
    Completed checkout.

    Header, items, payments, coupon usage and loyalty rows are written
    together by sales_service in one transaction. Afterwards the row is
    historical fact: only the refund fields (refund_service) and the
    register link (register_service) ever change.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.CheckConstraint("refunded_amount_cents <= total_cents", name="ck_sales_refund_bound"),
        db.Index("ix_sales_cashier_created", "cashier_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Totals (all amounts in cents)
    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    discount = db.Column(db.Integer, nullable=False, default=0)  # cents for fixed, basis points for percentage
    discount_type = db.Column(db.String(16), nullable=False, default="fixed")
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    tip_cents = db.Column(db.Integer, nullable=False, default=0)
    points_redeemed = db.Column(db.Integer, nullable=False, default=0)
    points_discount_cents = db.Column(db.Integer, nullable=False, default=0)
    coupon_id = db.Column(db.Integer, db.ForeignKey("coupons.id"), nullable=True, index=True)
    coupon_discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    payment_method = db.Column(db.String(16), nullable=False, default="Cash")  # Cash, Card, Other, Split
    notes = db.Column(db.Text, nullable=True)

    cashier_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True, index=True)
    register_session_id = db.Column(db.Integer, db.ForeignKey("register_sessions.id"), nullable=True, index=True)

    # Refund tracking (mutated by refund_service only)
    refund_status = db.Column(db.String(16), nullable=False, default=REFUND_STATUS_NONE, index=True)
    refunded_amount_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    cashier = db.relationship("User", foreign_keys=[cashier_id])
    customer = db.relationship("Customer", backref=db.backref("sales", lazy=True))
    coupon = db.relationship("Coupon")
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_lines: bool = False) -> dict:
        data = {
            "id": self.id,
            "subtotal_cents": self.subtotal_cents,
            "discount": self.discount,
            "discount_type": self.discount_type,
            "discount_cents": self.discount_cents,
            "tax_cents": self.tax_cents,
            "tip_cents": self.tip_cents,
            "points_redeemed": self.points_redeemed,
            "points_discount_cents": self.points_discount_cents,
            "coupon_id": self.coupon_id,
            "coupon_discount_cents": self.coupon_discount_cents,
            "total_cents": self.total_cents,
            "payment_method": self.payment_method,
            "notes": self.notes,
            "cashier_id": self.cashier_id,
            "customer_id": self.customer_id,
            "register_session_id": self.register_session_id,
            "refund_status": self.refund_status,
            "refunded_amount_cents": self.refunded_amount_cents,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
        if include_lines:
            data["items"] = [item.to_dict() for item in self.items]
            data["payments"] = [p.to_dict() for p in self.payments]
            data["refunds"] = [r.to_dict() for r in self.refunds]
        return data


class SaleItem(db.Model):
    """
    Line item on a sale.

    cost_price_cents is a snapshot taken at sale time so margin reporting
    stays historically accurate after product costs change.
    """
    __tablename__ = "sale_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_sale_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    cost_price_cents = db.Column(db.Integer, nullable=False, default=0)
    memo = db.Column(db.String(255), nullable=True)

    sale = db.relationship("Sale", backref=db.backref("items", lazy=True, order_by="SaleItem.id"))

    @property
    def line_total_cents(self) -> int:
        return self.unit_price_cents * self.quantity

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "cost_price_cents": self.cost_price_cents,
            "line_total_cents": self.line_total_cents,
            "memo": self.memo,
        }


class SalePayment(db.Model):
    """One tender of a split payment. Single-tender sales have no rows."""
    __tablename__ = "sale_payments"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_sale_payments_amount_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    method = db.Column(db.String(16), nullable=False)
    amount_cents = db.Column(db.Integer, nullable=False)

    sale = db.relationship("Sale", backref=db.backref("payments", lazy=True, order_by="SalePayment.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "method": self.method,
            "amount_cents": self.amount_cents,
        }


class Refund(db.Model):
    """
    Refund against a sale.

    IMMUTABLE: insert-only. `items` keeps the submitted lines verbatim so
    the refund can be replayed during an audit.
    """
    __tablename__ = "refunds"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(32), nullable=False)
    items = db.Column(db.JSON, nullable=False)
    restock = db.Column(db.Boolean, nullable=False, default=True)
    cashier_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    sale = db.relationship("Sale", backref=db.backref("refunds", lazy=True, order_by="Refund.id"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "amount_cents": self.amount_cents,
            "reason": self.reason,
            "items": self.items,
            "restock": self.restock,
            "cashier_id": self.cashier_id,
            "created_at": to_utc_z(self.created_at),
        }
