from __future__ import annotations

from ..extensions import db
from posengine.time_utils import to_utc_z


COUPON_TYPE_PERCENTAGE = "percentage"
COUPON_TYPE_FIXED = "fixed"

COUPON_SCOPE_ALL = "all"
COUPON_SCOPE_CATEGORY = "category"
COUPON_SCOPE_PRODUCT = "product"


class Coupon(db.Model):
    """
    Checkout coupon.

    `value` is cents for fixed coupons and basis points for percentage
    coupons. `scope_ids` holds product or category ids depending on scope.
    """
    __tablename__ = "coupons"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(64), nullable=False, unique=True, index=True)

    type = db.Column(db.String(16), nullable=False)  # percentage, fixed
    value = db.Column(db.Integer, nullable=False)

    min_purchase_cents = db.Column(db.Integer, nullable=True)
    max_discount_cents = db.Column(db.Integer, nullable=True)

    starts_at = db.Column(db.DateTime(timezone=True), nullable=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)

    max_uses = db.Column(db.Integer, nullable=True)
    max_uses_per_customer = db.Column(db.Integer, nullable=True)

    scope = db.Column(db.String(16), nullable=False, default=COUPON_SCOPE_ALL)
    scope_ids = db.Column(db.JSON, nullable=True)

    stackable = db.Column(db.Boolean, nullable=False, default=False)
    status = db.Column(db.String(16), nullable=False, default="active", index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "type": self.type,
            "value": self.value,
            "min_purchase_cents": self.min_purchase_cents,
            "max_discount_cents": self.max_discount_cents,
            "starts_at": to_utc_z(self.starts_at),
            "expires_at": to_utc_z(self.expires_at),
            "max_uses": self.max_uses,
            "max_uses_per_customer": self.max_uses_per_customer,
            "scope": self.scope,
            "scope_ids": self.scope_ids,
            "stackable": self.stackable,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
        }


class CouponUsage(db.Model):
    """Append-only redemption fact; counted to enforce usage caps."""
    __tablename__ = "coupon_usage"
    __table_args__ = (
        db.Index("ix_coupon_usage_coupon_customer", "coupon_id", "customer_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    coupon_id = db.Column(db.Integer, db.ForeignKey("coupons.id"), nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=True)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "coupon_id": self.coupon_id,
            "sale_id": self.sale_id,
            "customer_id": self.customer_id,
            "discount_cents": self.discount_cents,
            "created_at": to_utc_z(self.created_at),
        }
