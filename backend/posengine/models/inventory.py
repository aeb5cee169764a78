from __future__ import annotations

from ..extensions import db
from posengine.time_utils import to_utc_z


class StockAdjustment(db.Model):
    """
    Append-only audit row for every stock movement.

    Written in the same transaction as the stock update it describes.
    `delta` is signed: negative for sales, positive for restocks.
    """
    __tablename__ = "stock_adjustments"
    __table_args__ = (
        db.Index("ix_stock_adjustments_product_created", "product_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=True)

    previous_qty = db.Column(db.Integer, nullable=False)
    new_qty = db.Column(db.Integer, nullable=False)
    delta = db.Column(db.Integer, nullable=False)

    reason = db.Column(db.String(64), nullable=False)  # Sale, Refund, Manual
    reference = db.Column(db.String(64), nullable=True)  # e.g. "sale:12"
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "previous_qty": self.previous_qty,
            "new_qty": self.new_qty,
            "delta": self.delta,
            "reason": self.reason,
            "reference": self.reference,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }
