from __future__ import annotations

from ..extensions import db
from posengine.time_utils import to_utc_z


SESSION_STATUS_OPEN = "open"
SESSION_STATUS_CLOSED = "closed"

MOVEMENT_SALE = "sale"
MOVEMENT_REFUND = "refund"
MOVEMENT_CASH_IN = "cash_in"
MOVEMENT_CASH_OUT = "cash_out"

# Sign applied to a movement's (always positive) amount when deriving expected cash
MOVEMENT_SIGNS = {
    MOVEMENT_SALE: 1,
    MOVEMENT_CASH_IN: 1,
    MOVEMENT_REFUND: -1,
    MOVEMENT_CASH_OUT: -1,
}


class RegisterSession(db.Model):
    """
    Cash-drawer accounting period for one cashier.

    LIFECYCLE:
    - open: Drawer in use, movements accepted
    - closed: Cash counted (or force-closed), variance fixed

    IMMUTABLE: Once closed, session cannot be reopened or modified.
    expected_cash_cents is a cache of opening float plus signed movements.
    """
    __tablename__ = "register_sessions"
    __table_args__ = (
        db.Index("ix_register_sessions_cashier_status", "cashier_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    cashier_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default=SESSION_STATUS_OPEN, index=True)

    # Cash tracking (all amounts in cents)
    opening_float_cents = db.Column(db.Integer, nullable=False, default=0)
    expected_cash_cents = db.Column(db.Integer, nullable=False, default=0)
    counted_cash_cents = db.Column(db.Integer, nullable=True)  # Set when closing
    variance_cents = db.Column(db.Integer, nullable=True)  # counted - expected

    notes = db.Column(db.Text, nullable=True)

    opened_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    cashier = db.relationship("User", foreign_keys=[cashier_id], backref=db.backref("register_sessions", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def is_open(self) -> bool:
        return self.status == SESSION_STATUS_OPEN

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cashier_id": self.cashier_id,
            "cashier_name": self.cashier.name if self.cashier else None,
            "status": self.status,
            "opening_float_cents": self.opening_float_cents,
            "expected_cash_cents": self.expected_cash_cents,
            "counted_cash_cents": self.counted_cash_cents,
            "variance_cents": self.variance_cents,
            "notes": self.notes,
            "opened_at": to_utc_z(self.opened_at),
            "closed_at": to_utc_z(self.closed_at) if self.closed_at else None,
            "closed_by_user_id": self.closed_by_user_id,
            "version_id": self.version_id,
        }


class RegisterMovement(db.Model):
    """
    Append-only cash movement within a session.

    EVENT TYPES:
    - sale: Cash portion of a completed sale (+)
    - refund: Cash paid back on a refund (-)
    - cash_in: Manual float top-up (+)
    - cash_out: Manual drop / payout (-)
    """
    __tablename__ = "register_movements"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_register_movements_amount_positive"),
        db.Index("ix_register_movements_session_created", "session_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    session_id = db.Column(db.Integer, db.ForeignKey("register_sessions.id"), nullable=False, index=True)
    type = db.Column(db.String(16), nullable=False, index=True)
    amount_cents = db.Column(db.Integer, nullable=False)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=True)
    note = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    session = db.relationship("RegisterSession", backref=db.backref("movements", lazy=True, order_by="RegisterMovement.id"))

    @property
    def signed_amount_cents(self) -> int:
        return MOVEMENT_SIGNS[self.type] * self.amount_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "session_id": self.session_id,
            "type": self.type,
            "amount_cents": self.amount_cents,
            "sale_id": self.sale_id,
            "note": self.note,
            "created_at": to_utc_z(self.created_at),
        }
