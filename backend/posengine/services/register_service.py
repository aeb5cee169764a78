# Overview: Service-layer operations for registers; per-cashier cash sessions, movements and reconciliation.

"""
Register Session Ledger

WHY: Cash in the drawer has to reconcile to what the system says should
be there. Every cash-affecting event is an append-only movement, and
expected cash is the opening float plus the signed sum of movements.

DESIGN PRINCIPLES:
- At most one open session per cashier
- Sessions are immutable once closed (counted or force-closed)
- expected_cash_cents is a cache that can always be re-derived from
  movements (reconcile_session)
- Sale and refund hooks run after the sale/refund commits. With no open
  session they do nothing; a cashier working without a drawer still sells.
"""

from __future__ import annotations

from datetime import datetime

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import RegisterMovement, RegisterSession, Sale
from ..models.registers import (
    MOVEMENT_CASH_IN,
    MOVEMENT_CASH_OUT,
    MOVEMENT_REFUND,
    MOVEMENT_SALE,
    MOVEMENT_SIGNS,
    SESSION_STATUS_CLOSED,
    SESSION_STATUS_OPEN,
)
from ..validation import MOVEMENT_TYPES, ValidationError, require_non_negative_amount, require_positive_amount
from posengine.time_utils import utcnow
from .concurrency import atomic, lock_for_update, run_with_retry
from .side_effects import PostCommitQueue, record_audit


FORCE_CLOSE_NOTE = "Force-closed by admin"

# Columns list_sessions may sort by. Anything else is rejected.
SORTABLE_COLUMNS = {
    "id": RegisterSession.id,
    "opened_at": RegisterSession.opened_at,
    "closed_at": RegisterSession.closed_at,
    "expected_cash_cents": RegisterSession.expected_cash_cents,
    "variance_cents": RegisterSession.variance_cents,
}
MAX_PER_PAGE = 200


class RegisterError(Exception):
    """Raised for register operation errors."""

    code = "register_error"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class AlreadyOpen(RegisterError):
    code = "already_open"

    def __init__(self, session_id: int):
        super().__init__("You already have an open register session", {"session_id": session_id})


class NoOpenSession(RegisterError):
    code = "no_open_session"

    def __init__(self, cashier_id: int):
        super().__init__("No open register session", {"cashier_id": cashier_id})


class SessionNotFound(RegisterError):
    code = "session_not_found"

    def __init__(self, session_id: int, message: str = "Register session not found"):
        super().__init__(message, {"session_id": session_id})


def _open_session_query(cashier_id: int):
    return db.session.query(RegisterSession).filter_by(cashier_id=cashier_id, status=SESSION_STATUS_OPEN)


def get_open_session(cashier_id: int) -> RegisterSession | None:
    return _open_session_query(cashier_id).first()


def _audit_queue(action: str, session_id: int, user_id: int, details: dict | None = None) -> PostCommitQueue:
    queue = PostCommitQueue()
    queue.add(f"audit_{action}", lambda: record_audit(action, "register_session", session_id, user_id, details))
    return queue


# =============================================================================
# SESSION LIFECYCLE
# =============================================================================

def open_session(cashier_id: int, opening_float_cents: int) -> RegisterSession:
    """
    Open a cash session for a cashier.

    Raises:
        ValidationError: negative float
        AlreadyOpen: cashier already has an open session
    """
    opening_float_cents = require_non_negative_amount(opening_float_cents, "opening_float_cents")

    def _op():
        with atomic():
            existing = lock_for_update(_open_session_query(cashier_id)).first()
            if existing:
                raise AlreadyOpen(existing.id)

            session = RegisterSession(
                cashier_id=cashier_id,
                status=SESSION_STATUS_OPEN,
                opening_float_cents=opening_float_cents,
                expected_cash_cents=opening_float_cents,
                opened_at=utcnow(),
            )
            db.session.add(session)
            db.session.flush()
            session_id = session.id
        return session, session_id

    session, session_id = run_with_retry(_op)
    current_app.logger.info("Register session %s opened for cashier %s", session_id, cashier_id)

    _audit_queue("register_open", session_id, cashier_id, {"opening_float_cents": opening_float_cents}).dispatch()
    return session


def close_session(cashier_id: int, counted_cash_cents: int, notes: str | None = None) -> RegisterSession:
    """
    Close the cashier's open session against a physical cash count.

    variance = counted - expected. Both values are permanent once closed.
    """
    counted_cash_cents = require_non_negative_amount(counted_cash_cents, "counted_cash_cents")

    def _op():
        with atomic():
            session = lock_for_update(_open_session_query(cashier_id)).first()
            if not session:
                raise NoOpenSession(cashier_id)

            session.counted_cash_cents = counted_cash_cents
            session.variance_cents = counted_cash_cents - session.expected_cash_cents
            session.status = SESSION_STATUS_CLOSED
            session.closed_at = utcnow()
            session.closed_by_user_id = cashier_id
            session.notes = notes
            db.session.flush()
            summary = (session.id, session.expected_cash_cents, session.variance_cents)
        return session, summary

    session, (session_id, expected, variance) = run_with_retry(_op)
    current_app.logger.info(
        "Register session %s closed: expected_cents=%s counted_cents=%s variance_cents=%s",
        session_id, expected, counted_cash_cents, variance,
    )

    _audit_queue(
        "register_close", session_id, cashier_id,
        {"counted_cash_cents": counted_cash_cents, "variance_cents": variance},
    ).dispatch()
    return session


def force_close_session(session_id: int, admin_id: int) -> RegisterSession:
    """
    Close someone else's session without a cash count.

    counted_cash_cents and variance_cents stay null: nobody counted the drawer.
    """
    def _op():
        with atomic():
            session = lock_for_update(db.session.query(RegisterSession).filter_by(id=session_id)).first()
            if not session or not session.is_open:
                raise SessionNotFound(session_id, "Session not found or already closed")

            session.status = SESSION_STATUS_CLOSED
            session.closed_at = utcnow()
            session.closed_by_user_id = admin_id
            session.notes = f"{session.notes} | {FORCE_CLOSE_NOTE}" if session.notes else FORCE_CLOSE_NOTE
        return session

    session = run_with_retry(_op)
    current_app.logger.info("Register session %s force-closed by admin %s", session_id, admin_id)

    _audit_queue("register_force_close", session_id, admin_id).dispatch()
    return session


# =============================================================================
# MOVEMENTS
# =============================================================================

def _append_movement(session: RegisterSession, movement_type: str, amount_cents: int, sale_id=None, note=None) -> RegisterMovement:
    movement = RegisterMovement(
        session_id=session.id,
        type=movement_type,
        amount_cents=amount_cents,
        sale_id=sale_id,
        note=note,
    )
    db.session.add(movement)
    session.expected_cash_cents = session.expected_cash_cents + MOVEMENT_SIGNS[movement_type] * amount_cents
    return movement


def add_movement(cashier_id: int, movement_type: str, amount_cents: int, note: str | None = None) -> RegisterMovement:
    """
    Manual cash in (float top-up) or cash out (drop, payout).

    Raises:
        ValidationError: unknown type or non-positive amount
        NoOpenSession: cashier has no open session
    """
    if movement_type not in MOVEMENT_TYPES:
        raise ValidationError(f"type must be one of {', '.join(MOVEMENT_TYPES)}")
    amount_cents = require_positive_amount(amount_cents, "amount_cents")

    def _op():
        with atomic():
            session = lock_for_update(_open_session_query(cashier_id)).first()
            if not session:
                raise NoOpenSession(cashier_id)
            movement = _append_movement(session, movement_type, amount_cents, note=note)
        return movement

    movement = run_with_retry(_op)
    current_app.logger.info("Register movement %s of %s cents for cashier %s", movement_type, amount_cents, cashier_id)
    return movement


def _record_hook_movement(cashier_id: int, movement_type: str, amount_cents: int, sale_id: int | None) -> RegisterMovement | None:
    if amount_cents is None or amount_cents <= 0:
        return None

    def _op():
        with atomic():
            session = lock_for_update(_open_session_query(cashier_id)).first()
            if not session:
                return None
            movement = _append_movement(session, movement_type, amount_cents, sale_id=sale_id)
            if movement_type == MOVEMENT_SALE and sale_id is not None:
                sale = db.session.get(Sale, sale_id)
                if sale is not None:
                    sale.register_session_id = session.id
        return movement

    try:
        return run_with_retry(_op)
    except Exception:
        db.session.rollback()
        current_app.logger.exception(
            "Failed to record %s movement for cashier %s (sale %s)", movement_type, cashier_id, sale_id
        )
        return None


def record_sale_movement(cashier_id: int, sale_id: int, cash_amount_cents: int) -> RegisterMovement | None:
    """Post-commit hook: add a sale's cash to the drawer and link the sale to the session."""
    return _record_hook_movement(cashier_id, MOVEMENT_SALE, cash_amount_cents, sale_id)


def record_refund_movement(cashier_id: int, amount_cents: int, sale_id: int | None = None) -> RegisterMovement | None:
    """Post-commit hook: take refunded cash out of the drawer."""
    return _record_hook_movement(cashier_id, MOVEMENT_REFUND, amount_cents, sale_id)


# =============================================================================
# READS
# =============================================================================

def _movement_totals(session_id: int) -> tuple[dict[str, int], dict[str, int]]:
    rows = (
        db.session.query(RegisterMovement.type, func.sum(RegisterMovement.amount_cents), func.count(RegisterMovement.id))
        .filter(RegisterMovement.session_id == session_id)
        .group_by(RegisterMovement.type)
        .all()
    )
    totals = {t: 0 for t in MOVEMENT_SIGNS}
    counts = {t: 0 for t in MOVEMENT_SIGNS}
    for movement_type, total, count in rows:
        totals[movement_type] = int(total or 0)
        counts[movement_type] = int(count or 0)
    return totals, counts


def _summary(totals: dict[str, int], counts: dict[str, int]) -> dict:
    return {
        "total_sales_cents": totals[MOVEMENT_SALE],
        "total_refunds_cents": totals[MOVEMENT_REFUND],
        "total_cash_in_cents": totals[MOVEMENT_SALE] + totals[MOVEMENT_CASH_IN],
        "total_cash_out_cents": totals[MOVEMENT_REFUND] + totals[MOVEMENT_CASH_OUT],
        "movement_count": sum(counts.values()),
    }


def get_current_session(cashier_id: int) -> dict | None:
    session = get_open_session(cashier_id)
    if session is None:
        return None
    totals, counts = _movement_totals(session.id)
    return {**session.to_dict(), **_summary(totals, counts)}


def get_session_report(session_id: int) -> dict:
    """
    X/Z report: an X report while the session is open, a Z report once closed.
    """
    session = db.session.get(RegisterSession, session_id)
    if session is None:
        raise SessionNotFound(session_id)

    totals, counts = _movement_totals(session_id)
    sales_count = db.session.query(func.count(Sale.id)).filter(Sale.register_session_id == session_id).scalar()

    return {
        "report_type": "X" if session.is_open else "Z",
        "session": session.to_dict(),
        "movements": [m.to_dict() for m in session.movements],
        "totals_cents": totals,
        "counts": counts,
        "sales_count": sales_count or 0,
        **_summary(totals, counts),
    }


def list_sessions(
    *,
    cashier_id: int | None = None,
    status: str | None = None,
    opened_from: datetime | None = None,
    opened_to: datetime | None = None,
    sort: str = "opened_at",
    order: str = "desc",
    page: int = 1,
    per_page: int = 50,
) -> dict:
    if sort not in SORTABLE_COLUMNS:
        raise ValidationError(f"sort must be one of {', '.join(sorted(SORTABLE_COLUMNS))}")
    if order not in ("asc", "desc"):
        raise ValidationError("order must be asc or desc")
    if status is not None and status not in (SESSION_STATUS_OPEN, SESSION_STATUS_CLOSED):
        raise ValidationError("status must be open or closed")
    if page < 1 or per_page < 1:
        raise ValidationError("page and per_page must be positive")
    per_page = min(per_page, MAX_PER_PAGE)

    q = db.session.query(RegisterSession)
    if cashier_id is not None:
        q = q.filter(RegisterSession.cashier_id == cashier_id)
    if status is not None:
        q = q.filter(RegisterSession.status == status)
    if opened_from is not None:
        q = q.filter(RegisterSession.opened_at >= opened_from)
    if opened_to is not None:
        q = q.filter(RegisterSession.opened_at <= opened_to)

    total = q.count()
    column = SORTABLE_COLUMNS[sort]
    q = q.order_by(column.asc() if order == "asc" else column.desc(), RegisterSession.id.desc())
    sessions = q.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [s.to_dict() for s in sessions],
        "page": page,
        "per_page": per_page,
        "total": total,
    }


def reconcile_session(session_id: int) -> dict:
    """Re-derive expected cash from the movement log and report any drift from the cached value."""
    session = db.session.get(RegisterSession, session_id)
    if session is None:
        raise SessionNotFound(session_id)

    derived = session.opening_float_cents + sum(m.signed_amount_cents for m in session.movements)
    return {
        "session_id": session.id,
        "status": session.status,
        "stored_expected_cash_cents": session.expected_cash_cents,
        "derived_expected_cash_cents": derived,
        "drift_cents": session.expected_cash_cents - derived,
        "ok": derived == session.expected_cash_cents,
    }
