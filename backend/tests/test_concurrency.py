"""
Transaction helper tests: atomic() boundaries, retry on version conflicts,
racing checkouts for the last unit, and post-commit dispatch isolation.
"""

import pytest
from sqlalchemy import update
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from posengine.extensions import db
from posengine.models import AuditLog, Product, Sale, StockAdjustment
from posengine.services.concurrency import atomic, run_with_retry
from posengine.services import inventory_service, sales_service
from posengine.services.settings_service import load_settings
from posengine.services.side_effects import PostCommitQueue, record_audit
from posengine.services.totals_service import compute_totals
from conftest import sale_request


def test_atomic_commits(make_product):
    product = make_product(stock=5)

    with atomic():
        product.stock = 4

    db.session.expire_all()
    assert db.session.get(Product, product.id).stock == 4


def test_atomic_rolls_back_on_error(make_product):
    product = make_product(stock=5)

    with pytest.raises(RuntimeError):
        with atomic():
            product.stock = 0
            db.session.flush()
            raise RuntimeError("boom")

    assert product.stock == 5


def test_retry_reruns_after_version_conflict(app):
    calls = []

    def op():
        calls.append(1)
        if len(calls) == 1:
            raise StaleDataError("version mismatch")
        return "done"

    assert run_with_retry(op) == "done"
    assert len(calls) == 2


def test_retry_gives_up(app):
    calls = []

    def op():
        calls.append(1)
        raise StaleDataError("version mismatch")

    with pytest.raises(StaleDataError):
        run_with_retry(op, attempts=3)
    assert len(calls) == 3


def test_retry_does_not_swallow_business_errors(app):
    calls = []

    def op():
        calls.append(1)
        raise ValueError("bad input")

    with pytest.raises(ValueError):
        run_with_retry(op)
    assert len(calls) == 1


def test_stale_sale_version_is_detected(make_product, cashier):
    product = make_product()
    sale = sales_service.create_sale(sale_request((product, 1, 1000)), cashier.id)
    version = sale.version_id

    # Another writer bumps the version behind this session's back
    db.session.execute(
        Sale.__table__.update().where(Sale.id == sale.id).values(version_id=version + 1)
    )
    sale.refunded_amount_cents = 100
    with pytest.raises(StaleDataError):
        db.session.flush()
    db.session.rollback()


def test_losing_decrement_is_refused_after_both_read_stock(make_product, cashier):
    product = make_product(stock=1)
    other = Session(db.engine)
    try:
        # Both checkouts see the last unit before either writes
        assert db.session.get(Product, product.id).stock == 1
        assert other.get(Product, product.id).stock == 1

        won = other.execute(
            update(Product)
            .where(Product.id == product.id, Product.stock >= 1)
            .values(stock=Product.stock - 1)
        )
        assert won.rowcount == 1
        other.commit()

        with atomic():
            taken = inventory_service.decrement_stock(product.id, None, 1, cashier.id, "sale:late")
        assert taken is False
    finally:
        other.close()

    db.session.expire_all()
    assert db.session.get(Product, product.id).stock == 0
    assert db.session.query(StockAdjustment).count() == 0


def test_sale_quoted_before_stock_ran_out_is_rejected(make_product, cashier):
    product = make_product(stock=1)
    first = sale_request((product, 1, 1000))
    second = sale_request((product, 1, 1000))

    # Both checkouts are quoted while one unit is still on the shelf
    settings = load_settings()
    first_totals = compute_totals(first, settings)
    second_totals = compute_totals(second, settings)

    sales_service.execute_sale_transaction(first, first_totals, cashier.id, settings)
    with pytest.raises(sales_service.InsufficientStock):
        sales_service.execute_sale_transaction(second, second_totals, cashier.id, settings)

    db.session.expire_all()
    assert db.session.get(Product, product.id).stock == 0
    assert db.session.query(Sale).count() == 1


def test_queue_isolates_failures(db_session):
    queue = PostCommitQueue()
    queue.add("first", lambda: record_audit("first", "test", 1, None))
    queue.add("broken", lambda: 1 / 0)
    queue.add("last", lambda: record_audit("last", "test", 2, None))

    assert queue.labels == ["first", "broken", "last"]
    assert queue.dispatch() == ["broken"]
    assert len(queue) == 0
    assert [a.action for a in db.session.query(AuditLog).order_by(AuditLog.id)] == ["first", "last"]
