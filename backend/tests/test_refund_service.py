"""
Refund tests.

Cumulative refunds never exceed the sale total, line quantities never
exceed what was sold, and stock only comes back when asked to.
"""

import pytest

from posengine.extensions import db
from posengine.models import AuditLog, Refund, RegisterMovement, StockAdjustment
from posengine.services import register_service, sales_service
from posengine.services.refund_service import (
    LineMismatch,
    RefundExceedsTotal,
    SaleAlreadyRefunded,
    SaleNotFound,
    refund_sale,
)
from posengine.validation import PaymentInput, ValidationError, parse_refund_request
from conftest import sale_request


def refund_request(*lines, reason="Customer Return", restock=True):
    items = []
    for line in lines:
        product, quantity, unit_price_cents = line[:3]
        item = {"product_id": product.id, "quantity": quantity, "unit_price_cents": unit_price_cents}
        if len(line) > 3:
            item["variant_id"] = line[3].id
        items.append(item)
    return parse_refund_request({"items": items, "reason": reason, "restock": restock})


@pytest.fixture
def two_unit_sale(make_product, cashier):
    product = make_product(stock=10)
    sale = sales_service.create_sale(sale_request((product, 2, 1000)), cashier.id)
    return sale, product


class TestRefundAmounts:
    def test_partial_then_full(self, two_unit_sale, cashier):
        sale, product = two_unit_sale

        first = refund_sale(sale.id, refund_request((product, 1, 1000)), cashier.id)
        assert first.refund_status == "partial"
        assert first.refunded_amount_cents == 1000

        second = refund_sale(sale.id, refund_request((product, 1, 1000)), cashier.id)
        assert second.refund_status == "full"
        assert second.refunded_amount_cents == 2000

        assert sale.refund_status == "full"
        assert sale.refunded_amount_cents == 2000

        with pytest.raises(SaleAlreadyRefunded) as exc:
            refund_sale(sale.id, refund_request((product, 1, 1000)), cashier.id)
        assert exc.value.code == "already_refunded"

    def test_refund_above_discounted_total_is_rejected(self, make_product, cashier):
        product = make_product(stock=10)
        sale = sales_service.create_sale(sale_request((product, 2, 1000), discount=500), cashier.id)
        assert sale.total_cents == 1500

        with pytest.raises(RefundExceedsTotal) as exc:
            refund_sale(sale.id, refund_request((product, 2, 1000)), cashier.id)

        assert exc.value.details["remaining_cents"] == 1500
        assert sale.refund_status == "none"
        assert sale.refunded_amount_cents == 0
        assert db.session.query(Refund).count() == 0
        assert product.stock == 8

    def test_unknown_sale(self, db_session, make_product, cashier):
        product = make_product()
        with pytest.raises(SaleNotFound):
            refund_sale(999999, refund_request((product, 1, 100)), cashier.id)

    def test_reason_must_be_known(self, two_unit_sale, cashier):
        _, product = two_unit_sale
        with pytest.raises(ValidationError):
            refund_request((product, 1, 1000), reason="Changed mind")


class TestRefundLines:
    def test_product_not_in_sale(self, two_unit_sale, make_product, cashier):
        sale, _ = two_unit_sale
        stranger = make_product()

        with pytest.raises(LineMismatch, match="not in this sale"):
            refund_sale(sale.id, refund_request((stranger, 1, 100)), cashier.id)

    def test_quantity_above_sold(self, two_unit_sale, cashier):
        sale, product = two_unit_sale

        with pytest.raises(LineMismatch) as exc:
            refund_sale(sale.id, refund_request((product, 3, 100)), cashier.id)

        assert exc.value.details["sold_quantity"] == 2
        assert exc.value.details["requested_quantity"] == 3

    def test_split_lines_for_one_product_are_summed(self, two_unit_sale, cashier):
        sale, product = two_unit_sale

        with pytest.raises(LineMismatch) as exc:
            refund_sale(sale.id, refund_request((product, 2, 50), (product, 2, 50)), cashier.id)

        assert exc.value.details["requested_quantity"] == 4
        assert exc.value.details["sold_quantity"] == 2
        assert product.stock == 8
        assert db.session.query(Refund).count() == 0
        assert db.session.query(StockAdjustment).filter_by(reason="Refund").count() == 0

    def test_earlier_refunds_use_up_sold_quantity(self, two_unit_sale, cashier):
        sale, product = two_unit_sale

        refund_sale(sale.id, refund_request((product, 2, 10)), cashier.id)
        assert sale.refund_status == "partial"
        assert product.stock == 10

        with pytest.raises(LineMismatch) as exc:
            refund_sale(sale.id, refund_request((product, 1, 10)), cashier.id)

        assert exc.value.details["refunded_quantity"] == 2
        assert exc.value.details["requested_quantity"] == 1
        assert product.stock == 10
        assert db.session.query(Refund).count() == 1

    def test_items_stored_verbatim(self, two_unit_sale, cashier):
        sale, product = two_unit_sale

        result = refund_sale(sale.id, refund_request((product, 1, 1000), reason="Defective"), cashier.id)

        refund = db.session.get(Refund, result.refund.id)
        assert refund.items == [{"product_id": product.id, "quantity": 1, "unit_price_cents": 1000}]
        assert refund.reason == "Defective"
        assert refund.amount_cents == 1000


class TestRestock:
    def test_restock_returns_units(self, two_unit_sale, cashier):
        sale, product = two_unit_sale
        assert product.stock == 8

        refund_sale(sale.id, refund_request((product, 2, 1000)), cashier.id)

        assert product.stock == 10
        adjustment = db.session.query(StockAdjustment).filter_by(reason="Refund").one()
        assert adjustment.delta == 2
        assert adjustment.reference == f"sale:{sale.id}"

    def test_no_restock_leaves_stock(self, two_unit_sale, cashier):
        sale, product = two_unit_sale

        refund_sale(sale.id, refund_request((product, 2, 1000), restock=False), cashier.id)

        assert product.stock == 8
        assert db.session.query(StockAdjustment).filter_by(reason="Refund").count() == 0

    def test_restock_goes_to_sold_variant(self, make_product, make_variant, cashier):
        product = make_product(stock=10)
        variant = make_variant(product, stock=3)
        sale = sales_service.create_sale(sale_request((product, 1, 1000, variant)), cashier.id)

        refund_sale(sale.id, refund_request((product, 1, 1000)), cashier.id)

        assert variant.stock == 3
        assert product.stock == 10


class TestRefundSideEffects:
    def test_cash_refund_leaves_drawer(self, make_product, cashier):
        product = make_product()
        session = register_service.open_session(cashier.id, 5000)
        sale = sales_service.create_sale(sale_request((product, 2, 1000)), cashier.id)

        refund_sale(sale.id, refund_request((product, 1, 1000)), cashier.id)

        refund_move = db.session.query(RegisterMovement).filter_by(type="refund").one()
        assert refund_move.amount_cents == 1000
        assert refund_move.sale_id == sale.id
        assert session.expected_cash_cents == 6000

    def test_split_refund_capped_at_cash_paid(self, make_product, cashier):
        product = make_product()
        session = register_service.open_session(cashier.id, 0)
        payments = (PaymentInput("Cash", 300), PaymentInput("Card", 1700))
        sale = sales_service.create_sale(sale_request((product, 2, 1000), payments=payments), cashier.id)

        refund_sale(sale.id, refund_request((product, 1, 1000)), cashier.id)

        refund_move = db.session.query(RegisterMovement).filter_by(type="refund").one()
        assert refund_move.amount_cents == 300
        assert session.expected_cash_cents == 0

    def test_card_refund_writes_no_movement(self, make_product, cashier):
        product = make_product()
        register_service.open_session(cashier.id, 0)
        sale = sales_service.create_sale(sale_request((product, 1, 1000), payment_method="Card"), cashier.id)

        refund_sale(sale.id, refund_request((product, 1, 1000)), cashier.id)

        assert db.session.query(RegisterMovement).count() == 0

    def test_refund_is_audited(self, two_unit_sale, cashier):
        sale, product = two_unit_sale

        result = refund_sale(sale.id, refund_request((product, 1, 1000)), cashier.id)

        audit = db.session.query(AuditLog).filter_by(action="refund_create").one()
        assert audit.entity_id == result.refund.id
        assert audit.details == {"sale_id": sale.id, "amount_cents": 1000, "reason": "Customer Return"}
