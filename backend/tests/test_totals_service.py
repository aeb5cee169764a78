"""
Totals calculator tests.

Verifies:
- Fixed order: discount, then tax, then loyalty, then coupon
- Exclusive vs inclusive tax
- Half-up rounding to the cent
- Tip carried separately
"""

from decimal import Decimal

import pytest

from posengine.services.settings_service import Settings
from posengine.services.totals_service import compute_totals
from posengine.validation import SaleLineInput, SaleRequest


def _request(*prices_and_qty, **kwargs):
    items = tuple(
        SaleLineInput(product_id=i + 1, quantity=qty, unit_price_cents=price)
        for i, (price, qty) in enumerate(prices_and_qty)
    )
    return SaleRequest(items=items, **kwargs)


TAX_14_EXCLUSIVE = Settings(tax_enabled=True, tax_rate_bps=1400, tax_mode="exclusive")
TAX_14_INCLUSIVE = Settings(tax_enabled=True, tax_rate_bps=1400, tax_mode="inclusive")
LOYALTY = Settings(loyalty_enabled=True, loyalty_redeem_value_cents=500, loyalty_earn_rate=Decimal("1"))


class TestTaxOrder:
    def test_exclusive_tax_applies_after_discount(self):
        totals = compute_totals(_request((100000, 1), discount=10000), TAX_14_EXCLUSIVE)

        assert totals.subtotal_cents == 100000
        assert totals.discount_cents == 10000
        assert totals.after_discount_cents == 90000
        assert totals.tax_cents == 12600
        assert totals.total_cents == 102600

    def test_inclusive_tax_is_extracted_not_added(self):
        totals = compute_totals(_request((114000, 1)), TAX_14_INCLUSIVE)

        assert totals.tax_cents == 14000
        assert totals.total_cents == 114000

    def test_tax_disabled_means_zero_tax(self):
        settings = Settings(tax_enabled=False, tax_rate_bps=1400)
        totals = compute_totals(_request((5000, 2)), settings)

        assert totals.tax_cents == 0
        assert totals.total_cents == 10000

    def test_zero_rate_means_zero_tax(self):
        totals = compute_totals(_request((5000, 1)), Settings(tax_enabled=True, tax_rate_bps=0))
        assert totals.tax_cents == 0

    def test_tax_is_not_reduced_by_loyalty(self):
        settings = Settings(
            tax_enabled=True, tax_rate_bps=1000, loyalty_enabled=True, loyalty_redeem_value_cents=500,
        )
        totals = compute_totals(_request((10000, 1), customer_id=1, points_redeemed=100), settings)

        assert totals.tax_cents == 1000
        assert totals.points_discount_cents == 500
        assert totals.total_cents == 10500


class TestDiscounts:
    def test_percentage_discount_in_basis_points_rounds_half_up(self):
        # 10% of 9.99 = 0.999 -> 1.00
        totals = compute_totals(_request((999, 1), discount=1000, discount_type="percentage"), Settings())

        assert totals.discount_cents == 100
        assert totals.after_discount_cents == 899

    def test_fixed_discount_larger_than_subtotal_floors_at_zero(self):
        totals = compute_totals(_request((500, 1), discount=800), Settings())

        assert totals.after_discount_cents == 0
        assert totals.total_cents == 0

    def test_half_cent_tax_rounds_up(self):
        # 1% of 2.50 = 0.025 -> 0.03 (half-up, not banker's rounding)
        settings = Settings(tax_enabled=True, tax_rate_bps=100)
        totals = compute_totals(_request((250, 1)), settings)
        assert totals.tax_cents == 3


class TestLoyalty:
    def test_points_discount_uses_redeem_value_per_hundred_points(self):
        totals = compute_totals(_request((1000, 1), customer_id=7, points_redeemed=100), LOYALTY)

        assert totals.points_discount_cents == 500
        assert totals.total_cents == 500

    def test_points_discount_capped_at_running_total(self):
        totals = compute_totals(_request((300, 1), customer_id=7, points_redeemed=1000), LOYALTY)

        assert totals.points_discount_cents == 300
        assert totals.total_cents == 0

    def test_no_discount_when_loyalty_disabled(self):
        totals = compute_totals(_request((1000, 1), customer_id=7, points_redeemed=100), Settings())
        assert totals.points_discount_cents == 0
        assert totals.total_cents == 1000

    def test_no_discount_without_customer(self):
        totals = compute_totals(_request((1000, 1), points_redeemed=100), LOYALTY)
        assert totals.points_discount_cents == 0


class TestTipAndDeterminism:
    def test_tip_is_reported_but_not_part_of_total(self):
        totals = compute_totals(_request((1000, 1), tip_cents=150), Settings())

        assert totals.tip_cents == 150
        assert totals.total_cents == 1000

    def test_same_inputs_give_same_totals(self):
        request = _request((1234, 3), (99, 7), discount=1250, discount_type="percentage")
        assert compute_totals(request, TAX_14_EXCLUSIVE) == compute_totals(request, TAX_14_EXCLUSIVE)

    def test_to_dict_exposes_every_field(self):
        data = compute_totals(_request((1000, 1)), Settings()).to_dict()
        assert set(data) == {
            "subtotal_cents", "discount_cents", "after_discount_cents", "tax_cents",
            "points_discount_cents", "coupon_id", "coupon_discount_cents", "coupon_error",
            "tip_cents", "total_cents",
        }


class TestCouponStage:
    def test_rejected_coupon_fails_closed(self, db_session):
        totals = compute_totals(_request((1000, 1), coupon_code="NOPE"), Settings())

        assert totals.coupon_id is None
        assert totals.coupon_discount_cents == 0
        assert totals.coupon_error == "not_found"
        assert totals.total_cents == 1000

    def test_coupon_applies_after_loyalty(self, make_coupon):
        coupon = make_coupon(code="HALF", type="percentage", value=5000)
        totals = compute_totals(
            _request((2000, 1), customer_id=7, points_redeemed=100, coupon_code="half"),
            LOYALTY,
        )

        # 20.00 - 5.00 loyalty = 15.00, then 50% coupon
        assert totals.points_discount_cents == 500
        assert totals.coupon_id == coupon.id
        assert totals.coupon_discount_cents == 750
        assert totals.total_cents == 750

    @pytest.mark.parametrize("value,expected_total", [(500, 500), (5000, 0)])
    def test_fixed_coupon_never_goes_below_zero(self, make_coupon, value, expected_total):
        make_coupon(code="FLAT", type="fixed", value=value)
        totals = compute_totals(_request((1000, 1), coupon_code="FLAT"), Settings())
        assert totals.total_cents == expected_total
