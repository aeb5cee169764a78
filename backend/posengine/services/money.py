# Overview: Cent rounding helpers shared by totals and coupon calculations.

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

BPS_DENOMINATOR = Decimal(10_000)


def round_cents(value: Decimal) -> int:
    """Round a fractional cent amount half-up to a whole cent."""
    return int(Decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def percent_of(amount_cents: Decimal | int, bps: Decimal | int) -> int:
    """amount * bps / 10000, rounded half-up."""
    return round_cents(Decimal(amount_cents) * Decimal(bps) / BPS_DENOMINATOR)


def extract_inclusive_tax(gross_cents: int, bps: Decimal | int) -> int:
    """Tax already contained in a gross amount: gross - gross / (1 + rate)."""
    gross = Decimal(gross_cents)
    net = gross / (Decimal(1) + Decimal(bps) / BPS_DENOMINATOR)
    return round_cents(gross - net)
