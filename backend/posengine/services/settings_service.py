# Overview: Service-layer operations for settings; resolves shop configuration into typed values.

"""
Settings Service

Tax and loyalty configuration lives in a flat key/value table owned by the
settings CRUD layer. Calculations never read it ad hoc: `load_settings()`
reads every key once and returns an immutable `Settings` that is passed
down explicitly.

KEYS:
- tax_enabled: "true" / "false"
- tax_rate: percent, e.g. "14"
- tax_mode: "exclusive" (added on top) or "inclusive" (carved out)
- loyalty_enabled: "true" / "false"
- loyalty_earn_rate: points earned per currency unit, e.g. "1"
- loyalty_redeem_value: currency units granted per 100 points, e.g. "5"
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from flask import current_app

from ..extensions import db
from ..models import Setting


TAX_MODE_EXCLUSIVE = "exclusive"
TAX_MODE_INCLUSIVE = "inclusive"
TAX_MODES = (TAX_MODE_EXCLUSIVE, TAX_MODE_INCLUSIVE)

SETTING_KEYS = (
    "tax_enabled",
    "tax_rate",
    "tax_mode",
    "loyalty_enabled",
    "loyalty_earn_rate",
    "loyalty_redeem_value",
)


class SettingsError(ValueError):
    """Raised when a setting value cannot be stored."""


@dataclass(frozen=True)
class Settings:
    tax_enabled: bool = False
    # Fractional basis points are kept so rates like 7.375% stay exact
    tax_rate_bps: Decimal = Decimal("0")
    tax_mode: str = TAX_MODE_EXCLUSIVE
    loyalty_enabled: bool = False
    loyalty_earn_rate: Decimal = Decimal("1")
    loyalty_redeem_value_cents: Decimal = Decimal("500")


def get_setting(key: str) -> str | None:
    row = db.session.query(Setting).filter_by(key=key).first()
    return row.value if row else None


def set_setting(key: str, value: str | None, *, commit: bool = True) -> Setting:
    if key not in SETTING_KEYS:
        raise SettingsError(f"Unknown setting: {key}")
    if key == "tax_mode" and value not in TAX_MODES:
        raise SettingsError(f"tax_mode must be one of {', '.join(TAX_MODES)}")

    row = db.session.query(Setting).filter_by(key=key).first()
    if row is None:
        row = Setting(key=key, value=value)
        db.session.add(row)
    else:
        row.value = value

    if commit:
        db.session.commit()
    else:
        db.session.flush()
    return row


def _parse_bool(raw: str | None) -> bool:
    return raw is not None and raw.strip().lower() == "true"


def _parse_decimal(key: str, raw: str | None, default: Decimal) -> Decimal:
    if raw is None or not raw.strip():
        return default
    try:
        value = Decimal(raw.strip())
    except InvalidOperation:
        current_app.logger.warning("Ignoring malformed setting %s=%r", key, raw)
        return default
    if not value.is_finite():
        current_app.logger.warning("Ignoring non-finite setting %s=%r", key, raw)
        return default
    return value


def load_settings() -> Settings:
    """Read all tax/loyalty keys in one query and resolve defaults."""
    rows = db.session.query(Setting).filter(Setting.key.in_(SETTING_KEYS)).all()
    raw = {row.key: row.value for row in rows}
    defaults = Settings()

    tax_rate = _parse_decimal("tax_rate", raw.get("tax_rate"), Decimal("0"))
    redeem_value = _parse_decimal("loyalty_redeem_value", raw.get("loyalty_redeem_value"), Decimal("5"))
    earn_rate = _parse_decimal("loyalty_earn_rate", raw.get("loyalty_earn_rate"), defaults.loyalty_earn_rate)

    tax_mode = (raw.get("tax_mode") or TAX_MODE_EXCLUSIVE).strip().lower()
    if tax_mode not in TAX_MODES:
        current_app.logger.warning("Unknown tax_mode %r, using exclusive", tax_mode)
        tax_mode = TAX_MODE_EXCLUSIVE

    return Settings(
        tax_enabled=_parse_bool(raw.get("tax_enabled")),
        tax_rate_bps=tax_rate * 100,
        tax_mode=tax_mode,
        loyalty_enabled=_parse_bool(raw.get("loyalty_enabled")),
        loyalty_earn_rate=max(earn_rate, Decimal("0")),
        loyalty_redeem_value_cents=max(redeem_value * 100, Decimal("0")),
    )
