from datetime import datetime, timedelta, timezone

import pytest

from posengine.time_utils import (
    WINDOW_EXPIRED,
    WINDOW_NOT_STARTED,
    parse_iso_datetime,
    to_naive_utc,
    to_utc_z,
    window_status,
)


NOW = datetime(2026, 10, 19, 12, 0, 0)


def test_aware_values_converted_to_naive_utc():
    aware = datetime(2026, 10, 19, 14, 0, tzinfo=timezone(timedelta(hours=2)))
    assert to_naive_utc(aware) == NOW
    assert to_naive_utc(NOW) is NOW
    assert to_naive_utc(None) is None


@pytest.mark.parametrize("starts_at,expires_at,expected", [
    (None, None, None),
    (NOW + timedelta(seconds=1), None, WINDOW_NOT_STARTED),
    (None, NOW - timedelta(seconds=1), WINDOW_EXPIRED),
    (NOW, NOW, None),
    (datetime(2026, 10, 19, 13, 0, tzinfo=timezone(timedelta(hours=2))), None, None),
])
def test_window_status(starts_at, expires_at, expected):
    assert window_status(NOW, starts_at, expires_at) == expected


def test_parse_iso_datetime():
    assert parse_iso_datetime("2026-10-19T12:00:00Z") == NOW
    assert parse_iso_datetime("2026-10-19T14:00:00+02:00") == NOW
    assert parse_iso_datetime("2026-10-19") == datetime(2026, 10, 19)
    assert parse_iso_datetime("  ") is None
    with pytest.raises(ValueError):
        parse_iso_datetime("yesterday")


def test_to_utc_z():
    assert to_utc_z(NOW.replace(microsecond=123)) == "2026-10-19T12:00:00Z"
    assert to_utc_z(None) is None
