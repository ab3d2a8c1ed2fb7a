from __future__ import annotations

from datetime import UTC, date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from msp.domain.dates import as_utc, to_iso_strings
from msp.domain.money import format_minor_units, to_major_units, to_minor_units


def test_display_amounts_convert_to_minor_units() -> None:
    assert to_minor_units("12.50") == 1250
    assert to_minor_units(Decimal("0.99")) == 99
    assert to_minor_units(3) == 300
    assert to_minor_units("0.005") == 1
    assert to_minor_units("-4.20") == -420


def test_invalid_display_amounts_are_rejected() -> None:
    with pytest.raises(ValueError):
        to_minor_units("twelve")
    with pytest.raises(ValueError):
        to_minor_units("NaN")


def test_minor_units_format_for_display() -> None:
    assert format_minor_units(1250) == "12.50"
    assert format_minor_units(5) == "0.05"
    assert format_minor_units(-5) == "-0.05"
    assert to_major_units(100000) == Decimal("1000.00")


def test_iso_strings_walk_nested_values() -> None:
    naive = datetime(2026, 3, 1, 9, 30)
    shifted = datetime(2026, 3, 1, 11, 30, tzinfo=timezone(timedelta(hours=2)))
    converted = to_iso_strings(
        {
            "created_at": naive,
            "purchase_date": date(2025, 12, 24),
            "items": [shifted, "untouched", 3],
        }
    )
    assert converted == {
        "created_at": "2026-03-01T09:30:00+00:00",
        "purchase_date": "2025-12-24",
        "items": ["2026-03-01T09:30:00+00:00", "untouched", 3],
    }
    assert as_utc(naive).tzinfo is UTC
