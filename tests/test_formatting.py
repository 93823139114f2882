# SPDX-FileCopyrightText: 2025 Blackcat Informatics® Inc.
# SPDX-License-Identifier: MIT

import pytest

from pgstats.formatting import OVERFLOW, Mode, Unit, format_value, half_rounded, magnitude, mode_for, scale


def test_zero_uses_base_unit():
    assert format_value(0, 6, Mode.MAGNITUDE, Unit.BYTES) == "   0 b"
    assert format_value(0, 3, Mode.MAGNITUDE, Unit.COUNT) == " 0 "


def test_byte_ladder_first_step_at_ten_times_base():
    assert scale(10 * 1024 - 1) == (10239, "b")
    assert scale(10 * 1024) == (10, "kB")
    assert scale(10 * 1024 * 1024) == (10, "MB")


def test_count_ladder_uses_thousands():
    assert magnitude(9999, Unit.COUNT) == "9999 "
    assert magnitude(10000, Unit.COUNT) == "10k"
    assert magnitude(25_000_000, Unit.COUNT) == "25M"


def test_negative_values_keep_sign():
    assert magnitude(-20480, Unit.BYTES) == "-20 kB"


@pytest.mark.parametrize("value,expected", [(0, 0), (1, 1), (2, 1), (3, 2), (-3, -2)])
def test_half_rounded(value, expected):
    assert half_rounded(value) == expected


def test_raw_is_right_aligned():
    assert format_value(42, 6) == "    42"


def test_overflow_replaces_wide_values():
    text = format_value(123456789, 5)
    assert text == OVERFLOW.rjust(5)
    assert len(text) == 5


def test_duration_has_two_decimals():
    assert format_value(1.5, 6, Mode.DURATION, Unit.DURATION) == "  1.50"
    assert format_value(0, 6, Mode.DURATION, Unit.DURATION) == "  0.00"


def test_mode_for():
    assert mode_for(Unit.DURATION, False) is Mode.DURATION
    assert mode_for(Unit.DURATION, True) is Mode.DURATION
    assert mode_for(Unit.BYTES, True) is Mode.MAGNITUDE
    assert mode_for(Unit.COUNT, False) is Mode.RAW
