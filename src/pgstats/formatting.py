# SPDX-FileCopyrightText: 2025 Blackcat Informatics® Inc.
# SPDX-License-Identifier: MIT

"""Fixed-width rendering of counter deltas.

Three modes are supported:

* ``Mode.RAW`` prints the integer unchanged.
* ``Mode.MAGNITUDE`` scales the value into a short unit-suffixed string.
  Bytes follow the ``pg_size_pretty`` ladder (b, kB, MB, GB, TB, PB) and
  counts use the same scheme with a factor of 1000.
* ``Mode.DURATION`` prints a number of seconds as ``seconds.centiseconds``.

A rendered value wider than its column is replaced by ``OVERFLOW`` instead
of being truncated.
"""

from __future__ import annotations

import enum
from typing import Tuple, Union

OVERFLOW = "!OF!"

Number = Union[int, float]


class Mode(enum.Enum):
    RAW = "raw"
    MAGNITUDE = "magnitude"
    DURATION = "duration"


class Unit(enum.Enum):
    COUNT = "count"
    BYTES = "bytes"
    DURATION = "duration"


# (base, units, separator between the number and its unit)
LADDERS: dict = {
    Unit.BYTES: (1024, ["b", "kB", "MB", "GB", "TB", "PB"], " "),
    Unit.COUNT: (1000, [" ", "k", "M", "G", "T", "P"], ""),
}


def half_rounded(value: int) -> int:
    """Divide by two, rounding half away from zero."""
    if value < 0:
        return -((-value + 1) // 2)
    return (value + 1) // 2


def scale(value: int, unit: Unit = Unit.BYTES) -> Tuple[int, str]:
    """Return ``(number, unit_suffix)`` for a non-negative value.

    The first step is taken once the value reaches ten times the base. From
    then on one extra bit of precision is carried so that the final digit
    can be half-rounded, and each later step happens at twenty times the
    base minus one.
    """
    base, units, _ = LADDERS[unit]
    limit = 10 * base
    limit2 = limit * 2 - 1

    if abs(value) < limit:
        return value, units[0]

    # keep one extra bit for rounding
    size = value // (base // 2)
    for suffix in units[1:-1]:
        if abs(size) < limit2:
            return half_rounded(size), suffix
        size //= base
    return half_rounded(size), units[-1]


def magnitude(value: int, unit: Unit = Unit.BYTES) -> str:
    """Human readable rendering, sign kept in front of the absolute value."""
    _, _, separator = LADDERS[unit]
    number, suffix = scale(abs(int(value)), unit)
    text = f"{number}{separator}{suffix}"
    if value < 0:
        text = "-" + text
    return text


def duration(seconds: float) -> str:
    return f"{seconds:.2f}"


def fit(text: str, width: int) -> str:
    if len(text) > width:
        return OVERFLOW.rjust(width)
    return text.rjust(width)


def format_value(value: Number, width: int, mode: Mode = Mode.RAW, unit: Unit = Unit.COUNT) -> str:
    """Render ``value`` right-aligned in ``width`` characters."""
    if mode is Mode.DURATION:
        text = duration(float(value))
    elif mode is Mode.MAGNITUDE:
        text = magnitude(int(value), Unit.BYTES if unit is Unit.BYTES else Unit.COUNT)
    else:
        text = str(int(value))
    return fit(text, width)


def mode_for(unit: Unit, human_readable: bool) -> Mode:
    if unit is Unit.DURATION:
        return Mode.DURATION
    if human_readable:
        return Mode.MAGNITUDE
    return Mode.RAW
