"""Parsing of duration strings such as ``"5m"``, ``"30s"`` or ``"2m30s"``."""

from __future__ import annotations

import re
from datetime import timedelta
from fractions import Fraction

__all__ = ["parse_duration"]

_NANOSECONDS_PER_UNIT = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,
    "μs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}

_MAX_NANOSECONDS = (1 << 63) - 1

_COMPONENT = re.compile(r"(\d*)(?:\.(\d*))?([^\d.]*)")


def parse_duration(text: str) -> timedelta:
    """Parse a signed sequence of decimal numbers with units into a timedelta.

    Valid units are ``ns``, ``us`` (or ``µs``), ``ms``, ``s``, ``m`` and ``h``.
    A bare ``"0"`` is accepted without a unit. The result has microsecond
    resolution. Raises ValueError for malformed input.
    """
    rest = text
    negative = False
    if rest[:1] in ("-", "+"):
        negative = rest[0] == "-"
        rest = rest[1:]
    if rest == "0":
        return timedelta(0)
    if not rest:
        raise ValueError(f"invalid duration {text!r}")

    total_ns = 0
    position = 0
    while position < len(rest):
        match = _COMPONENT.match(rest, position)
        whole, fraction, unit = match.groups()
        if not whole and not fraction:
            raise ValueError(f"invalid duration {text!r}")
        if not unit:
            raise ValueError(f"missing unit in duration {text!r}")
        if unit not in _NANOSECONDS_PER_UNIT:
            raise ValueError(f"unknown unit {unit!r} in duration {text!r}")
        scale = _NANOSECONDS_PER_UNIT[unit]
        total_ns += int(whole or "0") * scale
        if fraction:
            total_ns += int(Fraction(int(fraction), 10 ** len(fraction)) * scale)
        if total_ns > _MAX_NANOSECONDS:
            raise ValueError(f"invalid duration {text!r}")
        position = match.end()

    if negative:
        total_ns = -total_ns
    return timedelta(microseconds=total_ns / 1000)