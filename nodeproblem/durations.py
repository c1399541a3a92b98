"""Parsing and formatting of duration strings such as ``"1m30s"`` or ``"250ms"``."""

from __future__ import annotations

import re
from datetime import timedelta

__all__ = ["parse_duration", "format_duration"]

_NANOS_PER_UNIT = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,
    "μs": 1_000,
    "ms": 1_000_000,
    "s": 1_000_000_000,
    "m": 60 * 1_000_000_000,
    "h": 3600 * 1_000_000_000,
}
_COMPONENT = re.compile(r"(\d*)(?:\.(\d*))?([^\d.]*)")
_MAX_NANOS = 2**63 - 1


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as ``"300ms"``, ``"-1.5h"`` or ``"2h45m"``.

    Raises ValueError for malformed input. Precision below a microsecond is
    truncated.
    """
    original = text
    sign = 1
    if text and text[0] in "+-":
        sign = -1 if text[0] == "-" else 1
        text = text[1:]
    if text == "0":
        return timedelta(0)
    if not text:
        raise ValueError(f'time: invalid duration "{original}"')

    total = 0
    pos = 0
    while pos < len(text):
        match = _COMPONENT.match(text, pos)
        whole, fraction, unit = match.group(1), match.group(2), match.group(3)
        if not whole and not fraction:
            raise ValueError(f'time: invalid duration "{original}"')
        if not unit:
            raise ValueError(f'time: missing unit in duration "{original}"')
        scale = _NANOS_PER_UNIT.get(unit)
        if scale is None:
            raise ValueError(f'time: unknown unit "{unit}" in duration "{original}"')
        value = int(whole or "0") * scale
        if fraction:
            value += int(fraction) * scale // 10 ** len(fraction)
        total += value
        if total > _MAX_NANOS:
            raise ValueError(f'time: invalid duration "{original}"')
        pos = match.end()

    return timedelta(microseconds=sign * (total // 1000))


def _with_fraction(value: int, unit: int) -> str:
    whole, remainder = divmod(value, unit)
    digits = len(str(unit)) - 1
    fraction = str(remainder).zfill(digits).rstrip("0")
    return f"{whole}.{fraction}" if fraction else str(whole)


def format_duration(value: timedelta) -> str:
    """Render a duration in the compact form used by the configuration files."""
    nanos = ((value.days * 86400 + value.seconds) * 1_000_000 + value.microseconds) * 1000
    if nanos == 0:
        return "0s"
    sign = "-" if nanos < 0 else ""
    nanos = abs(nanos)

    if nanos < 1_000_000_000:
        if nanos < 1_000:
            return f"{sign}{nanos}ns"
        if nanos < 1_000_000:
            return f"{sign}{_with_fraction(nanos, 1_000)}µs"
        return f"{sign}{_with_fraction(nanos, 1_000_000)}ms"

    seconds, fraction = divmod(nanos, 1_000_000_000)
    text = _with_fraction((seconds % 60) * 1_000_000_000 + fraction, 1_000_000_000) + "s"
    minutes = seconds // 60
    if minutes:
        text = f"{minutes % 60}m{text}"
        hours = minutes // 60
        if hours:
            text = f"{hours}h{text}"
    return sign + text