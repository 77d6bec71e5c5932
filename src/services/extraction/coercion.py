"""Best-effort numeric coercion for stream fields.

Upstream models occasionally emit junk in numeric slots ("n/a", "market
price", "85%"). Decoding must never abort the stream, so every numeric field
goes through these helpers: a leading numeric prefix is accepted, anything
else collapses to ``NUMERIC_DEFAULT``.
"""

from __future__ import annotations

import re


NUMERIC_DEFAULT = 0

_INT_PREFIX = re.compile(r"[+-]?\d+")
_FLOAT_PREFIX = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


def parse_int_or_default(raw: str | None, default: int = NUMERIC_DEFAULT) -> int:
    """Parse the leading integer of ``raw``; return ``default`` if there is none.

    >>> parse_int_or_default("85")
    85
    >>> parse_int_or_default(" 92% ")
    92
    >>> parse_int_or_default("high")
    0
    """
    if raw is None:
        return default
    match = _INT_PREFIX.match(raw.strip())
    if match is None:
        return default
    return int(match.group())


def parse_float_or_default(
    raw: str | None, default: float = NUMERIC_DEFAULT
) -> float:
    """Parse the leading decimal number of ``raw``; return ``default`` otherwise.

    >>> parse_float_or_default("24.5")
    24.5
    >>> parse_float_or_default("12.50 EUR")
    12.5
    >>> parse_float_or_default("notanumber")
    0
    """
    if raw is None:
        return default
    match = _FLOAT_PREFIX.match(raw.strip())
    if match is None:
        return default
    return float(match.group())


def clamp(value: int, lower: int = 0, upper: int = 100) -> int:
    return max(lower, min(upper, value))
