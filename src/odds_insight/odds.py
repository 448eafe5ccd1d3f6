"""Odds-format conversion and movement classification.

Everything here is pure: no I/O, no clock. Percentages are always computed on the
decimal equivalent of the raw odds, since American and fractional notations are not
linearly comparable.
"""
from __future__ import annotations

import math
from enum import Enum

from odds_insight.errors import OddsValidationError

OddsValue = float | int | str


class OddsFormat(str, Enum):
    DECIMAL = "decimal"
    AMERICAN = "american"
    FRACTIONAL = "fractional"


class MovementKind(str, Enum):
    INCREASE = "increase"
    DECREASE = "decrease"
    UNCHANGED = "unchanged"


class Magnitude(str, Enum):
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"
    EXTREME = "extreme"


DEFAULT_SIGNIFICANCE_PCT = 5.0


def parse_fractional(value: OddsValue) -> tuple[float, float]:
    """Split a ``"num/den"`` string into its numerator and denominator."""
    if not isinstance(value, str):
        raise OddsValidationError(f"fractional odds must be a 'num/den' string, got {value!r}")
    parts = value.strip().split("/")
    if len(parts) != 2:
        raise OddsValidationError(f"malformed fractional odds: {value!r}")
    try:
        num, den = float(parts[0]), float(parts[1])
    except ValueError as e:
        raise OddsValidationError(f"malformed fractional odds: {value!r}") from e
    if not (math.isfinite(num) and math.isfinite(den)) or num <= 0 or den <= 0:
        raise OddsValidationError(f"fractional odds must be positive: {value!r}")
    return num, den


def _as_number(value: OddsValue, fmt: OddsFormat) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise OddsValidationError(f"{fmt.value} odds must be numeric, got {value!r}")
    try:
        number = float(value)
    except ValueError as e:
        raise OddsValidationError(f"{fmt.value} odds must be numeric, got {value!r}") from e
    if not math.isfinite(number):
        raise OddsValidationError(f"{fmt.value} odds must be finite, got {value!r}")
    return number


def numeric_value(value: OddsValue, fmt: OddsFormat | str) -> float:
    """Raw odds as a plain number (the fraction's value for fractional odds)."""
    fmt = OddsFormat(fmt)
    if fmt is OddsFormat.FRACTIONAL:
        num, den = parse_fractional(value)
        return num / den
    number = _as_number(value, fmt)
    if fmt is OddsFormat.DECIMAL and number <= 0:
        raise OddsValidationError(f"decimal odds must be positive, got {value!r}")
    if fmt is OddsFormat.AMERICAN and number == 0:
        raise OddsValidationError("american odds cannot be zero")
    return number


def to_decimal(value: OddsValue, fmt: OddsFormat | str = OddsFormat.DECIMAL) -> float:
    fmt = OddsFormat(fmt)
    number = numeric_value(value, fmt)
    if fmt is OddsFormat.DECIMAL:
        return number
    if fmt is OddsFormat.AMERICAN:
        return number / 100 + 1 if number > 0 else 100 / abs(number) + 1
    return number + 1


def movement_percentage(previous_decimal: float, current_decimal: float) -> float:
    if previous_decimal == 0:
        return 0.0
    return (current_decimal - previous_decimal) / previous_decimal * 100


def classify(previous: OddsValue, current: OddsValue, fmt: OddsFormat | str) -> tuple[MovementKind, float]:
    """Classify a price change, returning its kind and signed percentage."""
    prev_dec = to_decimal(previous, fmt)
    cur_dec = to_decimal(current, fmt)
    if cur_dec > prev_dec:
        kind = MovementKind.INCREASE
    elif cur_dec < prev_dec:
        kind = MovementKind.DECREASE
    else:
        kind = MovementKind.UNCHANGED
    return kind, movement_percentage(prev_dec, cur_dec)


def is_significant(percentage: float, threshold_pct: float = DEFAULT_SIGNIFICANCE_PCT) -> bool:
    return abs(percentage) >= threshold_pct


def magnitude_of(percentage: float) -> Magnitude:
    pct = abs(percentage)
    if pct < 2:
        return Magnitude.SMALL
    if pct < 5:
        return Magnitude.MEDIUM
    if pct < 10:
        return Magnitude.LARGE
    return Magnitude.EXTREME
