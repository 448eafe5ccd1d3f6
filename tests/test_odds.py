import pytest

from odds_insight.errors import OddsValidationError
from odds_insight.odds import (
    Magnitude,
    MovementKind,
    OddsFormat,
    classify,
    is_significant,
    magnitude_of,
    numeric_value,
    to_decimal,
)


@pytest.mark.parametrize("d1,d2", [(2.0, 2.3), (1.5, 1.45), (3.25, 7.0), (1.01, 101.0)])
def test_decimal_percentage_matches_formula_exactly(d1, d2):
    kind, pct = classify(d1, d2, OddsFormat.DECIMAL)
    assert pct == (d2 - d1) / d1 * 100
    assert kind is (MovementKind.INCREASE if d2 > d1 else MovementKind.DECREASE)


def test_american_conversion_positive_and_negative():
    assert to_decimal(150, OddsFormat.AMERICAN) == pytest.approx(2.5)
    assert to_decimal(-150, OddsFormat.AMERICAN) == pytest.approx(1.667, abs=1e-3)
    assert to_decimal(100, "american") == pytest.approx(2.0)
    assert to_decimal(-100, "american") == pytest.approx(2.0)


def test_american_movement_uses_decimal_basis():
    kind, pct = classify(-150, 150, OddsFormat.AMERICAN)
    assert kind is MovementKind.INCREASE
    assert pct == pytest.approx((2.5 - 5 / 3) / (5 / 3) * 100)


def test_fractional_conversion():
    assert to_decimal("5/2", OddsFormat.FRACTIONAL) == pytest.approx(3.5)
    assert to_decimal(" 1/4 ", "fractional") == pytest.approx(1.25)
    assert numeric_value("5/2", "fractional") == pytest.approx(2.5)


@pytest.mark.parametrize("bad", ["5-2", "5/2/1", "a/b", "5/0", "0/1", "-1/2", "", 2.5])
def test_malformed_fractional_rejected(bad):
    with pytest.raises(OddsValidationError):
        to_decimal(bad, OddsFormat.FRACTIONAL)


@pytest.mark.parametrize("fmt,value", [("decimal", 0), ("decimal", -1.5), ("american", 0), ("decimal", "abc"), ("decimal", float("nan"))])
def test_non_positive_or_non_numeric_rejected(fmt, value):
    with pytest.raises(OddsValidationError):
        classify(2.0 if fmt == "decimal" else 150, value, fmt)


def test_unchanged_classification():
    kind, pct = classify(2.0, 2.0, OddsFormat.DECIMAL)
    assert kind is MovementKind.UNCHANGED
    assert pct == 0.0


@pytest.mark.parametrize(
    "pct,expected",
    [
        (0.0, Magnitude.SMALL),
        (1.99, Magnitude.SMALL),
        (2.0, Magnitude.MEDIUM),
        (-4.99, Magnitude.MEDIUM),
        (5.0, Magnitude.LARGE),
        (9.99, Magnitude.LARGE),
        (10.0, Magnitude.EXTREME),
        (-37.5, Magnitude.EXTREME),
    ],
)
def test_magnitude_buckets(pct, expected):
    assert magnitude_of(pct) is expected


def test_significance_threshold():
    assert is_significant(5.0)
    assert is_significant(-5.0)
    assert not is_significant(4.999)
    assert is_significant(2.5, threshold_pct=2.0)
