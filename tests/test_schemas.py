from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from odds_insight.errors import PartialBatchError
from odds_insight.odds import Magnitude, MovementKind, OddsFormat
from odds_insight.schemas import IngestionResult, MovementRecord, OddsUpdate, Wager

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _record(**kw):
    base = dict(event_id="ev1", market_id="m1", selection_id="s1", observed_at=T0, source="test")
    base.update(kw)
    return MovementRecord(**base)


def test_movement_record_derives_kind_and_percentage():
    rec = _record(previous_value=2.0, current_value=2.5, movement_kind="decrease", movement_percentage=99.0)
    assert rec.movement_kind is MovementKind.INCREASE
    assert rec.movement_percentage == pytest.approx(25.0)
    assert rec.magnitude() is Magnitude.EXTREME
    assert rec.is_significant()


def test_movement_record_is_immutable():
    rec = _record(previous_value=2.0, current_value=2.1)
    with pytest.raises(ValidationError):
        rec.current_value = 3.0


def test_movement_record_rejects_non_positive_odds():
    with pytest.raises(ValidationError):
        _record(previous_value=0, current_value=2.0)
    with pytest.raises(ValueError):
        _record(previous_value=2.0, current_value=-1.0)


def test_fractional_record_keeps_raw_strings():
    rec = _record(odds_format=OddsFormat.FRACTIONAL, previous_value="2/1", current_value="5/2")
    assert rec.current_value == "5/2"
    assert rec.previous_decimal == pytest.approx(3.0)
    assert rec.current_decimal == pytest.approx(3.5)
    assert rec.movement_percentage == pytest.approx(50 / 3)


def test_naive_timestamps_are_treated_as_utc():
    upd = OddsUpdate(event_id="e", market_id="m", selection_id="s", value=2.0, observed_at=datetime(2026, 3, 1, 12))
    assert upd.observed_at == T0


def test_update_validates_odds_for_its_format():
    with pytest.raises(ValidationError):
        OddsUpdate(event_id="e", market_id="m", selection_id="s", value="7-2", odds_format="fractional")
    upd = OddsUpdate(event_id="e", market_id="m", selection_id="s", value=-110, odds_format="american")
    assert upd.value == -110.0


def test_wager_accepted_decimal():
    w = Wager(
        bet_id="b1",
        customer_id="c1",
        event_id="e",
        market_id="m",
        selection_id="s",
        amount=50,
        accepted_odds=150,
        odds_format="american",
        placed_at=T0,
    )
    assert w.accepted_decimal == pytest.approx(2.5)
    with pytest.raises(ValidationError):
        Wager(**{**w.model_dump(), "amount": 0})


def test_raise_for_errors():
    ok = IngestionResult(success=True, movements_created=2, processing_time_ms=1.0, source_id="s")
    assert ok.raise_for_errors() is ok

    bad = IngestionResult(success=False, movements_created=1, errors=["boom"], processing_time_ms=1.0, source_id="s")
    with pytest.raises(PartialBatchError) as exc:
        bad.raise_for_errors()
    assert exc.value.result is bad
    assert exc.value.code == "PARTIAL_BATCH"
