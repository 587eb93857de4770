#!/usr/bin/env python3
"""Tests for the append-only series merge and the bucket dedup policy."""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

from crowdpulse.engine import GateMappingError, drop_repeated_buckets, merge_series
from crowdpulse.models import Forecast, GateSeries, RawReading, Reading

from fakes import default_readings, make_forecast

UTC = timezone.utc
T1 = datetime(2025, 10, 9, 10, 0, 30, tzinfo=UTC)
T2 = datetime(2025, 10, 9, 10, 5, 0, tzinfo=UTC)


def _reading(timestamp: datetime, predicted: int = 10) -> Reading:
    return Reading(
        predicted_count=predicted,
        actual_count=predicted - 1,
        timestamp=timestamp,
        source="external-model",
    )


def test_first_tick_creates_every_forecast_gate() -> None:
    merged = merge_series({}, make_forecast(), default_readings(), T1)

    assert set(merged) == {"1", "A"}
    assert merged["1"].capacity == 500
    assert merged["A"].capacity == 200

    reading = merged["1"].timeframes[0]
    assert reading.predicted_count == 150
    assert reading.actual_count == 120
    assert reading.timestamp == T1
    assert reading.source == "external-model"
    assert merged["A"].timeframes[0].predicted_count == 60


def test_readings_for_unknown_gates_are_dropped() -> None:
    readings = default_readings() + [
        RawReading(gate_id="gate_99", predicted_count=1, actual_count=1)
    ]
    merged = merge_series({}, make_forecast(), readings, T1)

    total = sum(len(series.timeframes) for series in merged.values())
    assert total == 2


def test_merge_is_monotonic_and_does_not_mutate_inputs() -> None:
    old = _reading(T1 - timedelta(minutes=5))
    existing = {"1": GateSeries(capacity=400, timeframes=[old])}

    merged = merge_series(existing, make_forecast(), default_readings(), T1)

    assert len(existing["1"].timeframes) == 1
    assert existing["1"].capacity == 400
    assert merged["1"].timeframes[0] == old
    assert merged["1"].timeframes[1].timestamp == T1
    assert merged["1"].capacity == 500


def test_zero_readings_keep_history_and_ensure_gates() -> None:
    existing = {"1": GateSeries(capacity=500, timeframes=[_reading(T1)])}
    merged = merge_series(existing, make_forecast(), [], T2)

    assert len(merged["1"].timeframes) == 1
    assert merged["A"].timeframes == []


def test_gates_no_longer_in_forecast_are_kept() -> None:
    existing = {"Z": GateSeries(capacity=80, timeframes=[_reading(T1)])}
    merged = merge_series(existing, make_forecast(), default_readings(), T2)

    assert merged["Z"].timeframes == existing["Z"].timeframes


def test_successive_ticks_append_in_order() -> None:
    forecast = make_forecast()
    first = merge_series({}, forecast, default_readings(), T1)
    second = merge_series(first, forecast, default_readings(), T2)

    timestamps = [r.timestamp for r in second["1"].timeframes]
    assert timestamps == [T1, T2]
    assert len(first["1"].timeframes) == 1


def test_explicit_source_tag() -> None:
    merged = merge_series({}, make_forecast(), default_readings(), T1, source="model-v2")
    assert merged["1"].timeframes[0].source == "model-v2"


def test_colliding_forecast_gates_raise() -> None:
    forecast = Forecast.model_validate({"summary": {"gates": ["3", "A"]}})
    with pytest.raises(GateMappingError):
        merge_series({}, forecast, default_readings(), T1)


def test_repeated_bucket_drops_new_reading() -> None:
    forecast = make_forecast()
    existing = merge_series({}, forecast, default_readings(), T1)
    same_bucket = T1 + timedelta(minutes=2)

    merged = merge_series(existing, forecast, default_readings(), same_bucket)
    deduped = drop_repeated_buckets(existing, merged, same_bucket, 300)

    assert len(deduped["1"].timeframes) == 1
    assert len(merged["1"].timeframes) == 2


def test_next_bucket_keeps_new_reading() -> None:
    forecast = make_forecast()
    existing = merge_series({}, forecast, default_readings(), T1)

    merged = merge_series(existing, forecast, default_readings(), T2)
    deduped = drop_repeated_buckets(existing, merged, T2, 300)

    assert len(deduped["1"].timeframes) == 2


def test_first_reading_is_never_deduplicated() -> None:
    merged = merge_series({}, make_forecast(), default_readings(), T1)
    deduped = drop_repeated_buckets({}, merged, T1, 300)
    assert len(deduped["1"].timeframes) == 1


def test_dedup_requires_positive_bucket() -> None:
    with pytest.raises(ValueError):
        drop_repeated_buckets({}, {}, T1, 0)
