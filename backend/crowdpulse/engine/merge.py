"""Append-only merge of provider readings into an event's per-gate series.

``merge_series`` never mutates its inputs and never rewrites or removes a
recorded reading: every resolved provider reading becomes one new entry at
the end of its gate's timeframes. Deduplication is not part of the merge; it
is available as a separate policy (``drop_repeated_buckets``) applied to the
merge result.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Mapping

from crowdpulse.models import Forecast, GateSeries, RawReading, Reading, SeriesMap

from .capacity import resolve_capacity
from .gates import DEFAULT_ALIAS_RULES, AliasRules, GateMapping, build_gate_mapping

logger = logging.getLogger(__name__)

DEFAULT_SOURCE = "external-model"


def merge_series(
    existing: Mapping[str, GateSeries] | None,
    forecast: Forecast,
    raw_readings: Iterable[RawReading],
    tick_timestamp: datetime,
    *,
    rules: AliasRules = DEFAULT_ALIAS_RULES,
    mapping: GateMapping | None = None,
    source: str = DEFAULT_SOURCE,
) -> SeriesMap:
    """Return a new series with this tick's readings appended.

    Every forecast gate is present in the result; new gates start with the
    resolved capacity and no timeframes, known gates get their capacity
    refreshed. Gates that are no longer in the forecast are carried over
    unchanged. Readings for provider gates that do not resolve to a canonical
    gate are dropped.

    Raises:
        GateMappingError: the forecast's gate ids produce colliding aliases.
    """
    result: SeriesMap = {
        gate_id: series.model_copy(deep=True) for gate_id, series in (existing or {}).items()
    }

    for gate_id in forecast.gate_ids:
        capacity = resolve_capacity(gate_id, forecast)
        series = result.get(gate_id)
        if series is None:
            result[gate_id] = GateSeries(capacity=capacity)
        elif series.capacity != capacity:
            logger.info(f"Gate {gate_id} capacity updated: {series.capacity} -> {capacity}")
            series.capacity = capacity

    if mapping is None:
        mapping = build_gate_mapping(forecast.gate_ids, rules)

    appended = 0
    for raw in raw_readings:
        gate_id = mapping.resolve(raw.gate_id)
        if gate_id is None:
            logger.warning(f"Dropping reading for unmapped provider gate {raw.gate_id!r}")
            continue

        series = result.get(gate_id)
        if series is None:
            series = result[gate_id] = GateSeries(capacity=resolve_capacity(gate_id, forecast))

        series.timeframes.append(
            Reading(
                predicted_count=raw.predicted_count,
                actual_count=raw.actual_count,
                timestamp=tick_timestamp,
                source=source,
                risk_score=raw.risk_score,
                congestion_level=raw.congestion_level,
                confidence_score=raw.confidence_score,
                incidents=tuple(raw.incidents),
            )
        )
        appended += 1

    logger.debug(f"Merged {appended} readings across {len(result)} gates")
    return result


def _bucket(timestamp: datetime, bucket_seconds: int) -> int:
    return int(timestamp.timestamp()) // bucket_seconds


def drop_repeated_buckets(
    existing: Mapping[str, GateSeries] | None,
    merged: SeriesMap,
    tick_timestamp: datetime,
    bucket_seconds: int,
) -> SeriesMap:
    """Discard this tick's appends for gates already sampled in the tick's time bucket.

    ``existing`` is the series before the merge and ``merged`` the result of
    ``merge_series`` for the same tick. Gates keep at least their prior
    timeframes, so the result is still monotonic relative to ``existing``.
    """
    if bucket_seconds <= 0:
        raise ValueError("bucket_seconds must be positive")

    tick_bucket = _bucket(tick_timestamp, bucket_seconds)
    result: SeriesMap = dict(merged)

    for gate_id, before in (existing or {}).items():
        after = merged.get(gate_id)
        if after is None or not before.timeframes:
            continue
        kept = len(before.timeframes)
        if len(after.timeframes) == kept:
            continue
        if _bucket(before.timeframes[-1].timestamp, bucket_seconds) == tick_bucket:
            logger.debug(
                f"Gate {gate_id} already sampled in bucket {tick_bucket}, "
                f"dropping {len(after.timeframes) - kept} readings"
            )
            result[gate_id] = after.model_copy(update={"timeframes": after.timeframes[:kept]})

    return result
