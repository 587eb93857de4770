"""Per-event prediction pipeline: resolve gates -> fetch -> merge -> persist."""

import logging
import time
from datetime import datetime
from typing import Literal, Protocol

from pydantic import BaseModel

from crowdpulse.engine import (
    DEFAULT_ALIAS_RULES,
    DEFAULT_SOURCE,
    AliasRules,
    GateMappingError,
    build_gate_mapping,
    drop_repeated_buckets,
    merge_series,
)
from crowdpulse.models import Event, RawReading, SeriesMap
from crowdpulse.services.provider import ProviderError
from crowdpulse.storage import EventRepository, RepositoryError

logger = logging.getLogger("crowdpulse.pipeline")

FailureKind = Literal["forecast", "mapping", "provider", "persistence", "unexpected"]


class PredictionProvider(Protocol):
    async def fetch(self, event: Event) -> list[RawReading]: ...


class PipelineOutcome(BaseModel):
    """Result of one event's pipeline within a tick."""

    event_id: str
    success: bool
    readings_received: int = 0
    readings_appended: int = 0
    gates: int = 0
    failure: FailureKind | None = None
    error: str | None = None
    duration_seconds: float = 0.0


def _appended(before: SeriesMap, after: SeriesMap) -> int:
    total = 0
    for gate_id, series in after.items():
        previous = before.get(gate_id)
        total += len(series.timeframes) - (len(previous.timeframes) if previous else 0)
    return total


async def run_event_pipeline(
    event: Event,
    *,
    provider: PredictionProvider,
    repository: EventRepository,
    tick_time: datetime,
    rules: AliasRules = DEFAULT_ALIAS_RULES,
    source: str = DEFAULT_SOURCE,
    dedup_bucket_seconds: int | None = None,
) -> PipelineOutcome:
    """Run one event's pipeline. Never raises; failures come back as an outcome."""
    started = time.monotonic()

    def failed(kind: FailureKind, error: Exception | str, received: int = 0) -> PipelineOutcome:
        return PipelineOutcome(
            event_id=event.id,
            success=False,
            readings_received=received,
            failure=kind,
            error=str(error),
            duration_seconds=time.monotonic() - started,
        )

    logger.info(f"Updating prediction for event {event.id}")

    forecast = event.forecast
    if forecast is None:
        logger.error(f"Event {event.id} has no forecast, skipping prediction update")
        return failed("forecast", "event has no forecast")

    # Step 1: Gate identity
    try:
        mapping = build_gate_mapping(forecast.gate_ids, rules)
    except GateMappingError as e:
        logger.error(f"Inconsistent gate ids in forecast for event {event.id}: {e}")
        return failed("mapping", e)

    # Step 2: Provider
    try:
        raw_readings = await provider.fetch(event)
    except ProviderError as e:
        logger.error(f"Prediction failed for event {event.id}: {e}")
        return failed("provider", e)
    except Exception as e:
        logger.error(f"Unexpected provider error for event {event.id}: {e}", exc_info=True)
        return failed("unexpected", e)

    # Step 3: Merge
    try:
        merged = merge_series(
            event.series,
            forecast,
            raw_readings,
            tick_time,
            rules=rules,
            mapping=mapping,
            source=source,
        )
        if dedup_bucket_seconds:
            merged = drop_repeated_buckets(event.series, merged, tick_time, dedup_bucket_seconds)
    except Exception as e:
        logger.error(f"Merge failed for event {event.id}: {e}", exc_info=True)
        return failed("unexpected", e, len(raw_readings))

    # Step 4: Persist (the merge result is discarded if this fails)
    try:
        await repository.persist(event.id, merged)
    except RepositoryError as e:
        logger.error(f"Failed to persist series for event {event.id}: {e}")
        return failed("persistence", e, len(raw_readings))
    except Exception as e:
        logger.error(f"Unexpected persistence error for event {event.id}: {e}", exc_info=True)
        return failed("unexpected", e, len(raw_readings))

    outcome = PipelineOutcome(
        event_id=event.id,
        success=True,
        readings_received=len(raw_readings),
        readings_appended=_appended(event.series, merged),
        gates=len(merged),
        duration_seconds=time.monotonic() - started,
    )
    logger.info(
        f"Successfully updated prediction for event {event.id}: "
        f"received={outcome.readings_received} appended={outcome.readings_appended}"
    )
    return outcome
