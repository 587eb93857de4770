"""Domain models for tracked events, forecasts and per-gate prediction series.

Forecast and series payloads keep the camelCase keys of the stored JSON
documents (``timeFrames``, ``forecastPeriod``, ``avgPrediction``); every model
accepts either the alias or the Python field name.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def _as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to already be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Forecast snapshot (produced by the external forecasting process)
# ============================================================================


class ForecastGate(CamelModel):
    """Detailed per-gate forecast object."""

    capacity: int | None = None
    time_frames: list[dict[str, Any]] = Field(default_factory=list)


class SummaryPrediction(CamelModel):
    """Per-gate entry of the forecast summary list."""

    gate: str
    capacity: int | None = None
    avg_prediction: float | None = None
    peak_prediction: float | None = None

    @field_validator("gate", mode="before")
    @classmethod
    def stringify_gate(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) else v


class ForecastPeriod(CamelModel):
    start: datetime | str | None = None
    end: datetime | str | None = None


class ForecastSummary(CamelModel):
    gates: list[str] = Field(default_factory=list)
    predictions: list[SummaryPrediction] = Field(default_factory=list)
    forecast_period: ForecastPeriod | None = None

    @field_validator("gates", mode="before")
    @classmethod
    def stringify_gates(cls, v: Any) -> Any:
        if isinstance(v, list):
            return [str(g) for g in v]
        return v


class Forecast(CamelModel):
    """Read-mostly forecast snapshot for one event."""

    forecast: dict[str, ForecastGate] = Field(default_factory=dict)
    summary: ForecastSummary | None = None

    @field_validator("forecast", mode="before")
    @classmethod
    def stringify_gate_keys(cls, v: Any) -> Any:
        if isinstance(v, dict):
            return {str(k): gate for k, gate in v.items()}
        return v

    @property
    def gate_ids(self) -> list[str]:
        """Canonical gate ids, summary order first, detailed keys as fallback."""
        if self.summary and self.summary.gates:
            return list(self.summary.gates)
        return list(self.forecast.keys())

    def summary_prediction(self, gate_id: str) -> SummaryPrediction | None:
        if self.summary is None:
            return None
        for prediction in self.summary.predictions:
            if prediction.gate == gate_id:
                return prediction
        return None


# ============================================================================
# Prediction series (owned by the merge engine)
# ============================================================================


class Reading(CamelModel):
    """One externally-sourced sample. Immutable once constructed."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, frozen=True
    )

    predicted_count: int
    actual_count: int
    timestamp: datetime
    source: str
    risk_score: float | None = None
    congestion_level: str | None = None
    confidence_score: float | None = None
    incidents: tuple[Any, ...] = ()

    @field_validator("timestamp", mode="after")
    @classmethod
    def timestamp_utc(cls, v: datetime) -> datetime:
        return _as_utc(v)


class GateSeries(CamelModel):
    """Append-only prediction history for one (event, gate) pair."""

    capacity: int
    timeframes: list[Reading] = Field(default_factory=list, alias="timeFrames")


SeriesMap = dict[str, GateSeries]


class RawReading(BaseModel):
    """Provider reading keyed by the provider's own gate id."""

    gate_id: str
    predicted_count: int
    actual_count: int
    risk_score: float | None = None
    congestion_level: str | None = None
    confidence_score: float | None = None
    incidents: list[Any] = Field(default_factory=list)


# ============================================================================
# Event
# ============================================================================


class Event(BaseModel):
    """A tracked event with a fixed UTC time range."""

    id: str
    name: str = ""
    event_type: str = "OTHER"
    start_utc: datetime
    end_utc: datetime
    forecast: Forecast | None = None
    series: SeriesMap = Field(default_factory=dict)

    @field_validator("start_utc", "end_utc", mode="after")
    @classmethod
    def bounds_utc(cls, v: datetime) -> datetime:
        return _as_utc(v)

    @field_validator("id", mode="before")
    @classmethod
    def stringify_id(cls, v: Any) -> Any:
        return str(v) if isinstance(v, int) else v
