from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from crowdpulse.models import RawReading

EVENT_TYPE_MAPPING = {
    "CONCERT": "concert",
    "CONFERENCE": "conference",
    "SPORTS": "sports",
    "FESTIVAL": "festival",
}
DEFAULT_EVENT_TYPE = "concert"


def map_event_type(event_type: str | None) -> str:
    return EVENT_TYPE_MAPPING.get((event_type or "").upper(), DEFAULT_EVENT_TYPE)


def _count(value: Any) -> int:
    """People counts may come back as floats; missing counts are zero."""
    if value is None or value == "":
        return 0
    return int(round(float(value)))


class GateInfo(BaseModel):
    """One ``gates_info`` entry of a prediction request."""

    gate_id: str
    zone: str
    total_capacity: int
    event_type: str
    historical_count: int = 0
    image_path: str | None = None


class PredictionRequest(BaseModel):
    gates_info: list[GateInfo]
    forecast_minutes: int = 5


class ProviderPrediction(BaseModel):
    """One entry of the provider's ``predictions`` list."""

    gate_id: str
    current_people_count: int = 0
    predicted_people_count: int = 0
    predicted_congestion_level: str | None = None
    risk_score: float | None = None
    confidence_score: float | None = None
    incidents: list[Any] = Field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> ProviderPrediction:
        gate_id = data.get("gate_id", data.get("gate"))
        if gate_id is None or gate_id == "":
            raise ValueError("prediction entry has no gate id")
        ahead = data.get("forecast_next_5_min") or {}
        return cls(
            gate_id=str(gate_id),
            current_people_count=_count(data.get("current_people_count")),
            predicted_people_count=_count(ahead.get("predicted_people_count")),
            predicted_congestion_level=ahead.get("predicted_congestion_level"),
            risk_score=ahead.get("risk_score", data.get("risk_score")),
            confidence_score=data.get("confidence_score"),
            incidents=data.get("incidents") or [],
        )

    def to_raw_reading(self) -> RawReading:
        return RawReading(
            gate_id=self.gate_id,
            predicted_count=self.predicted_people_count,
            actual_count=self.current_people_count,
            risk_score=self.risk_score,
            congestion_level=self.predicted_congestion_level,
            confidence_score=self.confidence_score,
            incidents=list(self.incidents),
        )


class ProviderHealth(BaseModel):
    healthy: bool
    endpoint: str
    status_code: int | None = None
    error: str | None = None
    checked_at: datetime
