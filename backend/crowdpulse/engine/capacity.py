from __future__ import annotations

from crowdpulse.models import Forecast

DEFAULT_CAPACITY = 100


def resolve_capacity(gate_id: str, forecast: Forecast, default: int = DEFAULT_CAPACITY) -> int:
    """Authoritative capacity for a gate: summary list, then detailed gate object, then default.

    Missing or non-positive capacities do not count as a match.
    """
    prediction = forecast.summary_prediction(gate_id)
    if prediction is not None and (prediction.capacity or 0) > 0:
        return prediction.capacity

    gate = forecast.forecast.get(gate_id)
    if gate is not None and (gate.capacity or 0) > 0:
        return gate.capacity

    return default
