from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import httpx

from crowdpulse.config import ProviderConfig
from crowdpulse.engine.capacity import resolve_capacity
from crowdpulse.models import Event, Forecast, RawReading

from .exceptions import (
    ProviderError,
    ProviderHTTPError,
    ProviderResponseError,
    ProviderTimeoutError,
)
from .models import (
    GateInfo,
    PredictionRequest,
    ProviderHealth,
    ProviderPrediction,
    map_event_type,
)

logger = logging.getLogger(__name__)


def _historical_count(gate_id: str, forecast: Forecast) -> int:
    """Latest forecast frame for the gate, falling back to the summary average."""
    gate = forecast.forecast.get(gate_id)
    if gate is not None and gate.time_frames:
        predicted = gate.time_frames[-1].get("predicted")
        try:
            if predicted:
                return int(round(float(predicted)))
        except (TypeError, ValueError):
            logger.warning(f"Ignoring non-numeric forecast value for gate {gate_id}: {predicted!r}")

    prediction = forecast.summary_prediction(gate_id)
    if prediction is not None and prediction.avg_prediction:
        return int(round(prediction.avg_prediction))

    return 0


class PredictionProviderClient:
    """Async client for the external crowd prediction model.

    Every request carries the configured timeout; a timeout is reported as
    ``ProviderTimeoutError``. Requests are not retried.
    """

    def __init__(
        self,
        config: ProviderConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config or ProviderConfig()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

        logger.info(
            f"Initialized PredictionProviderClient (endpoint={self.config.endpoint}, "
            f"timeout={self.config.timeout_seconds}s)"
        )

    async def __aenter__(self) -> PredictionProviderClient:
        limits = httpx.Limits(max_connections=self.config.max_connections)
        self._client = httpx.AsyncClient(
            timeout=self.config.timeout_seconds,
            limits=limits,
            transport=self._transport,
            headers={"Accept": "application/json"},
        )
        return self

    async def __aexit__(
        self,
        exc_type: type | None,
        exc_val: Exception | None,
        exc_tb: Any,
    ) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("Closed PredictionProviderClient")

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError(
                "PredictionProviderClient must be used as async context manager"
            )
        return self._client

    def build_request(self, event: Event) -> PredictionRequest:
        """Translate the event's forecast into the model's ``gates_info`` payload."""
        if event.forecast is None:
            raise ProviderError(f"Event {event.id} has no forecast to predict from")

        forecast = event.forecast
        event_type = map_event_type(event.event_type)
        gates_info = [
            GateInfo(
                gate_id=gate_id,
                zone=f"Gate {gate_id}",
                total_capacity=resolve_capacity(gate_id, forecast),
                event_type=event_type,
                historical_count=_historical_count(gate_id, forecast),
                image_path=self.config.default_image_url or None,
            )
            for gate_id in forecast.gate_ids
        ]
        return PredictionRequest(
            gates_info=gates_info,
            forecast_minutes=self.config.forecast_minutes,
        )

    async def _post(self, payload: dict[str, Any]) -> httpx.Response:
        try:
            response = await self.client.post(self.config.endpoint, json=payload)
        except httpx.TimeoutException as e:
            raise ProviderTimeoutError(
                f"Prediction request timed out after {self.config.timeout_seconds}s"
            ) from e
        except httpx.RequestError as e:
            raise ProviderError(f"Network error calling prediction model: {e}") from e

        if response.status_code >= 400:
            raise ProviderHTTPError(
                f"Prediction model returned HTTP {response.status_code}",
                status_code=response.status_code,
            )
        return response

    async def fetch(self, event: Event) -> list[RawReading]:
        """Request predictions for an event, in the order the provider returned them."""
        request = self.build_request(event)
        logger.info(
            f"Calling prediction model for event {event.id} "
            f"({len(request.gates_info)} gates)"
        )

        response = await self._post(request.model_dump(mode="json", exclude_none=True))

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderResponseError(
                "Prediction model returned invalid JSON",
                status_code=response.status_code,
            ) from e

        if not isinstance(data, dict):
            raise ProviderResponseError("Prediction response is not an object")
        entries = data.get("predictions") or []
        if not isinstance(entries, list):
            raise ProviderResponseError("Prediction response 'predictions' is not a list")

        readings: list[RawReading] = []
        for index, entry in enumerate(entries):
            if not isinstance(entry, dict):
                raise ProviderResponseError(f"Prediction entry {index} is not an object")
            try:
                readings.append(ProviderPrediction.from_api(entry).to_raw_reading())
            except (ValueError, TypeError, AttributeError) as e:
                raise ProviderResponseError(f"Malformed prediction entry {index}: {e}") from e

        logger.info(f"Prediction model returned {len(readings)} readings for event {event.id}")
        return readings

    async def health_check(self) -> ProviderHealth:
        """Probe ``<endpoint>/health``; never raises."""
        url = f"{self.config.endpoint.rstrip('/')}/health"
        checked_at = datetime.now(timezone.utc)
        try:
            response = await self.client.get(url, timeout=self.config.health_timeout_seconds)
        except httpx.HTTPError as e:
            logger.warning(f"Prediction model health check failed: {e}")
            return ProviderHealth(
                healthy=False,
                endpoint=self.config.endpoint,
                error=str(e) or e.__class__.__name__,
                checked_at=checked_at,
            )

        healthy = response.status_code < 400
        return ProviderHealth(
            healthy=healthy,
            endpoint=self.config.endpoint,
            status_code=response.status_code,
            error=None if healthy else f"HTTP {response.status_code}",
            checked_at=checked_at,
        )
