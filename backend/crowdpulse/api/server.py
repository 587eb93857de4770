"""FastAPI operational server for the CrowdPulse prediction scheduler."""

import logging
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import timedelta
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from crowdpulse import __version__
from crowdpulse.config import Settings
from crowdpulse.engine import AliasRules, is_active, utc_now
from crowdpulse.pipeline import PredictionProvider
from crowdpulse.scheduler import PredictionScheduler, SchedulerConfigError
from crowdpulse.services.provider import PredictionProviderClient
from crowdpulse.storage import FileEventRepository, RepositoryError, dump_series

logger = logging.getLogger(__name__)


def create_app(
    settings: Settings,
    provider: PredictionProvider | None = None,
) -> FastAPI:
    """Build the API; the scheduler is created and started in the app lifespan."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        async with AsyncExitStack() as stack:
            active_provider = provider
            if active_provider is None:
                active_provider = await stack.enter_async_context(
                    PredictionProviderClient(settings.provider)
                )

            repository = FileEventRepository(
                settings.data_dir, default_timezone=settings.scheduler.tzinfo
            )
            scheduler = PredictionScheduler(
                settings.scheduler,
                active_provider,
                repository,
                alias_rules=AliasRules.from_config(settings.gates),
                source=settings.provider.source_tag,
            )
            app.state.settings = settings
            app.state.provider = active_provider
            app.state.repository = repository
            app.state.scheduler = scheduler

            scheduler.start()
            try:
                yield
            finally:
                scheduler.stop()

    app = FastAPI(title="CrowdPulse Scheduler API", version=__version__, lifespan=lifespan)

    def _scheduler(request: Request) -> PredictionScheduler:
        return request.app.state.scheduler

    @app.get("/api/scheduler/status")
    async def scheduler_status(request: Request):
        """Return enabled/running flags, cadence, timezone and the last tick."""
        return _scheduler(request).status().model_dump(mode="json")

    @app.post("/api/scheduler/trigger")
    async def trigger_tick(request: Request):
        """Run one prediction update now."""
        result = await _scheduler(request).trigger_now()
        return result.model_dump(mode="json")

    @app.post("/api/scheduler/start")
    async def start_scheduler(request: Request):
        scheduler = _scheduler(request)
        started = scheduler.start()
        return {"changed": started, "status": scheduler.status().model_dump(mode="json")}

    @app.post("/api/scheduler/stop")
    async def stop_scheduler(request: Request):
        scheduler = _scheduler(request)
        stopped = scheduler.stop()
        return {"changed": stopped, "status": scheduler.status().model_dump(mode="json")}

    @app.post("/api/scheduler/restart")
    async def restart_scheduler(request: Request):
        """Re-read scheduler configuration (.env + config.yaml) and restart."""
        scheduler = _scheduler(request)
        try:
            fresh = Settings(data_dir=request.app.state.settings.data_dir)
            fresh.load_yaml_config()
            started = scheduler.restart(fresh.scheduler)
        except (ValidationError, SchedulerConfigError) as e:
            raise HTTPException(status_code=400, detail=f"Invalid scheduler configuration: {e}")
        return {"changed": started, "status": scheduler.status().model_dump(mode="json")}

    @app.get("/api/events")
    async def list_events(request: Request):
        """List tracked events with their window state and series sizes."""
        scheduler = _scheduler(request)
        lead_time = timedelta(minutes=scheduler.config.lead_time_minutes)
        now = utc_now()
        results: list[dict[str, Any]] = []
        for event in await request.app.state.repository.list_events():
            results.append({
                "id": event.id,
                "name": event.name,
                "start_utc": event.start_utc.isoformat(),
                "end_utc": event.end_utc.isoformat(),
                "has_forecast": event.forecast is not None,
                "active": is_active(now, event.start_utc, event.end_utc, lead_time),
                "gates": len(event.series),
                "readings": sum(len(s.timeframes) for s in event.series.values()),
            })
        return results

    @app.get("/api/events/{event_id}/series")
    async def get_event_series(event_id: str, request: Request):
        try:
            event = await request.app.state.repository.get_event(event_id)
        except RepositoryError as e:
            raise HTTPException(status_code=500, detail=str(e))
        except ValueError:
            event = None
        if event is None:
            raise HTTPException(status_code=404, detail=f"Event {event_id} not found")
        return {"event_id": event.id, "series": dump_series(event.series)}

    @app.get("/api/provider/health")
    async def provider_health(request: Request):
        provider = request.app.state.provider
        if not hasattr(provider, "health_check"):
            raise HTTPException(status_code=501, detail="Provider does not support health checks")
        health = await provider.health_check()
        return JSONResponse(
            status_code=200 if health.healthy else 503,
            content=health.model_dump(mode="json"),
        )

    return app
