#!/usr/bin/env python3
"""Tests for the operational HTTP API."""

import asyncio
import sys
from datetime import timedelta
from pathlib import Path

from fastapi.testclient import TestClient

sys.path.insert(0, str(Path(__file__).parent.parent))

from crowdpulse.api.server import create_app
from crowdpulse.config import SchedulerConfig, Settings
from crowdpulse.engine import utc_now
from crowdpulse.storage import FileEventRepository

from fakes import FakeProvider, make_event


def _settings(data_dir: Path) -> Settings:
    return Settings(data_dir=data_dir, scheduler=SchedulerConfig(enabled=False))


def _seed(data_dir: Path) -> None:
    repository = FileEventRepository(data_dir)
    event = make_event("evt-1", utc_now() + timedelta(minutes=30))
    asyncio.run(repository.save_event(event))


def test_status_endpoint(tmp_path: Path) -> None:
    app = create_app(_settings(tmp_path), provider=FakeProvider())

    with TestClient(app) as client:
        response = client.get("/api/scheduler/status")

    assert response.status_code == 200
    body = response.json()
    assert body["enabled"] is False
    assert body["running"] is False
    assert body["cadence"] == "*/5 * * * *"
    assert body["last_tick"] is None


def test_trigger_updates_live_events(tmp_path: Path) -> None:
    _seed(tmp_path)
    app = create_app(_settings(tmp_path), provider=FakeProvider())

    with TestClient(app) as client:
        tick = client.post("/api/scheduler/trigger").json()
        events = client.get("/api/events").json()
        series = client.get("/api/events/evt-1/series").json()

    assert tick["live"] == 1
    assert tick["succeeded"] == 1
    assert events[0]["id"] == "evt-1"
    assert events[0]["active"] is True
    assert events[0]["readings"] == 2
    assert series["event_id"] == "evt-1"
    assert len(series["series"]["1"]["timeFrames"]) == 1


def test_unknown_event_series_is_404(tmp_path: Path) -> None:
    app = create_app(_settings(tmp_path), provider=FakeProvider())

    with TestClient(app) as client:
        response = client.get("/api/events/missing/series")

    assert response.status_code == 404


def test_disabled_scheduler_start_reports_no_change(tmp_path: Path) -> None:
    app = create_app(_settings(tmp_path), provider=FakeProvider())

    with TestClient(app) as client:
        started = client.post("/api/scheduler/start").json()
        stopped = client.post("/api/scheduler/stop").json()

    assert started["changed"] is False
    assert stopped["changed"] is False


def test_restart_with_invalid_yaml_is_rejected(tmp_path: Path) -> None:
    app = create_app(_settings(tmp_path), provider=FakeProvider())

    with TestClient(app) as client:
        ok = client.post("/api/scheduler/restart")
        (tmp_path / "config.yaml").write_text("scheduler:\n  cadence: bogus\n")
        rejected = client.post("/api/scheduler/restart")

    assert ok.status_code == 200
    assert rejected.status_code == 400


def test_provider_health(tmp_path: Path) -> None:
    provider = FakeProvider()
    app = create_app(_settings(tmp_path), provider=provider)

    with TestClient(app) as client:
        healthy = client.get("/api/provider/health")
        provider.healthy = False
        unhealthy = client.get("/api/provider/health")

    assert healthy.status_code == 200
    assert healthy.json()["healthy"] is True
    assert unhealthy.status_code == 503
