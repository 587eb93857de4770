#!/usr/bin/env python3
"""Tests for the YAML-backed event repository."""

import asyncio
import sys
import threading
from datetime import datetime, timezone
from pathlib import Path
from zoneinfo import ZoneInfo

import pytest
import yaml

sys.path.insert(0, str(Path(__file__).parent.parent))

from crowdpulse.engine import merge_series
from crowdpulse.storage import EventNotFoundError, FileEventRepository

from fakes import default_readings, make_event, make_forecast

UTC = timezone.utc
KL = ZoneInfo("Asia/Kuala_Lumpur")

EVENT_YAML = """id: 42
name: Harbour Derby
event_type: SPORTS
venue: Harbour Stadium
start_utc: "2025-10-09 13:30:00"
end_utc: "2025-10-09 17:30:00"
forecast:
  forecast:
    "1":
      capacity: 300
      timeFrames: []
  summary:
    gates: ["1", "A"]
    predictions:
      - gate: "1"
        capacity: 500
    forecastPeriod:
      start: "2025-10-09T13:00:00"
      end: "2025-10-09T18:00:00"
"""


def _write_event(data_dir: Path, name: str, text: str) -> Path:
    events_dir = data_dir / "events"
    events_dir.mkdir(parents=True, exist_ok=True)
    path = events_dir / name
    path.write_text(text, encoding="utf-8")
    return path


def test_naive_timestamps_use_default_timezone(tmp_path: Path) -> None:
    _write_event(tmp_path, "42.yaml", EVENT_YAML)
    repository = FileEventRepository(tmp_path, default_timezone=KL)

    events = asyncio.run(repository.list_events())

    assert len(events) == 1
    event = events[0]
    assert event.id == "42"
    assert event.start_utc == datetime(2025, 10, 9, 5, 30, tzinfo=UTC)
    assert event.end_utc == datetime(2025, 10, 9, 9, 30, tzinfo=UTC)
    assert event.forecast.gate_ids == ["1", "A"]
    assert event.series == {}


def test_persist_replaces_series_and_keeps_other_fields(tmp_path: Path) -> None:
    path = _write_event(tmp_path, "42.yaml", EVENT_YAML)
    repository = FileEventRepository(tmp_path, default_timezone=KL)
    tick = datetime(2025, 10, 9, 5, 0, tzinfo=UTC)

    async def run():
        event = await repository.get_event("42")
        merged = merge_series(event.series, event.forecast, default_readings(), tick)
        await repository.persist("42", merged)
        return await repository.get_event("42")

    reloaded = asyncio.run(run())

    assert reloaded.series["1"].capacity == 500
    assert reloaded.series["1"].timeframes[0].timestamp == tick
    assert reloaded.series["A"].timeframes[0].actual_count == 45

    raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    assert raw["venue"] == "Harbour Stadium"
    assert raw["forecast"]["summary"]["forecastPeriod"]["start"] == "2025-10-09T13:00:00"
    assert "timeFrames" in raw["series"]["1"]
    assert raw["series"]["1"]["timeFrames"][0]["predictedCount"] == 150
    assert "series_updated_at" in raw


def test_persist_unknown_event(tmp_path: Path) -> None:
    repository = FileEventRepository(tmp_path)
    with pytest.raises(EventNotFoundError):
        asyncio.run(repository.persist("missing", {}))


def test_save_and_reload_event(tmp_path: Path) -> None:
    repository = FileEventRepository(tmp_path)
    event = make_event("evt-1", datetime(2025, 10, 9, 5, 30, tzinfo=UTC))

    async def run():
        await repository.save_event(event)
        return await repository.get_event("evt-1")

    reloaded = asyncio.run(run())
    assert reloaded.start_utc == event.start_utc
    assert reloaded.end_utc == event.end_utc
    assert reloaded.forecast == make_forecast()
    assert [p.name for p in (tmp_path / "events").iterdir()] == ["evt-1.yaml"]


def test_corrupt_files_are_skipped(tmp_path: Path) -> None:
    _write_event(tmp_path, "42.yaml", EVENT_YAML)
    _write_event(tmp_path, "broken.yaml", "id: [unclosed\n")
    _write_event(tmp_path, "list.yaml", "- just\n- a list\n")
    repository = FileEventRepository(tmp_path, default_timezone=KL)

    events = asyncio.run(repository.list_events())
    assert [e.id for e in events] == ["42"]


def test_missing_directory_lists_nothing(tmp_path: Path) -> None:
    repository = FileEventRepository(tmp_path / "nowhere")
    assert asyncio.run(repository.list_events()) == []
    assert asyncio.run(repository.get_event("42")) is None


def test_unsafe_event_ids_are_rejected(tmp_path: Path) -> None:
    repository = FileEventRepository(tmp_path)
    with pytest.raises(ValueError):
        asyncio.run(repository.get_event("../secrets"))


class ThreadRecordingRepository(FileEventRepository):
    def __init__(self, data_dir: Path):
        super().__init__(data_dir)
        self.read_threads: set[int] = set()
        self.write_threads: set[int] = set()

    def _read_raw(self, path: Path):
        self.read_threads.add(threading.get_ident())
        return super()._read_raw(path)

    def _write_raw(self, path: Path, data) -> None:
        self.write_threads.add(threading.get_ident())
        super()._write_raw(path, data)


def test_file_io_runs_off_the_event_loop_thread(tmp_path: Path) -> None:
    repository = ThreadRecordingRepository(tmp_path)
    tick = datetime(2025, 10, 9, 5, 0, tzinfo=UTC)
    starts = [datetime(2025, 10, 9, 5, 30, tzinfo=UTC)] * 2

    async def run():
        loop_thread = threading.get_ident()
        for i, start in enumerate(starts):
            await repository.save_event(make_event(f"evt-{i}", start))

        events = await repository.list_events()
        await asyncio.gather(
            *(
                repository.persist(
                    e.id, merge_series(e.series, e.forecast, default_readings(), tick)
                )
                for e in events
            )
        )
        return loop_thread, await repository.list_events()

    loop_thread, reloaded = asyncio.run(run())

    assert repository.read_threads and repository.write_threads
    assert loop_thread not in repository.read_threads
    assert loop_thread not in repository.write_threads
    assert [len(e.series["1"].timeframes) for e in reloaded] == [1, 1]
