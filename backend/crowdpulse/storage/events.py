"""Event repository with atomic writes to data/events/<event_id>.yaml.

Each event lives in its own YAML document holding the event bounds, the
forecast snapshot and the prediction series. ``persist`` only replaces the
``series`` key so forecast fields this package does not model are preserved.
"""

import asyncio
import logging
import re
import shutil
import tempfile
from datetime import datetime, timezone, tzinfo
from pathlib import Path
from typing import Any, Mapping, Protocol

import yaml
from pydantic import ValidationError

from crowdpulse.engine.window import ensure_utc
from crowdpulse.models import Event, GateSeries

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"[A-Za-z0-9][A-Za-z0-9_.-]*")


# ============================================================================
# Exceptions
# ============================================================================


class RepositoryError(Exception):
    """Base exception for event storage errors."""

    pass


class EventNotFoundError(RepositoryError):
    """No stored event with the requested id."""

    pass


# ============================================================================
# Repository contract
# ============================================================================


class EventRepository(Protocol):
    async def list_events(self) -> list[Event]: ...

    async def persist(self, event_id: str, series: Mapping[str, GateSeries]) -> None: ...


def dump_series(series: Mapping[str, GateSeries]) -> dict[str, Any]:
    return {gate_id: s.model_dump(mode="json", by_alias=True) for gate_id, s in series.items()}


# ============================================================================
# File-backed implementation
# ============================================================================


class FileEventRepository:
    """YAML file per event under ``<data_dir>/events``."""

    def __init__(self, data_dir: Path, default_timezone: tzinfo = timezone.utc):
        self.events_dir = Path(data_dir) / "events"
        self.default_timezone = default_timezone

    def _event_path(self, event_id: str) -> Path:
        if not _SAFE_ID.fullmatch(event_id):
            raise ValueError(f"Invalid event id: {event_id!r}")
        return self.events_dir / f"{event_id}.yaml"

    def _read_raw(self, path: Path) -> dict[str, Any]:
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise RepositoryError(f"Corrupted YAML in {path}: {e}") from e
        except OSError as e:
            raise RepositoryError(f"Failed to read {path}: {e}") from e

        if not isinstance(raw, dict):
            raise RepositoryError(f"Event file {path} does not contain a mapping")
        return raw

    def _to_event(self, raw: dict[str, Any], path: Path) -> Event:
        data = dict(raw)
        try:
            for key in ("start_utc", "end_utc"):
                if data.get(key) is not None:
                    data[key] = ensure_utc(data[key], self.default_timezone)
            return Event.model_validate(data)
        except (ValidationError, ValueError) as e:
            raise RepositoryError(f"Invalid event in {path}: {e}") from e

    def _write_raw(self, path: Path, data: dict[str, Any]) -> None:
        """Tempfile -> rename so a crash mid-write leaves the old file intact."""
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_path: Path | None = None
        try:
            with tempfile.NamedTemporaryFile(
                mode="w",
                dir=path.parent,
                delete=False,
                suffix=".yaml",
                encoding="utf-8",
            ) as temp_file:
                yaml.dump(
                    data,
                    temp_file,
                    default_flow_style=False,
                    allow_unicode=True,
                    sort_keys=False,
                )
                temp_path = Path(temp_file.name)

            shutil.move(str(temp_path), str(path))
            logger.debug(f"Saved event file {path}")

        except Exception as e:
            if temp_path is not None:
                temp_path.unlink(missing_ok=True)
            raise RepositoryError(f"Failed to write {path}: {e}") from e

    def _load_all(self) -> list[Event]:
        events: list[Event] = []
        for path in sorted(self.events_dir.glob("*.yaml")):
            try:
                events.append(self._to_event(self._read_raw(path), path))
            except RepositoryError as e:
                logger.error(f"Skipping event file: {e}")
        return events

    def _load_one(self, path: Path) -> Event | None:
        if not path.exists():
            return None
        return self._to_event(self._read_raw(path), path)

    def _replace_series(self, path: Path, event_id: str, series: Mapping[str, GateSeries]) -> None:
        if not path.exists():
            raise EventNotFoundError(f"Event {event_id} not found in {self.events_dir}")

        raw = self._read_raw(path)
        raw["series"] = dump_series(series)
        raw["series_updated_at"] = datetime.now(timezone.utc).isoformat()
        self._write_raw(path, raw)

    # Blocking file I/O stays off the event loop thread.

    async def list_events(self) -> list[Event]:
        """Load every stored event; unreadable files are logged and skipped."""
        if not self.events_dir.exists():
            logger.info(f"Events directory not found: {self.events_dir}")
            return []
        return await asyncio.to_thread(self._load_all)

    async def get_event(self, event_id: str) -> Event | None:
        return await asyncio.to_thread(self._load_one, self._event_path(event_id))

    async def save_event(self, event: Event) -> Path:
        path = self._event_path(event.id)
        await asyncio.to_thread(
            self._write_raw, path, event.model_dump(mode="json", by_alias=True)
        )
        logger.info(f"Saved event {event.id}")
        return path

    async def persist(self, event_id: str, series: Mapping[str, GateSeries]) -> None:
        """Replace the stored series of an existing event."""
        path = self._event_path(event_id)
        await asyncio.to_thread(self._replace_series, path, event_id, series)
        logger.debug(f"Persisted series for event {event_id} ({len(series)} gates)")
