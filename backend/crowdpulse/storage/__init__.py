"""Storage layer for CrowdPulse - file-based event persistence.

Events, their forecast snapshots and prediction series are stored as one YAML
document per event. Writes are atomic so a crash never leaves a half-written
series behind.
"""

from .events import (
    EventNotFoundError,
    EventRepository,
    FileEventRepository,
    RepositoryError,
    dump_series,
)

__all__ = [
    "EventNotFoundError",
    "EventRepository",
    "FileEventRepository",
    "RepositoryError",
    "dump_series",
]
