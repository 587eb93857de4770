from .capacity import DEFAULT_CAPACITY, resolve_capacity
from .exceptions import GateMappingError
from .gates import (
    DEFAULT_ALIAS_RULES,
    AliasRules,
    GateMapping,
    build_gate_mapping,
    gate_aliases,
)
from .merge import DEFAULT_SOURCE, drop_repeated_buckets, merge_series
from .window import (
    DEFAULT_LEAD_TIME,
    ensure_utc,
    is_active,
    overlaps_local_day,
    utc_now,
)

__all__ = [
    "DEFAULT_CAPACITY",
    "resolve_capacity",
    "GateMappingError",
    "DEFAULT_ALIAS_RULES",
    "AliasRules",
    "GateMapping",
    "build_gate_mapping",
    "gate_aliases",
    "DEFAULT_SOURCE",
    "drop_repeated_buckets",
    "merge_series",
    "DEFAULT_LEAD_TIME",
    "ensure_utc",
    "is_active",
    "overlaps_local_day",
    "utc_now",
]
