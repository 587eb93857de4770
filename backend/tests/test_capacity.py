#!/usr/bin/env python3
"""Tests for capacity resolution."""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from crowdpulse.engine import DEFAULT_CAPACITY, resolve_capacity
from crowdpulse.models import Forecast


def test_summary_capacity_wins_over_detailed() -> None:
    forecast = Forecast.model_validate(
        {
            "forecast": {"1": {"capacity": 300}},
            "summary": {"gates": ["1"], "predictions": [{"gate": "1", "capacity": 500}]},
        }
    )
    assert resolve_capacity("1", forecast) == 500


def test_detailed_capacity_used_without_summary_entry() -> None:
    forecast = Forecast.model_validate({"forecast": {"B": {"capacity": 300}}})
    assert resolve_capacity("B", forecast) == 300


def test_non_positive_summary_capacity_is_ignored() -> None:
    forecast = Forecast.model_validate(
        {
            "forecast": {"1": {"capacity": 250}},
            "summary": {"gates": ["1"], "predictions": [{"gate": "1", "capacity": 0}]},
        }
    )
    assert resolve_capacity("1", forecast) == 250


def test_default_when_no_source_has_capacity() -> None:
    forecast = Forecast.model_validate({"summary": {"gates": ["1"]}})
    assert resolve_capacity("1", forecast) == DEFAULT_CAPACITY == 100
    assert resolve_capacity("missing", forecast, default=42) == 42


def test_integer_gate_ids_are_normalized() -> None:
    forecast = Forecast.model_validate(
        {
            "forecast": {1: {"capacity": 300}},
            "summary": {"gates": [1], "predictions": [{"gate": 1, "capacity": 450}]},
        }
    )
    assert forecast.gate_ids == ["1"]
    assert resolve_capacity("1", forecast) == 450
