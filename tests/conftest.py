"""Global pytest configuration and fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from herald.observability.metrics import MetricsRegistry
from herald.status.markers import MarkerStore


@pytest.fixture
def status_dir(tmp_path: Path) -> Path:
    """Empty status directory."""
    path = tmp_path / "leader_status"
    path.mkdir()
    return path


@pytest.fixture
def store(status_dir: Path) -> MarkerStore:
    """Marker store over the temporary status directory."""
    return MarkerStore(status_dir)


@pytest.fixture
def metrics() -> MetricsRegistry:
    """Isolated metrics registry."""
    registry = MetricsRegistry()
    registry.initialize()
    return registry
