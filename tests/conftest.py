"""Shared fixtures for duckkv tests."""

from pathlib import Path

import pytest

from duckkv.stdlib.adapters.duckdb import ConnectionRegistry, reset_default_registry


@pytest.fixture
async def registry():
    """Provide an isolated connection registry, drained after the test."""
    reg = ConnectionRegistry()
    yield reg
    await reg.release_all()


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    """Provide a database path inside a not-yet-existing directory."""
    return tmp_path / "data" / "store.duckdb"


@pytest.fixture(autouse=True)
def _isolate_default_registry():
    """Close anything a test opened through the process default registry."""
    yield
    reset_default_registry()
