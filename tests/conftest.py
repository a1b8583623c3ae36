"""Shared fixtures for the storage CLI tests."""

import pytest

from fake_backend import InMemoryBackend


@pytest.fixture
def backend() -> InMemoryBackend:
    """An empty in-memory backend."""
    return InMemoryBackend()


@pytest.fixture(autouse=True)
def sleeps(monkeypatch) -> list:
    """Replace retry sleeps with a recorder so tests run instantly."""
    recorded = []
    monkeypatch.setattr("storage_cli.retry.time.sleep", recorded.append)
    return recorded
