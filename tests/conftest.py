"""Shared fixtures for livecount tests"""

from datetime import datetime
from itertools import count

import pytest

from livecount import Counters, EngineConfig, InMemoryBackend, ScopeHandle

NOW = datetime(2024, 6, 15, 12, 0, 0)


@pytest.fixture
def storage():
    return InMemoryBackend()


@pytest.fixture
def config(storage):
    return EngineConfig(storage=storage, clock=lambda: NOW)


@pytest.fixture
def counters(config):
    return Counters(config)


@pytest.fixture
def apple():
    return ScopeHandle("Organisation", 1, created_at=datetime(2024, 3, 10))


@pytest.fixture
def microsoft():
    return ScopeHandle("Organisation", 2, created_at=datetime(2024, 4, 2))


@pytest.fixture
def make_user():
    """Builds User attribute snapshots with increasing ids"""
    ids = count(1)

    def _make(**attributes):
        snapshot = {"id": next(ids), "created_at": NOW}
        snapshot.update(attributes)
        return snapshot

    return _make
