"""Shared test fixtures for the Wallstats test suite."""

import os
import shutil
import sys
import tempfile

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.stats_cache import StatsCacheService
from core.storage import MemoryStore, StorageError, StorageQuotaError


# ============================================================================
# Test doubles
# ============================================================================

class FakeClock:
    """Callable clock returning epoch seconds that tests can move forward."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FailingStore(MemoryStore):
    """MemoryStore whose writes (and optionally reads) can be made to fail."""

    def __init__(self, fail_writes=None, fail_reads=False):
        super().__init__()
        self.fail_writes = fail_writes
        self.fail_reads = fail_reads

    def get_item(self, key):
        if self.fail_reads:
            raise StorageError("storage unavailable")
        return super().get_item(key)

    def keys(self):
        if self.fail_reads:
            raise StorageError("storage unavailable")
        return super().keys()

    def set_item(self, key, value):
        if self.fail_writes is not None:
            raise self.fail_writes
        super().set_item(key, value)

    def remove_item(self, key):
        if self.fail_writes is not None:
            raise self.fail_writes
        super().remove_item(key)


# ============================================================================
# Filesystem fixtures
# ============================================================================

@pytest.fixture
def temp_dir():
    """Provide a temporary directory, cleaned up after test."""
    d = tempfile.mkdtemp(prefix="wallstats_test_")
    yield d
    shutil.rmtree(d, ignore_errors=True)


# ============================================================================
# Cache fixtures
# ============================================================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def durable_store():
    return MemoryStore()


@pytest.fixture
def session_store():
    return MemoryStore()


@pytest.fixture
def service(durable_store, session_store, clock):
    """StatsCacheService on in-memory stores with a controllable clock."""
    return StatsCacheService(durable_store, session_store, clock=clock)


@pytest.fixture
def quota_error():
    return StorageQuotaError("quota exceeded")


@pytest.fixture
def sample_snapshot():
    """Provide a small canonical snapshot."""
    return {
        "sunset.jpg": {"views": 120, "downloads": 14},
        "forest.png": {"views": 48, "downloads": 3},
        "city.jpg": {"views": 0, "downloads": 0},
    }
