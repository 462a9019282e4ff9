"""
Shared fixtures: controllable clock and on-disk cache in a tmp directory.
"""
import pytest

from ai_orchestrator.core.cache import FileCacheBackend, ResultCache


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def file_backend(tmp_path):
    return FileCacheBackend(str(tmp_path / "cache"))


@pytest.fixture
def result_cache(file_backend, clock):
    return ResultCache(backend=file_backend, expiration=3600, clock=clock)
