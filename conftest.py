import pytest

from salaam.test.announcement_fixtures import (
    FakeDatagramSourceFactory,
    RecordingBrowserClient,
)


class FakeClock:
    """Manually advanced clock for deterministic expiry tests."""

    __test__ = False

    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def recording_client():
    return RecordingBrowserClient()


@pytest.fixture
def source_factory():
    return FakeDatagramSourceFactory()
