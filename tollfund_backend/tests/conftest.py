from datetime import datetime, timedelta

import pytest

from tollfund.db import SQLiteStore
from tollfund.service import TrackerService
from tollfund.settings import Settings
from tollfund.store import InMemoryStore


class FakeClock:
    """Callable clock whose time only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 1, 1, 9, 30))


@pytest.fixture(params=["memory", "sqlite"])
def store(request, tmp_path):
    if request.param == "memory":
        s = InMemoryStore()
    else:
        s = SQLiteStore(str(tmp_path / "tollfund.db"))
    yield s
    s.close()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        autosave_delay_seconds=0,
        preferences_path=str(tmp_path / "preferences.json"),
    )


@pytest.fixture
def service(store, settings, clock):
    return TrackerService(store, settings, clock)
