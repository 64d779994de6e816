import pytest
from fastapi.testclient import TestClient

from api.cache import CacheStore
from api.config import Settings
from api.main import create_app


SAMPLE_EVENTS = [
    {
        "eventID": "630002",
        "date": "2024-01-01T20:00:00",
        "latitude": "38.1",
        "longitude": "27.2",
        "depth": "7.0",
        "magnitude": "2.4",
        "type": "ML",
        "location": "Seferihisar (Izmir)",
        "lastUpdateDate": "2024-01-01T20:05:00",
    },
    {
        "eventID": "630001",
        "date": "2024-01-01T10:00:00",
        "latitude": "39.9",
        "longitude": "41.3",
        "depth": "10.2",
        "magnitude": "3.1",
        "type": "ML",
        "location": "Erzurum",
        "lastUpdateDate": "2024-01-01T10:10:00",
    },
    {
        "eventID": "630000",
        "date": "2024-01-01T01:30:00",
        "latitude": "37.0",
        "longitude": "36.6",
        "depth": "5.0",
        "magnitude": "4.0",
        "type": "Mw",
        "location": "Nurdagi (Gaziantep)",
        "lastUpdateDate": "2024-01-01T02:00:00",
    },
]


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeUpstream:
    """Records every fetch; returns ``payload`` or raises ``error``."""

    def __init__(self, payload=None, error=None):
        self.payload = payload if payload is not None else []
        self.error = error
        self.calls = []
        self.closed = False

    def fetch(self, query):
        self.calls.append(query)
        if self.error is not None:
            raise self.error
        return self.payload

    def close(self):
        self.closed = True


@pytest.fixture
def settings() -> Settings:
    return Settings(upstream_timezone="Europe/Istanbul")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(settings, clock) -> CacheStore:
    return CacheStore(ttl_seconds=settings.cache_ttl_seconds, clock=clock)


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream(payload=list(SAMPLE_EVENTS))


@pytest.fixture
def app(settings, cache, upstream):
    return create_app(settings=settings, cache=cache, upstream=upstream)


@pytest.fixture
def client(app) -> TestClient:
    return TestClient(app)
