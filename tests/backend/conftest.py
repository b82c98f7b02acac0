"""Shared fixtures: in-memory database, fake clock, row factories, OWM bodies."""

from datetime import datetime, timedelta, timezone

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from weatherhub.models.database import init_database
from weatherhub.models.location import Location
from weatherhub.models.provider_config import ProviderConfig
from weatherhub.services.owm_client import OWMClient

# 1700000000 == 2023-11-14 22:13:20 UTC
NOW_TS = 1700000000
NOW = datetime.fromtimestamp(NOW_TS, tz=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now = self.now + timedelta(**delta)


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_database(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clock():
    return FakeClock(NOW)


@pytest.fixture
def make_location(db):
    def _make(**kw) -> Location:
        values = {"name": "Test Town", "latitude": 40.0, "longitude": -74.0, "units": "metric"}
        values.update(kw)
        loc = Location(**values)
        db.add(loc)
        db.commit()
        db.refresh(loc)
        return loc
    return _make


@pytest.fixture
def make_provider(db):
    def _make(**kw) -> ProviderConfig:
        values = {
            "name": "OpenWeatherMap",
            "url": "https://api.openweathermap.org/data/3.0/onecall",
            "api_key": "abcd1234efgh5678",
            "rate_limit_minutes": 10,
        }
        values.update(kw)
        p = ProviderConfig(**values)
        db.add(p)
        db.commit()
        db.refresh(p)
        return p
    return _make


def onecall(dt: int = NOW_TS, **extra) -> dict:
    """Minimal One Call body with a current block; extra keys merged in."""
    body = {
        "lat": 40.0,
        "lon": -74.0,
        "timezone": "America/New_York",
        "timezone_offset": -18000,
        "current": {
            "dt": dt,
            "temp": 15.0,
            "feels_like": 14.2,
            "pressure": 1013,
            "humidity": 60,
            "wind_speed": 3.5,
            "wind_deg": 225,
            "weather": [{"id": 800, "main": "Clear", "description": "clear sky", "icon": "01d"}],
        },
    }
    body.update(extra)
    return body


@pytest.fixture
def onecall_body():
    return onecall


@pytest.fixture
def mock_client():
    """Build an OWMClient whose transport answers with ``handler`` and records requests."""
    def _make(handler):
        seen: list[httpx.Request] = []

        def _wrapped(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return handler(request)

        client = OWMClient(transport=httpx.MockTransport(_wrapped))
        client.requests = seen
        return client
    return _make
