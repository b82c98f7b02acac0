"""Tests for on-demand fetches: rate limiting, error surfacing, storage."""

import asyncio

import httpx
import pytest

from weatherhub.errors import (
    ConfigurationMissing,
    NotFound,
    ProviderUnavailable,
    RateLimited,
    ValidationFailed,
)
from weatherhub.models.weather_record import WeatherRecord
from weatherhub.services.ingest import IngestService
from weatherhub.services.rate_limiter import RateLimiter

from conftest import NOW, NOW_TS, onecall


def _service(db, clock, client, limiter=None):
    return IngestService(db, limiter or RateLimiter(clock=clock), client=client, clock=clock)


class TestFetchCurrent:
    def test_stores_current_snapshot(self, db, clock, make_location, make_provider, mock_client):
        loc = make_location(latitude=40.0, longitude=-74.0)
        make_provider()
        client = mock_client(lambda req: httpx.Response(200, json=onecall(dt=NOW_TS)))

        report = asyncio.run(_service(db, clock, client).fetch_current(loc.id))

        assert report.ok
        assert report.datasets["current"].inserted == 1
        row = db.query(WeatherRecord).filter_by(location_id=loc.id, data_type="current").one()
        assert row.data_timestamp == NOW
        assert row.temperature == 15.0
        assert row.weather_main == "Clear"
        assert row.units == "metric"
        assert row.is_forecast is False

    def test_excludes_forecast_blocks(self, db, clock, make_location, make_provider, mock_client):
        loc = make_location()
        make_provider()
        client = mock_client(lambda req: httpx.Response(200, json=onecall()))
        asyncio.run(_service(db, clock, client).fetch_current(loc.id))
        assert client.requests[0].url.params["exclude"] == "minutely,hourly,daily,alerts"

    def test_second_call_rate_limited(self, db, clock, make_location, make_provider, mock_client):
        loc = make_location()
        make_provider(rate_limit_minutes=10)
        client = mock_client(lambda req: httpx.Response(200, json=onecall()))
        service = _service(db, clock, client)

        asyncio.run(service.fetch_current(loc.id))
        clock.advance(minutes=3)
        with pytest.raises(RateLimited) as exc:
            asyncio.run(service.fetch_current(loc.id))

        assert exc.value.retry_after == 420
        assert len(client.requests) == 1

    def test_allowed_again_after_interval(self, db, clock, make_location, make_provider, mock_client):
        loc = make_location()
        make_provider(rate_limit_minutes=10)
        client = mock_client(lambda req: httpx.Response(200, json=onecall()))
        service = _service(db, clock, client)

        asyncio.run(service.fetch_current(loc.id))
        clock.advance(minutes=10)
        asyncio.run(service.fetch_current(loc.id))
        assert len(client.requests) == 2

    def test_upstream_failure_raises(self, db, clock, make_location, make_provider, mock_client):
        loc = make_location()
        make_provider()
        client = mock_client(lambda req: httpx.Response(401, text="Invalid API key"))

        with pytest.raises(ProviderUnavailable) as exc:
            asyncio.run(_service(db, clock, client).fetch_current(loc.id))

        assert exc.value.status == 401
        assert "Invalid API key" in exc.value.body
        assert db.query(WeatherRecord).count() == 0

    def test_failed_fetch_not_recorded(self, db, clock, make_location, make_provider, mock_client):
        loc = make_location()
        provider = make_provider()
        limiter = RateLimiter(clock=clock)
        client = mock_client(lambda req: httpx.Response(500, text="boom"))

        with pytest.raises(ProviderUnavailable):
            asyncio.run(_service(db, clock, client, limiter).fetch_current(loc.id))
        assert limiter.check_allowed(provider.id, 10)

    def test_missing_provider(self, db, clock, make_location, mock_client):
        loc = make_location()
        client = mock_client(lambda req: httpx.Response(200, json=onecall()))
        with pytest.raises(ConfigurationMissing):
            asyncio.run(_service(db, clock, client).fetch_current(loc.id))
        assert client.requests == []

    def test_provider_without_key(self, db, clock, make_location, make_provider, mock_client):
        loc = make_location()
        make_provider(api_key="")
        client = mock_client(lambda req: httpx.Response(200, json=onecall()))
        with pytest.raises(ConfigurationMissing):
            asyncio.run(_service(db, clock, client).fetch_current(loc.id))

    def test_unknown_location(self, db, clock, make_provider, mock_client):
        make_provider()
        client = mock_client(lambda req: httpx.Response(200, json=onecall()))
        with pytest.raises(NotFound):
            asyncio.run(_service(db, clock, client).fetch_current(999))

    def test_deleted_location(self, db, clock, make_location, make_provider, mock_client):
        loc = make_location(deleted_at=NOW)
        make_provider()
        client = mock_client(lambda req: httpx.Response(200, json=onecall()))
        with pytest.raises(NotFound):
            asyncio.run(_service(db, clock, client).fetch_current(loc.id))

    def test_bad_units(self, db, clock, make_location, make_provider, mock_client):
        loc = make_location()
        make_provider()
        client = mock_client(lambda req: httpx.Response(200, json=onecall()))
        with pytest.raises(ValidationFailed) as exc:
            asyncio.run(_service(db, clock, client).fetch_current(loc.id, units="kelvin"))
        assert exc.value.field == "units"

    def test_explicit_provider(self, db, clock, make_location, make_provider, mock_client):
        loc = make_location()
        make_provider(is_default=True)
        other = make_provider(name="Backup", api_key="zzzz9999yyyy8888")
        client = mock_client(lambda req: httpx.Response(200, json=onecall()))
        asyncio.run(_service(db, clock, client).fetch_current(loc.id, provider_id=other.id))
        assert client.requests[0].url.params["appid"] == "zzzz9999yyyy8888"


class TestFetchComplete:
    def test_reconciles_all_blocks(self, db, clock, make_location, make_provider, mock_client):
        loc = make_location()
        make_provider()
        body = onecall(
            hourly=[{"dt": NOW_TS + 3600 * i, "temp": 10 + i} for i in range(3)],
            daily=[{"dt": NOW_TS + 86400, "temp": {"min": 1, "max": 9}}],
            minutely=[{"dt": NOW_TS + 60 * i, "precipitation": 0.0} for i in range(5)],
            alerts=[],
        )
        client = mock_client(lambda req: httpx.Response(200, json=body))

        report = asyncio.run(_service(db, clock, client).fetch_complete(loc.id))

        assert report.ok
        assert report.datasets["hourly"].inserted == 3
        assert report.datasets["daily"].inserted == 1
        assert report.datasets["minutely"].inserted == 5
        assert "exclude" not in client.requests[0].url.params

    def test_exclude_passed_through(self, db, clock, make_location, make_provider, mock_client):
        loc = make_location()
        make_provider()
        client = mock_client(lambda req: httpx.Response(200, json=onecall()))
        asyncio.run(_service(db, clock, client).fetch_complete(loc.id, exclude=["minutely"]))
        assert client.requests[0].url.params["exclude"] == "minutely"

    def test_invalid_exclude(self, db, clock, make_location, make_provider, mock_client):
        loc = make_location()
        make_provider()
        client = mock_client(lambda req: httpx.Response(200, json=onecall()))
        with pytest.raises(ValidationFailed):
            asyncio.run(_service(db, clock, client).fetch_complete(loc.id, exclude=["current"]))
        assert client.requests == []


class TestFetchHistorical:
    def test_hour_upserted(self, db, clock, make_location, make_provider, mock_client):
        loc = make_location()
        make_provider()
        past = NOW_TS - 30 * 86400
        client = mock_client(lambda req: httpx.Response(
            200, json={"data": [{"dt": past, "temp": 5.5}]},
        ))

        report = asyncio.run(_service(db, clock, client).fetch_historical(loc.id, past))

        assert report.datasets["historical"].inserted == 1
        row = db.query(WeatherRecord).filter_by(data_type="historical").one()
        assert row.temperature == 5.5
        assert row.is_forecast is False

    def test_day_summary(self, db, clock, make_location, make_provider, mock_client):
        loc = make_location()
        make_provider()
        client = mock_client(lambda req: httpx.Response(
            200, json={"date": "2023-10-01", "temperature": {"min": 3, "max": 12}},
        ))
        report = asyncio.run(
            _service(db, clock, client).fetch_historical(loc.id, NOW_TS - 40 * 86400, kind="day"),
        )
        assert report.datasets["historical"].inserted == 1
        assert client.requests[0].url.path.endswith("/day_summary")

    @pytest.mark.parametrize("dt", [0, -5, "1690000000", True])
    def test_invalid_dt(self, db, clock, make_location, make_provider, mock_client, dt):
        loc = make_location()
        make_provider()
        client = mock_client(lambda req: httpx.Response(200, json={"data": []}))
        with pytest.raises(ValidationFailed) as exc:
            asyncio.run(_service(db, clock, client).fetch_historical(loc.id, dt))
        assert exc.value.field == "dt"

    def test_invalid_kind(self, db, clock, make_location, make_provider, mock_client):
        loc = make_location()
        make_provider()
        client = mock_client(lambda req: httpx.Response(200, json={"data": []}))
        with pytest.raises(ValidationFailed):
            asyncio.run(_service(db, clock, client).fetch_historical(loc.id, NOW_TS, kind="week"))
