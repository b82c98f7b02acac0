"""Tests for output projections and their computed fields."""

from datetime import timedelta

import pytest

from weatherhub.models.alert import AlertRecord
from weatherhub.models.minutely import MinutelyRecord
from weatherhub.models.weather_record import WeatherRecord
from weatherhub.schemas.weather import (
    AlertOut,
    LocationOut,
    MinutelyOut,
    ProviderConfigOut,
    WeatherRecordOut,
    compass,
    precipitation_intensity,
)

from conftest import NOW


def _saved(db, row):
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


class TestHelpers:
    @pytest.mark.parametrize("deg,expected", [
        (0, "N"), (11, "N"), (12, "NNE"), (90, "E"), (225, "SW"), (350, "N"), (359.9, "N"),
    ])
    def test_compass(self, deg, expected):
        assert compass(deg) == expected

    def test_compass_none(self):
        assert compass(None) is None

    @pytest.mark.parametrize("value,expected", [
        (None, "none"), (0.0, "none"), (0.05, "light"), (0.1, "light"),
        (0.2, "moderate"), (0.5, "heavy"), (0.61, "very_heavy"), (4.0, "very_heavy"),
    ])
    def test_intensity(self, value, expected):
        assert precipitation_intensity(value) == expected


class TestWeatherRecordOut:
    def test_current_projection(self, db, make_location):
        loc = make_location()
        row = _saved(db, WeatherRecord(
            location_id=loc.id, data_type="current", data_timestamp=NOW - timedelta(minutes=5),
            temperature=15.04, feels_like_temperature=14.2, wind_speed=3.46, wind_direction=225,
            raw_data={"dt": 1},
        ))
        out = WeatherRecordOut.from_record(row, NOW)

        assert out.data_type_name
        assert out.temp == 15.04
        assert out.feels_like == 14.2
        assert out.wind_deg == 225
        assert out.wind_direction_compass == "SW"
        assert out.formatted_temperature == "15.0°C"
        assert out.formatted_wind_speed == "3.5 m/s"
        assert out.is_current is True
        assert out.is_expired is False
        assert out.raw_data is None

    def test_absent_fields_dropped(self, db, make_location):
        loc = make_location()
        row = _saved(db, WeatherRecord(location_id=loc.id, data_type="hourly", data_timestamp=NOW))
        dumped = WeatherRecordOut.from_record(row, NOW).model_dump(exclude_none=True)
        assert "temperature" not in dumped
        assert "pop" not in dumped
        assert "formatted_temperature" not in dumped

    def test_include_raw(self, db, make_location):
        loc = make_location()
        row = _saved(db, WeatherRecord(
            location_id=loc.id, data_type="current", data_timestamp=NOW, raw_data={"dt": 1},
        ))
        assert WeatherRecordOut.from_record(row, NOW, include_raw=True).raw_data == {"dt": 1}

    def test_imperial_suffix(self, db, make_location):
        loc = make_location(units="imperial")
        row = _saved(db, WeatherRecord(
            location_id=loc.id, data_type="current", data_timestamp=NOW,
            units="imperial", temperature=59.0, wind_speed=7.8,
        ))
        out = WeatherRecordOut.from_record(row, NOW)
        assert out.formatted_temperature == "59.0°F"
        assert out.formatted_wind_speed == "7.8 mph"

    @pytest.mark.parametrize("data_type,offset,expired", [
        ("current", timedelta(hours=-2), True),
        ("current", timedelta(minutes=-30), False),
        ("hourly", timedelta(hours=-1), True),
        ("hourly", timedelta(hours=1), False),
        ("daily", timedelta(days=-1), True),
        ("historical", timedelta(days=-30), False),
    ])
    def test_expiry(self, db, make_location, data_type, offset, expired):
        loc = make_location()
        row = _saved(db, WeatherRecord(
            location_id=loc.id, data_type=data_type, data_timestamp=NOW + offset,
        ))
        assert WeatherRecordOut.from_record(row, NOW).is_expired is expired


class TestMinutelyOut:
    def test_computed_fields(self, db, make_location):
        loc = make_location()
        row = _saved(db, MinutelyRecord(
            location_id=loc.id, data_timestamp=NOW + timedelta(minutes=15),
            forecast_timestamp=NOW, precipitation=0.25, precipitation_probability=0.42,
        ))
        out = MinutelyOut.from_record(row, NOW)
        assert out.precipitation_intensity == "moderate"
        assert out.precipitation_probability_percent == 42.0
        assert out.minutes_from_now == 15


class TestAlertOut:
    def test_computed_fields(self, db, make_location):
        loc = make_location()
        row = _saved(db, AlertRecord(
            location_id=loc.id, sender_name="NWS", event="Heat Advisory",
            start_time=NOW - timedelta(minutes=30), end_time=NOW + timedelta(minutes=90),
        ))
        out = AlertOut.from_record(row, NOW)
        assert out.duration_minutes == 120
        assert out.is_currently_active is True
        assert out.has_expired is False
        assert out.is_acknowledged is False
        assert out.severity == "unknown"


class TestLocationAndProvider:
    def test_location_full_name_and_distance(self, make_location):
        loc = make_location(city="Trenton", state="NJ", country="US")
        out = LocationOut.from_record(loc, distance_km=1.5)
        assert out.full_name == "Trenton, NJ, US"
        assert out.distance_km == 1.5

    def test_provider_key_masked(self, make_provider):
        out = ProviderConfigOut.from_record(make_provider())
        assert out.api_key == "abcd********5678"
