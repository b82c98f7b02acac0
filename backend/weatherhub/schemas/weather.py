"""Pydantic output projections for weather, minutely, alert, location and provider rows.

Each ``from_record`` builds the model from an ORM row; callers dump with
``exclude_none=True`` so fields the provider never sent are omitted.
"""

from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel

from ..models.alert import AlertRecord
from ..models.location import Location
from ..models.minutely import MinutelyRecord
from ..models.provider_config import ProviderConfig
from ..models.weather_record import DATA_TYPE_NAMES, WeatherRecord

CARDINAL_DIRECTIONS = [
    "N", "NNE", "NE", "ENE", "E", "ESE", "SE", "SSE",
    "S", "SSW", "SW", "WSW", "W", "WNW", "NW", "NNW",
]

TEMP_SUFFIX = {"metric": "°C", "imperial": "°F", "standard": "K"}
WIND_SUFFIX = {"metric": "m/s", "imperial": "mph", "standard": "m/s"}

# Upper bounds in mm/h, checked in order
INTENSITY_BANDS = [
    (0.1, "light"),
    (0.3, "moderate"),
    (0.6, "heavy"),
]

_WEATHER_FIELDS = (
    "temperature", "feels_like_temperature",
    "temperature_min", "temperature_max", "temperature_morning", "temperature_day",
    "temperature_evening", "temperature_night",
    "feels_like_morning", "feels_like_day", "feels_like_evening", "feels_like_night",
    "pressure", "humidity", "dew_point", "clouds", "uvi", "visibility",
    "wind_speed", "wind_gust", "wind_direction",
    "precipitation_1h", "precipitation_3h", "rain_1h", "rain_3h", "snow_1h", "snow_3h",
    "rain_daily", "snow_daily", "precipitation_probability",
    "sunrise", "sunset", "moonrise", "moonset", "moon_phase",
    "weather_id", "weather_main", "weather_description", "weather_icon", "summary",
)


def compass(deg: float | None) -> str | None:
    if deg is None:
        return None
    idx = round(deg / 22.5) % 16
    return CARDINAL_DIRECTIONS[idx]


def precipitation_intensity(value: float | None) -> str:
    if value is None or value <= 0:
        return "none"
    for upper, label in INTENSITY_BANDS:
        if value <= upper:
            return label
    return "very_heavy"


def is_expired(record: WeatherRecord, now: datetime) -> bool:
    if record.data_type == "current":
        return record.data_timestamp < now - timedelta(hours=1)
    if record.data_type == "hourly":
        return record.data_timestamp < now
    if record.data_type == "daily":
        return record.data_timestamp < now.replace(hour=0, minute=0, second=0, microsecond=0)
    return False


class WeatherRecordOut(BaseModel):
    id: int
    location_id: int
    data_type: str
    data_type_name: str
    data_timestamp: datetime
    units: str
    is_forecast: bool
    api_source: str
    created_at: datetime | None = None
    updated_at: datetime | None = None

    temperature: float | None = None
    feels_like_temperature: float | None = None
    temperature_min: float | None = None
    temperature_max: float | None = None
    temperature_morning: float | None = None
    temperature_day: float | None = None
    temperature_evening: float | None = None
    temperature_night: float | None = None
    feels_like_morning: float | None = None
    feels_like_day: float | None = None
    feels_like_evening: float | None = None
    feels_like_night: float | None = None
    pressure: float | None = None
    humidity: float | None = None
    dew_point: float | None = None
    clouds: float | None = None
    uvi: float | None = None
    visibility: float | None = None
    wind_speed: float | None = None
    wind_gust: float | None = None
    wind_direction: float | None = None
    precipitation_1h: float | None = None
    precipitation_3h: float | None = None
    rain_1h: float | None = None
    rain_3h: float | None = None
    snow_1h: float | None = None
    snow_3h: float | None = None
    rain_daily: float | None = None
    snow_daily: float | None = None
    precipitation_probability: float | None = None
    sunrise: datetime | None = None
    sunset: datetime | None = None
    moonrise: datetime | None = None
    moonset: datetime | None = None
    moon_phase: float | None = None
    weather_id: int | None = None
    weather_main: str | None = None
    weather_description: str | None = None
    weather_icon: str | None = None
    summary: str | None = None

    # Short aliases mirroring the provider's field names
    temp: float | None = None
    feels_like: float | None = None
    wind_deg: float | None = None
    pop: float | None = None

    wind_direction_compass: str | None = None
    formatted_temperature: str | None = None
    formatted_wind_speed: str | None = None
    is_current: bool
    is_expired: bool
    raw_data: dict | None = None

    @classmethod
    def from_record(cls, r: WeatherRecord, now: datetime, include_raw: bool = False) -> "WeatherRecordOut":
        values: dict[str, Any] = {name: getattr(r, name) for name in _WEATHER_FIELDS}
        temp_suffix = TEMP_SUFFIX.get(r.units, "")
        wind_suffix = WIND_SUFFIX.get(r.units, "")
        return cls(
            id=r.id,
            location_id=r.location_id,
            data_type=r.data_type,
            data_type_name=DATA_TYPE_NAMES.get(r.data_type, r.data_type),
            data_timestamp=r.data_timestamp,
            units=r.units,
            is_forecast=r.is_forecast,
            api_source=r.api_source,
            created_at=r.created_at,
            updated_at=r.updated_at,
            temp=r.temperature,
            feels_like=r.feels_like_temperature,
            wind_deg=r.wind_direction,
            pop=r.precipitation_probability,
            wind_direction_compass=compass(r.wind_direction),
            formatted_temperature=(
                f"{round(r.temperature, 1)}{temp_suffix}" if r.temperature is not None else None
            ),
            formatted_wind_speed=(
                f"{round(r.wind_speed, 1)} {wind_suffix}" if r.wind_speed is not None else None
            ),
            is_current=(
                r.data_type == "current" and r.data_timestamp >= now - timedelta(hours=1)
            ),
            is_expired=is_expired(r, now),
            raw_data=r.raw_data if include_raw else None,
            **values,
        )


class MinutelyOut(BaseModel):
    id: int
    location_id: int
    data_timestamp: datetime
    forecast_timestamp: datetime | None = None
    forecast_minute: int | None = None
    precipitation: float | None = None
    rain: float | None = None
    snow: float | None = None
    precipitation_type: str | None = None
    precipitation_probability: float | None = None
    precipitation_probability_percent: float | None = None
    precipitation_intensity: str
    temperature: float | None = None
    humidity: float | None = None
    pressure: float | None = None
    wind_speed: float | None = None
    wind_direction: float | None = None
    units: str
    is_forecast: bool
    minutes_from_now: int

    @classmethod
    def from_record(cls, r: MinutelyRecord, now: datetime) -> "MinutelyOut":
        prob = r.precipitation_probability
        return cls(
            id=r.id,
            location_id=r.location_id,
            data_timestamp=r.data_timestamp,
            forecast_timestamp=r.forecast_timestamp,
            forecast_minute=r.forecast_minute,
            precipitation=r.precipitation,
            rain=r.rain,
            snow=r.snow,
            precipitation_type=r.precipitation_type,
            precipitation_probability=prob,
            precipitation_probability_percent=round(prob * 100, 1) if prob is not None else None,
            precipitation_intensity=precipitation_intensity(r.precipitation),
            temperature=r.temperature,
            humidity=r.humidity,
            pressure=r.pressure,
            wind_speed=r.wind_speed,
            wind_direction=r.wind_direction,
            units=r.units,
            is_forecast=r.is_forecast,
            minutes_from_now=int((r.data_timestamp - now).total_seconds() // 60),
        )


class AlertOut(BaseModel):
    id: int
    location_id: int
    sender_name: str
    event: str
    start_time: datetime
    end_time: datetime
    description: str | None = None
    tags: list | None = None
    severity: str
    urgency: str
    certainty: str
    affected_areas: list | None = None
    is_active: bool
    acknowledged_at: datetime | None = None
    resolved_at: datetime | None = None
    created_at: datetime | None = None
    duration_minutes: int
    is_currently_active: bool
    has_expired: bool
    is_acknowledged: bool

    @classmethod
    def from_record(cls, a: AlertRecord, now: datetime) -> "AlertOut":
        return cls(
            id=a.id,
            location_id=a.location_id,
            sender_name=a.sender_name,
            event=a.event,
            start_time=a.start_time,
            end_time=a.end_time,
            description=a.description,
            tags=a.tags,
            severity=a.severity,
            urgency=a.urgency,
            certainty=a.certainty,
            affected_areas=a.affected_areas,
            is_active=a.is_active,
            acknowledged_at=a.acknowledged_at,
            resolved_at=a.resolved_at,
            created_at=a.created_at,
            duration_minutes=int((a.end_time - a.start_time).total_seconds() // 60),
            is_currently_active=a.is_active and a.start_time <= now <= a.end_time,
            has_expired=a.end_time < now,
            is_acknowledged=a.acknowledged_at is not None,
        )


class LocationOut(BaseModel):
    id: int
    name: str
    full_name: str
    city: str | None = None
    state: str | None = None
    country: str | None = None
    country_code: str | None = None
    latitude: float
    longitude: float
    units: str
    timezone: str | None = None
    is_active: bool
    is_favorite: bool
    created_at: datetime | None = None
    updated_at: datetime | None = None
    deleted_at: datetime | None = None
    distance_km: float | None = None

    @classmethod
    def from_record(cls, loc: Location, distance_km: float | None = None) -> "LocationOut":
        return cls(
            id=loc.id,
            name=loc.name,
            full_name=loc.full_name,
            city=loc.city,
            state=loc.state,
            country=loc.country,
            country_code=loc.country_code,
            latitude=loc.latitude,
            longitude=loc.longitude,
            units=loc.units,
            timezone=loc.timezone,
            is_active=loc.is_active,
            is_favorite=loc.is_favorite,
            created_at=loc.created_at,
            updated_at=loc.updated_at,
            deleted_at=loc.deleted_at,
            distance_km=distance_km,
        )


class ProviderConfigOut(BaseModel):
    id: int
    name: str
    url: str
    api_key: str  # masked
    is_active: bool
    is_default: bool
    rate_limit_minutes: int
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_record(cls, p: ProviderConfig) -> "ProviderConfigOut":
        return cls(
            id=p.id,
            name=p.name,
            url=p.url,
            api_key=p.masked_api_key,
            is_active=p.is_active,
            is_default=p.is_default,
            rate_limit_minutes=p.rate_limit_minutes,
            created_at=p.created_at,
            updated_at=p.updated_at,
        )
