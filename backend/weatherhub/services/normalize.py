"""Normalize OpenWeatherMap One Call 3.0 JSON into typed records.

Field names on the dataclasses match the ORM columns so the reconciler can
feed the values straight into the models.  A sub-payload that is absent
from the response stays ``None``; an empty array is kept as ``[]`` so the
retention cleanup for that dataset still runs.  Missing optional values are
``None``, never zero.
"""

import logging
from dataclasses import dataclass, field, fields
from datetime import date, datetime, time, timezone
from typing import Any, Optional

from ..models.database import from_unix
from ..models.alert import CERTAINTIES, SEVERITIES, URGENCIES

logger = logging.getLogger(__name__)

DEFAULT_ALERT_SENDER = "OpenWeatherMap"

# What a malformed provider entry can raise while being typed
MALFORMED_ERRORS = (TypeError, ValueError, OverflowError, OSError, KeyError, AttributeError)


@dataclass
class CurrentConditions:
    data_timestamp: datetime
    temperature: Optional[float] = None
    feels_like_temperature: Optional[float] = None
    pressure: Optional[float] = None
    humidity: Optional[float] = None
    dew_point: Optional[float] = None
    uvi: Optional[float] = None
    clouds: Optional[float] = None
    visibility: Optional[float] = None
    wind_speed: Optional[float] = None
    wind_direction: Optional[float] = None
    wind_gust: Optional[float] = None
    rain_1h: Optional[float] = None
    snow_1h: Optional[float] = None
    sunrise: Optional[datetime] = None
    sunset: Optional[datetime] = None
    weather_id: Optional[int] = None
    weather_main: Optional[str] = None
    weather_description: Optional[str] = None
    weather_icon: Optional[str] = None
    raw_data: dict = field(default_factory=dict)


@dataclass
class HourlyPoint:
    data_timestamp: datetime
    temperature: Optional[float] = None
    feels_like_temperature: Optional[float] = None
    pressure: Optional[float] = None
    humidity: Optional[float] = None
    dew_point: Optional[float] = None
    uvi: Optional[float] = None
    clouds: Optional[float] = None
    visibility: Optional[float] = None
    wind_speed: Optional[float] = None
    wind_direction: Optional[float] = None
    wind_gust: Optional[float] = None
    precipitation_probability: Optional[float] = None
    rain_1h: Optional[float] = None
    snow_1h: Optional[float] = None
    weather_id: Optional[int] = None
    weather_main: Optional[str] = None
    weather_description: Optional[str] = None
    weather_icon: Optional[str] = None
    raw_data: dict = field(default_factory=dict)


@dataclass
class DailyPoint:
    data_timestamp: datetime
    summary: Optional[str] = None
    temperature_min: Optional[float] = None
    temperature_max: Optional[float] = None
    temperature_morning: Optional[float] = None
    temperature_day: Optional[float] = None
    temperature_evening: Optional[float] = None
    temperature_night: Optional[float] = None
    feels_like_morning: Optional[float] = None
    feels_like_day: Optional[float] = None
    feels_like_evening: Optional[float] = None
    feels_like_night: Optional[float] = None
    pressure: Optional[float] = None
    humidity: Optional[float] = None
    dew_point: Optional[float] = None
    uvi: Optional[float] = None
    clouds: Optional[float] = None
    wind_speed: Optional[float] = None
    wind_direction: Optional[float] = None
    wind_gust: Optional[float] = None
    precipitation_probability: Optional[float] = None
    rain_daily: Optional[float] = None
    snow_daily: Optional[float] = None
    sunrise: Optional[datetime] = None
    sunset: Optional[datetime] = None
    moonrise: Optional[datetime] = None
    moonset: Optional[datetime] = None
    moon_phase: Optional[float] = None
    weather_id: Optional[int] = None
    weather_main: Optional[str] = None
    weather_description: Optional[str] = None
    weather_icon: Optional[str] = None
    raw_data: dict = field(default_factory=dict)


@dataclass
class MinutelyPoint:
    data_timestamp: datetime
    precipitation: Optional[float] = None
    forecast_minute: Optional[int] = None
    # One Call only sends precipitation; the rest arrive via bulk store
    rain: Optional[float] = None
    snow: Optional[float] = None
    precipitation_type: Optional[str] = None
    precipitation_probability: Optional[float] = None
    temperature: Optional[float] = None
    humidity: Optional[float] = None
    pressure: Optional[float] = None
    wind_speed: Optional[float] = None
    wind_direction: Optional[float] = None
    raw_data: dict = field(default_factory=dict)


@dataclass
class AlertNotice:
    sender_name: str
    event: str
    start_time: datetime
    end_time: datetime
    description: Optional[str] = None
    tags: list = field(default_factory=list)
    severity: str = "unknown"
    urgency: str = "unknown"
    certainty: str = "unknown"
    raw_data: dict = field(default_factory=dict)


@dataclass
class HistoricalPoint:
    """One historical row: a timemachine hour or a day_summary day."""
    data_timestamp: datetime
    temperature: Optional[float] = None
    feels_like_temperature: Optional[float] = None
    temperature_min: Optional[float] = None
    temperature_max: Optional[float] = None
    temperature_morning: Optional[float] = None
    temperature_day: Optional[float] = None
    temperature_evening: Optional[float] = None
    temperature_night: Optional[float] = None
    pressure: Optional[float] = None
    humidity: Optional[float] = None
    dew_point: Optional[float] = None
    uvi: Optional[float] = None
    clouds: Optional[float] = None
    visibility: Optional[float] = None
    wind_speed: Optional[float] = None
    wind_direction: Optional[float] = None
    wind_gust: Optional[float] = None
    precipitation_1h: Optional[float] = None
    rain_1h: Optional[float] = None
    snow_1h: Optional[float] = None
    sunrise: Optional[datetime] = None
    sunset: Optional[datetime] = None
    weather_id: Optional[int] = None
    weather_main: Optional[str] = None
    weather_description: Optional[str] = None
    weather_icon: Optional[str] = None
    raw_data: dict = field(default_factory=dict)


@dataclass
class OneCallPayload:
    """Typed view of one One Call response.  None = key absent from response."""
    current: Optional[CurrentConditions] = None
    hourly: Optional[list[HourlyPoint]] = None
    daily: Optional[list[DailyPoint]] = None
    minutely: Optional[list[MinutelyPoint]] = None
    alerts: Optional[list[AlertNotice]] = None
    timezone: Optional[str] = None
    timezone_offset: Optional[int] = None


def record_values(point) -> dict[str, Any]:
    """Column -> value mapping for a normalized point (shallow)."""
    return {f.name: getattr(point, f.name) for f in fields(point)}


# --- Field helpers ---

def _num(value) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _weather(entry: dict) -> dict[str, Any]:
    """Flatten the first element of the ``weather`` array."""
    items = entry.get("weather")
    w = items[0] if isinstance(items, list) and items and isinstance(items[0], dict) else {}
    return {
        "weather_id": w.get("id"),
        "weather_main": w.get("main"),
        "weather_description": w.get("description"),
        "weather_icon": w.get("icon"),
    }


def _nested(entry: dict, key: str, sub: str) -> Optional[float]:
    value = entry.get(key)
    if isinstance(value, dict):
        return _num(value.get(sub))
    return None


def _has_dt(entry, dataset: str) -> bool:
    if not isinstance(entry, dict) or entry.get("dt") is None:
        logger.warning("Skipping %s entry without dt: %r", dataset, entry)
        return False
    return True


def _safe(parser, entry, dataset: str, *args):
    """Run one entry parser; a malformed entry is logged and dropped."""
    try:
        return parser(entry, *args)
    except MALFORMED_ERRORS as e:
        logger.warning("Skipping malformed %s entry (%s): %r", dataset, e, entry)
        return None


# --- Per-dataset parsers ---

def _parse_current(entry: dict) -> Optional[CurrentConditions]:
    if not _has_dt(entry, "current"):
        return None
    return CurrentConditions(
        data_timestamp=from_unix(entry["dt"]),
        temperature=_num(entry.get("temp")),
        feels_like_temperature=_num(entry.get("feels_like")),
        pressure=_num(entry.get("pressure")),
        humidity=_num(entry.get("humidity")),
        dew_point=_num(entry.get("dew_point")),
        uvi=_num(entry.get("uvi")),
        clouds=_num(entry.get("clouds")),
        visibility=_num(entry.get("visibility")),
        wind_speed=_num(entry.get("wind_speed")),
        wind_direction=_num(entry.get("wind_deg")),
        wind_gust=_num(entry.get("wind_gust")),
        rain_1h=_nested(entry, "rain", "1h"),
        snow_1h=_nested(entry, "snow", "1h"),
        sunrise=from_unix(entry.get("sunrise")),
        sunset=from_unix(entry.get("sunset")),
        raw_data=entry,
        **_weather(entry),
    )


def _parse_hourly(entry: dict) -> Optional[HourlyPoint]:
    if not _has_dt(entry, "hourly"):
        return None
    return HourlyPoint(
        data_timestamp=from_unix(entry["dt"]),
        temperature=_num(entry.get("temp")),
        feels_like_temperature=_num(entry.get("feels_like")),
        pressure=_num(entry.get("pressure")),
        humidity=_num(entry.get("humidity")),
        dew_point=_num(entry.get("dew_point")),
        uvi=_num(entry.get("uvi")),
        clouds=_num(entry.get("clouds")),
        visibility=_num(entry.get("visibility")),
        wind_speed=_num(entry.get("wind_speed")),
        wind_direction=_num(entry.get("wind_deg")),
        wind_gust=_num(entry.get("wind_gust")),
        precipitation_probability=_num(entry.get("pop")),
        rain_1h=_nested(entry, "rain", "1h"),
        snow_1h=_nested(entry, "snow", "1h"),
        raw_data=entry,
        **_weather(entry),
    )


def _parse_daily(entry: dict) -> Optional[DailyPoint]:
    if not _has_dt(entry, "daily"):
        return None
    return DailyPoint(
        data_timestamp=from_unix(entry["dt"]),
        summary=entry.get("summary"),
        temperature_min=_nested(entry, "temp", "min"),
        temperature_max=_nested(entry, "temp", "max"),
        temperature_morning=_nested(entry, "temp", "morn"),
        temperature_day=_nested(entry, "temp", "day"),
        temperature_evening=_nested(entry, "temp", "eve"),
        temperature_night=_nested(entry, "temp", "night"),
        feels_like_morning=_nested(entry, "feels_like", "morn"),
        feels_like_day=_nested(entry, "feels_like", "day"),
        feels_like_evening=_nested(entry, "feels_like", "eve"),
        feels_like_night=_nested(entry, "feels_like", "night"),
        pressure=_num(entry.get("pressure")),
        humidity=_num(entry.get("humidity")),
        dew_point=_num(entry.get("dew_point")),
        uvi=_num(entry.get("uvi")),
        clouds=_num(entry.get("clouds")),
        wind_speed=_num(entry.get("wind_speed")),
        wind_direction=_num(entry.get("wind_deg")),
        wind_gust=_num(entry.get("wind_gust")),
        precipitation_probability=_num(entry.get("pop")),
        rain_daily=_num(entry.get("rain")),
        snow_daily=_num(entry.get("snow")),
        sunrise=from_unix(entry.get("sunrise")),
        sunset=from_unix(entry.get("sunset")),
        moonrise=from_unix(entry.get("moonrise")),
        moonset=from_unix(entry.get("moonset")),
        moon_phase=_num(entry.get("moon_phase")),
        raw_data=entry,
        **_weather(entry),
    )


def _parse_minutely(entry: dict, index: int) -> Optional[MinutelyPoint]:
    if not _has_dt(entry, "minutely"):
        return None
    return MinutelyPoint(
        data_timestamp=from_unix(entry["dt"]),
        precipitation=_num(entry.get("precipitation")),
        forecast_minute=index,
        raw_data=entry,
    )


def _enum_value(value, allowed: tuple) -> str:
    v = str(value).strip().lower() if value is not None else ""
    return v if v in allowed else "unknown"


def _parse_alert(entry: dict) -> Optional[AlertNotice]:
    if not isinstance(entry, dict):
        return None
    event = entry.get("event")
    start = entry.get("start")
    end = entry.get("end")
    if not event or start is None or end is None:
        logger.warning("Skipping alert without event/start/end: %r", entry)
        return None
    tags = entry.get("tags") or []
    return AlertNotice(
        sender_name=entry.get("sender_name") or DEFAULT_ALERT_SENDER,
        event=event,
        start_time=from_unix(start),
        end_time=from_unix(end),
        description=entry.get("description"),
        tags=list(tags) if isinstance(tags, (list, tuple)) else [tags],
        severity=_enum_value(entry.get("severity"), SEVERITIES),
        urgency=_enum_value(entry.get("urgency"), URGENCIES),
        certainty=_enum_value(entry.get("certainty"), CERTAINTIES),
        raw_data=entry,
    )


def _parse_list(data: dict, key: str, parser) -> Optional[list]:
    if key not in data or data[key] is None:
        return None
    items = data[key]
    if not isinstance(items, list):
        logger.warning("Ignoring %s: expected a list, got %s", key, type(items).__name__)
        return None
    parsed = []
    for i, item in enumerate(items):
        extra = (i,) if key == "minutely" else ()
        point = _safe(parser, item, key, *extra)
        if point is not None:
            parsed.append(point)
    return parsed


def parse_onecall(data: dict) -> OneCallPayload:
    """Build a OneCallPayload from a decoded One Call response body."""
    current = None
    if isinstance(data.get("current"), dict):
        current = _safe(_parse_current, data["current"], "current")
    return OneCallPayload(
        current=current,
        hourly=_parse_list(data, "hourly", _parse_hourly),
        daily=_parse_list(data, "daily", _parse_daily),
        minutely=_parse_list(data, "minutely", _parse_minutely),
        alerts=_parse_list(data, "alerts", _parse_alert),
        timezone=data.get("timezone"),
        timezone_offset=data.get("timezone_offset"),
    )


# --- Historical ---

def _parse_timemachine_entry(entry: dict) -> Optional[HistoricalPoint]:
    if not _has_dt(entry, "timemachine"):
        return None
    return HistoricalPoint(
        data_timestamp=from_unix(entry["dt"]),
        temperature=_num(entry.get("temp")),
        feels_like_temperature=_num(entry.get("feels_like")),
        pressure=_num(entry.get("pressure")),
        humidity=_num(entry.get("humidity")),
        dew_point=_num(entry.get("dew_point")),
        uvi=_num(entry.get("uvi")),
        clouds=_num(entry.get("clouds")),
        visibility=_num(entry.get("visibility")),
        wind_speed=_num(entry.get("wind_speed")),
        wind_direction=_num(entry.get("wind_deg")),
        wind_gust=_num(entry.get("wind_gust")),
        rain_1h=_nested(entry, "rain", "1h"),
        snow_1h=_nested(entry, "snow", "1h"),
        sunrise=from_unix(entry.get("sunrise")),
        sunset=from_unix(entry.get("sunset")),
        raw_data=entry,
        **_weather(entry),
    )


def parse_timemachine(data: dict) -> list[HistoricalPoint]:
    """Parse a ``onecall/timemachine`` response (hour rows under ``data``)."""
    entries = data.get("data")
    if not isinstance(entries, list):
        return []
    points = []
    for entry in entries:
        point = _safe(_parse_timemachine_entry, entry, "timemachine")
        if point is not None:
            points.append(point)
    return points


def _summary_date(value, fallback_dt: int) -> datetime:
    """``date`` in a day_summary is "YYYY-MM-DD"; unix seconds are accepted too."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return from_unix(value)
    if isinstance(value, str):
        try:
            d = date.fromisoformat(value[:10])
            return datetime.combine(d, time.min, tzinfo=timezone.utc)
        except ValueError:
            logger.warning("Unparseable day_summary date %r, using request dt", value)
    return from_unix(fallback_dt)


def _parse_summary(data: dict, requested_dt: int) -> HistoricalPoint:
    wind = data.get("wind")
    wind_max = wind.get("max") if isinstance(wind, dict) else None
    if not isinstance(wind_max, dict):
        wind_max = {}
    return HistoricalPoint(
        data_timestamp=_summary_date(data.get("date"), requested_dt),
        temperature_min=_nested(data, "temperature", "min"),
        temperature_max=_nested(data, "temperature", "max"),
        temperature_morning=_nested(data, "temperature", "morning"),
        temperature_day=_nested(data, "temperature", "afternoon"),
        temperature_evening=_nested(data, "temperature", "evening"),
        temperature_night=_nested(data, "temperature", "night"),
        humidity=_nested(data, "humidity", "afternoon"),
        pressure=_nested(data, "pressure", "afternoon"),
        clouds=_nested(data, "cloud_cover", "afternoon"),
        wind_speed=_num(wind_max.get("speed")),
        wind_direction=_num(wind_max.get("direction")),
        precipitation_1h=_nested(data, "precipitation", "total"),
        raw_data=data,
    )


def parse_day_summary(data: dict, requested_dt: int) -> list[HistoricalPoint]:
    """Parse a ``onecall/day_summary`` response into a single historical row."""
    if not isinstance(data, dict) or not data:
        return []
    point = _safe(_parse_summary, data, "day_summary", requested_dt)
    return [point] if point is not None else []
