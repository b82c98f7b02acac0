"""ORM model for current / hourly / daily / historical weather rows."""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, Float, ForeignKey, Index, Integer, JSON, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base, UTCDateTime, utcnow

DATA_TYPES = ("current", "hourly", "daily", "historical")

DATA_TYPE_NAMES = {
    "current": "Current Weather",
    "hourly": "Hourly Forecast",
    "daily": "Daily Forecast",
    "historical": "Historical Data",
}


class WeatherRecord(Base):
    """One provider observation or forecast point for a location.

    Natural key is (location_id, data_type, data_timestamp).  created_at is
    the fetch time and drives the current-snapshot retention.
    """

    __tablename__ = "weather_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    location_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("locations.id", ondelete="CASCADE"), nullable=False
    )
    data_type: Mapped[str] = mapped_column(String(16), nullable=False)
    data_timestamp: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    # Temperature
    temperature: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    feels_like_temperature: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    temperature_min: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    temperature_max: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    temperature_morning: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    temperature_day: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    temperature_evening: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    temperature_night: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    feels_like_morning: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    feels_like_day: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    feels_like_evening: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    feels_like_night: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Atmosphere
    pressure: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    humidity: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    dew_point: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    clouds: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    uvi: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    visibility: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Wind
    wind_speed: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    wind_gust: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    wind_direction: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Precipitation
    precipitation_1h: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    precipitation_3h: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    rain_1h: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    rain_3h: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    snow_1h: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    snow_3h: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    rain_daily: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    snow_daily: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    precipitation_probability: Mapped[Optional[float]] = mapped_column(Float, nullable=True)  # 0..1

    # Sun / moon
    sunrise: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    sunset: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    moonrise: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    moonset: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    moon_phase: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Condition
    weather_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    weather_main: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    weather_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    weather_icon: Mapped[Optional[str]] = mapped_column(String(8), nullable=True)
    summary: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    units: Mapped[str] = mapped_column(String(10), nullable=False, default="metric")
    is_forecast: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    api_source: Mapped[str] = mapped_column(Text, nullable=False, default="openweathermap")
    raw_data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint("location_id", "data_type", "data_timestamp", name="uq_weather_natural_key"),
        Index("idx_weather_location_type", "location_id", "data_type", "data_timestamp"),
    )
