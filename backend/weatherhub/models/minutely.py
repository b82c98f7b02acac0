"""ORM model for minute-level precipitation forecasts."""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, Float, ForeignKey, Index, Integer, JSON, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base, UTCDateTime, utcnow


class MinutelyRecord(Base):
    __tablename__ = "minutely_records"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    location_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("locations.id", ondelete="CASCADE"), nullable=False
    )
    data_timestamp: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    # When the forecast was issued (payload "current.dt" or the fetch time)
    forecast_timestamp: Mapped[Optional[datetime]] = mapped_column(UTCDateTime, nullable=True)
    precipitation: Mapped[Optional[float]] = mapped_column(Float, nullable=True)  # mm/h
    rain: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    snow: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    precipitation_type: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    precipitation_probability: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    temperature: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    humidity: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    pressure: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    wind_speed: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    wind_direction: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    units: Mapped[str] = mapped_column(String(10), nullable=False, default="metric")
    api_source: Mapped[str] = mapped_column(String(32), nullable=False, default="openweathermap")
    is_forecast: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    forecast_minute: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)  # 0..60
    raw_data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint(
            "location_id", "data_timestamp", "forecast_timestamp", name="uq_minutely_natural_key"
        ),
        Index("idx_minutely_location_time", "location_id", "data_timestamp"),
    )
