"""Location registry: CRUD, soft delete, geocoding-assisted creation."""

import logging
import math
from typing import Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..errors import DuplicateLocation, NotFound, ValidationFailed
from ..models.database import utcnow
from ..models.location import Location
from .geocoding import GeocodingClient, GeocodingResult
from .providers import resolve_provider

logger = logging.getLogger(__name__)

LOCATION_UNITS = ("metric", "imperial")
COORD_PRECISION = 7
DEFAULT_RADIUS_KM = 10.0

_EDITABLE = (
    "name", "city", "state", "country", "country_code", "latitude", "longitude",
    "units", "timezone", "is_active", "is_favorite", "geocoding_data",
)


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometres between two lat/lon points."""
    R = 6371.0  # Earth radius in km
    rlat1, rlat2 = math.radians(lat1), math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = math.sin(dlat / 2) ** 2 + math.cos(rlat1) * math.cos(rlat2) * math.sin(dlon / 2) ** 2
    return R * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def _live(db: Session):
    return db.query(Location).filter(Location.deleted_at.is_(None))


def _normalize(values: dict) -> dict:
    values = {k: v for k, v in values.items() if k in _EDITABLE and v is not None}
    if "latitude" in values:
        lat = float(values["latitude"])
        if not -90 <= lat <= 90:
            raise ValidationFailed("latitude must be between -90 and 90", field="latitude")
        values["latitude"] = round(lat, COORD_PRECISION)
    if "longitude" in values:
        lon = float(values["longitude"])
        if not -180 <= lon <= 180:
            raise ValidationFailed("longitude must be between -180 and 180", field="longitude")
        values["longitude"] = round(lon, COORD_PRECISION)
    if "units" in values and values["units"] not in LOCATION_UNITS:
        raise ValidationFailed("units must be metric or imperial", field="units")
    if "country_code" in values:
        values["country_code"] = str(values["country_code"]).upper()[:2]
    if "name" in values and not str(values["name"]).strip():
        raise ValidationFailed("name must not be empty", field="name")
    return values


def _check_duplicate(db: Session, lat: float, lon: float, exclude_id: Optional[int] = None) -> None:
    q = _live(db).filter(Location.latitude == lat, Location.longitude == lon)
    if exclude_id is not None:
        q = q.filter(Location.id != exclude_id)
    existing = q.first()
    if existing is not None:
        raise DuplicateLocation(existing.id)


def list_locations(
    db: Session,
    active: Optional[bool] = None,
    favorite: Optional[bool] = None,
    country: Optional[str] = None,
    search: Optional[str] = None,
    with_deleted: bool = False,
    limit: int = 100,
) -> list[Location]:
    q = db.query(Location) if with_deleted else _live(db)
    if active is not None:
        q = q.filter(Location.is_active.is_(active))
    if favorite is not None:
        q = q.filter(Location.is_favorite.is_(favorite))
    if country:
        q = q.filter(func.upper(Location.country) == country.upper())
    if search:
        term = f"%{search.lower()}%"
        q = q.filter(or_(
            func.lower(Location.name).like(term),
            func.lower(Location.city).like(term),
            func.lower(Location.state).like(term),
            func.lower(Location.country).like(term),
        ))
    return q.order_by(Location.is_favorite.desc(), Location.name).limit(limit).all()


def get_location(db: Session, location_id: int, with_deleted: bool = False) -> Location:
    q = db.query(Location) if with_deleted else _live(db)
    location = q.filter(Location.id == location_id).first()
    if location is None:
        raise NotFound("Location", location_id)
    return location


def create_location(db: Session, **values) -> Location:
    values = _normalize(values)
    for key in ("name", "latitude", "longitude"):
        if key not in values:
            raise ValidationFailed(f"{key} is required", field=key)
    _check_duplicate(db, values["latitude"], values["longitude"])
    location = Location(**values)
    db.add(location)
    db.commit()
    db.refresh(location)
    logger.info(
        "Location %s created: %s (%.4f, %.4f)",
        location.id, location.name, location.latitude, location.longitude,
    )
    return location


def update_location(db: Session, location_id: int, **values) -> Location:
    location = get_location(db, location_id)
    values = _normalize(values)
    lat = values.get("latitude", location.latitude)
    lon = values.get("longitude", location.longitude)
    if lat != location.latitude or lon != location.longitude:
        _check_duplicate(db, lat, lon, exclude_id=location.id)
    for key, value in values.items():
        setattr(location, key, value)
    db.commit()
    db.refresh(location)
    return location


def delete_location(db: Session, location_id: int) -> None:
    """Soft delete; data rows stay until the location is purged."""
    location = get_location(db, location_id)
    location.deleted_at = utcnow()
    location.is_active = False
    db.commit()
    logger.info("Location %s soft-deleted", location_id)


def restore_location(db: Session, location_id: int) -> Location:
    location = get_location(db, location_id, with_deleted=True)
    if location.deleted_at is not None:
        _check_duplicate(db, location.latitude, location.longitude, exclude_id=location.id)
        location.deleted_at = None
        db.commit()
        db.refresh(location)
    return location


def purge_location(db: Session, location_id: int) -> None:
    """Hard delete.  Weather, minutely and alert rows go with it (FK cascade)."""
    location = get_location(db, location_id, with_deleted=True)
    db.delete(location)
    db.commit()
    logger.info("Location %s purged", location_id)


def set_active(db: Session, location_id: int, active: bool) -> Location:
    location = get_location(db, location_id)
    location.is_active = active
    db.commit()
    db.refresh(location)
    return location


def set_favorite(db: Session, location_id: int, favorite: Optional[bool] = None) -> Location:
    """Set the favorite flag, or toggle it when ``favorite`` is None."""
    location = get_location(db, location_id)
    location.is_favorite = (not location.is_favorite) if favorite is None else favorite
    db.commit()
    db.refresh(location)
    return location


def nearby(
    db: Session,
    lat: float,
    lon: float,
    radius_km: float = DEFAULT_RADIUS_KM,
) -> list[tuple[Location, float]]:
    """Live locations within ``radius_km``, nearest first, with distances."""
    if radius_km <= 0:
        raise ValidationFailed("radius must be positive", field="radius")
    # Bounding box prefilter; exact distance is checked in Python
    dlat = radius_km / 111.0
    dlon = radius_km / max(111.0 * math.cos(math.radians(lat)), 1e-6)
    candidates = _live(db).filter(
        Location.latitude.between(lat - dlat, lat + dlat),
        Location.longitude.between(lon - dlon, lon + dlon),
    ).all()
    hits = []
    for loc in candidates:
        dist = haversine_km(lat, lon, loc.latitude, loc.longitude)
        if dist <= radius_km:
            hits.append((loc, round(dist, 3)))
    hits.sort(key=lambda h: h[1])
    return hits


def create_from_geocoding(
    db: Session,
    result: GeocodingResult,
    display_name: Optional[str] = None,
    units: str = "metric",
    is_favorite: bool = False,
    timezone: Optional[str] = None,
) -> Location:
    """Create a location from a geocoding hit.

    Name precedence: caller's display name, then the English local name,
    then the provider's canonical name.
    """
    name = display_name or result.local_names.get("en") or result.name
    return create_location(
        db,
        name=name,
        city=result.name,
        state=result.state,
        country=result.country,
        country_code=result.country,
        latitude=result.latitude,
        longitude=result.longitude,
        units=units,
        is_favorite=is_favorite,
        timezone=timezone,
        geocoding_data=result.raw,
    )


async def geocode(
    db: Session,
    text: str,
    limit: int = 5,
    client: Optional[GeocodingClient] = None,
) -> list[GeocodingResult]:
    """Search places using the active provider's API key."""
    provider = resolve_provider(db)
    client = client or GeocodingClient()
    return await client.search(text, provider.api_key, limit=limit)
