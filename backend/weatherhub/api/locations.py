"""Location registry endpoints, including geocoding search/create."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from ..errors import ValidationFailed
from ..models.database import get_db
from ..schemas.weather import LocationOut
from ..services import locations as location_service
from ..services.geocoding import GeocodingClient, GeocodingResult
from .deps import get_geocoder

router = APIRouter(prefix="/locations", tags=["locations"])


class LocationCreate(BaseModel):
    name: str
    latitude: float
    longitude: float
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    country_code: Optional[str] = None
    units: str = "metric"
    timezone: Optional[str] = None
    is_active: bool = True
    is_favorite: bool = False


class LocationUpdate(BaseModel):
    name: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    country_code: Optional[str] = None
    units: Optional[str] = None
    timezone: Optional[str] = None
    is_active: Optional[bool] = None
    is_favorite: Optional[bool] = None


class GeocodedCreate(BaseModel):
    """A raw geocoding hit (as returned by /locations/search) plus overrides."""
    geocoding_data: dict
    display_name: Optional[str] = None
    units: str = "metric"
    timezone: Optional[str] = None
    is_favorite: bool = False


def _out(loc, distance_km: Optional[float] = None) -> dict:
    return LocationOut.from_record(loc, distance_km).model_dump(mode="json", exclude_none=True)


@router.get("")
def list_locations(
    active: Optional[bool] = None,
    favorite: Optional[bool] = None,
    country: Optional[str] = None,
    search: Optional[str] = None,
    with_deleted: bool = False,
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
):
    rows = location_service.list_locations(
        db, active=active, favorite=favorite, country=country, search=search,
        with_deleted=with_deleted, limit=limit,
    )
    return [_out(loc) for loc in rows]


@router.get("/favorites")
def list_favorites(db: Session = Depends(get_db)):
    return [_out(loc) for loc in location_service.list_locations(db, favorite=True)]


@router.get("/active")
def list_active(db: Session = Depends(get_db)):
    return [_out(loc) for loc in location_service.list_locations(db, active=True)]


@router.get("/nearby")
def nearby(
    lat: float = Query(..., ge=-90, le=90),
    lon: float = Query(..., ge=-180, le=180),
    radius: float = Query(location_service.DEFAULT_RADIUS_KM, gt=0, le=20000),
    db: Session = Depends(get_db),
):
    return [_out(loc, dist) for loc, dist in location_service.nearby(db, lat, lon, radius)]


@router.get("/search")
async def search(
    q: str,
    limit: int = 5,
    db: Session = Depends(get_db),
    geocoder: GeocodingClient = Depends(get_geocoder),
):
    """Geocode free text with the active provider's key."""
    results = await location_service.geocode(db, q, limit=limit, client=geocoder)
    return [r.raw for r in results]


@router.post("", status_code=201)
def create_location(body: LocationCreate, db: Session = Depends(get_db)):
    return _out(location_service.create_location(db, **body.model_dump()))


@router.post("/from-geocoding", status_code=201)
def create_from_geocoding(body: GeocodedCreate, db: Session = Depends(get_db)):
    try:
        result = GeocodingResult.from_dict(body.geocoding_data)
    except (KeyError, TypeError, ValueError) as exc:
        raise ValidationFailed("geocoding_data must contain lat and lon", field="geocoding_data") from exc
    location = location_service.create_from_geocoding(
        db, result,
        display_name=body.display_name,
        units=body.units,
        is_favorite=body.is_favorite,
        timezone=body.timezone,
    )
    return _out(location)


@router.get("/{location_id}")
def get_location(location_id: int, db: Session = Depends(get_db)):
    return _out(location_service.get_location(db, location_id))


@router.put("/{location_id}")
def update_location(location_id: int, body: LocationUpdate, db: Session = Depends(get_db)):
    return _out(location_service.update_location(db, location_id, **body.model_dump()))


@router.delete("/{location_id}")
def delete_location(location_id: int, purge: bool = False, db: Session = Depends(get_db)):
    if purge:
        location_service.purge_location(db, location_id)
    else:
        location_service.delete_location(db, location_id)
    return {"deleted": location_id, "purged": purge}


@router.post("/{location_id}/restore")
def restore_location(location_id: int, db: Session = Depends(get_db)):
    return _out(location_service.restore_location(db, location_id))


@router.post("/{location_id}/activate")
def activate(location_id: int, db: Session = Depends(get_db)):
    return _out(location_service.set_active(db, location_id, True))


@router.post("/{location_id}/deactivate")
def deactivate(location_id: int, db: Session = Depends(get_db)):
    return _out(location_service.set_active(db, location_id, False))


@router.post("/{location_id}/favorite")
def toggle_favorite(location_id: int, db: Session = Depends(get_db)):
    return _out(location_service.set_favorite(db, location_id))
