"""Address lookup proxy (Nominatim)."""

from fastapi import APIRouter, HTTPException, Query

from shuttle.schemas.service import GeocodingResult

router = APIRouter(prefix="/api/geocoding", tags=["geocoding"])

# Will be set by main.py
geocoder = None


@router.get("/search", response_model=list[GeocodingResult])
async def search(q: str):
    if geocoder is None:
        return []
    return await geocoder.search(q)


@router.get("/reverse", response_model=GeocodingResult)
async def reverse(lat: float = Query(ge=-90, le=90), lon: float = Query(ge=-180, le=180)):
    if geocoder is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    result = await geocoder.reverse(lat, lon)
    if result is None:
        raise HTTPException(status_code=404, detail="No address found")
    return result
