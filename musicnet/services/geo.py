"""
GeoProximityIndex: "users / bands within R km of point P".

Distance is computed store-side by geodesic_distance_m (haversine on a
spherical Earth). A latitude/longitude bounding box over the indexed
coordinate columns narrows the candidate rows first; the box widens to all
longitudes near the poles and splits in two across the antimeridian.
"""
import logging
import math
from typing import NamedTuple, Union

from sqlalchemy import Float, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from musicnet.database import EARTH_RADIUS_M
from musicnet.models import Band, EntityKind, User

logger = logging.getLogger(__name__)

_MODELS = {EntityKind.USER: User, EntityKind.BAND: Band}


class NearbyMatch(NamedTuple):
    entity: Union[User, Band]
    distance_m: float


def bounding_box(
    lat: float, lng: float, radius_m: float
) -> tuple[float, float, list[tuple[float, float]]]:
    """
    Return (min_lat, max_lat, longitude_ranges) enclosing the search circle.

    longitude_ranges has one entry, or two when the box crosses ±180°.
    """
    angular = radius_m / EARTH_RADIUS_M
    d_lat = math.degrees(angular)
    min_lat, max_lat = lat - d_lat, lat + d_lat

    if min_lat <= -90.0 or max_lat >= 90.0:
        # circle contains a pole
        return max(min_lat, -90.0), min(max_lat, 90.0), [(-180.0, 180.0)]

    ratio = math.sin(angular) / math.cos(math.radians(lat))
    if ratio >= 1.0:
        return min_lat, max_lat, [(-180.0, 180.0)]
    d_lng = math.degrees(math.asin(ratio))
    min_lng, max_lng = lng - d_lng, lng + d_lng

    if min_lng < -180.0:
        return min_lat, max_lat, [(min_lng + 360.0, 180.0), (-180.0, max_lng)]
    if max_lng > 180.0:
        return min_lat, max_lat, [(min_lng, 180.0), (-180.0, max_lng - 360.0)]
    return min_lat, max_lat, [(min_lng, max_lng)]


async def find_nearby(
    session: AsyncSession,
    kind: EntityKind,
    center_lat: float,
    center_lng: float,
    radius_km: float,
    limit: int,
) -> list[NearbyMatch]:
    """
    Entities of `kind` within radius_km of the centre, nearest first.

    Ties on distance are broken by entity id. Entities without a stored
    location never match. Bounds on radius_km / limit are the caller's job.
    """
    model = _MODELS[kind]
    radius_m = radius_km * 1000.0
    min_lat, max_lat, lng_ranges = bounding_box(center_lat, center_lng, radius_m)

    distance = func.geodesic_distance_m(
        center_lat, center_lng, model.latitude, model.longitude, type_=Float
    )
    distance_col = distance.label("distance_m")

    stmt = (
        select(model, distance_col)
        .where(model.latitude.is_not(None), model.longitude.is_not(None))
        .where(model.latitude.between(min_lat, max_lat))
        .where(or_(*(model.longitude.between(lo, hi) for lo, hi in lng_ranges)))
        .where(distance <= radius_m)
        .order_by(distance_col, model.id)
        .limit(limit)
    )
    result = await session.execute(stmt)
    matches = [NearbyMatch(entity, float(dist)) for entity, dist in result.all()]
    logger.debug(
        "find_nearby kind=%s centre=(%.5f, %.5f) r=%.1fkm → %d",
        kind.value, center_lat, center_lng, radius_km, len(matches),
    )
    return matches
