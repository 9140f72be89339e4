from __future__ import annotations

import math
from typing import Sequence, Tuple

from common.types import Coordinate
from common.utils import clamp


EARTH_RADIUS_KM = 6371.0088  # mean Earth radius
KM_PER_DEG = EARTH_RADIUS_KM * math.pi / 180.0

# Fallback direction for zero-length segments; its left-hand perpendicular is due north.
EAST = (1.0, 0.0)


# -------------------------
# Great-circle distance
# -------------------------
def haversine_km(a: Coordinate, b: Coordinate) -> float:
    """Haversine great-circle distance on a spherical Earth (km)."""
    p1 = math.radians(a.lat)
    p2 = math.radians(b.lat)
    dphi = p2 - p1
    dl = math.radians(b.lon - a.lon)
    h = math.sin(dphi / 2.0) ** 2 + math.cos(p1) * math.cos(p2) * math.sin(dl / 2.0) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(h)))


def chain_length_km(points: Sequence[Coordinate]) -> float:
    """Sum of haversine legs along an ordered point sequence."""
    return sum(haversine_km(points[i], points[i + 1]) for i in range(len(points) - 1))


# -------------------------
# Local planar projection
# -------------------------
class LocalProjection:
    """
    Equirectangular projection around a reference latitude/longitude.

    Good to a few tenths of a percent over the tens of kilometres a detour spans;
    x grows east, y grows north, both in km.
    """

    def __init__(self, origin: Coordinate):
        self.origin = origin
        self._kx = KM_PER_DEG * math.cos(math.radians(origin.lat))
        self._ky = KM_PER_DEG

    def to_km(self, c: Coordinate) -> Tuple[float, float]:
        return ((c.lon - self.origin.lon) * self._kx, (c.lat - self.origin.lat) * self._ky)

    def to_coord(self, x_km: float, y_km: float) -> Coordinate:
        lat = self.origin.lat + y_km / self._ky
        lon = self.origin.lon + (x_km / self._kx if self._kx else 0.0)
        lat = clamp(lat, -90.0, 90.0)
        # wrap across the antimeridian, however many turns the offset spans
        if not -180.0 <= lon <= 180.0:
            lon = (lon + 180.0) % 360.0 - 180.0
        return Coordinate(lat, lon)


def midpoint(a: Coordinate, b: Coordinate) -> Coordinate:
    return Coordinate((a.lat + b.lat) / 2.0, (a.lon + b.lon) / 2.0)


# -------------------------
# Perpendicular offsets
# -------------------------
def unit_and_perpendicular(dx: float, dy: float) -> Tuple[Tuple[float, float], Tuple[float, float], float]:
    """
    Return (unit, perpendicular, length) for the planar vector (dx, dy).

    The perpendicular is the left-hand rotation (-uy, ux). A zero-length vector
    falls back to EAST, so the perpendicular points due north.
    """
    length = math.hypot(dx, dy)
    if length == 0.0:
        ux, uy = EAST
    else:
        ux, uy = dx / length, dy / length
    return (ux, uy), (-uy, ux), length


def offset_point(
    proj: LocalProjection,
    base_km: Tuple[float, float],
    perp: Tuple[float, float],
    distance_km: float,
) -> Coordinate:
    """Move `distance_km` from a projected base point along `perp`, back to lat/lon."""
    return proj.to_coord(base_km[0] + perp[0] * distance_km, base_km[1] + perp[1] * distance_km)
