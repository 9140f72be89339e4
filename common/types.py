from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Tuple


@dataclass(frozen=True, slots=True)
class Coordinate:
    """
    WGS84 point in degrees. Immutable; equality is by value.
    """
    lat: float
    lon: float

    def __post_init__(self) -> None:
        if not (-90.0 <= self.lat <= 90.0) or not (-180.0 <= self.lon <= 180.0):
            raise ValueError(f"lat/lon out of range: ({self.lat}, {self.lon})")

    def as_tuple(self) -> Tuple[float, float]:
        return (self.lat, self.lon)

    @classmethod
    def parse(cls, text: str) -> "Coordinate":
        """Parse 'lat,lon' (as used on the command line)."""
        parts = text.split(",")
        if len(parts) != 2:
            raise ValueError("Coordinate must be 'lat,lon'")
        return cls(float(parts[0]), float(parts[1]))


@dataclass(frozen=True, slots=True)
class RouteResult:
    """
    One successful path-engine evaluation.

    Attributes:
        distance_m: total path length (meters).
        duration_s: estimated moving time (seconds).
        elevation_gain_m: cumulative climb along `path` (meters).
        geometry: encoded polyline as returned by the path engine.
        path: decoded vertices of the geometry, in travel order.
    """
    distance_m: float
    duration_s: float
    elevation_gain_m: float = 0.0
    geometry: str = ""
    path: Tuple[Coordinate, ...] = field(default=(), repr=False)

    @property
    def distance_km(self) -> float:
        return self.distance_m / 1000.0

    def to_summary(self) -> Dict[str, Any]:
        return {
            "total_distance_m": self.distance_m,
            "estimated_moving_time_s": self.duration_s,
            "elevation_gain_m": self.elevation_gain_m,
            "geometry": self.geometry,
        }


class ShapeTag(str, Enum):
    DIRECT = "direct"
    SINGLE_POINT = "single_point"
    POLYGON = "polygon"


@dataclass(frozen=True, slots=True)
class Candidate:
    """Waypoint sequence proposed for one route-selection call (start/end excluded)."""
    waypoints: Tuple[Coordinate, ...]
    shape: ShapeTag

    @property
    def waypoint_list(self) -> List[Coordinate]:
        return list(self.waypoints)


@dataclass(frozen=True, slots=True)
class TileCoordinate:
    """
    Slippy-map tile address plus the pixel inside the 256x256 tile.
    """
    zoom: int
    tile_x: int
    tile_y: int
    pixel_x: int
    pixel_y: int

    def __post_init__(self) -> None:
        if not (0 <= self.pixel_x <= 255) or not (0 <= self.pixel_y <= 255):
            raise ValueError("pixel_x/pixel_y must be within 0..255")

    @property
    def tile_id(self) -> str:
        return f"{self.zoom}:{self.tile_x}:{self.tile_y}"

    @property
    def pixel_index(self) -> int:
        return self.pixel_y * 256 + self.pixel_x


@dataclass(frozen=True, slots=True)
class ElevationCacheEntry:
    """Persisted tile record: raw CSV text and its Unix write time."""
    content: str
    updated_at: int
