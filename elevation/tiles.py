from __future__ import annotations

import logging
import math
from typing import Iterable, Optional, Protocol

import numpy as np

from common.types import Coordinate, TileCoordinate
from common.utils import clamp


log = logging.getLogger(__name__)

TILE_SIZE = 256
TILE_PIXELS = TILE_SIZE * TILE_SIZE
DEFAULT_ZOOM = 15
NO_DATA = "e"  # GSI sentinel for "no sample"


class ElevationSource(Protocol):
    """Authoritative remote tile source; returns None instead of raising."""

    def fetch_tile(self, z: int, x: int, y: int) -> Optional[np.ndarray]:
        ...


# -------------------------
# Web Mercator tile addressing
# -------------------------
def calculate_tile_coord(coord: Coordinate, zoom: int = DEFAULT_ZOOM) -> TileCoordinate:
    """
    Slippy-map tile and in-tile pixel for a WGS84 coordinate.

    Latitudes beyond ~85.05° give degenerate tiles; pixels are still clamped.
    """
    n = 2.0 ** zoom
    x = (coord.lon + 180.0) / 360.0 * n
    lat_rad = math.radians(coord.lat)
    y = (1.0 - math.asinh(math.tan(lat_rad)) / math.pi) / 2.0 * n

    tile_x = math.floor(x)
    tile_y = math.floor(y)
    pixel_x = clamp(math.floor((x - tile_x) * TILE_SIZE), 0, TILE_SIZE - 1)
    pixel_y = clamp(math.floor((y - tile_y) * TILE_SIZE), 0, TILE_SIZE - 1)
    return TileCoordinate(zoom=int(zoom), tile_x=int(tile_x), tile_y=int(tile_y),
                          pixel_x=int(pixel_x), pixel_y=int(pixel_y))


# -------------------------
# Tile text codec
# -------------------------
def _parse_sample(token: str) -> float:
    if token == NO_DATA:
        return 0.0
    try:
        return float(token)
    except ValueError:
        return 0.0


def parse_tile_text(text: str) -> Optional[np.ndarray]:
    """
    Parse newline-delimited CSV rows into a flat float64 array of 65,536 samples.

    Lenient: the 'e' sentinel and unparseable tokens become 0.0. Any other
    sample count means the tile is corrupt and None is returned.
    """
    values = []
    for line in text.splitlines():
        if not line:
            continue
        tokens = line.split(",")
        if tokens[-1] == "":
            tokens.pop()  # trailing comma
        values.extend(_parse_sample(tok) for tok in tokens)

    if len(values) != TILE_PIXELS:
        log.error("Parsed elevation tile size mismatch", extra={"extra": {"samples": len(values)}})
        return None
    arr = np.asarray(values, dtype=np.float64)
    arr.setflags(write=False)
    return arr


def serialize_tile(samples: Iterable[float]) -> str:
    """
    Inverse of parse_tile_text: 256 '%g' values per row, each row newline-terminated.
    """
    if not isinstance(samples, np.ndarray):
        samples = list(samples)
    arr = np.asarray(samples, dtype=np.float64).ravel()
    if arr.size != TILE_PIXELS:
        raise ValueError(f"Tile must have {TILE_PIXELS} samples, got {arr.size}")
    rows = arr.reshape(TILE_SIZE, TILE_SIZE)
    return "".join(",".join(f"{v:g}" for v in row) + "\n" for row in rows)


def sample_at(tile: np.ndarray, tc: TileCoordinate) -> float:
    return float(tile[tc.pixel_index])
