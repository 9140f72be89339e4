from __future__ import annotations

from typing import List

from common.types import Coordinate


def _next_value(encoded: str, index: int) -> tuple[int, int]:
    shift = 0
    result = 0
    while True:
        b = ord(encoded[index]) - 63
        index += 1
        result |= (b & 0x1F) << shift
        shift += 5
        if b < 0x20:
            break
    delta = ~(result >> 1) if result & 1 else result >> 1
    return delta, index


def decode_polyline(encoded: str, precision: float = 1e5) -> List[Coordinate]:
    """
    Decode a Google encoded polyline into coordinates.

    OSRM uses precision 1e5 for `geometries=polyline` and 1e6 for `polyline6`.
    """
    coords: List[Coordinate] = []
    index = 0
    lat = 0
    lon = 0
    while index < len(encoded):
        dlat, index = _next_value(encoded, index)
        dlon, index = _next_value(encoded, index)
        lat += dlat
        lon += dlon
        coords.append(Coordinate(lat / precision, lon / precision))
    return coords
