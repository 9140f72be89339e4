from __future__ import annotations

from typing import Tuple


SECONDS_PER_DAY = 24 * 60 * 60


def clamp(v: float, lo: float, hi: float) -> float:
    return float(min(hi, max(lo, v)))


def make_tile_id(z: int, x: int, y: int) -> str:
    return f"{int(z)}:{int(x)}:{int(y)}"


def parse_tile_id(tile_id: str) -> Tuple[int, int, int]:
    """
    Parse "z:x:y" into integers.
    Raises ValueError on anything else.
    """
    parts = tile_id.split(":")
    if len(parts) != 3:
        raise ValueError(f"Invalid tile id: {tile_id!r}")
    z, x, y = (int(p) for p in parts)
    return z, x, y
