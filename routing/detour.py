from __future__ import annotations

"""
Detour candidate generation.

Given start/end, the rider's fixed waypoints and a target distance, propose
waypoint insertions that bulge the direct path sideways so the routed length
approaches the target:

  - single-point: one waypoint off the leg midpoint, on either side
  - polygon:      two waypoints at 1/3 and 2/3 of the leg, on either side

Candidates are only proposals. Nothing is filtered here; the selector routes
each one and keeps the best.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from common.geo import (
    LocalProjection,
    chain_length_km,
    haversine_km,
    midpoint,
    offset_point,
    unit_and_perpendicular,
)
from common.types import Candidate, Coordinate, ShapeTag


log = logging.getLogger(__name__)


@dataclass(frozen=True)
class DetourConfig:
    """
    Tunables for candidate generation (all empirically chosen).

    Attributes:
        threshold_factor: no detour while target <= straight * factor.
        near_threshold_ratio: target/straight below this uses near_threshold_factors.
        near_threshold_factors: small bulges for targets just above the threshold.
        expansion_factors: bulges for clearly longer targets.
        loop_factors: multipliers of the loop radius (target / 2π) when start == end.
        height_ratio: share of the missing distance used as bulge height.
        polygon_offset_ratio: polygon waypoints sit at this fraction of the height.
    """
    threshold_factor: float = 1.2
    near_threshold_ratio: float = 1.1
    near_threshold_factors: Tuple[float, ...] = (0.1, 0.2)
    expansion_factors: Tuple[float, ...] = (0.5, 0.8, 1.0, 1.2, 1.5)
    loop_factors: Tuple[float, ...] = (0.2, 0.3, 0.4, 0.5, 0.6)
    height_ratio: float = 0.5
    polygon_offset_ratio: float = 0.8

    @classmethod
    def from_dict(cls, d: Optional[Dict[str, Any]]) -> "DetourConfig":
        d = d or {}
        base = cls()
        return cls(
            threshold_factor=float(d.get("detour_threshold_factor", base.threshold_factor)),
            near_threshold_ratio=float(d.get("near_threshold_ratio", base.near_threshold_ratio)),
            near_threshold_factors=tuple(float(f) for f in d.get("near_threshold_factors", base.near_threshold_factors)),
            expansion_factors=tuple(float(f) for f in d.get("expansion_factors", base.expansion_factors)),
            loop_factors=tuple(float(f) for f in d.get("loop_factors", base.loop_factors)),
            height_ratio=float(d.get("height_ratio", base.height_ratio)),
            polygon_offset_ratio=float(d.get("polygon_offset_ratio", base.polygon_offset_ratio)),
        )


def detour_heights(straight_km: float, target_km: float, config: DetourConfig) -> List[float]:
    """
    Perpendicular offset magnitudes (km), one per expansion factor.

    A zero-length chain (start == end) is a loop: heights scale with the
    radius of a circle whose circumference is the target distance.
    """
    if straight_km == 0.0:
        radius = target_km / (2.0 * math.pi)
        return [f * radius for f in config.loop_factors]

    ratio = target_km / straight_km
    factors = config.near_threshold_factors if ratio < config.near_threshold_ratio else config.expansion_factors
    missing = target_km - straight_km
    return [missing * config.height_ratio * f for f in factors]


def _longest_leg(chain: Sequence[Coordinate]) -> int:
    best, best_len = 0, -1.0
    for i in range(len(chain) - 1):
        d = haversine_km(chain[i], chain[i + 1])
        if d > best_len:
            best, best_len = i, d
    return best


def _insert(fixed: Tuple[Coordinate, ...], leg: int, points: Tuple[Coordinate, ...]) -> Tuple[Coordinate, ...]:
    # leg i runs chain[i] -> chain[i+1]; chain = (start, *fixed, end)
    return fixed[:leg] + points + fixed[leg:]


def generate_candidates(
    start: Coordinate,
    end: Coordinate,
    fixed_waypoints: Sequence[Coordinate],
    target_distance_km: float,
    config: Optional[DetourConfig] = None,
) -> List[Candidate]:
    """
    Build the ordered candidate list for one route request.

    Returns:
        [] when target_distance_km <= 0; otherwise the Direct candidate first,
        then per height: single +side, single -side, polygon +side, polygon -side.
        Fixed waypoints appear in every candidate, in their original order;
        detour points go into the longest leg of start -> fixed... -> end.
    """
    cfg = config or DetourConfig()
    if target_distance_km <= 0:
        return []

    fixed = tuple(fixed_waypoints)
    chain = (start, *fixed, end)
    straight_km = chain_length_km(chain)

    direct = Candidate(waypoints=fixed, shape=ShapeTag.DIRECT)
    if target_distance_km <= straight_km * cfg.threshold_factor:
        return [direct]

    leg = _longest_leg(chain)
    a, b = chain[leg], chain[leg + 1]
    proj = LocalProjection(midpoint(a, b))
    ax, ay = proj.to_km(a)
    bx, by = proj.to_km(b)
    _, perp, seg_len = unit_and_perpendicular(bx - ax, by - ay)

    mid_km = ((ax + bx) / 2.0, (ay + by) / 2.0)
    thirds_km = [(ax + (bx - ax) * t, ay + (by - ay) * t) for t in (1.0 / 3.0, 2.0 / 3.0)]

    candidates: List[Candidate] = [direct]
    for height in detour_heights(straight_km, target_distance_km, cfg):
        for side in (1.0, -1.0):
            via = offset_point(proj, mid_km, perp, side * height)
            candidates.append(Candidate(_insert(fixed, leg, (via,)), ShapeTag.SINGLE_POINT))
        if seg_len > 0.0:
            for side in (1.0, -1.0):
                pts = tuple(
                    offset_point(proj, t, perp, side * height * cfg.polygon_offset_ratio) for t in thirds_km
                )
                candidates.append(Candidate(_insert(fixed, leg, pts), ShapeTag.POLYGON))

    log.debug(
        "Generated detour candidates",
        extra={"extra": {"count": len(candidates), "straight_km": round(straight_km, 3), "target_km": target_distance_km}},
    )
    return candidates


def triangle_detour_point(start: Coordinate, end: Coordinate, target_distance_km: float,
                          threshold_factor: float = 1.2) -> Optional[Coordinate]:
    """
    Single apex waypoint so that start -> apex -> end forms an isosceles
    triangle whose two sides add up to the target distance.

    Returns None when no detour is needed or possible.
    """
    if target_distance_km <= 0:
        return None
    straight_km = haversine_km(start, end)
    if straight_km == 0.0 or target_distance_km <= straight_km * threshold_factor:
        return None

    half_target = target_distance_km / 2.0
    half_straight = straight_km / 2.0
    height = math.sqrt(half_target * half_target - half_straight * half_straight)
    if height <= 0:
        return None

    proj = LocalProjection(midpoint(start, end))
    ax, ay = proj.to_km(start)
    bx, by = proj.to_km(end)
    _, perp, _ = unit_and_perpendicular(bx - ax, by - ay)
    return offset_point(proj, ((ax + bx) / 2.0, (ay + by) / 2.0), perp, height)
