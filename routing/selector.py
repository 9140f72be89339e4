from __future__ import annotations

"""
Multi-candidate sampling & selection (MCSS).

Every detour candidate is routed through an injected evaluator; the route whose
distance (and optionally climb) is closest to the rider's targets wins.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence, Tuple, Union

from common.types import Candidate, Coordinate, RouteResult
from routing.detour import DetourConfig, generate_candidates


log = logging.getLogger(__name__)


class RouteEvaluator(Protocol):
    """Resolves a waypoint sequence (start/end bound by the implementer) to a route, or None."""

    def evaluate(self, waypoints: Sequence[Coordinate]) -> Optional[RouteResult]:
        ...


EvaluatorLike = Union[RouteEvaluator, Callable[[Sequence[Coordinate]], Optional[RouteResult]]]


@dataclass(frozen=True)
class CostWeights:
    distance: float = 1.0
    elevation: float = 2.0
    elevation_normalizer_m: float = 100.0

    @classmethod
    def from_dict(cls, d: Optional[Dict[str, Any]]) -> "CostWeights":
        d = d or {}
        base = cls()
        return cls(
            distance=float(d.get("distance_weight", base.distance)),
            elevation=float(d.get("elevation_weight", base.elevation)),
            elevation_normalizer_m=float(d.get("elevation_normalizer_m", base.elevation_normalizer_m)),
        )


def route_cost(
    route: RouteResult,
    target_distance_km: float,
    target_elevation_m: float,
    weights: CostWeights = CostWeights(),
) -> float:
    """
    cost = Wd * |km - target_km| + We * |gain - target_gain| / 100

    The elevation term only applies when target_elevation_m > 0.
    """
    cost = weights.distance * abs(route.distance_km - target_distance_km)
    if target_elevation_m > 0:
        cost += weights.elevation * (abs(route.elevation_gain_m - target_elevation_m) / weights.elevation_normalizer_m)
    return cost


def _as_callable(evaluator: EvaluatorLike) -> Callable[[Sequence[Coordinate]], Optional[RouteResult]]:
    fn = getattr(evaluator, "evaluate", None)
    return fn if callable(fn) else evaluator  # type: ignore[return-value]


def score_candidates(
    candidates: Sequence[Candidate],
    evaluator: EvaluatorLike,
    target_distance_km: float,
    target_elevation_m: float,
    weights: CostWeights = CostWeights(),
) -> List[Tuple[Candidate, RouteResult, float]]:
    """Evaluate each candidate once, in order; candidates that fail to route are skipped."""
    evaluate = _as_callable(evaluator)
    scored: List[Tuple[Candidate, RouteResult, float]] = []
    for cand in candidates:
        route = evaluate(cand.waypoint_list)
        if route is None:
            log.debug("Candidate produced no route", extra={"extra": {"shape": cand.shape.value}})
            continue
        scored.append((cand, route, route_cost(route, target_distance_km, target_elevation_m, weights)))
    return scored


def find_best_route(
    start: Coordinate,
    end: Coordinate,
    fixed_waypoints: Sequence[Coordinate],
    target_distance_km: float,
    target_elevation_m: float,
    evaluator: EvaluatorLike,
    *,
    detour_config: Optional[DetourConfig] = None,
    weights: CostWeights = CostWeights(),
) -> Optional[RouteResult]:
    """
    Pick the lowest-cost route among all detour candidates.

    Returns None when there is no distance target or when no candidate could
    be routed ("no route found"). Ties keep the first candidate generated.
    """
    if target_distance_km <= 0:
        return None

    candidates = generate_candidates(start, end, fixed_waypoints, target_distance_km, detour_config)
    scored = score_candidates(candidates, evaluator, target_distance_km, target_elevation_m, weights)
    if not scored:
        log.warning(
            "No detour candidate could be routed",
            extra={"extra": {"candidates": len(candidates), "target_km": target_distance_km}},
        )
        return None

    best_cand, best_route, best_cost = scored[0]
    for cand, route, cost in scored[1:]:
        if cost < best_cost:
            best_cand, best_route, best_cost = cand, route, cost

    log.info(
        "Selected route",
        extra={
            "extra": {
                "shape": best_cand.shape.value,
                "cost": round(best_cost, 4),
                "distance_km": round(best_route.distance_km, 3),
                "evaluated": len(scored),
                "candidates": len(candidates),
            }
        },
    )
    return best_route
