from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol, Sequence

import requests

from common.types import Coordinate, RouteResult
from routing.detour import DetourConfig, triangle_detour_point
from routing.osrm_client import OSRMClient, OSRMError
from routing.polyline import decode_polyline
from routing.selector import CostWeights, find_best_route


log = logging.getLogger(__name__)


class SupportsElevation(Protocol):
    def get_elevation_sync(self, coord: Coordinate) -> Optional[float]:
        ...


class BoundEvaluator:
    """Evaluator for one request: start/end fixed, waypoints supplied per candidate."""

    def __init__(self, service: "RouteService", start: Coordinate, end: Coordinate):
        self.service = service
        self.start = start
        self.end = end

    def evaluate(self, waypoints: Sequence[Coordinate]) -> Optional[RouteResult]:
        return self.service.evaluate(self.start, self.end, waypoints)


class RouteService:
    """
    Turns a route request into one RouteResult.

    - no distance target: a single path-engine call through the given waypoints
    - distance target:    MCSS over detour candidates (routing.selector)

    Elevation gain is sampled per path vertex through `elevation` (usually the
    ElevationCacheManager); without a provider the gain is reported as 0.
    """

    def __init__(
        self,
        osrm: OSRMClient,
        elevation: Optional[SupportsElevation] = None,
        detour_config: Optional[DetourConfig] = None,
        weights: Optional[CostWeights] = None,
    ):
        self.osrm = osrm
        self.elevation = elevation
        self.detour_config = detour_config or DetourConfig()
        self.weights = weights or CostWeights()

    @classmethod
    def from_config(cls, P: Dict[str, Any], osrm: OSRMClient,
                    elevation: Optional[SupportsElevation] = None) -> "RouteService":
        sel = P.get("route_selection", {})
        return cls(osrm, elevation, DetourConfig.from_dict(sel), CostWeights.from_dict(sel))

    # ----------------------------
    # Elevation
    # ----------------------------
    def calculate_elevation_gain(self, path: Sequence[Coordinate]) -> float:
        """Sum of positive rises between consecutive sampled vertices (meters)."""
        if self.elevation is None or len(path) < 2:
            return 0.0
        gain = 0.0
        prev: Optional[float] = None
        for c in path:
            elev = self.elevation.get_elevation_sync(c)
            if elev is None:
                continue
            if prev is not None and elev > prev:
                gain += elev - prev
            prev = elev
        return gain

    # ----------------------------
    # Path engine
    # ----------------------------
    def evaluate(self, start: Coordinate, end: Coordinate,
                 waypoints: Sequence[Coordinate]) -> Optional[RouteResult]:
        """One path-engine call; None when the engine cannot route these points."""
        coords: List[Coordinate] = [start, *waypoints, end]
        try:
            r = self.osrm.route(coords)
        except (OSRMError, requests.RequestException) as e:
            log.warning("Path engine failed: %s", e, extra={"extra": {"waypoints": len(waypoints)}})
            return None

        geometry = str(r["geometry"])
        try:
            path = decode_polyline(geometry)
        except (IndexError, ValueError) as e:
            log.warning("Undecodable route geometry: %s", e)
            return None

        return RouteResult(
            distance_m=float(r["distance"]),
            duration_s=float(r["duration"]),
            elevation_gain_m=self.calculate_elevation_gain(path),
            geometry=geometry,
            path=tuple(path),
        )

    def bind(self, start: Coordinate, end: Coordinate) -> BoundEvaluator:
        return BoundEvaluator(self, start, end)

    # ----------------------------
    # Public API
    # ----------------------------
    def plan_route(
        self,
        start: Coordinate,
        end: Coordinate,
        waypoints: Sequence[Coordinate] = (),
        target_distance_km: float = 0.0,
        target_elevation_m: float = 0.0,
    ) -> Optional[RouteResult]:
        if target_distance_km > 0:
            return find_best_route(
                start,
                end,
                waypoints,
                target_distance_km,
                target_elevation_m,
                self.bind(start, end),
                detour_config=self.detour_config,
                weights=self.weights,
            )
        return self.evaluate(start, end, waypoints)

    def calculate_detour_point(self, start: Coordinate, end: Coordinate,
                               target_distance_km: float) -> Optional[Coordinate]:
        return triangle_detour_point(start, end, target_distance_km, self.detour_config.threshold_factor)
