from __future__ import annotations

"""
HTTP adapter for an OSRM routing server (the external path engine).

Sole responsibility: format coordinates, call /route, validate the response and
return it in a normalized shape. No candidate or scoring logic lives here.

Usage:
    osrm = OSRMClient("http://localhost:5000", profile="cycling")
    r = osrm.route([Coordinate(35.68, 139.76), Coordinate(35.69, 139.70)])
    # r -> {"distance": m, "duration": s, "geometry": "<polyline>"}
"""

import logging
from typing import Dict, Optional, Sequence, Union

import requests

from common.types import Coordinate


log = logging.getLogger(__name__)


class OSRMError(Exception):
    """OSRM answered but could not produce a route."""


class OSRMClient:
    def __init__(
        self,
        base_url: str,
        profile: str = "cycling",
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        if not base_url:
            raise ValueError("OSRM base URL is required (config osrm.base_url or env OSRM_URL)")
        self.base_url = base_url.rstrip("/")
        self.profile = profile
        self.timeout = timeout
        self.session = session or requests.Session()

    @staticmethod
    def format_coordinates(coords: Sequence[Coordinate]) -> str:
        """OSRM wants 'lon,lat;lon,lat;...'."""
        return ";".join(f"{c.lon:.6f},{c.lat:.6f}" for c in coords)

    def build_url(self, coords: Sequence[Coordinate]) -> str:
        return f"{self.base_url}/route/v1/{self.profile}/{self.format_coordinates(coords)}"

    def route(self, coords: Sequence[Coordinate]) -> Dict[str, Union[float, str]]:
        """
        Route through `coords` in order (start, waypoints..., end).

        Returns:
            {"distance": float meters, "duration": float seconds, "geometry": str}

        Raises:
            ValueError: fewer than two coordinates.
            OSRMError: OSRM returned a non-Ok code, no routes, or a malformed body.
            requests.RequestException: transport failures.
        """
        if len(coords) < 2:
            raise ValueError("At least two coordinates are required to compute a route.")

        r = self.session.get(
            self.build_url(coords),
            params={"overview": "full", "geometries": "polyline", "steps": "false"},
            timeout=self.timeout,
        )
        try:
            data = r.json()
        except ValueError as e:
            raise OSRMError(f"OSRM returned non-JSON response (HTTP {r.status_code})") from e
        if not isinstance(data, dict):
            raise OSRMError(f"OSRM returned unexpected body type: {type(data).__name__}")

        if data.get("code") != "Ok":
            raise OSRMError(f"OSRM error: {data.get('code')}: {data.get('message', 'Unknown error')}")
        routes = data.get("routes") or []
        if not isinstance(routes, list) or not routes:
            raise OSRMError("OSRM returned no routes")

        best = routes[0]
        try:
            return {
                "distance": float(best["distance"]),
                "duration": float(best["duration"]),
                "geometry": str(best.get("geometry", "")),
            }
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise OSRMError(f"OSRM returned a malformed route: {e!r}") from e
