"""
Routing: Detour Generation & Route Selection

This package provides:
- Detour candidate generation (direct, single-point and polygon detours
  around the longest leg) for a target ride distance
- Multi-candidate sampling & selection (MCSS): route every candidate through
  the path engine and keep the one closest to the distance/climb targets
- A small OSRM HTTP client and Google encoded-polyline decoder
- RouteService, which wires the path engine to the elevation cache

Entry point:
    python -m routing.plan --start 35.0,139.0 --end 35.0,139.1 --distance-km 20
"""
from .detour import generate_candidates
from .selector import find_best_route

__all__ = ["generate_candidates", "find_best_route"]
