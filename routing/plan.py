from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, Dict, List, Optional, Sequence

from common.config import load_config
from common.logging_setup import setup_logging
from common.types import Coordinate
from elevation.cache_manager import ElevationCacheManager
from elevation.gsi_provider import GSIElevationProvider
from elevation.refresh import SmartRefreshService
from elevation.repository import (
    ElevationCacheRepository,
    InMemoryElevationRepository,
    RedisElevationRepository,
)
from routing.osrm_client import OSRMClient
from routing.route_service import RouteService


log = logging.getLogger(__name__)


def _coordinate(text: str) -> Coordinate:
    try:
        return Coordinate.parse(text)
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid coordinate '{text}': {e}")


def _build_repository(P: Dict[str, Any]) -> ElevationCacheRepository:
    rc = P["redis"]
    if rc.get("enabled"):
        log.info("Using Redis elevation repository", extra={"extra": {"host": rc["host"], "port": rc["port"]}})
        return RedisElevationRepository.from_config(rc)
    return InMemoryElevationRepository()


def build_services(P: Dict[str, Any]):
    """Wire repository -> refresh -> cache -> route service from a loaded config."""
    ec = P["elevation"]
    oc = P["osrm"]

    repository = _build_repository(P)
    gsi = GSIElevationProvider(
        base_url=ec["base_url"],
        datasets=ec["datasets"],
        timeout=float(ec["http_timeout_s"]),
    )
    refresh = SmartRefreshService(
        repository,
        gsi,
        refresh_threshold=float(ec["refresh_threshold"]),
        decay_factor=float(ec["decay_factor"]),
        stale_after_days=float(ec["stale_after_days"]),
        interval_s=float(ec["worker_interval_s"]),
        decay_every_ticks=int(ec["decay_every_ticks"]),
        fetch_timeout_s=float(ec["fetch_timeout_s"]),
    )
    cache = ElevationCacheManager.from_config(ec, repository, gsi, refresh)
    osrm = OSRMClient(oc["base_url"], profile=oc["profile"], timeout=float(oc["timeout_s"]))
    return RouteService.from_config(P, osrm, cache), cache, refresh


def main(argv: Optional[Sequence[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Plan a cycling route with an optional distance/climb target")
    ap.add_argument("--config", default="config/params.yaml")
    ap.add_argument("--start", type=_coordinate, required=True, help="lat,lon")
    ap.add_argument("--end", type=_coordinate, required=True, help="lat,lon")
    ap.add_argument("--via", type=_coordinate, action="append", default=[], help="Fixed waypoint lat,lon (repeatable)")
    ap.add_argument("--distance-km", type=float, default=0.0, help="Target ride distance; 0 routes directly")
    ap.add_argument("--elevation-m", type=float, default=0.0, help="Target elevation gain; 0 ignores climb")
    ap.add_argument("--refresh-worker", action="store_true", help="Run the smart refresh worker while planning")
    args = ap.parse_args(argv)

    P = load_config(args.config)
    setup_logging(P["logging"]["level"])

    service, cache, refresh = build_services(P)
    if args.refresh_worker:
        refresh.start_worker()
    try:
        waypoints: List[Coordinate] = list(args.via)
        route = service.plan_route(
            args.start,
            args.end,
            waypoints,
            target_distance_km=args.distance_km,
            target_elevation_m=args.elevation_m,
        )
    finally:
        cache.close()
        refresh.close()

    if route is None:
        print("could not compute route", file=sys.stderr)
        return 1

    print(json.dumps(route.to_summary(), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
