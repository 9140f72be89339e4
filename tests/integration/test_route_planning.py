"""
Integration test: route planning with elevation through the full cache stack

The OSRM server and the GSI tile server are replaced by in-process fakes at
the HTTP session level; everything between them is the real wiring.
"""

import os
import sys
from unittest.mock import Mock

import pytest

# Add the project root to Python path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.geo import chain_length_km
from common.types import Coordinate
from elevation.cache_manager import ElevationCacheManager
from elevation.gsi_provider import GSIElevationProvider
from elevation.refresh import SmartRefreshService
from elevation.repository import InMemoryElevationRepository
from routing.osrm_client import OSRMClient
from routing.route_service import RouteService

START = Coordinate(35.0, 139.0)
END = Coordinate(35.0, 139.1)


def encode_value(v: int) -> str:
    v = ~(v << 1) if v < 0 else v << 1
    out = []
    while v >= 0x20:
        out.append(chr((0x20 | (v & 0x1F)) + 63))
        v >>= 5
    out.append(chr(v + 63))
    return "".join(out)


def encode_polyline(coords) -> str:
    out, plat, plon = [], 0, 0
    for c in coords:
        lat, lon = round(c.lat * 1e5), round(c.lon * 1e5)
        out.append(encode_value(lat - plat) + encode_value(lon - plon))
        plat, plon = lat, lon
    return "".join(out)


def fake_osrm_session():
    """Answers /route with the chained great-circle length of the requested points."""

    def get(url, params=None, timeout=None):
        coords_part = url.rsplit("/", 1)[-1]
        coords = []
        for pair in coords_part.split(";"):
            lon, lat = (float(v) for v in pair.split(","))
            coords.append(Coordinate(lat, lon))
        km = chain_length_km(coords)
        r = Mock(status_code=200)
        r.json.return_value = {
            "code": "Ok",
            "routes": [{"distance": km * 1000.0, "duration": km * 240.0, "geometry": encode_polyline(coords)}],
        }
        return r

    session = Mock()
    session.get.side_effect = get
    return session


def fake_gsi_session():
    """Flat tiles whose height rises one metre per tile row towards the north."""

    def get(url, timeout=None):
        tile_y = int(url.rsplit("/", 1)[-1].split(".")[0])
        value = str(float(20000 - tile_y))
        text = "\n".join(",".join([value] * 256) for _ in range(256)) + "\n"
        return Mock(status_code=200, text=text)

    session = Mock()
    session.get.side_effect = get
    return session


@pytest.fixture
def stack():
    repo = InMemoryElevationRepository()
    gsi_session = fake_gsi_session()
    gsi = GSIElevationProvider(session=gsi_session)
    refresh = SmartRefreshService(repo, gsi)
    cache = ElevationCacheManager(repo, gsi, refresh)
    service = RouteService(OSRMClient("http://osrm.test:5000", session=fake_osrm_session()), cache)
    yield service, cache, repo, gsi_session
    cache.close()
    refresh.close()


def test_direct_route_has_elevation(stack):
    service, cache, repo, _ = stack
    r = service.plan_route(START, Coordinate(35.01, 139.0))
    assert r is not None
    assert r.distance_km == pytest.approx(1.11, abs=0.01)
    # 0.01 deg crosses at least one tile row at zoom 15
    assert r.elevation_gain_m >= 1.0
    r_back = service.plan_route(Coordinate(35.01, 139.0), START)
    assert r_back.elevation_gain_m == 0.0


def test_distance_target_selects_detour(stack):
    service, cache, repo, gsi_session = stack
    r = service.plan_route(START, END, target_distance_km=20.0)
    assert r is not None
    assert abs(r.distance_km - 20.0) < abs(chain_length_km([START, END]) - 20.0)
    assert len(r.path) >= 3

    cache.close()
    # every distinct tile was fetched once and persisted
    fetched = {c.args[0] for c in gsi_session.get.call_args_list}
    assert len(fetched) == gsi_session.get.call_count
    assert cache.stats()["l1_tiles"] == len(fetched)


def test_persistent_tier_reused_across_managers(stack):
    service, cache, repo, gsi_session = stack
    service.plan_route(START, END)
    cache.close()
    calls = gsi_session.get.call_count

    gsi2 = GSIElevationProvider(session=gsi_session)
    cache2 = ElevationCacheManager(repo, gsi2)
    try:
        RouteService(service.osrm, cache2).plan_route(START, END)
    finally:
        cache2.close()
    assert gsi_session.get.call_count == calls
