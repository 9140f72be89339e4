"""
Unit tests for the three-tier elevation cache
"""

import threading
import time
import numpy as np
import pytest
import os
import sys
from unittest.mock import Mock

# Add project root to path
project_root = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.append(project_root)

from common.types import Coordinate, ElevationCacheEntry
from elevation.cache_manager import ElevationCacheManager
from elevation.repository import InMemoryElevationRepository
from elevation.tiles import TILE_PIXELS, calculate_tile_coord, serialize_tile

TOKYO = Coordinate(35.681236, 139.767125)


def ramp_tile() -> np.ndarray:
    return np.arange(TILE_PIXELS, dtype=np.float64)


class FakeSource:
    """Remote tile source that counts calls and can be held open."""

    def __init__(self, tile=None, gate: threading.Event = None, fail_x=None):
        self.tile = ramp_tile() if tile is None else tile
        self.gate = gate
        self.fail_x = fail_x
        self.calls = 0
        self._lock = threading.Lock()

    def fetch_tile(self, z, x, y):
        with self._lock:
            self.calls += 1
        if self.gate is not None:
            self.gate.wait(5.0)
        if self.fail_x is not None and x == self.fail_x:
            return None
        return self.tile


@pytest.fixture
def repo():
    return InMemoryElevationRepository(clock=lambda: 1_700_000_000)


class TestGetTile:
    """L1 -> L2 -> remote resolution"""

    def test_remote_miss_fills_both_tiers(self, repo):
        src = FakeSource()
        mgr = ElevationCacheManager(repo, src)
        try:
            tile = mgr.get_tile(15, 1, 2)
            assert tile is not None and tile.size == TILE_PIXELS
            assert mgr.get_tile(15, 1, 2) is tile
        finally:
            mgr.close()
        assert src.calls == 1
        entry = repo.get_tile(15, 1, 2)
        assert entry is not None
        assert entry.content == serialize_tile(ramp_tile())
        assert entry.updated_at == 1_700_000_000

    def test_persistent_hit_populates_lru(self, repo):
        repo.put_entry(15, 1, 2, ElevationCacheEntry(serialize_tile(ramp_tile()), 1_700_000_000))
        wrapped = Mock(wraps=repo)
        src = FakeSource()
        mgr = ElevationCacheManager(wrapped, src)
        try:
            first = mgr.get_tile(15, 1, 2)
            second = mgr.get_tile(15, 1, 2)
        finally:
            mgr.close()
        assert first[10] == 10.0
        assert second is first
        assert wrapped.get_tile.call_count == 1
        assert src.calls == 0

    def test_persistent_hit_signals_refresh(self, repo):
        repo.put_entry(15, 1, 2, ElevationCacheEntry(serialize_tile(ramp_tile()), 123))
        refresh = Mock()
        mgr = ElevationCacheManager(repo, FakeSource(), refresh)
        try:
            mgr.get_tile(15, 1, 2)
            mgr.get_tile(15, 1, 2)
        finally:
            mgr.close()
        assert refresh.record_access.call_count == 2
        refresh.check_and_queue_refresh.assert_called_once_with(15, 1, 2, 123)

    def test_corrupt_persistent_tile_falls_through(self, repo):
        repo.put_entry(15, 1, 2, ElevationCacheEntry("1,2,3", 1))
        src = FakeSource()
        mgr = ElevationCacheManager(repo, src)
        try:
            tile = mgr.get_tile(15, 1, 2)
        finally:
            mgr.close()
        assert tile is not None
        assert src.calls == 1
        # repaired by the remote fetch
        assert repo.get_tile(15, 1, 2).content == serialize_tile(ramp_tile())

    def test_remote_failure_returns_none_and_caches_nothing(self, repo):
        src = FakeSource(fail_x=1)
        mgr = ElevationCacheManager(repo, src)
        try:
            assert mgr.get_tile(15, 1, 2) is None
            assert mgr.get_tile(15, 1, 2) is None
        finally:
            mgr.close()
        assert src.calls == 2
        assert repo.get_tile(15, 1, 2) is None
        assert mgr.stats() == {"l1_tiles": 0, "in_flight": 0}

    def test_remote_exception_is_contained(self, repo):
        src = Mock()
        src.fetch_tile.side_effect = RuntimeError("boom")
        mgr = ElevationCacheManager(repo, src)
        try:
            assert mgr.get_tile(15, 1, 2) is None
        finally:
            mgr.close()

    def test_wrong_sized_remote_tile_rejected(self, repo):
        mgr = ElevationCacheManager(repo, FakeSource(tile=np.zeros(10)))
        try:
            assert mgr.get_tile(15, 1, 2) is None
        finally:
            mgr.close()
        assert repo.get_tile(15, 1, 2) is None

    def test_persist_failure_still_returns_tile(self):
        repo = Mock()
        repo.get_tile.return_value = None
        repo.save_tile.side_effect = RuntimeError("disk full")
        mgr = ElevationCacheManager(repo, FakeSource())
        try:
            assert mgr.get_tile(15, 1, 2) is not None
        finally:
            mgr.close()
        repo.save_tile.assert_called_once()


class TestSingleFlight:
    """Concurrent misses share one remote fetch"""

    def test_stampede_fetches_once(self, repo):
        gate = threading.Event()
        src = FakeSource(gate=gate)
        mgr = ElevationCacheManager(repo, src, fetch_timeout_s=5.0)
        results = []
        lock = threading.Lock()

        def worker():
            t = mgr.get_tile(15, 7, 7)
            with lock:
                results.append(t)

        threads = [threading.Thread(target=worker) for _ in range(16)]
        try:
            for t in threads:
                t.start()
            time.sleep(0.1)
            gate.set()
            for t in threads:
                t.join(5.0)
        finally:
            mgr.close()

        assert src.calls == 1
        assert len(results) == 16
        assert all(r is not None for r in results)
        assert all(r is results[0] for r in results)

    def test_distinct_tiles_fetch_independently(self, repo):
        src = FakeSource()
        mgr = ElevationCacheManager(repo, src)
        try:
            mgr.get_tile(15, 1, 1)
            mgr.get_tile(15, 1, 2)
        finally:
            mgr.close()
        assert src.calls == 2

    def test_waiter_timeout_does_not_cancel_fetch(self, repo):
        gate = threading.Event()
        src = FakeSource(gate=gate)
        mgr = ElevationCacheManager(repo, src, fetch_timeout_s=0.05)
        try:
            assert mgr.get_tile(15, 3, 3) is None
            assert mgr.stats()["in_flight"] == 1
            gate.set()
        finally:
            mgr.close()
        # the late completion landed in both tiers
        assert mgr.get_tile(15, 3, 3) is not None
        assert src.calls == 1
        assert repo.get_tile(15, 3, 3) is not None


class TestElevationLookups:
    """Point and batch lookups"""

    def test_get_elevation_sync_reads_pixel(self, repo):
        mgr = ElevationCacheManager(repo, FakeSource())
        try:
            value = mgr.get_elevation_sync(TOKYO)
        finally:
            mgr.close()
        assert value == float(calculate_tile_coord(TOKYO).pixel_index)

    def test_get_elevation_sync_none_on_failure(self, repo):
        tc = calculate_tile_coord(TOKYO)
        mgr = ElevationCacheManager(repo, FakeSource(fail_x=tc.tile_x))
        try:
            assert mgr.get_elevation_sync(TOKYO) is None
        finally:
            mgr.close()

    def test_get_elevation_async_callback(self, repo):
        mgr = ElevationCacheManager(repo, FakeSource())
        got = []
        try:
            fut = mgr.get_elevation(TOKYO, got.append)
            fut.result(5.0)
        finally:
            mgr.close()
        assert got == [float(calculate_tile_coord(TOKYO).pixel_index)]

    def test_get_elevations_preserves_order_and_zero_fills(self, repo):
        ok_a = Coordinate(35.0, 139.0)
        ok_b = TOKYO
        bad = Coordinate(35.0, 130.0)
        src = FakeSource(fail_x=calculate_tile_coord(bad).tile_x)
        mgr = ElevationCacheManager(repo, src)
        done = threading.Event()
        got = []

        def cb(values):
            got.append(values)
            done.set()

        try:
            mgr.get_elevations([ok_a, bad, ok_b], cb)
            assert done.wait(5.0)
        finally:
            mgr.close()

        assert len(got) == 1
        assert got[0] == [
            float(calculate_tile_coord(ok_a).pixel_index),
            0.0,
            float(calculate_tile_coord(ok_b).pixel_index),
        ]

    def test_get_elevations_empty(self, repo):
        mgr = ElevationCacheManager(repo, FakeSource())
        got = []
        try:
            mgr.get_elevations([], got.append)
        finally:
            mgr.close()
        assert got == [[]]

    def test_from_config(self, repo):
        mgr = ElevationCacheManager.from_config(
            {"lru_capacity": 5, "zoom": 14, "fetch_timeout_s": 2}, repo, FakeSource()
        )
        try:
            assert mgr.zoom == 14
            assert mgr.fetch_timeout_s == 2.0
        finally:
            mgr.close()
