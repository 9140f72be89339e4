from __future__ import annotations

"""
Three-tier elevation tile cache.

    L1  in-process LRU of parsed tiles        (elevation.lru.LruCache)
    L2  persistent repository of CSV text     (elevation.repository)
    L3  remote source                         (elevation.gsi_provider)

Remote fetches are single-flight: the first caller for a tile id registers a
Future and schedules the fetch; concurrent callers for the same id wait on that
Future. A waiter that times out gets None, but the fetch keeps running and
still fills L1/L2 for later callers.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FuturesTimeout
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np

from common.types import Coordinate
from common.utils import make_tile_id
from elevation.lru import LruCache
from elevation.refresh import SmartRefreshService
from elevation.repository import ElevationCacheRepository
from elevation.tiles import (
    DEFAULT_ZOOM,
    TILE_PIXELS,
    ElevationSource,
    calculate_tile_coord,
    parse_tile_text,
    sample_at,
    serialize_tile,
)


log = logging.getLogger(__name__)


class ElevationCacheManager:
    def __init__(
        self,
        repository: ElevationCacheRepository,
        source: ElevationSource,
        refresh: Optional[SmartRefreshService] = None,
        *,
        lru_capacity: int = 1000,
        zoom: int = DEFAULT_ZOOM,
        fetch_timeout_s: float = 10.0,
        fetch_workers: int = 4,
        lookup_workers: int = 8,
    ):
        self.repository = repository
        self.source = source
        self.refresh = refresh
        self.zoom = int(zoom)
        self.fetch_timeout_s = float(fetch_timeout_s)

        self._l1: LruCache[str, np.ndarray] = LruCache(lru_capacity)
        self._inflight: Dict[str, Future] = {}
        self._inflight_lock = threading.Lock()
        self._fetch_pool = ThreadPoolExecutor(max_workers=fetch_workers, thread_name_prefix="tile-fetch")
        self._lookup_pool = ThreadPoolExecutor(max_workers=lookup_workers, thread_name_prefix="elev-lookup")

    @classmethod
    def from_config(
        cls,
        cfg: Dict[str, Any],
        repository: ElevationCacheRepository,
        source: ElevationSource,
        refresh: Optional[SmartRefreshService] = None,
    ) -> "ElevationCacheManager":
        return cls(
            repository,
            source,
            refresh,
            lru_capacity=int(cfg.get("lru_capacity", 1000)),
            zoom=int(cfg.get("zoom", DEFAULT_ZOOM)),
            fetch_timeout_s=float(cfg.get("fetch_timeout_s", 10.0)),
        )

    # -------- tiles --------

    def get_tile(self, z: int, x: int, y: int) -> Optional[np.ndarray]:
        """
        Resolve a 256x256 tile (flat, row-major, read-only) through L1 -> L2 -> remote.
        Blocks the calling thread for at most `fetch_timeout_s` on a remote miss.
        """
        key = make_tile_id(z, x, y)

        tile = self._l1.get(key)
        if tile is not None:
            if self.refresh:
                self.refresh.record_access(z, x, y)
            return tile

        entry = self.repository.get_tile(z, x, y)
        if entry is not None:
            tile = parse_tile_text(entry.content)
            if tile is not None:
                self._l1.put(key, tile)
                if self.refresh:
                    self.refresh.record_access(z, x, y)
                    self.refresh.check_and_queue_refresh(z, x, y, entry.updated_at)
                return tile
            log.warning("Corrupt tile in persistent cache, treating as miss", extra={"extra": {"tile": key}})

        return self._fetch_shared(z, x, y, key)

    def _fetch_shared(self, z: int, x: int, y: int, key: str) -> Optional[np.ndarray]:
        with self._inflight_lock:
            fut = self._inflight.get(key)
            owner = fut is None
            if owner:
                fut = Future()
                self._inflight[key] = fut

        if owner:
            log.debug("Cache miss, fetching from remote", extra={"extra": {"tile": key}})
            try:
                self._fetch_pool.submit(self._fetch_into, z, x, y, key, fut)
            except RuntimeError:
                # pool shut down
                self._release(key, fut, None)

        try:
            return fut.result(timeout=self.fetch_timeout_s)
        except FuturesTimeout:
            log.warning("Timed out waiting for remote tile", extra={"extra": {"tile": key, "timeout_s": self.fetch_timeout_s}})
            return None

    def _fetch_into(self, z: int, x: int, y: int, key: str, fut: Future) -> None:
        tile: Optional[np.ndarray] = None
        try:
            raw = self.source.fetch_tile(z, x, y)
            if raw is not None:
                raw = np.asarray(raw, dtype=np.float64).ravel()
                if raw.size == TILE_PIXELS:
                    raw.setflags(write=False)
                    tile = raw
                else:
                    log.error("Remote tile has wrong size", extra={"extra": {"tile": key, "samples": int(raw.size)}})
            if tile is not None:
                self._l1.put(key, tile)
        except Exception:
            log.exception("Remote tile fetch failed: %s", key)
            tile = None
        finally:
            self._release(key, fut, tile)

        if tile is not None:
            self._persist(z, x, y, tile)

    def _release(self, key: str, fut: Future, tile: Optional[np.ndarray]) -> None:
        with self._inflight_lock:
            if self._inflight.get(key) is fut:
                del self._inflight[key]
        fut.set_result(tile)

    def _persist(self, z: int, x: int, y: int, tile: np.ndarray) -> None:
        try:
            if not self.repository.save_tile(z, x, y, serialize_tile(tile)):
                log.warning("Persistent cache rejected tile %s:%s:%s", z, x, y)
        except Exception:
            log.exception("Failed to persist tile %s:%s:%s", z, x, y)

    # -------- point lookups --------

    def get_elevation_sync(self, coord: Coordinate) -> Optional[float]:
        tc = calculate_tile_coord(coord, self.zoom)
        tile = self.get_tile(tc.zoom, tc.tile_x, tc.tile_y)
        if tile is None:
            return None
        return sample_at(tile, tc)

    def get_elevation(self, coord: Coordinate, callback: Callable[[Optional[float]], None]) -> Future:
        """Non-blocking lookup; `callback` receives the elevation or None."""
        return self._lookup_pool.submit(lambda: callback(self.get_elevation_sync(coord)))

    def get_elevations(self, coords: Sequence[Coordinate], callback: Callable[[List[float]], None]) -> None:
        """
        Non-blocking batch lookup. `callback` is invoked once, with results in
        input order; coordinates whose lookup failed report 0.0.
        """
        if not coords:
            callback([])
            return

        results: List[float] = [0.0] * len(coords)
        remaining = [len(coords)]
        lock = threading.Lock()

        def _done(i: int, f: Future) -> None:
            exc = f.exception()
            if exc is not None:
                log.error("Elevation lookup failed: %s", exc)
            else:
                v = f.result()
                if v is not None:
                    results[i] = v
            with lock:
                remaining[0] -= 1
                last = remaining[0] == 0
            if last:
                callback(list(results))

        for i, c in enumerate(coords):
            f = self._lookup_pool.submit(self.get_elevation_sync, c)
            f.add_done_callback(lambda f, i=i: _done(i, f))

    # -------- housekeeping --------

    def stats(self) -> Dict[str, int]:
        with self._inflight_lock:
            inflight = len(self._inflight)
        return {"l1_tiles": len(self._l1), "in_flight": inflight}

    def close(self) -> None:
        """Wait for lookups and fetches (and their persistence) to finish."""
        self._lookup_pool.shutdown(wait=True)
        self._fetch_pool.shutdown(wait=True)
