from __future__ import annotations

"""
Smart refresh of the persistent elevation tier.

Two signals decide what gets re-fetched: a tile must be stale (older than
`stale_after_days`) AND popular (access score >= `refresh_threshold`). Scores
grow on every cache hit and decay by `decay_factor` roughly once a day.

One background thread pops the refresh queue at a fixed interval:

    svc = SmartRefreshService(repo, gsi)
    svc.start_worker()
    ...
    svc.close()   # stop the worker, drain dispatched work
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FuturesTimeout
from typing import Callable, Optional

from common.utils import SECONDS_PER_DAY, parse_tile_id
from elevation.repository import ElevationCacheRepository
from elevation.tiles import ElevationSource, serialize_tile


log = logging.getLogger(__name__)


class SmartRefreshService:
    def __init__(
        self,
        repository: ElevationCacheRepository,
        source: ElevationSource,
        *,
        refresh_threshold: float = 10.0,
        decay_factor: float = 0.95,
        stale_after_days: float = 90,
        interval_s: float = 1.0,
        decay_every_ticks: int = 86400,
        fetch_timeout_s: float = 10.0,
        clock: Callable[[], float] = time.time,
    ):
        self.repository = repository
        self.source = source
        self.refresh_threshold = float(refresh_threshold)
        self.decay_factor = float(decay_factor)
        self.stale_after_s = float(stale_after_days) * SECONDS_PER_DAY
        self.interval_s = float(interval_s)
        self.decay_every_ticks = max(1, int(decay_every_ticks))
        self.fetch_timeout_s = float(fetch_timeout_s)
        self._clock = clock

        # access signals and refresh fetches run on separate pools
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="elev-refresh")
        self._fetch_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="elev-refresh-fetch")
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # ----------------------------
    # Configuration
    # ----------------------------
    def set_refresh_threshold(self, threshold: float) -> None:
        self.refresh_threshold = float(threshold)

    def set_decay_factor(self, factor: float) -> None:
        if not 0.0 <= factor <= 1.0:
            raise ValueError("decay factor must be within 0..1")
        self.decay_factor = float(factor)

    # ----------------------------
    # Lifecycle
    # ----------------------------
    @property
    def is_running(self) -> bool:
        t = self._thread
        return t is not None and t.is_alive()

    def start_worker(self) -> None:
        """Start the background loop; no-op if already running."""
        with self._lock:
            if self._thread is not None and self._thread.is_alive():
                return
            # one event per worker; a restart never clears a stopping worker's flag
            self._stop = threading.Event()
            self._thread = threading.Thread(
                target=self._worker_loop, args=(self._stop,), name="elev-refresh-worker", daemon=True
            )
            self._thread.start()

    def stop_worker(self) -> None:
        """Signal the loop and wait for the current iteration to finish."""
        with self._lock:
            t = self._thread
            if t is None:
                return
            self._stop.set()
            self._thread = None
        t.join()

    def close(self) -> None:
        self.stop_worker()
        self._fetch_executor.shutdown(wait=True)
        self._executor.shutdown(wait=True)

    # ----------------------------
    # Signals from the cache manager
    # ----------------------------
    def record_access(self, z: int, x: int, y: int) -> None:
        """Fire-and-forget popularity increment."""
        self._dispatch(self.repository.increment_access_score, z, x, y)

    def check_and_queue_refresh(self, z: int, x: int, y: int, last_updated: float) -> None:
        """Queue the tile (asynchronously) if it is stale and popular."""
        age_s = self._clock() - float(last_updated)
        if age_s > self.stale_after_s:
            self._dispatch(self._queue_if_popular, z, x, y)

    def _queue_if_popular(self, z: int, x: int, y: int) -> None:
        score = self.repository.get_access_score(z, x, y)
        if score >= self.refresh_threshold:
            self.repository.add_to_refresh_queue(z, x, y)
            log.info("Queued stale tile for refresh", extra={"extra": {"tile": f"{z}:{x}:{y}", "score": score}})

    def _dispatch(self, fn: Callable[..., None], *args) -> None:
        try:
            fut = self._executor.submit(fn, *args)
        except RuntimeError:
            # executor already shut down
            log.debug("Refresh service closed; dropping %s", getattr(fn, "__name__", fn))
            return
        fut.add_done_callback(_log_failure)

    # ----------------------------
    # Worker
    # ----------------------------
    def process_refresh_queue(self) -> bool:
        """
        Pop one tile id and re-fetch it into the persistent tier.
        Returns True if a tile was refreshed. Failures are logged, not retried.
        """
        tile_id = self.repository.pop_refresh_queue()
        if tile_id is None:
            return False
        try:
            z, x, y = parse_tile_id(tile_id)
        except ValueError:
            log.error("Invalid tile key in refresh queue: %s", tile_id)
            return False

        log.info("Refreshing tile", extra={"extra": {"tile": tile_id}})
        fut = self._fetch_executor.submit(self.source.fetch_tile, z, x, y)
        try:
            tile = fut.result(timeout=self.fetch_timeout_s)
        except FuturesTimeout:
            log.error("Timeout refreshing tile: %s", tile_id)
            return False

        if tile is None:
            log.warning("Failed to refresh tile: %s", tile_id)
            return False
        if not self.repository.save_tile(z, x, y, serialize_tile(tile)):
            log.warning("Could not persist refreshed tile: %s", tile_id)
            return False
        log.debug("Tile refreshed: %s", tile_id)
        return True

    def perform_decay(self) -> None:
        log.info("Performing score decay", extra={"extra": {"factor": self.decay_factor}})
        self.repository.decay_scores(self.decay_factor)

    def _worker_loop(self, stop: threading.Event) -> None:
        log.info("Smart refresh worker started")
        ticks = 0
        while not stop.is_set():
            try:
                self.process_refresh_queue()
                ticks += 1
                if ticks >= self.decay_every_ticks:
                    self.perform_decay()
                    ticks = 0
            except Exception:
                log.exception("Exception in smart refresh worker")
            stop.wait(self.interval_s)
        log.info("Smart refresh worker stopped")


def _log_failure(fut: Future) -> None:
    exc = fut.exception()
    if exc is not None:
        log.error("Background elevation task failed: %s", exc, exc_info=exc)
