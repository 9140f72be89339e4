from __future__ import annotations

"""
Persistent tier (L2) for elevation tiles.

The cache manager and refresh service depend only on ElevationCacheRepository.
Two implementations:
  - InMemoryElevationRepository: process-local, used in tests and single-node runs
  - RedisElevationRepository:    shared Redis (hash per tile, zset of scores, set queue)

Writes are best-effort: backend failures are logged and reported through the
return value, never raised to the caller.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Dict, Optional, Set, Tuple

import redis

from common.types import ElevationCacheEntry
from common.utils import SECONDS_PER_DAY, make_tile_id


log = logging.getLogger(__name__)


class ElevationCacheRepository(ABC):
    @abstractmethod
    def get_tile(self, z: int, x: int, y: int) -> Optional[ElevationCacheEntry]:
        """Stored CSV content and its Unix write time, or None."""

    @abstractmethod
    def save_tile(self, z: int, x: int, y: int, content: str) -> bool:
        """Store content stamped with the current time. True on success."""

    @abstractmethod
    def increment_access_score(self, z: int, x: int, y: int) -> None:
        ...

    @abstractmethod
    def get_access_score(self, z: int, x: int, y: int) -> float:
        ...

    @abstractmethod
    def add_to_refresh_queue(self, z: int, x: int, y: int) -> None:
        ...

    @abstractmethod
    def pop_refresh_queue(self) -> Optional[str]:
        """Remove and return one queued tile id ("z:x:y"), or None when empty."""

    @abstractmethod
    def decay_scores(self, factor: float) -> None:
        """Multiply every access score by `factor` (0..1)."""


class InMemoryElevationRepository(ElevationCacheRepository):
    def __init__(self, clock=time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._tiles: Dict[str, ElevationCacheEntry] = {}
        self._scores: Dict[str, float] = {}
        self._queue: Set[str] = set()

    def get_tile(self, z: int, x: int, y: int) -> Optional[ElevationCacheEntry]:
        with self._lock:
            return self._tiles.get(make_tile_id(z, x, y))

    def save_tile(self, z: int, x: int, y: int, content: str) -> bool:
        entry = ElevationCacheEntry(content=content, updated_at=int(self._clock()))
        with self._lock:
            self._tiles[make_tile_id(z, x, y)] = entry
        return True

    def put_entry(self, z: int, x: int, y: int, entry: ElevationCacheEntry) -> None:
        """Seed a tile with an explicit timestamp (fixtures, imports)."""
        with self._lock:
            self._tiles[make_tile_id(z, x, y)] = entry

    def increment_access_score(self, z: int, x: int, y: int) -> None:
        tile_id = make_tile_id(z, x, y)
        with self._lock:
            self._scores[tile_id] = self._scores.get(tile_id, 0.0) + 1.0

    def get_access_score(self, z: int, x: int, y: int) -> float:
        with self._lock:
            return self._scores.get(make_tile_id(z, x, y), 0.0)

    def add_to_refresh_queue(self, z: int, x: int, y: int) -> None:
        with self._lock:
            self._queue.add(make_tile_id(z, x, y))

    def pop_refresh_queue(self) -> Optional[str]:
        with self._lock:
            return self._queue.pop() if self._queue else None

    def decay_scores(self, factor: float) -> None:
        with self._lock:
            for k in self._scores:
                self._scores[k] *= factor

    @property
    def queued(self) -> Tuple[str, ...]:
        with self._lock:
            return tuple(sorted(self._queue))


class RedisElevationRepository(ElevationCacheRepository):
    DATA_PREFIX = "cycling:elevation:v1:data:"
    RANK_KEY = "cycling:elevation:v1:stats:rank"
    REFRESH_QUEUE_KEY = "cycling:elevation:v1:queue:refresh"

    def __init__(self, client: "redis.Redis", ttl_days: int = 365, scan_batch: int = 100, clock=time.time):
        if client is None:
            raise ValueError("Redis client is required")
        self.client = client
        self.ttl_s = int(ttl_days) * SECONDS_PER_DAY
        self.scan_batch = int(scan_batch)
        self._clock = clock

    @classmethod
    def from_config(cls, cfg: Dict) -> "RedisElevationRepository":
        client = redis.Redis(
            host=cfg.get("host", "localhost"),
            port=int(cfg.get("port", 6379)),
            password=cfg.get("password") or None,
            decode_responses=True,
        )
        return cls(client, ttl_days=int(cfg.get("ttl_days", 365)))

    def data_key(self, z: int, x: int, y: int) -> str:
        return self.DATA_PREFIX + make_tile_id(z, x, y)

    def get_tile(self, z: int, x: int, y: int) -> Optional[ElevationCacheEntry]:
        try:
            h = self.client.hgetall(self.data_key(z, x, y))
        except redis.RedisError as e:
            log.error("Redis error in get_tile: %s", e)
            return None
        if not h:
            return None
        h = {_text(k): v for k, v in h.items()}
        content = _text(h.get("content"))
        if not content:
            return None
        try:
            updated_at = int(_text(h.get("updated_at")) or 0)
        except ValueError:
            updated_at = 0
        return ElevationCacheEntry(content=content, updated_at=updated_at)

    def save_tile(self, z: int, x: int, y: int, content: str) -> bool:
        key = self.data_key(z, x, y)
        try:
            pipe = self.client.pipeline()
            pipe.hset(key, mapping={"content": content, "updated_at": int(self._clock())})
            pipe.expire(key, self.ttl_s)
            pipe.execute()
            return True
        except redis.RedisError as e:
            log.error("Redis error in save_tile: %s", e)
            return False

    def increment_access_score(self, z: int, x: int, y: int) -> None:
        try:
            self.client.zincrby(self.RANK_KEY, 1, make_tile_id(z, x, y))
        except redis.RedisError as e:
            log.error("Redis error in increment_access_score: %s", e)

    def get_access_score(self, z: int, x: int, y: int) -> float:
        try:
            score = self.client.zscore(self.RANK_KEY, make_tile_id(z, x, y))
        except redis.RedisError as e:
            log.error("Redis error in get_access_score: %s", e)
            return 0.0
        return float(score) if score is not None else 0.0

    def add_to_refresh_queue(self, z: int, x: int, y: int) -> None:
        try:
            self.client.sadd(self.REFRESH_QUEUE_KEY, make_tile_id(z, x, y))
        except redis.RedisError as e:
            log.error("Redis error in add_to_refresh_queue: %s", e)

    def pop_refresh_queue(self) -> Optional[str]:
        try:
            v = self.client.spop(self.REFRESH_QUEUE_KEY)
        except redis.RedisError as e:
            log.error("Redis error in pop_refresh_queue: %s", e)
            return None
        return _text(v) if v is not None else None

    def decay_scores(self, factor: float) -> None:
        """
        ZSCAN the score set in batches and rewrite each batch with one pipeline.
        Concurrent increments between scan and write may be overwritten; scores
        are approximate by nature.
        """
        cursor = 0
        updated = 0
        try:
            while True:
                cursor, members = self.client.zscan(self.RANK_KEY, cursor=cursor, count=self.scan_batch)
                if members:
                    pipe = self.client.pipeline()
                    for member, score in members:
                        pipe.zadd(self.RANK_KEY, {member: float(score) * factor})
                    pipe.execute()
                    updated += len(members)
                if int(cursor) == 0:
                    break
        except redis.RedisError as e:
            log.error("Redis error in decay_scores: %s", e)
            return
        log.debug("Score decay completed", extra={"extra": {"members": updated, "factor": factor}})


def _text(v) -> str:
    if v is None:
        return ""
    return v.decode("utf-8") if isinstance(v, (bytes, bytearray)) else str(v)
