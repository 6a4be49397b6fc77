"""
TaskPlanCache: similarity-keyed reuse of task plans.

Entries are bucketed by a coarse key built from the leading embedding
dimensions, and a lookup compares the query vector with every live entry
of its bucket. Buckets are immutable tuples replaced under a lock, so
readers never observe a half-applied mutation.

The cache is best-effort: any internal error is logged and reported as a
miss (lookup) or a skipped write (store).
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from loguru import logger

from app.routing.domain import CachedTaskPlan, TaskPlan
from app.routing.intent.similarity import cosine_similarity
from ragroute_core.config import settings
from ragroute_core.runtime import CacheFailure

DEFAULT_BUCKET = "default"


@dataclass(frozen=True)
class CacheHit:
    entry: CachedTaskPlan
    similarity: float

    @property
    def plan(self) -> TaskPlan:
        return self.entry.plan


class TaskPlanCache:
    """
    Single-process plan cache with bucket, global and TTL bounds.

    Args:
        similarity_threshold: Minimum cosine similarity for a hit.
        bucket_size: Max entries per bucket; the oldest is evicted first.
        max_entries: Global budget; whole buckets with the oldest minimum
            timestamp are dropped until back under it.
        ttl_seconds: Entries older than this are purged on writes and
            ignored on reads.
        bucket_dims: Number of leading dimensions forming the bucket key.
        clock: Returns the current time in seconds.
    """

    def __init__(
        self,
        similarity_threshold: float | None = None,
        bucket_size: int | None = None,
        max_entries: int | None = None,
        ttl_seconds: float | None = None,
        bucket_dims: int | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.similarity_threshold = (
            settings.PLAN_CACHE_SIMILARITY_THRESHOLD
            if similarity_threshold is None
            else similarity_threshold
        )
        self.bucket_size = bucket_size or settings.PLAN_CACHE_BUCKET_SIZE
        self.max_entries = max_entries or settings.PLAN_CACHE_MAX_ENTRIES
        self.ttl_seconds = settings.PLAN_CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self.bucket_dims = bucket_dims or settings.PLAN_CACHE_BUCKET_DIMS
        self._clock = clock
        self._buckets: dict[str, tuple[CachedTaskPlan, ...]] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return self._size()

    def _size(self) -> int:
        return sum(len(bucket) for bucket in self._buckets.values())

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _is_expired(self, entry: CachedTaskPlan, now_ms: int) -> bool:
        return now_ms - entry.created_at_ms > self.ttl_seconds * 1000

    def bucket_key(self, vector: Optional[Sequence[float]]) -> str:
        if not vector:
            return DEFAULT_BUCKET
        return ",".join(f"{value:.2f}" for value in vector[: self.bucket_dims])

    def bucket(self, key: str) -> tuple[CachedTaskPlan, ...]:
        return self._buckets.get(key, ())

    def lookup(self, vector: Optional[Sequence[float]]) -> CacheHit | None:
        """Best live entry in the vector's bucket with similarity >= threshold."""
        try:
            if not vector:
                raise CacheFailure("empty query vector")

            now_ms = self._now_ms()
            best: CacheHit | None = None
            for entry in self.bucket(self.bucket_key(vector)):
                if self._is_expired(entry, now_ms):
                    continue
                try:
                    similarity = cosine_similarity(vector, entry.embedding)
                except ValueError:
                    continue
                if similarity >= self.similarity_threshold and (
                    best is None or similarity > best.similarity
                ):
                    best = CacheHit(entry=entry, similarity=similarity)
            return best
        except Exception as e:
            logger.warning(f"Plan cache lookup failed, treating as miss: {e}")
            return None

    def store(self, query_text: str, vector: Optional[Sequence[float]], plan: TaskPlan) -> bool:
        """Insert a plan. Returns False when the write was skipped."""
        try:
            if not vector:
                raise CacheFailure("empty query vector")

            now_ms = self._now_ms()
            entry = CachedTaskPlan(
                query_text=query_text,
                embedding=tuple(float(v) for v in vector),
                plan=plan,
                created_at_ms=now_ms,
            )
            key = self.bucket_key(vector)

            with self._lock:
                self._purge_expired(now_ms)
                bucket = sorted([*self._buckets.get(key, ()), entry], key=lambda e: e.created_at_ms)
                self._buckets[key] = tuple(bucket[-self.bucket_size:])
                self._enforce_budget()
            return True
        except Exception as e:
            logger.warning(f"Plan cache write skipped: {e}")
            return False

    def clear(self) -> None:
        with self._lock:
            self._buckets = {}

    def _purge_expired(self, now_ms: int) -> None:
        for key, bucket in list(self._buckets.items()):
            live = tuple(e for e in bucket if not self._is_expired(e, now_ms))
            if not live:
                del self._buckets[key]
            elif len(live) != len(bucket):
                self._buckets[key] = live

    def _enforce_budget(self) -> None:
        total = self._size()
        while total > self.max_entries and self._buckets:
            oldest = min(
                self._buckets,
                key=lambda k: min(e.created_at_ms for e in self._buckets[k]),
            )
            total -= len(self._buckets.pop(oldest))
            logger.debug(f"Plan cache over budget, evicted bucket {oldest}")
