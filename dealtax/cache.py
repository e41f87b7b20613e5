"""
Read-through snapshot cache for jurisdiction and rule data.

Each refresh builds a complete new snapshot and swaps it in with a single
reference assignment, so readers always see either the old table or the
new one, never a mix.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Callable, Generic, Optional, TypeVar

from dealtax.errors import DataFetchTimeout

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Default TTL for cached snapshots (24 hours)
DEFAULT_TTL_SECONDS = 24 * 60 * 60


class SnapshotCache(Generic[T]):
    """
    Holds one immutable snapshot produced by ``loader``.

    Usage:
        cache = SnapshotCache(load_table, ttl_seconds=3600)
        table = cache.get()          # loads on first use
        cache.start_background_refresh(interval_seconds=900)
    """

    def __init__(
        self,
        loader: Callable[[], T],
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        fetch_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        name: str = "snapshot",
    ) -> None:
        self._loader = loader
        self._ttl = ttl_seconds
        self._fetch_timeout = fetch_timeout
        self._clock = clock
        self._name = name
        # (snapshot, loaded_at) replaced as a whole
        self._entry: Optional[tuple[T, float]] = None
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @classmethod
    def of(cls, snapshot: T, name: str = "snapshot") -> "SnapshotCache[T]":
        """Cache that always serves a fixed, already built snapshot."""
        cache = cls(lambda: snapshot, ttl_seconds=float("inf"), name=name)
        cache.refresh()
        return cache

    def _fetch(self) -> T:
        if self._fetch_timeout is None:
            return self._loader()
        pool = ThreadPoolExecutor(max_workers=1)
        try:
            future = pool.submit(self._loader)
            return future.result(timeout=self._fetch_timeout)
        except FutureTimeout as e:
            raise DataFetchTimeout(
                f"Loading {self._name} exceeded {self._fetch_timeout}s"
            ) from e
        finally:
            pool.shutdown(wait=False)

    def is_stale(self) -> bool:
        entry = self._entry
        if entry is None:
            return True
        return self._clock() - entry[1] > self._ttl

    def get(self) -> T:
        """Return the current snapshot, loading it on a miss or expiry."""
        entry = self._entry
        if entry is not None and self._clock() - entry[1] <= self._ttl:
            return entry[0]

        logger.debug("Cache MISS for %s", self._name)
        try:
            return self.refresh()
        except Exception as e:
            if entry is None:
                raise
            logger.warning(
                "Refresh of %s failed (%s); serving stale snapshot", self._name, e
            )
            return entry[0]

    def refresh(self) -> T:
        """Load a new snapshot and swap it in atomically."""
        snapshot = self._fetch()
        self._entry = (snapshot, self._clock())
        logger.info("Loaded %s snapshot", self._name)
        return snapshot

    def invalidate(self) -> None:
        self._entry = None

    # ------------------------------------------------------------------
    # Background refresh
    # ------------------------------------------------------------------

    def start_background_refresh(self, interval_seconds: float) -> None:
        """Start a single daemon thread that refreshes on an interval."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._refresh_loop,
            args=(interval_seconds,),
            name=f"{self._name}-refresh",
            daemon=True,
        )
        self._thread.start()

    def stop_background_refresh(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _refresh_loop(self, interval_seconds: float) -> None:
        while not self._stop.wait(interval_seconds):
            try:
                self.refresh()
            except Exception:
                # keep serving the previous snapshot
                logger.exception("Background refresh of %s failed", self._name)
