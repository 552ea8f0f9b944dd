# smartlists/services/smart_lists/cache.py

"""Run-scoped evaluation cache with single-flight lookups.

One ``EvaluationCache`` lives for exactly one evaluation run. Each table is
populated lazily: the first caller for a ``(table, key)`` runs the compute
function, concurrent callers for the same key wait for that result instead
of recomputing, and callers for other keys proceed in parallel.

Failures are memoized as well, so a lookup that failed once fails fast for
every later caller in the same run. Nothing is ever evicted; the run's item
universe is bounded and the cache is dropped as a whole afterwards.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from collections.abc import Callable, Hashable
from enum import Enum
from typing import Any, TypeVar

from smartlists.services.smart_lists.errors import ExtractionError
from smartlists.services.smart_lists.field_registry import ExtractionGroup

__all__ = ["CACHE_TABLES_BY_GROUP", "CacheTable", "EvaluationCache"]

logger = logging.getLogger("smartlists.smart_lists.cache")

T = TypeVar("T")


class CacheTable(Enum):
    """Lookup tables held by the evaluation cache."""

    PEOPLE = "people"
    COLLECTIONS = "collections"
    PLAYLISTS = "playlists"
    MEDIA_STREAMS = "media_streams"
    SERIES = "series"
    NEXT_UNWATCHED = "next_unwatched"
    EXTERNAL_LISTS = "external_lists"
    EXTERNAL_LIST_POSITIONS = "external_list_positions"
    LIBRARY_NAMES = "library_names"
    CHILD_ITEMS = "child_items"
    SIMILARITY_SCORES = "similarity_scores"


# Every expensive extraction tag resolves through at least one table
CACHE_TABLES_BY_GROUP: dict[ExtractionGroup, tuple[CacheTable, ...]] = {
    ExtractionGroup.AUDIO_LANGUAGES: (CacheTable.MEDIA_STREAMS,),
    ExtractionGroup.AUDIO_QUALITY: (CacheTable.MEDIA_STREAMS,),
    ExtractionGroup.VIDEO_QUALITY: (CacheTable.MEDIA_STREAMS,),
    ExtractionGroup.PEOPLE: (CacheTable.PEOPLE,),
    ExtractionGroup.COLLECTIONS: (CacheTable.COLLECTIONS,),
    ExtractionGroup.PLAYLISTS: (CacheTable.PLAYLISTS,),
    ExtractionGroup.NEXT_UNWATCHED: (CacheTable.NEXT_UNWATCHED,),
    ExtractionGroup.SERIES_NAME: (CacheTable.SERIES,),
    ExtractionGroup.PARENT_SERIES_TAGS: (CacheTable.SERIES,),
    ExtractionGroup.PARENT_SERIES_STUDIOS: (CacheTable.SERIES,),
    ExtractionGroup.PARENT_SERIES_GENRES: (CacheTable.SERIES,),
    ExtractionGroup.SIMILAR_TO: (CacheTable.SIMILARITY_SCORES,),
    ExtractionGroup.LAST_EPISODE_AIR_DATE: (CacheTable.SERIES,),
    ExtractionGroup.EXTERNAL_LISTS: (CacheTable.EXTERNAL_LISTS, CacheTable.EXTERNAL_LIST_POSITIONS),
    ExtractionGroup.LIBRARY_INFO: (CacheTable.LIBRARY_NAMES,),
}


class _Slot:
    """Result slot for one key; waiters block on ``ready``."""

    __slots__ = ("ready", "value", "error")

    def __init__(self) -> None:
        self.ready = threading.Event()
        self.value: Any = None
        self.error: ExtractionError | None = None


class EvaluationCache:
    """Sharded, single-flight memo store for one evaluation run."""

    def __init__(self, shard_count: int = 16) -> None:
        """Initializes an empty cache.

        Args:
            shard_count: Number of independently locked shards.
        """
        if shard_count < 1:
            raise ValueError("shard_count must be positive")
        self._locks = [threading.Lock() for _ in range(shard_count)]
        self._shards: list[dict[tuple[CacheTable, Hashable], _Slot]] = [{} for _ in range(shard_count)]
        self._stats_lock = threading.Lock()
        self._compute_counts: Counter[CacheTable] = Counter()

    def _shard_index(self, slot_key: tuple[CacheTable, Hashable]) -> int:
        return hash(slot_key) % len(self._locks)

    def get_or_compute(self, table: CacheTable, key: Hashable, compute: Callable[[], T]) -> T:
        """Returns the cached value for ``(table, key)``, computing it once.

        Args:
            table: The lookup table.
            key: Key within the table.
            compute: Zero-argument function producing the value.

        Returns:
            The memoized value.

        Raises:
            ExtractionError: If the computation failed (now or earlier in the run).
        """
        slot_key = (table, key)
        index = self._shard_index(slot_key)

        with self._locks[index]:
            slot = self._shards[index].get(slot_key)
            owner = slot is None
            if owner:
                slot = _Slot()
                self._shards[index][slot_key] = slot

        if owner:
            try:
                slot.value = compute()
            except ExtractionError as exc:
                slot.error = exc
            except Exception as exc:
                logger.debug("Lookup %s failed for key %r: %s", table.value, key, exc)
                error = ExtractionError(f"{table.value} lookup failed for {key!r}: {exc}")
                error.__cause__ = exc
                slot.error = error
            finally:
                with self._stats_lock:
                    self._compute_counts[table] += 1
                slot.ready.set()
        else:
            slot.ready.wait()

        if slot.error is not None:
            raise slot.error
        return slot.value

    def peek(self, table: CacheTable, key: Hashable, default: Any = None) -> Any:
        """Returns a completed value without computing; ``default`` otherwise."""
        slot_key = (table, key)
        index = self._shard_index(slot_key)
        with self._locks[index]:
            slot = self._shards[index].get(slot_key)
        if slot is None or not slot.ready.is_set() or slot.error is not None:
            return default
        return slot.value

    def compute_count(self, table: CacheTable) -> int:
        """Number of compute calls executed for a table in this run."""
        with self._stats_lock:
            return self._compute_counts[table]

    def size(self, table: CacheTable | None = None) -> int:
        """Number of keys held, for one table or all tables."""
        total = 0
        for lock, shard in zip(self._locks, self._shards):
            with lock:
                total += sum(1 for t, _ in shard if table is None or t is table)
        return total
