"""
Process-owned cache of built embedding indexes.

Guarantees at most one in-flight build per key. Concurrent callers for the
same key await a single shared task and see the same index or the same
exception. Failed builds are never stored, so the next call retries.
"""
from __future__ import annotations

import asyncio
from collections import OrderedDict
from dataclasses import dataclass
from typing import Awaitable, Callable

from .embedding_index import EmbeddingIndex
from .observability import get_logger

logger = get_logger(__name__)

IndexBuilder = Callable[[], Awaitable[EmbeddingIndex]]


@dataclass(frozen=True)
class IndexKey:
    """A document identity within one embedding space."""

    document_id: str
    embedder_signature: str

    def __str__(self) -> str:
        return f"{self.embedder_signature}::{self.document_id}"


class IndexCache:
    """Keyed store of EmbeddingIndex objects with single-flight builds.

    ``max_entries=0`` keeps every index for the life of the process. A positive
    value evicts the least recently used index once the bound is exceeded.
    """

    def __init__(self, max_entries: int = 0):
        self._max_entries = max(0, int(max_entries))
        self._entries: OrderedDict[IndexKey, EmbeddingIndex] = OrderedDict()
        self._inflight: dict[IndexKey, asyncio.Task] = {}
        self._lock = asyncio.Lock()
        self._hits = 0
        self._misses = 0
        self._builds = 0
        self._failures = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: IndexKey) -> bool:
        return key in self._entries

    def is_building(self, key: IndexKey) -> bool:
        return key in self._inflight

    async def get_or_build(self, key: IndexKey, builder: IndexBuilder) -> EmbeddingIndex:
        index = self._lookup(key)
        if index is not None:
            return index

        async with self._lock:
            # Re-check: the build may have finished while we waited for the lock.
            index = self._lookup(key)
            if index is not None:
                return index
            task = self._inflight.get(key)
            if task is None:
                self._misses += 1
                self._builds += 1
                logger.info("index_build_started", key=str(key))
                task = asyncio.create_task(self._run_build(key, builder), name=f"index-build:{key}")
                self._inflight[key] = task
                task.add_done_callback(lambda t, k=key: self._on_build_done(k, t))
            else:
                logger.info("index_build_joined", key=str(key))

        # shield: a cancelled caller must not take the shared build down with it.
        return await asyncio.shield(task)

    async def _run_build(self, key: IndexKey, builder: IndexBuilder) -> EmbeddingIndex:
        index = await builder()
        self._store(key, index)
        return index

    def _lookup(self, key: IndexKey) -> EmbeddingIndex | None:
        index = self._entries.get(key)
        if index is not None:
            self._hits += 1
            self._entries.move_to_end(key)
        return index

    def _store(self, key: IndexKey, index: EmbeddingIndex) -> None:
        self._entries[key] = index
        self._entries.move_to_end(key)
        if self._max_entries:
            while len(self._entries) > self._max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.info("index_evicted", key=str(evicted), reason="lru")

    def _on_build_done(self, key: IndexKey, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            self._inflight.pop(key, None)
        if task.cancelled():
            logger.warning("index_build_cancelled", key=str(key))
            return
        error = task.exception()
        if error is not None:
            self._failures += 1
            logger.error("index_build_failed", key=str(key), error_type=type(error).__name__, error=str(error))
            return
        logger.info("index_build_completed", key=str(key), chunks=len(task.result()))

    def evict(self, key: IndexKey) -> bool:
        removed = self._entries.pop(key, None) is not None
        if removed:
            logger.info("index_evicted", key=str(key), reason="explicit")
        return removed

    def stats(self) -> dict[str, int]:
        return {
            "entries": len(self._entries),
            "in_flight": len(self._inflight),
            "hits": self._hits,
            "misses": self._misses,
            "builds": self._builds,
            "failures": self._failures,
        }

    async def close(self) -> None:
        """Cancels in-flight builds and drops every cached index."""
        tasks = list(self._inflight.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._inflight.clear()
        self._entries.clear()
