"""
Caching and request batching for delivery lookups.

Provides:
- memoize-with-expiry (get_or_compute)
- two independently configured TTL classes: pincode/zone lookups (long) and
  per-SKU availability (short)
- a size bound per namespace, oldest entry evicted first
- RequestBatcher, which coalesces lookups issued within a short window into
  one processing pass

Entries are informational only. Nothing on the reservation path reads this
cache; a cached "deliverable" never stands in for the atomic re-check done
when stock is reserved.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Generic,
    List,
    Optional,
    Sequence,
    Tuple,
    TypeVar,
    Union,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
Req = TypeVar("Req")
Res = TypeVar("Res")

PINCODE_NAMESPACE = "pincode"
AVAILABILITY_NAMESPACE = "product_delivery"
DEFAULT_NAMESPACE = "default"


def make_key(kind: str, **params: Any) -> str:
    """Stable cache key: same params in any order give the same key."""

    return f"{kind}:{json.dumps(params, sort_keys=True, default=str)}"


@dataclass(slots=True)
class CacheEntry:
    key: str
    payload: Any
    created_at: float
    ttl: float

    def is_valid(self, now: float) -> bool:
        return now - self.created_at < self.ttl


class DeliveryCache:
    def __init__(
        self,
        *,
        pincode_ttl: float = 60 * 60,
        availability_ttl: float = 15 * 60,
        max_entries: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ):
        if pincode_ttl <= 0 or availability_ttl <= 0:
            raise ValueError("cache TTLs must be positive")
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self.pincode_ttl = pincode_ttl
        self.availability_ttl = availability_ttl
        self.max_entries = max_entries
        self._clock = clock
        self._namespaces: Dict[str, "OrderedDict[str, CacheEntry]"] = {}
        self._lock = threading.Lock()
        self._hits = 0
        self._misses = 0

    def _lookup(self, namespace: str, key: str) -> Tuple[bool, Any]:
        with self._lock:
            entries = self._namespaces.get(namespace)
            entry = entries.get(key) if entries is not None else None
            if entry is not None and entry.is_valid(self._clock()):
                self._hits += 1
                return True, entry.payload
            if entry is not None:
                del entries[key]
            self._misses += 1
            return False, None

    def _store(self, namespace: str, key: str, payload: Any, ttl: float) -> None:
        with self._lock:
            entries = self._namespaces.setdefault(namespace, OrderedDict())
            entries.pop(key, None)
            while len(entries) >= self.max_entries:
                entries.popitem(last=False)
            entries[key] = CacheEntry(key=key, payload=payload, created_at=self._clock(), ttl=ttl)

    def get_or_compute(
        self,
        key: str,
        compute_fn: Callable[[], T],
        ttl: float,
        *,
        namespace: str = DEFAULT_NAMESPACE,
    ) -> T:
        """
        Return the cached value for `key`, computing and storing it on a miss.

        Entries older than `ttl` count as absent. Exceptions from compute_fn
        propagate and nothing is cached.
        """

        found, payload = self._lookup(namespace, key)
        if found:
            logger.debug("Cache hit %s", key)
            return payload

        logger.debug("Cache miss %s", key)
        value = compute_fn()
        self._store(namespace, key, value, ttl)
        return value

    def get_pincode(self, pincode: str, compute_fn: Callable[[], T]) -> T:
        return self.get_or_compute(
            make_key("pincode", pincode=pincode),
            compute_fn,
            self.pincode_ttl,
            namespace=PINCODE_NAMESPACE,
        )

    def get_availability(
        self, sku_id: str, pincode: str, quantity: int, compute_fn: Callable[[], T]
    ) -> T:
        return self.get_or_compute(
            make_key("product_delivery", sku_id=sku_id, pincode=pincode, quantity=quantity),
            compute_fn,
            self.availability_ttl,
            namespace=AVAILABILITY_NAMESPACE,
        )

    def batch(
        self, requests: Sequence[Req], processor: Callable[[List[Req]], Sequence[Res]]
    ) -> List[Res]:
        """
        Run `requests` through `processor` in one pass.

        Result i belongs to request i. If the pass fails, or returns the wrong
        number of results, every request fails.
        """

        items = list(requests)
        if not items:
            return []
        results = list(processor(items))
        if len(results) != len(items):
            raise RuntimeError(
                f"Batch processor returned {len(results)} results for {len(items)} requests"
            )
        return results

    def evict_expired(self) -> int:
        now = self._clock()
        removed = 0
        with self._lock:
            for entries in self._namespaces.values():
                expired = [k for k, e in entries.items() if not e.is_valid(now)]
                for key in expired:
                    del entries[key]
                removed += len(expired)
        if removed:
            logger.info("Evicted %d expired delivery cache entries", removed)
        return removed

    def clear(self) -> None:
        with self._lock:
            self._namespaces.clear()

    def stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "namespaces": {name: len(entries) for name, entries in self._namespaces.items()},
                "max_entries": self.max_entries,
                "pincode_ttl": self.pincode_ttl,
                "availability_ttl": self.availability_ttl,
                "hits": self._hits,
                "misses": self._misses,
            }

    async def run_sweeper(self, interval_seconds: float) -> None:
        """Evict expired entries every `interval_seconds` until cancelled."""

        while True:
            await asyncio.sleep(interval_seconds)
            self.evict_expired()


BatchProcessor = Callable[[List[Req]], Union[Sequence[Res], Awaitable[Sequence[Res]]]]


class RequestBatcher(Generic[Req, Res]):
    """
    Coalesce requests submitted within `window_seconds` into one processor call.

    The window starts with the first pending request; the batch is flushed
    early once `max_batch_size` requests are pending. A synchronous processor
    runs in a worker thread so the event loop is not blocked by storage I/O.
    """

    def __init__(
        self,
        processor: BatchProcessor,
        *,
        window_seconds: float = 0.05,
        max_batch_size: int = 10,
    ):
        if max_batch_size < 1:
            raise ValueError("max_batch_size must be >= 1")
        self._processor = processor
        self._window_seconds = window_seconds
        self._max_batch_size = max_batch_size
        self._pending: List[Tuple[Req, "asyncio.Future[Res]"]] = []
        self._timer: Optional[asyncio.TimerHandle] = None
        self._tasks: "set[asyncio.Task[None]]" = set()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def submit(self, request: Req) -> Res:
        loop = asyncio.get_running_loop()
        future: "asyncio.Future[Res]" = loop.create_future()
        self._pending.append((request, future))

        if len(self._pending) >= self._max_batch_size:
            self._flush()
        elif self._timer is None:
            self._timer = loop.call_later(self._window_seconds, self._flush)

        return await future

    def _flush(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        batch, self._pending = self._pending, []
        if not batch:
            return
        task = asyncio.get_running_loop().create_task(self._process(batch))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _process(self, batch: List[Tuple[Req, "asyncio.Future[Res]"]]) -> None:
        requests = [request for request, _ in batch]
        try:
            if inspect.iscoroutinefunction(self._processor):
                results = await self._processor(requests)
            else:
                results = await asyncio.to_thread(self._processor, requests)
                if inspect.isawaitable(results):
                    results = await results
            results = list(results)
            if len(results) != len(batch):
                raise RuntimeError(
                    f"Batch processor returned {len(results)} results for {len(batch)} requests"
                )
        except Exception as exc:
            logger.warning("Batch of %d delivery lookups failed: %s", len(batch), exc)
            for _, future in batch:
                if not future.done():
                    future.set_exception(exc)
            return

        for (_, future), result in zip(batch, results):
            if not future.done():
                future.set_result(result)


__all__ = [
    "AVAILABILITY_NAMESPACE",
    "CacheEntry",
    "DeliveryCache",
    "PINCODE_NAMESPACE",
    "RequestBatcher",
    "make_key",
]
