"""Keyed asynchronous query cache and the observers that subscribe to it.

Entries are immutable snapshots: every status transition swaps in a new
CacheEntry object. The cache is the only writer; observers and views only read.
"""
from __future__ import annotations

import asyncio
import itertools
import json
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, Set, TypeVar

from purchase_dash.config import get_config
from purchase_dash.errors import DashboardError
from purchase_dash.logging import get_logger

T = TypeVar("T")


class QueryStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class ErrorInfo:
    """Error channel carried by every cache entry and query result."""
    message: str
    status: Optional[int] = None
    kind: str = "unexpected"

    @classmethod
    def from_exception(cls, exc: BaseException) -> "ErrorInfo":
        if isinstance(exc, DashboardError):
            return cls(message=exc.message, status=getattr(exc, "status", None), kind=exc.kind)
        return cls(message=str(exc) or type(exc).__name__)


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    key: str
    status: QueryStatus = QueryStatus.IDLE
    data: Optional[T] = None
    error: Optional[ErrorInfo] = None
    fetched_at: Optional[float] = None
    is_fetching: bool = False
    is_invalidated: bool = False
    fetch_count: int = 0  # completed fetches, successful or not


@dataclass(frozen=True)
class QueryOptions(Generic[T]):
    """What to fetch for a key and whether fetching is allowed right now."""
    key: str
    fetcher: Callable[[], Awaitable[T]]
    enabled: bool = True
    # Simulated latency, applied only while the key has never completed a fetch
    first_fetch_delay: float = 0.0


def make_query_key(scope: str, **params: Any) -> str:
    """Canonical JSON key; parameters that are None are left out."""
    present = {name: value for name, value in params.items() if value is not None}
    return json.dumps([scope, present], sort_keys=True, ensure_ascii=False, separators=(",", ":"), default=str)


Listener = Callable[[CacheEntry], None]


class QueryCache:
    """Single writer for all query entries.

    - fresh successful data (younger than `stale_time`) is served without a call;
    - at most one request per key is in flight, later callers attach to it;
    - a forced refetch supersedes the in-flight request and the older response
      is dropped when it lands (last request wins);
    - entries with no subscribers for `gc_time` are evicted.
    """

    def __init__(
        self,
        stale_time: Optional[float] = None,
        gc_time: Optional[float] = None,
        retry: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        config = get_config()
        self.stale_time = stale_time if stale_time is not None else config.stale_time_seconds
        self.gc_time = gc_time if gc_time is not None else config.gc_time_seconds
        self.retry = retry if retry is not None else config.query_retry
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._options: Dict[str, QueryOptions] = {}
        self._inflight: Dict[str, asyncio.Task] = {}
        self._generation: Dict[str, int] = {}
        # Request numbers are unique across the whole cache, so a clear() or an
        # eviction can never make an older request look current again
        self._request_ids = itertools.count(1)
        self._listeners: Dict[str, List[Listener]] = {}
        self._idle_since: Dict[str, float] = {}
        self._gc_handles: Dict[str, asyncio.TimerHandle] = {}
        self._tasks: Set[asyncio.Task] = set()
        self.logger = get_logger(__name__)

    # ---------- reads ----------

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        return self._entries.get(key)

    def keys(self) -> List[str]:
        return list(self._entries)

    def inflight(self, key: str) -> Optional[asyncio.Task]:
        return self._inflight.get(key)

    def is_stale(self, entry: CacheEntry) -> bool:
        if entry.is_invalidated or entry.fetched_at is None:
            return True
        return self._clock() - entry.fetched_at >= self.stale_time

    def subscriber_count(self, key: str) -> int:
        return len(self._listeners.get(key, ()))

    # ---------- subscriptions ----------

    def subscribe(self, key: str, listener: Listener) -> Callable[[], None]:
        """Register `listener` for entry changes of `key`; returns the unsubscribe callable."""
        self._listeners.setdefault(key, []).append(listener)
        self._idle_since.pop(key, None)
        self._cancel_gc(key)

        def unsubscribe() -> None:
            listeners = self._listeners.get(key)
            if listeners and listener in listeners:
                listeners.remove(listener)
            if not listeners:
                self._listeners.pop(key, None)
                self._mark_idle(key)

        return unsubscribe

    # ---------- fetching ----------

    def fetch(self, options: QueryOptions, force: bool = False) -> Optional[asyncio.Task]:
        """Make sure `options.key` gets data.

        Returns the in-flight task (new or shared), or None when the cached data
        is still fresh or the query is disabled. Must run inside an event loop.
        """
        key = options.key
        if not options.enabled:
            return None
        self._options[key] = options

        inflight = self._inflight.get(key)
        if inflight is not None and not force:
            return inflight

        entry = self._entries.get(key)
        if not force and entry is not None and entry.status == QueryStatus.SUCCESS and not self.is_stale(entry):
            return None
        return self._start(options, entry)

    async def fetch_query(self, options: QueryOptions, force: bool = False) -> CacheEntry:
        """Await the data for `options.key` and return the settled entry."""
        task = self.fetch(options, force=force)
        while task is not None:
            await task
            task = self._inflight.get(options.key)
        return self._entries.get(options.key) or CacheEntry(key=options.key)

    def invalidate(self, key: str) -> Optional[asyncio.Task]:
        """Mark `key` stale; refetch right away when someone is watching it."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        self._replace(replace(entry, is_invalidated=True))
        options = self._options.get(key)
        if options is not None and self.subscriber_count(key) > 0:
            return self.fetch(options, force=True)
        return None

    def clear(self) -> None:
        """Forget every entry; in-flight responses are discarded when they land."""
        for handle in self._gc_handles.values():
            handle.cancel()
        self._gc_handles.clear()
        self._entries.clear()
        self._options.clear()
        self._inflight.clear()
        self._generation.clear()
        self._idle_since.clear()

    def collect_garbage(self) -> List[str]:
        """Evict entries idle (no subscribers, nothing in flight) for at least `gc_time`."""
        now = self._clock()
        evicted = []
        for key, since in list(self._idle_since.items()):
            if self._listeners.get(key) or key in self._inflight:
                continue
            if now - since >= self.gc_time:
                self._evict(key)
                evicted.append(key)
        return evicted

    def _start(self, options: QueryOptions, entry: Optional[CacheEntry]) -> asyncio.Task:
        key = options.key
        generation = next(self._request_ids)
        self._generation[key] = generation
        self._cancel_gc(key)

        base = entry or CacheEntry(key=key)
        if base.status == QueryStatus.SUCCESS:
            # Stale-while-revalidate: keep showing the old data
            self._replace(replace(base, is_fetching=True))
        else:
            self._replace(replace(base, status=QueryStatus.LOADING, error=None, is_fetching=True))

        loop = asyncio.get_running_loop()
        task = loop.create_task(self._run(options, generation))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        self._inflight[key] = task
        self.logger.debug(f"Fetching {key} (request #{generation})")
        return task

    async def _run(self, options: QueryOptions, generation: int) -> Optional[CacheEntry]:
        try:
            data = await self._load(options)
        except Exception as e:
            self.logger.warning(f"Query {options.key} failed: {e}")
            return self._settle(options.key, generation, error=ErrorInfo.from_exception(e))
        return self._settle(options.key, generation, data=data)

    async def _load(self, options: QueryOptions) -> Any:
        entry = self._entries.get(options.key)
        if options.first_fetch_delay > 0 and (entry is None or entry.fetch_count == 0):
            await asyncio.sleep(options.first_fetch_delay)

        attempt = 0
        while True:
            try:
                return await options.fetcher()
            except Exception as e:
                if attempt >= self.retry:
                    raise
                attempt += 1
                self.logger.info(f"Retrying {options.key} ({attempt}/{self.retry}) after: {e}")

    def _settle(
        self,
        key: str,
        generation: int,
        data: Any = None,
        error: Optional[ErrorInfo] = None,
    ) -> Optional[CacheEntry]:
        if self._generation.get(key) != generation:
            self.logger.debug(f"Discarding superseded response for {key} (request #{generation})")
            return self._entries.get(key)

        self._inflight.pop(key, None)
        base = self._entries.get(key) or CacheEntry(key=key)
        if error is None:
            entry = replace(
                base,
                status=QueryStatus.SUCCESS,
                data=data,
                error=None,
                fetched_at=self._clock(),
                is_fetching=False,
                is_invalidated=False,
                fetch_count=base.fetch_count + 1,
            )
        else:
            entry = replace(
                base,
                status=QueryStatus.ERROR,
                error=error,
                is_fetching=False,
                fetch_count=base.fetch_count + 1,
            )
        self._replace(entry)
        if not self._listeners.get(key):
            self._mark_idle(key)
        return entry

    # ---------- bookkeeping ----------

    def _replace(self, entry: CacheEntry) -> None:
        self._entries[entry.key] = entry
        for listener in list(self._listeners.get(entry.key, ())):
            try:
                listener(entry)
            except Exception:
                self.logger.exception(f"Listener for {entry.key} raised")

    def _mark_idle(self, key: str) -> None:
        if key not in self._entries:
            return
        self._idle_since[key] = self._clock()
        self._cancel_gc(key)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop to time the eviction; collect_garbage() picks it up later
            return
        self._gc_handles[key] = loop.call_later(self.gc_time, self._collect_key, key)

    def _collect_key(self, key: str) -> None:
        self._gc_handles.pop(key, None)
        since = self._idle_since.get(key)
        if since is None or self._listeners.get(key) or key in self._inflight:
            return
        if self._clock() - since >= self.gc_time:
            self._evict(key)

    def _cancel_gc(self, key: str) -> None:
        handle = self._gc_handles.pop(key, None)
        if handle is not None:
            handle.cancel()

    def _evict(self, key: str) -> None:
        self.logger.debug(f"Evicting idle query {key}")
        self._cancel_gc(key)
        self._entries.pop(key, None)
        self._options.pop(key, None)
        self._idle_since.pop(key, None)
        self._generation.pop(key, None)


@dataclass(frozen=True)
class QueryResult(Generic[T]):
    """What a view reads: snapshot of the observer's current key."""
    key: str
    status: QueryStatus
    data: Optional[T] = None
    error: Optional[ErrorInfo] = None
    is_fetching: bool = False
    is_stale: bool = False

    @property
    def is_loading(self) -> bool:
        return self.status == QueryStatus.LOADING

    @property
    def is_error(self) -> bool:
        return self.status == QueryStatus.ERROR

    @property
    def is_success(self) -> bool:
        return self.status == QueryStatus.SUCCESS


class QueryObserver(Generic[T]):
    """Subscription of one consumer to one (changeable) query key.

    Switching options to a new key detaches from the old key synchronously, so a
    late response for the abandoned key can never reach this observer.
    """

    def __init__(
        self,
        cache: QueryCache,
        options: QueryOptions[T],
        on_change: Optional[Callable[[QueryResult[T]], None]] = None,
    ) -> None:
        self._cache = cache
        self._options: Optional[QueryOptions[T]] = None
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._listeners: List[Callable[[QueryResult[T]], None]] = [on_change] if on_change else []
        self._destroyed = False
        self.set_options(options)

    @property
    def key(self) -> str:
        return self._options.key

    @property
    def options(self) -> QueryOptions[T]:
        return self._options

    @property
    def result(self) -> QueryResult[T]:
        entry = self._cache.get_entry(self.key)
        if entry is None:
            status = QueryStatus.LOADING if self._options.enabled else QueryStatus.IDLE
            return QueryResult(key=self.key, status=status, is_fetching=self._options.enabled, is_stale=True)
        return QueryResult(
            key=self.key,
            status=entry.status,
            data=entry.data,
            error=entry.error,
            is_fetching=entry.is_fetching,
            is_stale=self._cache.is_stale(entry),
        )

    def add_listener(self, listener: Callable[[QueryResult[T]], None]) -> None:
        self._listeners.append(listener)

    def set_options(self, options: QueryOptions[T]) -> None:
        if self._destroyed:
            raise RuntimeError("QueryObserver used after destroy()")
        key_changed = self._options is None or self._options.key != options.key
        self._options = options
        if not key_changed:
            self._cache.fetch(options)
            return
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._cache.fetch(options)
        self._unsubscribe = self._cache.subscribe(options.key, self._on_entry)
        self._notify()

    def refetch(self) -> Optional[asyncio.Task]:
        if self._destroyed:
            return None
        return self._cache.fetch(self._options, force=True)

    async def wait(self) -> QueryResult[T]:
        """Wait until the current key has nothing in flight and return its result."""
        while not self._destroyed:
            task = self._cache.inflight(self.key)
            if task is None:
                break
            await task
        return self.result

    def destroy(self) -> None:
        if self._destroyed:
            return
        self._destroyed = True
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._listeners.clear()

    def _on_entry(self, entry: CacheEntry) -> None:
        if self._destroyed or entry.key != self.key:
            return
        self._notify()

    def _notify(self) -> None:
        result = self.result
        for listener in list(self._listeners):
            listener(result)
