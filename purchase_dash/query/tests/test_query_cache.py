import asyncio

import pytest

import purchase_dash.query.cache as cache_mod
from purchase_dash.errors import PreconditionError, RequestError
from purchase_dash.query.cache import (
    ErrorInfo,
    QueryCache,
    QueryObserver,
    QueryOptions,
    QueryStatus,
    make_query_key,
)


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class GatedFetcher:
    """Fetcher whose calls block until released, in any order."""

    def __init__(self):
        self.calls = 0
        self.gates = []

    async def __call__(self):
        self.calls += 1
        gate = asyncio.Event()
        value = {}
        self.gates.append((gate, value))
        await gate.wait()
        if "error" in value:
            raise value["error"]
        return value["data"]

    def release(self, index, data=None, error=None):
        gate, value = self.gates[index]
        if error is not None:
            value["error"] = error
        else:
            value["data"] = data
        gate.set()


def counting_fetcher(data, calls):
    async def fetcher():
        calls.append(data)
        return data

    return fetcher


@pytest.fixture
def clock():
    return FakeClock()


def make_cache(clock, **kwargs):
    kwargs.setdefault("stale_time", 300)
    kwargs.setdefault("gc_time", 600)
    kwargs.setdefault("retry", 0)
    return QueryCache(clock=clock, **kwargs)


def test_query_key_is_canonical():
    assert make_query_key("customers", name="kim", sortBy=None) == make_query_key("customers", name="kim")
    assert make_query_key("x", a=1, b=2) == make_query_key("x", b=2, a=1)
    assert make_query_key("customers", name="김") == '["customers",{"name":"김"}]'
    assert make_query_key("customers") != make_query_key("customers", sortBy="asc")


def test_concurrent_subscribers_share_one_request(clock):
    fetcher = GatedFetcher()

    async def scenario():
        cache = make_cache(clock)
        options = QueryOptions(key="k", fetcher=fetcher)
        first = QueryObserver(cache, options)
        second = QueryObserver(cache, options)
        assert first.result.is_loading and second.result.is_loading
        await asyncio.sleep(0)
        fetcher.release(0, data=["row"])
        return await first.wait(), await second.wait()

    first, second = asyncio.run(scenario())
    assert fetcher.calls == 1
    assert first.data == second.data == ["row"]
    assert first.is_success and not first.is_fetching


def test_status_transitions_are_notified(clock):
    seen = []

    async def scenario():
        cache = make_cache(clock)
        observer = QueryObserver(cache, QueryOptions(key="k", fetcher=counting_fetcher([1], [])), on_change=seen.append)
        await observer.wait()

    asyncio.run(scenario())
    assert [r.status for r in seen] == [QueryStatus.LOADING, QueryStatus.SUCCESS]
    assert seen[-1].data == [1]


def test_fresh_data_is_served_without_a_call(clock):
    calls = []

    async def scenario():
        cache = make_cache(clock)
        options = QueryOptions(key="k", fetcher=counting_fetcher("v1", calls))
        await cache.fetch_query(options)
        clock.now += 299
        late = QueryObserver(cache, options)
        assert late.result.is_success
        assert not late.result.is_fetching
        return late.result

    result = asyncio.run(scenario())
    assert calls == ["v1"]
    assert result.data == "v1"


def test_stale_data_is_shown_while_revalidating(clock):
    fetcher = GatedFetcher()

    async def scenario():
        cache = make_cache(clock)
        options = QueryOptions(key="k", fetcher=fetcher)
        task = cache.fetch(options)
        await asyncio.sleep(0)
        fetcher.release(0, data="old")
        await task

        clock.now += 300
        observer = QueryObserver(cache, options)
        during = observer.result
        await asyncio.sleep(0)
        fetcher.release(1, data="new")
        after = await observer.wait()
        return during, after

    during, after = asyncio.run(scenario())
    assert fetcher.calls == 2
    assert during.status == QueryStatus.SUCCESS
    assert during.data == "old"
    assert during.is_fetching and during.is_stale
    assert after.data == "new"
    assert not after.is_stale


def test_slow_response_for_abandoned_key_does_not_win(clock):
    fetcher = GatedFetcher()
    seen = []

    async def scenario():
        cache = make_cache(clock)
        observer = QueryObserver(cache, QueryOptions(key="k1", fetcher=fetcher), on_change=seen.append)
        await asyncio.sleep(0)
        observer.set_options(QueryOptions(key="k2", fetcher=fetcher))
        await asyncio.sleep(0)
        fetcher.release(1, data="k2 data")
        await asyncio.sleep(0)
        await observer.wait()
        fetcher.release(0, data="k1 data")
        await cache.fetch_query(QueryOptions(key="k1", fetcher=fetcher))
        return cache, observer.result

    cache, result = asyncio.run(scenario())
    assert result.key == "k2"
    assert result.data == "k2 data"
    assert all(r.key == "k2" for r in seen[1:])
    assert all(r.data != "k1 data" for r in seen)
    # The abandoned key still caches its own answer
    assert cache.get_entry("k1").data == "k1 data"


def test_superseded_request_for_same_key_is_discarded(clock):
    fetcher = GatedFetcher()

    async def scenario():
        cache = make_cache(clock)
        options = QueryOptions(key="k", fetcher=fetcher)
        observer = QueryObserver(cache, options)
        await asyncio.sleep(0)
        observer.refetch()
        await asyncio.sleep(0)
        fetcher.release(1, data="second")
        await asyncio.sleep(0)
        fetcher.release(0, data="first")
        return await observer.wait(), cache.get_entry("k")

    result, entry = asyncio.run(scenario())
    assert fetcher.calls == 2
    assert result.data == "second"
    assert entry.fetch_count == 1


def test_errors_become_state_and_are_not_retried(clock):
    calls = []

    async def fetcher():
        calls.append(1)
        raise RequestError("잘못된 날짜 형식입니다", status=400)

    async def scenario():
        cache = make_cache(clock)
        observer = QueryObserver(cache, QueryOptions(key="k", fetcher=fetcher))
        return await observer.wait()

    result = asyncio.run(scenario())
    assert calls == [1]
    assert result.is_error
    assert result.error == ErrorInfo(message="잘못된 날짜 형식입니다", status=400, kind="request")


def test_configured_retry(clock):
    calls = []

    async def fetcher():
        calls.append(1)
        if len(calls) < 3:
            raise RequestError("flaky")
        return "ok"

    async def scenario():
        cache = make_cache(clock, retry=2)
        return await cache.fetch_query(QueryOptions(key="k", fetcher=fetcher))

    entry = asyncio.run(scenario())
    assert len(calls) == 3
    assert entry.status == QueryStatus.SUCCESS


def test_unexpected_exceptions_are_captured(clock):
    async def fetcher():
        raise KeyError("boom")

    async def scenario():
        cache = make_cache(clock)
        return await cache.fetch_query(QueryOptions(key="k", fetcher=fetcher))

    entry = asyncio.run(scenario())
    assert entry.status == QueryStatus.ERROR
    assert entry.error.kind == "unexpected"


def test_disabled_query_stays_idle(clock):
    calls = []

    async def scenario():
        cache = make_cache(clock)
        observer = QueryObserver(cache, QueryOptions(key="k", fetcher=counting_fetcher(1, calls), enabled=False))
        await asyncio.sleep(0)
        return observer.result

    result = asyncio.run(scenario())
    assert calls == []
    assert result.status == QueryStatus.IDLE
    assert not result.is_loading


def test_unused_entries_are_evicted_after_gc_time(clock):
    async def scenario():
        cache = make_cache(clock)
        options = QueryOptions(key="k", fetcher=counting_fetcher(1, []))
        observer = QueryObserver(cache, options)
        await observer.wait()

        clock.now += 10_000
        assert cache.collect_garbage() == []

        observer.destroy()
        clock.now += 599
        assert cache.collect_garbage() == []
        clock.now += 1
        return cache.collect_garbage(), cache

    evicted, cache = asyncio.run(scenario())
    assert evicted == ["k"]
    assert cache.get_entry("k") is None


def test_resubscribing_keeps_entry_alive(clock):
    async def scenario():
        cache = make_cache(clock)
        options = QueryOptions(key="k", fetcher=counting_fetcher(1, []))
        first = QueryObserver(cache, options)
        await first.wait()
        first.destroy()
        clock.now += 100
        QueryObserver(cache, options)
        clock.now += 1000
        return cache.collect_garbage()

    assert asyncio.run(scenario()) == []


def test_destroyed_observer_is_silent(clock):
    fetcher = GatedFetcher()
    seen = []

    async def scenario():
        cache = make_cache(clock)
        observer = QueryObserver(cache, QueryOptions(key="k", fetcher=fetcher), on_change=seen.append)
        await asyncio.sleep(0)
        observer.destroy()
        fetcher.release(0, data="late")
        await cache.fetch_query(QueryOptions(key="k", fetcher=fetcher))
        with pytest.raises(RuntimeError):
            observer.set_options(QueryOptions(key="other", fetcher=fetcher))

    asyncio.run(scenario())
    assert [r.status for r in seen] == [QueryStatus.LOADING]


def test_invalidate_refetches_watched_key(clock):
    calls = []

    async def scenario():
        cache = make_cache(clock)
        observer = QueryObserver(cache, QueryOptions(key="k", fetcher=counting_fetcher("v", calls)))
        await observer.wait()
        task = cache.invalidate("k")
        assert task is not None
        return await observer.wait()

    result = asyncio.run(scenario())
    assert calls == ["v", "v"]
    assert not result.is_stale


def test_clear_discards_inflight_results(clock):
    fetcher = GatedFetcher()

    async def scenario():
        cache = make_cache(clock)
        task = cache.fetch(QueryOptions(key="k", fetcher=fetcher))
        await asyncio.sleep(0)
        cache.clear()
        fetcher.release(0, data="late")
        await task
        return cache

    cache = asyncio.run(scenario())
    assert cache.get_entry("k") is None


def test_request_from_before_clear_does_not_overwrite_refetch(clock):
    fetcher = GatedFetcher()

    async def scenario():
        cache = make_cache(clock)
        options = QueryOptions(key="k", fetcher=fetcher)
        old = cache.fetch(options)
        await asyncio.sleep(0)
        cache.clear()
        new = cache.fetch(options)
        await asyncio.sleep(0)
        fetcher.release(0, data="pre-clear")
        await old
        after_old = cache.get_entry("k")
        still_tracked = cache.inflight("k") is new
        fetcher.release(1, data="post-clear")
        await new
        return after_old, still_tracked, cache.get_entry("k")

    after_old, still_tracked, final = asyncio.run(scenario())
    assert after_old.status == QueryStatus.LOADING
    assert after_old.data is None
    assert still_tracked
    assert final.status == QueryStatus.SUCCESS
    assert final.data == "post-clear"


def test_first_fetch_delay_only_applies_once(clock, monkeypatch):
    delays = []
    real_sleep = asyncio.sleep

    async def fake_sleep(seconds, *args, **kwargs):
        delays.append(seconds)
        await real_sleep(0)

    monkeypatch.setattr(cache_mod.asyncio, "sleep", fake_sleep)

    async def scenario():
        cache = make_cache(clock)
        options = QueryOptions(key="k", fetcher=counting_fetcher(1, []), first_fetch_delay=0.5)
        await cache.fetch_query(options)
        await cache.fetch_query(options, force=True)

    asyncio.run(scenario())
    assert delays.count(0.5) == 1


def test_error_info_from_precondition():
    info = ErrorInfo.from_exception(PreconditionError("Customer ID is required"))
    assert info == ErrorInfo(message="Customer ID is required", status=None, kind="precondition")
