import asyncio

import pytest

from artifex.domain.events.api_events import CacheHit
from artifex.domain.models.errors import GitHubApiError, UpstreamError
from artifex.infrastructure.cache.caching_service import create_cache_key
from artifex.infrastructure.cache.coalescer import InFlightCoalescer
from artifex.infrastructure.resilience.executor import ResilientExecutor
from artifex.infrastructure.resilience.fallback import FallbackOrchestrator


class CountingUpstream:
    def __init__(self, result="summary", gate=None):
        self.result = result
        self.gate = gate
        self.calls = []

    async def __call__(self, candidate):
        self.calls.append(candidate)
        if self.gate is not None:
            await self.gate.wait()
        return self.result


KEY = create_cache_key("overview", "octo", "repo")


@pytest.mark.asyncio
async def test_result_is_cached_for_later_callers(executor, cache_store):
    upstream = CountingUpstream()

    first = await executor.run(KEY, ("gpt-4o",), upstream)
    second = await executor.run(KEY, ("gpt-4o",), upstream)

    assert first == second == "summary"
    assert upstream.calls == ["gpt-4o"]
    assert cache_store.get(KEY) == "summary"


@pytest.mark.asyncio
async def test_cache_hit_dispatches_event(cache_store, retry_service):
    events = []
    executor = ResilientExecutor(
        cache_store, InFlightCoalescer(), FallbackOrchestrator(retry_service), event_listener=events.append
    )
    cache_store.set(KEY, "cached")

    assert await executor.run(KEY, ("gpt-4o",), CountingUpstream()) == "cached"
    assert [type(e) for e in events] == [CacheHit]


@pytest.mark.asyncio
async def test_expired_entry_calls_upstream_again(executor, clock):
    upstream = CountingUpstream()

    await executor.run(KEY, ("gpt-4o",), upstream, ttl=10)
    clock.advance(11)
    await executor.run(KEY, ("gpt-4o",), upstream, ttl=10)

    assert len(upstream.calls) == 2


@pytest.mark.asyncio
async def test_concurrent_identical_requests_share_one_call(executor):
    gate = asyncio.Event()
    upstream = CountingUpstream(gate=gate)

    tasks = [asyncio.create_task(executor.run(KEY, ("gpt-4o",), upstream)) for _ in range(5)]
    await asyncio.sleep(0)
    gate.set()
    results = await asyncio.gather(*tasks)

    assert results == ["summary"] * 5
    assert upstream.calls == ["gpt-4o"]


@pytest.mark.asyncio
async def test_none_results_are_not_cached(executor, cache_store):
    upstream = CountingUpstream(result=None)

    assert await executor.run(KEY, ("gpt-4o",), upstream) is None
    assert KEY not in cache_store
    await executor.run(KEY, ("gpt-4o",), upstream)
    assert len(upstream.calls) == 2


@pytest.mark.asyncio
async def test_use_cache_false_skips_cache(executor, cache_store):
    cache_store.set(KEY, "stale")
    upstream = CountingUpstream(result="fresh")

    assert await executor.run(KEY, ("gpt-4o",), upstream, use_cache=False) == "fresh"
    assert cache_store.get(KEY) == "stale"


@pytest.mark.asyncio
async def test_failures_are_not_cached(executor, cache_store):
    async def failing(candidate):
        raise GitHubApiError(401, "Bad credentials")

    with pytest.raises(UpstreamError):
        await executor.run(KEY, ("gpt-4o",), failing)

    assert KEY not in cache_store


@pytest.mark.asyncio
async def test_fallback_result_is_cached_under_request_key(executor, cache_store):
    async def first_missing(candidate):
        if candidate == "gpt-4o":
            raise GitHubApiError(404, "model not found")
        return f"from {candidate}"

    assert await executor.run(KEY, ("gpt-4o", "gpt-4o-mini"), first_missing) == "from gpt-4o-mini"
    assert cache_store.get(KEY) == "from gpt-4o-mini"
