"""Single entry point composing cache, coalescing and fallback.

Call sites ask for an operation by cache key: a fresh cached value is
returned straight away, a call already in flight is joined, and only
otherwise does the fallback chain run. Successful results are cached for
every later caller.
"""

import logging
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

from artifex.domain.events.api_events import CacheHit, EventListener, dispatch_event
from artifex.domain.interfaces.cache import CacheService
from artifex.domain.models.common import CacheKey, RetryPolicy
from artifex.infrastructure.cache.coalescer import InFlightCoalescer
from artifex.infrastructure.resilience.fallback import FallbackOrchestrator

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ResilientExecutor:
    """Cache check, in-flight coalescing and fallback chain for one upstream."""

    def __init__(
        self,
        cache: CacheService,
        coalescer: InFlightCoalescer,
        orchestrator: FallbackOrchestrator,
        event_listener: Optional[EventListener] = None,
    ):
        self.cache = cache
        self.coalescer = coalescer
        self.orchestrator = orchestrator
        self.event_listener = event_listener

    async def run(
        self,
        key: CacheKey,
        chain: Sequence[str],
        operation_factory: Callable[[str], Awaitable[T]],
        ttl: Optional[float] = None,
        policy: Optional[RetryPolicy] = None,
        use_cache: bool = True,
    ) -> T:
        """Returns the result for `key`, calling upstream at most once per burst.

        Args:
            key: Cache key identifying the logical operation.
            chain: Ordered fallback candidates.
            operation_factory: Builds the upstream call for one candidate.
            ttl: Cache TTL in seconds for the result (store default if None).
            policy: Retry policy for each candidate.
            use_cache: Skip the cache read and write when False (coalescing still applies).
        """
        if use_cache:
            cached = self.cache.get(key)
            if cached is not None:
                dispatch_event(CacheHit(key=key), self.event_listener)
                return cached

        async def load() -> T:
            result = await self.orchestrator.execute_chain(chain, operation_factory, policy)
            if use_cache and result is not None:
                self.cache.set(key, result, ttl)
            return result

        return await self.coalescer.run(key, load)
