"""Ordered multi-candidate fallback.

Tries the candidates of a FallbackChain one after another, never in
parallel, running each through the ApiRetryService. Only failures that a
different candidate could plausibly avoid (missing model, a limit on the
current one) advance the chain.
"""

import functools
import logging
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

from artifex.domain.events.api_events import EventListener, FallbackTriggered, dispatch_event
from artifex.domain.models.common import RetryPolicy
from artifex.domain.models.errors import ErrorKind, RateLimitActiveError, UpstreamError
from artifex.infrastructure.resilience.api_retry import ApiRetryService

logger = logging.getLogger(__name__)

T = TypeVar("T")


class FallbackOrchestrator:
    """Walks a chain of candidate targets until one succeeds."""

    def __init__(
        self,
        retry_service: ApiRetryService,
        event_listener: Optional[EventListener] = None,
        advance_on_limit: bool = True,
    ):
        """Initializes the orchestrator.

        Args:
            retry_service: Runs each candidate with retries and cooldown checks.
            event_listener: Optional sink for domain events.
            advance_on_limit: Move to the next candidate on a rate or quota
                limit. Disable when the limit covers the whole upstream rather
                than one candidate (GitHub branches).
        """
        self.retry_service = retry_service
        self.event_listener = event_listener
        self.advance_on_limit = advance_on_limit

    def _should_advance(self, error: UpstreamError, has_more: bool) -> bool:
        if isinstance(error, RateLimitActiveError):
            return False
        kind = error.kind
        if kind is ErrorKind.TARGET_UNAVAILABLE or (kind.is_limit and self.advance_on_limit):
            return has_more
        return False

    async def execute_chain(
        self,
        chain: Sequence[str],
        operation_factory: Callable[[str], Awaitable[T]],
        policy: Optional[RetryPolicy] = None,
    ) -> T:
        """Runs `operation_factory(candidate)` for each candidate in order.

        Args:
            chain: Non-empty ordered candidates (model names, branches, ...).
            operation_factory: Builds the upstream call for one candidate; it is
                invoked again for every retry attempt.
            policy: Retry policy applied to each candidate.

        Returns:
            The result of the first candidate that succeeds.

        Raises:
            ValueError: The chain is empty.
            UpstreamError: The failure that ended the chain.
        """
        if not chain:
            raise ValueError("Fallback chain must contain at least one candidate.")

        routing_around_limit = False
        for index, candidate in enumerate(chain):
            has_more = index < len(chain) - 1
            try:
                # Candidates after a limit exist to route around it and skip the
                # cooldown check; every other candidate honours it.
                return await self.retry_service.execute(
                    functools.partial(operation_factory, candidate),
                    policy,
                    target=candidate,
                    check_cooldown=not routing_around_limit,
                )
            except UpstreamError as e:
                routing_around_limit = routing_around_limit or e.kind.is_limit
                if not self._should_advance(e, has_more):
                    if has_more:
                        logger.error(f"Candidate {candidate} failed with {e.kind.value}; not trying remaining candidates.")
                    raise
                next_candidate = chain[index + 1]
                logger.warning(
                    f"Candidate {candidate} failed with {e.kind.value}, trying fallback {next_candidate}..."
                )
                dispatch_event(
                    FallbackTriggered(reason=e.kind.value, failed_target=candidate, fallback_target=next_candidate),
                    self.event_listener,
                )

        # Unreachable: the last candidate either returns or raises.
        raise RuntimeError("Fallback chain ended without a result.")
