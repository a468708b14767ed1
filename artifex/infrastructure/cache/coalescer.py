"""In-flight request coalescing.

When several callers ask for the same logical operation while it is still
running, only one upstream call is made and every caller receives its
outcome: the same value, or the very same exception object.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from artifex.domain.events.api_events import EventListener, RequestCoalesced, dispatch_event
from artifex.domain.models.common import CacheKey

logger = logging.getLogger(__name__)

T = TypeVar("T")

@dataclass
class PendingOperation:
    """One outstanding upstream call and the callers waiting on it."""
    key: CacheKey
    task: "asyncio.Task[Any]"
    waiter_count: int = 0


class InFlightCoalescer:
    """Deduplicates concurrent async operations sharing a key.

    Registration happens synchronously, before the first await, so two
    callers on the same event loop can never both start the operation.
    The pending entry is dropped from a done-callback registered ahead of
    any waiter, which means it is gone before any waiter resumes.
    """

    def __init__(self, cancel_abandoned: bool = False, event_listener: Optional[EventListener] = None):
        """Initializes the coalescer.

        Args:
            cancel_abandoned: Cancel the underlying call once every waiter has
                stopped awaiting it. When False the call always runs to
                completion, along with any cache writes it performs.
            event_listener: Optional sink for RequestCoalesced events.
        """
        self._pending: Dict[CacheKey, PendingOperation] = {}
        self.cancel_abandoned = cancel_abandoned
        self.event_listener = event_listener

    def in_flight_count(self) -> int:
        return len(self._pending)

    def in_flight_keys(self) -> List[CacheKey]:
        return list(self._pending.keys())

    def is_pending(self, key: CacheKey) -> bool:
        return key in self._pending

    async def run(self, key: CacheKey, operation: Callable[[], Awaitable[T]]) -> T:
        """Runs `operation` once per key, attaching concurrent callers to it.

        Args:
            key: Identity of the logical operation (same key as the cache).
            operation: Zero-argument callable returning the awaitable to run.

        Returns:
            The operation's result, shared by all attached callers.

        Raises:
            Exception: The operation's failure, identical for every caller.
        """
        pending = self._pending.get(key)
        if pending is None:
            task = asyncio.ensure_future(operation())
            pending = PendingOperation(key=key, task=task)
            self._pending[key] = pending
            task.add_done_callback(lambda t, p=pending: self._settle(p))
            logger.debug(f"Started in-flight call for key: {key}")
        else:
            logger.debug(f"Attaching to in-flight call for key: {key}")
            dispatch_event(RequestCoalesced(key=key, waiter_count=pending.waiter_count + 1), self.event_listener)

        pending.waiter_count += 1
        try:
            # shield: a waiter giving up must not cancel the shared call.
            return await asyncio.shield(pending.task)
        except asyncio.CancelledError:
            if not pending.task.done():
                self._abandon(pending)
            raise
        finally:
            if pending.waiter_count > 0:
                pending.waiter_count -= 1

    def _abandon(self, pending: PendingOperation) -> None:
        remaining = pending.waiter_count - 1
        logger.debug(f"Waiter left in-flight call for key: {pending.key} ({remaining} remaining)")
        if remaining <= 0 and self.cancel_abandoned:
            logger.info(f"Cancelling abandoned in-flight call for key: {pending.key}")
            pending.task.cancel()

    def _settle(self, pending: PendingOperation) -> None:
        if self._pending.get(pending.key) is pending:
            del self._pending[pending.key]
        if not pending.task.cancelled():
            # Mark the exception retrieved when nobody is left to await it.
            pending.task.exception()
        logger.debug(f"In-flight call settled for key: {pending.key}")

    def cancel(self, key: CacheKey) -> bool:
        """Cancels an in-flight call; its waiters receive CancelledError."""
        pending = self._pending.get(key)
        if pending is None:
            return False
        pending.task.cancel()
        logger.info(f"Cancelled in-flight call for key: {key}")
        return True
