"""UI-side observer of rate-limit cooldowns.

The monitor keeps its own local view of "when did I last see a limit"
(fed by failures the UI hears about) and reconciles it with every shared
RateLimitState it watches: the longer remaining cooldown always wins. It
also drives the once-per-second countdown shown in the banner.
"""

import asyncio
import logging
import math
import time
from typing import Any, Awaitable, Callable, List, Optional, Sequence

from artifex.domain.models.errors import DEFAULT_RETRY_AFTER_SECONDS
from artifex.domain.models.rate_limit import RateLimitSnapshot
from artifex.infrastructure.resilience.error_classifier import classify
from artifex.infrastructure.resilience.rate_limit_state import RateLimitState

logger = logging.getLogger(__name__)

RateLimitListener = Callable[[RateLimitSnapshot], None]

DEFAULT_TICK_SECONDS = 1.0


class RateLimitMonitor:
    """Merges a local cooldown view with shared states and publishes a countdown."""

    def __init__(
        self,
        states: Sequence[RateLimitState] = (),
        tick_seconds: float = DEFAULT_TICK_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.states = list(states)
        self.tick_seconds = tick_seconds
        self._clock = clock
        self._sleep = sleep
        self._local_until = 0.0
        self._local_service = ""
        self._listeners: List[RateLimitListener] = []
        self._task: Optional["asyncio.Task[None]"] = None

    # --- Local view ---

    def set_rate_limit(self, service: str, seconds: float = DEFAULT_RETRY_AFTER_SECONDS) -> None:
        """Records a limit seen by the UI and (re)starts the countdown if a loop is running."""
        self._local_until = max(self._local_until, self._clock() + max(0.0, float(seconds)))
        self._local_service = service
        logger.info(f"Rate limit banner set for {service}: {seconds}s")
        self._publish(self.status())
        self._ensure_running()

    def handle_api_error(self, error: Any) -> bool:
        """Updates the local view from a failure. Returns True if it was a limit."""
        classification = classify(error)
        if not classification.kind.is_limit:
            return False
        self.set_rate_limit(
            classification.service,
            classification.retry_after_seconds or DEFAULT_RETRY_AFTER_SECONDS,
        )
        return True

    def dismiss(self) -> None:
        """Clears the local view only; an active shared cooldown still shows."""
        self._local_until = 0.0
        self._local_service = ""
        self._publish(self.status())

    # --- Reconciled view ---

    def _local_remaining(self) -> int:
        return max(0, math.ceil(self._local_until - self._clock()))

    def status(self) -> RateLimitSnapshot:
        """The effective cooldown: the longest of the local view and all shared states."""
        best = RateLimitSnapshot.cleared()
        local_remaining = self._local_remaining()
        if local_remaining > 0:
            best = RateLimitSnapshot(is_limited=True, remaining_seconds=local_remaining, service=self._local_service or "API")
        for state in self.states:
            snapshot = state.snapshot()
            if snapshot.remaining_seconds > best.remaining_seconds:
                best = snapshot
        return best

    def is_limited(self) -> bool:
        return self.status().is_limited

    def remaining_seconds(self) -> int:
        return self.status().remaining_seconds

    def check_before_call(self) -> bool:
        """True if a call should be held back right now; starts the countdown if so."""
        snapshot = self.status()
        if snapshot.is_limited:
            self._ensure_running()
        return snapshot.is_limited

    # --- Countdown publication ---

    def subscribe(self, listener: RateLimitListener) -> Callable[[], None]:
        """Registers a listener; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self, snapshot: RateLimitSnapshot) -> None:
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Rate limit listener failed: {e}", exc_info=True)

    async def run_countdown(self) -> None:
        """Publishes the effective status every tick until it reaches zero.

        The final publication is a cleared snapshot, after which the
        countdown stops.
        """
        while True:
            snapshot = self.status()
            if not snapshot.is_limited:
                self._local_until = 0.0
                self._local_service = ""
                self._publish(RateLimitSnapshot.cleared())
                logger.info("Rate limit cooldown finished.")
                return
            self._publish(snapshot)
            await self._sleep(self.tick_seconds)

    def _ensure_running(self) -> None:
        if self._task is not None and not self._task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; countdown not started.")
            return
        self._task = loop.create_task(self.run_countdown())

    def start(self) -> Optional["asyncio.Task[None]"]:
        """Starts the countdown task on the running loop if a cooldown is active."""
        if self.status().is_limited:
            self._ensure_running()
        return self._task

    def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
