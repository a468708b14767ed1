"""Shared rate-limit cooldown for one upstream service.

One RateLimitState instance exists per upstream (AI provider, GitHub) and
is injected into every retry controller and observer that talks to it.
Once any caller learns of a rate limit, every other caller sees the
cooldown immediately and refuses to contact the upstream until it ends.
"""

import logging
import math
import sqlite3
import threading
import time
from typing import Any, Callable

import diskcache

from artifex.domain.models.errors import DEFAULT_RETRY_AFTER_SECONDS
from artifex.domain.models.rate_limit import RateLimitSnapshot

logger = logging.getLogger(__name__)

STATE_KEY_PREFIX = "rate_limit:"
STORE_ERRORS = (OSError, sqlite3.Error, diskcache.Timeout)


class RateLimitState:
    """Process-wide cooldown timestamp plus the label of the limiting service.

    `cooldown_until` only moves forward: a new limit shorter than the one
    already active is ignored. Readers treat `now >= cooldown_until` as
    "not limited". Updates take a lock so the rule also holds when several
    threads share the instance.
    """

    def __init__(self, service: str = "API", clock: Callable[[], float] = time.monotonic):
        self.default_service = service
        self._clock = clock
        self._lock = threading.Lock()
        self._cooldown_until = 0.0
        self._service = service

    @property
    def cooldown_until(self) -> float:
        return self._cooldown_until

    @property
    def service(self) -> str:
        return self._service

    def set_limit(self, service: str, seconds: float = DEFAULT_RETRY_AFTER_SECONDS) -> bool:
        """Starts (or extends) the cooldown.

        Returns:
            True if the cooldown moved forward, False if a longer one was
            already active and was kept.
        """
        with self._lock:
            until = self._clock() + max(0.0, float(seconds))
            if until <= self._cooldown_until:
                logger.debug(
                    f"Ignoring shorter rate limit for {service} ({seconds}s); "
                    f"{self._remaining_locked()}s already pending for {self._service}."
                )
                return False
            self._cooldown_until = until
            self._service = service or self.default_service
        logger.warning(f"Rate limit active for {self._service}: cooling down for {seconds}s.")
        return True

    def _remaining_locked(self) -> int:
        return max(0, math.ceil(self._cooldown_until - self._clock()))

    def is_limited(self) -> bool:
        return self._clock() < self._cooldown_until

    def remaining_seconds(self) -> int:
        """Whole seconds until the cooldown ends, rounded up; 0 when inactive."""
        return max(0, math.ceil(self._cooldown_until - self._clock()))

    def snapshot(self) -> RateLimitSnapshot:
        with self._lock:
            remaining = self._remaining_locked()
            service = self._service
        if remaining <= 0:
            return RateLimitSnapshot.cleared()
        return RateLimitSnapshot(is_limited=True, remaining_seconds=remaining, service=service)

    def reset(self) -> None:
        """Moves the cooldown into the past. Meant for process restarts and tests;
        UI observers dismiss their own view instead."""
        with self._lock:
            self._cooldown_until = 0.0
            self._service = self.default_service
        logger.info(f"Rate limit state reset for {self.default_service}.")


def _stored_deadline(record: Any) -> float:
    if isinstance(record, dict):
        until = record.get("cooldown_until")
        if isinstance(until, (int, float)) and not isinstance(until, bool):
            return float(until)
    return 0.0


class PersistentRateLimitState(RateLimitState):
    """RateLimitState whose cooldown outlives the process.

    The deadline is kept in a diskcache.Cache as a wall-clock timestamp, so a
    limit hit by one CLI invocation is honoured by the next one and by any
    invocation running alongside it. Every read adopts a later deadline
    written elsewhere; writes never replace a later stored deadline.
    """

    def __init__(self, store: diskcache.Cache, service: str = "API", clock: Callable[[], float] = time.time):
        """Initializes the state from whatever the store already holds.

        Args:
            store: Cache shared by every process using this state directory.
            service: Upstream label; also names the stored record.
            clock: Wall-clock time source; it must agree across processes.
        """
        super().__init__(service, clock)
        self._store = store
        self._store_key = f"{STATE_KEY_PREFIX}{service}"
        self._refresh()

    def _refresh(self) -> None:
        try:
            record = self._store.get(self._store_key)
        except STORE_ERRORS as e:
            logger.warning(f"Could not read stored rate limit for {self.default_service}: {e}")
            return
        until = _stored_deadline(record)
        with self._lock:
            if until > self._cooldown_until:
                self._cooldown_until = until
                self._service = str(record.get("service") or self.default_service)

    def _persist(self) -> None:
        with self._lock:
            record = {"cooldown_until": self._cooldown_until, "service": self._service}
            remaining = self._remaining_locked()
        try:
            with self._store.transact():
                if _stored_deadline(self._store.get(self._store_key)) >= record["cooldown_until"]:
                    return
                self._store.set(self._store_key, record, expire=max(1, remaining))
        except STORE_ERRORS as e:
            logger.warning(f"Could not store rate limit for {self.default_service}: {e}")

    def set_limit(self, service: str, seconds: float = DEFAULT_RETRY_AFTER_SECONDS) -> bool:
        self._refresh()
        moved = super().set_limit(service, seconds)
        if moved:
            self._persist()
        return moved

    def is_limited(self) -> bool:
        self._refresh()
        return super().is_limited()

    def remaining_seconds(self) -> int:
        self._refresh()
        return super().remaining_seconds()

    def snapshot(self) -> RateLimitSnapshot:
        self._refresh()
        return super().snapshot()

    def reset(self) -> None:
        super().reset()
        try:
            self._store.delete(self._store_key)
        except STORE_ERRORS as e:
            logger.warning(f"Could not clear stored rate limit for {self.default_service}: {e}")
