"""Service for executing API calls with automatic retries.

Implements exponential backoff for transient failures (network trouble,
5xx, unrecognised errors) against a single target. Rate and quota limits
are never retried here: they start the shared cooldown and propagate so
the fallback chain can route around them. Policy failures (bad
credentials, blocked content) propagate immediately.
"""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Optional, TypeVar

# Domain Layer Imports
from artifex.domain.events.api_events import (
    ApiCallDeferred, ApiCallFailed, ApiCallInitiated, ApiCallSucceeded,
    EventListener, RateLimitActivated, RetryScheduled, dispatch_event,
)
from artifex.domain.models.common import RetryPolicy
from artifex.domain.models.errors import (
    DEFAULT_RETRY_AFTER_SECONDS,
    ErrorClassification,
    ErrorKind,
    MaxRetryError,
    RateLimitActiveError,
    UpstreamError,
)

# Infrastructure Layer Imports
from artifex.infrastructure.resilience.error_classifier import classify
from artifex.infrastructure.resilience.rate_limit_state import RateLimitState

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TIMEOUT_SECONDS = 60.0

# --- Retry Service ---

class ApiRetryService:
    """Runs one upstream call with cooldown checks, classification and backoff."""

    def __init__(
        self,
        rate_limit_state: RateLimitState,
        policy: Optional[RetryPolicy] = None,
        service_name: Optional[str] = None,
        timeout_s: Optional[float] = DEFAULT_TIMEOUT_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        event_listener: Optional[EventListener] = None,
    ):
        """Initializes the ApiRetryService.

        Args:
            rate_limit_state: Shared cooldown of the upstream this service calls.
            policy: Default retry policy when `execute` is called without one.
            service_name: Label used for logging and classification hints.
            timeout_s: Per-attempt timeout in seconds; None disables it.
            sleep: Awaitable sleep used between attempts, injectable for tests.
            event_listener: Optional sink for domain events.
        """
        self.rate_limit_state = rate_limit_state
        self.policy = policy or RetryPolicy()
        self.service_name = service_name or rate_limit_state.default_service
        self.timeout_s = timeout_s
        self._sleep = sleep
        self.event_listener = event_listener

        logger.info(
            f"ApiRetryService initialized for {self.service_name}: max_attempts={self.policy.max_attempts}, "
            f"initial_delay={self.policy.initial_delay_ms}ms, factor={self.policy.backoff_multiplier}, "
            f"timeout={timeout_s}s"
        )

    def _dispatch(self, event: Any) -> None:
        dispatch_event(event, self.event_listener)

    async def _attempt(self, operation: Callable[[], Awaitable[T]]) -> T:
        if self.timeout_s is None:
            return await operation()
        return await asyncio.wait_for(operation(), timeout=self.timeout_s)

    def _record_limit(self, classification: ErrorClassification) -> None:
        seconds = classification.retry_after_seconds or DEFAULT_RETRY_AFTER_SECONDS
        if self.rate_limit_state.set_limit(classification.service, seconds):
            self._dispatch(RateLimitActivated(service=classification.service, retry_after_seconds=seconds))

    def check_cooldown(self, target: str = "") -> None:
        """Raises RateLimitActiveError if the shared cooldown is running."""
        if self.rate_limit_state.is_limited():
            remaining = self.rate_limit_state.remaining_seconds()
            service = self.rate_limit_state.service
            logger.warning(f"Refusing call to {service} {target}: rate limit active for {remaining}s more.")
            self._dispatch(ApiCallDeferred(provider=service, target=target, wait_time_seconds=remaining))
            raise RateLimitActiveError(service, remaining)

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: Optional[RetryPolicy] = None,
        *,
        target: Optional[str] = None,
        check_cooldown: bool = True,
    ) -> T:
        """Executes an async operation against one target with retries.

        Args:
            operation: Zero-argument callable producing a fresh awaitable per attempt.
            policy: Retry policy for this call (defaults to the service policy).
            target: Name of the target being called (model, branch), for logs/events.
            check_cooldown: Refuse to start while the shared cooldown is active.

        Returns:
            The result of the operation.

        Raises:
            RateLimitActiveError: A cooldown was active; upstream was not contacted.
            UpstreamError: A rate/quota limit or a policy failure (no retry).
            MaxRetryError: Every attempt failed with a transient classification.
        """
        effective_policy = policy or self.policy
        effective_target = target or getattr(operation, "__name__", "call")

        if check_cooldown:
            self.check_cooldown(effective_target)

        last_exception: Optional[BaseException] = None

        for attempt in range(effective_policy.max_attempts):
            self._dispatch(ApiCallInitiated(provider=self.service_name, target=effective_target, attempt_number=attempt + 1))
            start_time = time.perf_counter()
            try:
                result = await self._attempt(operation)
            except UpstreamError as e:
                # Already classified further down (e.g. a nested resilient call).
                last_exception, classification = e, e.classification
            except Exception as e:
                last_exception, classification = e, classify(e, service=self.service_name)
            else:
                latency_ms = (time.perf_counter() - start_time) * 1000
                self._dispatch(ApiCallSucceeded(provider=self.service_name, target=effective_target, latency_ms=latency_ms))
                return result

            kind = classification.kind

            if kind.is_policy:
                logger.error(
                    f"Non-retryable {kind.value} error calling {self.service_name} {effective_target} "
                    f"on attempt {attempt + 1}: {last_exception}"
                )
                self._fail(effective_target, classification)
                raise self._wrap(classification, last_exception, effective_target, attempt + 1)

            if kind.is_limit:
                logger.warning(
                    f"{kind.value} from {classification.service} on {effective_target}; "
                    f"not retrying into a known limit."
                )
                self._record_limit(classification)
                self._fail(effective_target, classification)
                raise self._wrap(classification, last_exception, effective_target, attempt + 1)

            if kind is ErrorKind.TARGET_UNAVAILABLE:
                # Same target will not appear by retrying; the fallback chain moves on.
                logger.warning(f"{effective_target} unavailable on {classification.service}: {last_exception}")
                self._fail(effective_target, classification)
                raise self._wrap(classification, last_exception, effective_target, attempt + 1)

            if attempt + 1 < effective_policy.max_attempts:
                delay = effective_policy.delay_for(attempt)
                logger.warning(
                    f"Retryable {kind.value} error calling {self.service_name} {effective_target} on attempt "
                    f"{attempt + 1}/{effective_policy.max_attempts}: {type(last_exception).__name__}. "
                    f"Waiting {delay:.2f}s..."
                )
                self._dispatch(RetryScheduled(provider=self.service_name, target=effective_target, attempt_number=attempt + 1, delay_seconds=delay))
                await self._sleep(delay)
            else:
                logger.error(
                    f"Max attempts ({effective_policy.max_attempts}) reached for {self.service_name} "
                    f"{effective_target}. Last error: {last_exception}"
                )
                self._fail(effective_target, classification)
                raise MaxRetryError(
                    classification,
                    original=last_exception,
                    target=effective_target,
                    attempts=effective_policy.max_attempts,
                ) from last_exception

        # Unreachable: RetryPolicy guarantees at least one attempt.
        raise RuntimeError("Retry loop ended without a result.")

    def _fail(self, target: str, classification: ErrorClassification) -> None:
        self._dispatch(ApiCallFailed(
            provider=classification.service,
            target=target,
            error_kind=classification.kind.value,
            error_message=classification.message,
        ))

    @staticmethod
    def _wrap(
        classification: ErrorClassification,
        original: Optional[BaseException],
        target: str,
        attempts: int,
    ) -> UpstreamError:
        if isinstance(original, UpstreamError):
            return original
        error = UpstreamError(classification, original=original, target=target, attempts=attempts)
        error.__cause__ = original
        return error
