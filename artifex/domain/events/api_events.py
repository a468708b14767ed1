"""Domain Events related to API calls and resilience.

Examples include events for when calls are deferred, retried, fail, or
succeed, when a fallback candidate is tried and when a cooldown starts.
"""

import logging
from dataclasses import dataclass, field
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)

@dataclass
class DomainEvent:
    """Base class for domain events."""
    pass

# --- Specific API Events ---

@dataclass
class ApiCallInitiated(DomainEvent):
    """Event triggered when an API call is about to be made."""
    provider: str
    target: str
    attempt_number: int = 1
    timestamp: float = field(default_factory=time.time)

@dataclass
class ApiCallSucceeded(DomainEvent):
    """Event triggered when an API call succeeds."""
    provider: str
    target: str
    latency_ms: float
    timestamp: float = field(default_factory=time.time)

@dataclass
class ApiCallFailed(DomainEvent):
    """Event triggered when an API call fails definitively for a target."""
    provider: str
    target: str
    error_kind: str
    error_message: str
    timestamp: float = field(default_factory=time.time)

@dataclass
class ApiCallDeferred(DomainEvent):
    """Event triggered when a call is refused because a cooldown is active."""
    provider: str
    target: str
    wait_time_seconds: float
    timestamp: float = field(default_factory=time.time)

@dataclass
class RetryScheduled(DomainEvent):
    """Event triggered when a retry is scheduled for a failed API call."""
    provider: str
    target: str
    attempt_number: int
    delay_seconds: float
    timestamp: float = field(default_factory=time.time)

@dataclass
class FallbackTriggered(DomainEvent):
    """Event triggered when the next candidate of a chain is tried."""
    reason: str # ErrorKind value of the failure that caused the advance
    failed_target: str
    fallback_target: str
    timestamp: float = field(default_factory=time.time)

@dataclass
class RateLimitActivated(DomainEvent):
    """Event triggered when the shared cooldown is written."""
    service: str
    retry_after_seconds: int
    timestamp: float = field(default_factory=time.time)

@dataclass
class CacheHit(DomainEvent):
    key: str
    timestamp: float = field(default_factory=time.time)

@dataclass
class RequestCoalesced(DomainEvent):
    """Event triggered when a caller attaches to an in-flight call."""
    key: str
    waiter_count: int
    request_id: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

# --- Dispatching ---

EventListener = Callable[[DomainEvent], None]

def dispatch_event(event: DomainEvent, listener: Optional[EventListener] = None) -> None:
    """Logs the event and hands it to the listener, if one is attached.

    A failing listener never breaks the call that emitted the event.
    """
    logger.debug(f"EVENT: {event}")
    if listener is None:
        return
    try:
        listener(event)
    except Exception as e:
        logger.error(f"Event listener failed for {type(event).__name__}: {e}", exc_info=True)
