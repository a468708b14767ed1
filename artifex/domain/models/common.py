"""Defines common Value Objects used across different domain contexts.

These objects represent simple values or concepts like cache keys, model
names and retry configuration, ensuring consistency and type safety.
"""

from dataclasses import dataclass
from typing import NewType, Tuple, TypedDict

# === Core Value Objects ===

# Using NewType for semantic clarity, although they are strings at runtime.
PromptText = NewType("PromptText", str)        # Text prompt sent to a model
ModelName = NewType("ModelName", str)          # Upstream model identifier, e.g. 'gpt-4o'
ServiceName = NewType("ServiceName", str)      # Human-readable upstream label, e.g. 'GitHub'

# === Caching Context ===
CacheKey = NewType("CacheKey", str)            # Unique key for a cache entry and its in-flight call
CachePrefix = NewType("CachePrefix", str)      # Prefix for categorizing cache keys (e.g., 'codeReview')

# === Fallback Context ===
# An ordered, non-empty sequence of candidate targets tried strictly in order.
FallbackChain = Tuple[str, ...]

# === Token Management ===
class TokenUsage(TypedDict):
    """Represents token usage information from an AI call."""
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass(frozen=True)
class RetryPolicy:
    """Value Object representing retry backoff configuration.

    Attributes:
        max_attempts: Total attempts against one target, including the first.
        initial_delay_ms: Delay before the first retry, in milliseconds.
        backoff_multiplier: Factor applied to the delay after every retry.
    """
    max_attempts: int = 3
    initial_delay_ms: int = 2000
    backoff_multiplier: float = 2.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.initial_delay_ms < 0:
            raise ValueError("initial_delay_ms must be >= 0")
        if self.backoff_multiplier < 1:
            raise ValueError("backoff_multiplier must be >= 1")

    def delay_for(self, attempt: int) -> float:
        """Returns the delay in seconds before retrying after `attempt` (0-based)."""
        return self.initial_delay_ms * (self.backoff_multiplier ** attempt) / 1000.0


def make_chain(*candidates: str) -> FallbackChain:
    """Builds a FallbackChain, rejecting empty chains."""
    if not candidates:
        raise ValueError("A fallback chain needs at least one candidate.")
    return tuple(candidates)
