"""Value objects describing rate-limit cooldowns as seen by observers."""

from dataclasses import dataclass


@dataclass(frozen=True)
class RateLimitSnapshot:
    """Point-in-time view of a cooldown, published to UI observers."""
    is_limited: bool
    remaining_seconds: int
    service: str = ""

    @classmethod
    def cleared(cls) -> "RateLimitSnapshot":
        return cls(is_limited=False, remaining_seconds=0, service="")
