"""Error taxonomy for upstream failures.

Every failure coming back from an upstream provider is mapped to exactly
one ErrorKind. The kind drives retry, fallback and cooldown decisions and
is the only thing a user ever sees explained.
"""

import enum
from dataclasses import dataclass
from typing import Optional


DEFAULT_RETRY_AFTER_SECONDS = 60
MAX_RAW_MESSAGE_LENGTH = 150


class ErrorKind(str, enum.Enum):
    """Fixed taxonomy of upstream failure categories."""
    RATE_LIMITED = "rate_limited"
    QUOTA_EXCEEDED = "quota_exceeded"
    AUTH_INVALID = "auth_invalid"
    CONTENT_BLOCKED = "content_blocked"
    TARGET_UNAVAILABLE = "target_unavailable"
    NETWORK_UNREACHABLE = "network_unreachable"
    SERVER_FAULT = "server_fault"
    UNKNOWN = "unknown"

    @property
    def is_limit(self) -> bool:
        return self in (ErrorKind.RATE_LIMITED, ErrorKind.QUOTA_EXCEEDED)

    @property
    def is_policy(self) -> bool:
        """Configuration or policy errors the caller has to fix."""
        return self in (ErrorKind.AUTH_INVALID, ErrorKind.CONTENT_BLOCKED)

    @property
    def is_transient(self) -> bool:
        return self in (ErrorKind.NETWORK_UNREACHABLE, ErrorKind.SERVER_FAULT, ErrorKind.UNKNOWN)


@dataclass(frozen=True)
class ErrorClassification:
    """Result of classifying one upstream failure."""
    kind: ErrorKind
    service: str = "API"
    retry_after_seconds: Optional[int] = None
    message: str = ""


@dataclass(frozen=True)
class UserFacingError:
    """Human-readable, actionable explanation of a terminal failure."""
    title: str
    message: str
    code: str

    def __str__(self) -> str:
        return f"{self.title}: {self.message}"


def explain(classification: ErrorClassification) -> UserFacingError:
    """Renders a classification as an explanation the user can act on."""
    kind = classification.kind
    service = classification.service

    if kind is ErrorKind.RATE_LIMITED:
        seconds = classification.retry_after_seconds or DEFAULT_RETRY_AFTER_SECONDS
        return UserFacingError(
            title="Rate Limit Reached",
            message=f"{service} is throttling requests. Please wait {seconds} seconds before trying again.",
            code="RATE_LIMIT",
        )
    if kind is ErrorKind.QUOTA_EXCEEDED:
        return UserFacingError(
            title="Quota Exceeded",
            message=(
                f"You have reached the usage limit for {service}. "
                "Check the plan and billing settings of your account, or wait for the quota to reset."
            ),
            code="QUOTA_429",
        )
    if kind is ErrorKind.AUTH_INVALID:
        return UserFacingError(
            title="Access Denied",
            message=(
                f"Your {service} credential was rejected or lacks permission for this operation. "
                "Please update the key in your settings."
            ),
            code="AUTH_403",
        )
    if kind is ErrorKind.CONTENT_BLOCKED:
        return UserFacingError(
            title="Content Blocked",
            message="The request was blocked by AI safety filters. Please try modifying your prompt.",
            code="SAFETY_BLOCK",
        )
    if kind is ErrorKind.TARGET_UNAVAILABLE:
        return UserFacingError(
            title="Model Unavailable",
            message=(
                f"The requested {service} resource is not accessible. It may not exist, "
                "be restricted to your key, or be unavailable in your region."
            ),
            code="MODEL_404",
        )
    if kind is ErrorKind.NETWORK_UNREACHABLE:
        return UserFacingError(
            title="Connection Error",
            message=f"Unable to reach {service}. Please check your internet connection.",
            code="NETWORK_ERR",
        )
    if kind is ErrorKind.SERVER_FAULT:
        return UserFacingError(
            title="Service Busy",
            message=f"{service} is currently experiencing problems or high traffic. Please try again shortly.",
            code="SERVER_503",
        )

    raw = classification.message
    if not raw or len(raw) > MAX_RAW_MESSAGE_LENGTH:
        raw = "An unexpected error occurred during the operation. Please try again."
    return UserFacingError(title="An Error Occurred", message=raw, code="UNKNOWN")


# --- Exceptions ---

class UpstreamError(Exception):
    """Terminal failure of an upstream call, carrying its classification."""

    def __init__(
        self,
        classification: ErrorClassification,
        original: Optional[BaseException] = None,
        target: Optional[str] = None,
        attempts: int = 1,
    ):
        self.classification = classification
        self.original = original
        self.target = target
        self.attempts = attempts
        self.user_error = explain(classification)
        super().__init__(str(self.user_error))

    @property
    def kind(self) -> ErrorKind:
        return self.classification.kind


class RateLimitActiveError(UpstreamError):
    """Raised without contacting upstream while a cooldown is active."""

    def __init__(self, service: str, remaining_seconds: int):
        self.remaining_seconds = remaining_seconds
        super().__init__(
            ErrorClassification(
                kind=ErrorKind.RATE_LIMITED,
                service=service,
                retry_after_seconds=remaining_seconds,
                message=f"Rate Limit Active: Please wait {remaining_seconds} seconds before trying again.",
            ),
            attempts=0,
        )


class MaxRetryError(UpstreamError):
    """Raised when every attempt against one target failed transiently."""


class GitHubApiError(Exception):
    """Non-success response from the GitHub REST API."""

    def __init__(self, status_code: int, message: str, headers: Optional[dict] = None):
        self.status_code = status_code
        self.headers = dict(headers or {})
        super().__init__(message)


class ConfigurationError(Exception):
    """Raised when a required credential or setting is missing."""
