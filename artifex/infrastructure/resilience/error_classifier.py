"""Classification of heterogeneous upstream failures.

Provider SDKs, httpx and plain exceptions all fail differently: some carry
a status code, some a structured error code, some only a message. This
module folds all of them into one ErrorClassification. It never raises,
whatever it is given.
"""

import asyncio
import logging
import math
import re
import time
from typing import Any, Mapping, Optional

import groq
import httpx
import openai

from artifex.domain.models.errors import (
    DEFAULT_RETRY_AFTER_SECONDS,
    ErrorClassification,
    ErrorKind,
    UpstreamError,
)

logger = logging.getLogger(__name__)

NETWORK_EXCEPTIONS = (
    httpx.TransportError,
    openai.APIConnectionError,
    groq.APIConnectionError,
    ConnectionError,
    TimeoutError,
    asyncio.TimeoutError,
)

NETWORK_PATTERNS = (
    "failed to fetch", "networkerror", "net::err", "connection refused",
    "connection reset", "connection error", "timed out", "name or service not known",
)
BLOCKED_PATTERNS = ("safety", "blocked", "finishreason", "content_filter", "content policy")
QUOTA_STRONG_PATTERNS = ("insufficient_quota", "billing", "payment required", "exceeded your current quota")
RATE_LIMIT_PATTERNS = ("too many requests", "resource exhausted", "resource_exhausted")
AUTH_PATTERNS = (
    "api key not valid", "invalid api key", "api_key_invalid", "permission denied",
    "bad credentials", "unauthorized", "invalid_api_key", "incorrect api key",
)
UNAVAILABLE_PATTERNS = ("not found", "not available", "does not exist", "model_not_found", "decommissioned")
SERVER_PATTERNS = (
    "overloaded", "service unavailable", "internal error", "internal server error",
    "bad gateway", "gateway timeout",
)
SERVER_STATUS_TOKENS = ("500", "502", "503", "504")

RETRY_AFTER_RES = (
    re.compile(r"wait\s+(\d+(?:\.\d+)?)\s*s", re.IGNORECASE),
    re.compile(r"retry.?after[:\s]*(\d+(?:\.\d+)?)", re.IGNORECASE),
    re.compile(r"retry\s+in\s+(\d+(?:\.\d+)?)\s*s", re.IGNORECASE),
)

SERVICE_LABELS = (
    (("gemini", "google"), "Gemini AI"),
    (("github",), "GitHub"),
    (("openai",), "OpenAI"),
    (("groq",), "Groq"),
)
MODULE_LABELS = {"openai": "OpenAI", "groq": "Groq", "google": "Gemini AI"}


# --- Field extraction (each tolerant of missing or hostile attributes) ---

def _safe_getattr(obj: Any, name: str) -> Any:
    try:
        return getattr(obj, name, None)
    except Exception:
        return None

def _extract_message(failure: Any) -> str:
    if failure is None:
        return ""
    if isinstance(failure, Mapping):
        for field_name in ("message", "error", "detail"):
            value = failure.get(field_name)
            if isinstance(value, Mapping):
                value = value.get("message")
            if value:
                return str(value)
        return ""
    try:
        text = str(failure)
    except Exception:
        text = ""
    if not text:
        message = _safe_getattr(failure, "message")
        text = message if isinstance(message, str) else ""
    return text

def _as_status(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if 100 <= value <= 599 else None
    if isinstance(value, str) and value.isdigit():
        return _as_status(int(value))
    return None

def _extract_status(failure: Any) -> Optional[int]:
    if isinstance(failure, Mapping):
        for field_name in ("status_code", "status", "code"):
            status = _as_status(failure.get(field_name))
            if status is not None:
                return status
        return None
    for attr in ("status_code", "status", "http_status", "httpStatus"):
        status = _as_status(_safe_getattr(failure, attr))
        if status is not None:
            return status
    response = _safe_getattr(failure, "response")
    if response is not None:
        status = _as_status(_safe_getattr(response, "status_code"))
        if status is not None:
            return status
    return _as_status(_safe_getattr(failure, "code"))

def _extract_code(failure: Any) -> str:
    code = failure.get("code") if isinstance(failure, Mapping) else _safe_getattr(failure, "code")
    if code is None:
        return ""
    try:
        return str(code).lower()
    except Exception:
        return ""

def _extract_headers(failure: Any) -> Mapping:
    headers = _safe_getattr(failure, "headers")
    if not isinstance(headers, Mapping):
        response = _safe_getattr(failure, "response")
        headers = _safe_getattr(response, "headers") if response is not None else None
    if isinstance(headers, Mapping) or isinstance(headers, httpx.Headers):
        try:
            return {str(k).lower(): v for k, v in headers.items()}
        except Exception:
            return {}
    return {}


def extract_retry_after(message: str, headers: Optional[Mapping] = None, now: Optional[float] = None) -> int:
    """Finds the server-advised wait, falling back to the default cooldown."""
    headers = headers or {}
    retry_header = headers.get("retry-after")
    if retry_header is not None:
        try:
            return max(1, math.ceil(float(retry_header)))
        except (TypeError, ValueError):
            pass
    reset_header = headers.get("x-ratelimit-reset")
    if reset_header is not None:
        try:
            wait = float(reset_header) - (time.time() if now is None else now)
            if wait > 0:
                return math.ceil(wait)
        except (TypeError, ValueError):
            pass
    for pattern in RETRY_AFTER_RES:
        match = pattern.search(message)
        if match:
            return max(1, math.ceil(float(match.group(1))))
    return DEFAULT_RETRY_AFTER_SECONDS

def detect_service(failure: Any, lowered_message: str, hint: Optional[str] = None) -> str:
    """Derives the human-readable upstream label for a failure."""
    for needles, label in SERVICE_LABELS:
        if any(needle in lowered_message for needle in needles):
            return label
    module = getattr(type(failure), "__module__", "") or ""
    root = module.split(".")[0]
    if root in MODULE_LABELS:
        return MODULE_LABELS[root]
    return hint or "API"


def _contains(text: str, patterns) -> bool:
    return any(pattern in text for pattern in patterns)

def _mentions_rate_limit(lowered: str, code: str) -> bool:
    return (
        code in ("resource_exhausted", "rate_limit_exceeded")
        or _contains(lowered, RATE_LIMIT_PATTERNS)
        or "rate limit" in lowered
    )

def _kind_for_status(status: int, lowered: str, code: str) -> Optional[ErrorKind]:
    """Maps a structured HTTP status; None when the status alone says nothing."""
    quota = code == "insufficient_quota" or _contains(lowered, QUOTA_STRONG_PATTERNS)
    if status == 429:
        return ErrorKind.QUOTA_EXCEEDED if quota else ErrorKind.RATE_LIMITED
    if status == 402:
        return ErrorKind.QUOTA_EXCEEDED
    if status == 403:
        # GitHub reports exhausted limits as 403
        if _mentions_rate_limit(lowered, code):
            return ErrorKind.RATE_LIMITED
        return ErrorKind.QUOTA_EXCEEDED if quota else ErrorKind.AUTH_INVALID
    if status == 401:
        return ErrorKind.AUTH_INVALID
    if status == 404:
        return ErrorKind.TARGET_UNAVAILABLE
    if status == 408:
        return ErrorKind.NETWORK_UNREACHABLE
    if 500 <= status <= 599:
        return ErrorKind.SERVER_FAULT
    return None

def _kind_for(failure: Any, message: str, status: Optional[int], code: str) -> ErrorKind:
    lowered = message.lower()

    if isinstance(failure, NETWORK_EXCEPTIONS) or (status is None and _contains(lowered, NETWORK_PATTERNS)):
        return ErrorKind.NETWORK_UNREACHABLE

    # A structured status outranks whatever the message text happens to contain.
    if status is not None:
        kind = _kind_for_status(status, lowered, code)
        if kind is not None:
            return kind

    if _contains(lowered, BLOCKED_PATTERNS):
        return ErrorKind.CONTENT_BLOCKED

    if code == "insufficient_quota" or _contains(lowered, QUOTA_STRONG_PATTERNS):
        return ErrorKind.QUOTA_EXCEEDED

    mentions_missing = "404" in lowered or "not found" in lowered
    if (
        code in ("429", "resource_exhausted", "rate_limit_exceeded")
        or (status is None and "429" in lowered)
        or _contains(lowered, RATE_LIMIT_PATTERNS)
        or ("rate limit" in lowered and not mentions_missing)
    ):
        return ErrorKind.RATE_LIMITED

    if "quota" in lowered:
        return ErrorKind.QUOTA_EXCEEDED

    if _contains(lowered, AUTH_PATTERNS):
        return ErrorKind.AUTH_INVALID

    if code == "model_not_found" or _contains(lowered, UNAVAILABLE_PATTERNS):
        return ErrorKind.TARGET_UNAVAILABLE
    if "model" in lowered and "invalid" in lowered:
        return ErrorKind.TARGET_UNAVAILABLE

    if _contains(lowered, SERVER_PATTERNS):
        return ErrorKind.SERVER_FAULT
    if status is None and _contains(lowered, SERVER_STATUS_TOKENS):
        return ErrorKind.SERVER_FAULT

    return ErrorKind.UNKNOWN


def classify(failure: Any, service: Optional[str] = None) -> ErrorClassification:
    """Maps any failure object to exactly one ErrorClassification.

    Args:
        failure: An exception, a dict-shaped error payload, a string, or
            anything else. Malformed input yields UNKNOWN, never an error.
        service: Label to use when none can be detected from the failure.

    Returns:
        The classification, with `retry_after_seconds` set for rate and
        quota limits.
    """
    if isinstance(failure, UpstreamError):
        return failure.classification
    try:
        message = _extract_message(failure)
        status = _extract_status(failure)
        code = _extract_code(failure)
        kind = _kind_for(failure, message, status, code)
        label = detect_service(failure, message.lower(), service)
        retry_after = None
        if kind.is_limit:
            retry_after = extract_retry_after(message, _extract_headers(failure))
        return ErrorClassification(kind=kind, service=label, retry_after_seconds=retry_after, message=message)
    except Exception as e:
        logger.warning(f"Failed to classify upstream failure of type {type(failure).__name__}: {e}")
        return ErrorClassification(kind=ErrorKind.UNKNOWN, service=service or "API")
