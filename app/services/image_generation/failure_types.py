"""
Failure normalization for the generation runner.
Classifies API and transport failures for retry policy and observability.
"""
from enum import Enum
from typing import Any


class FailureType(str, Enum):
    TRANSPORT_TRANSIENT = "transport_transient"  # 429, 5xx, timeout
    CONTENT_REJECTED = "content_rejected"  # content policy
    CLIENT_NON_RETRIABLE = "client_non_retriable"  # 4xx except 429
    CONFIGURATION = "configuration"  # missing key, billing


# Provider error codes that never succeed on retry
NON_RETRIABLE_CODES = frozenset({
    "content_policy_violation",
    "billing_not_active",
    "invalid_api_key",
})


def classify_failure(
    http_status: int | None,
    detail: dict[str, Any],
    message: str = "",
) -> tuple[FailureType, bool]:
    """
    Classify failure from HTTP status and provider detail.
    Returns (failure_type, retry_allowed).
    """
    code = (detail.get("code") or "").strip().lower()
    if code == "content_policy_violation":
        return (FailureType.CONTENT_REJECTED, False)
    if code in NON_RETRIABLE_CODES:
        return (FailureType.CONFIGURATION, False)
    if code == "rate_limit_exceeded":
        return (FailureType.TRANSPORT_TRANSIENT, True)

    if http_status is not None:
        if http_status == 429:
            return (FailureType.TRANSPORT_TRANSIENT, True)
        if 500 <= http_status < 600:
            return (FailureType.TRANSPORT_TRANSIENT, True)
        if http_status in (401, 403):
            return (FailureType.CONFIGURATION, False)
        if 400 <= http_status < 500:
            return (FailureType.CLIENT_NON_RETRIABLE, False)

    # No status (network error, timeout, simulated failure): transient
    return (FailureType.TRANSPORT_TRANSIENT, True)
