"""
Shared adapter helpers.

Result builders and response parsing used by every HTTP-backed adapter.
"""

from datetime import datetime, timezone
from typing import Optional, Any

import requests

from adapters.protocols import PublicationError, PublicationResult

NOT_CONNECTED = "NOT_CONNECTED"
NETWORK_ERROR = "NETWORK_ERROR"


def now() -> datetime:
    """Current aware UTC time, used to stamp errors."""
    return datetime.now(timezone.utc)


def is_retryable_status(status_code: Optional[int]) -> bool:
    """HTTP 429 and every 5xx are transient; anything else is not."""
    if status_code is None:
        return False
    return status_code == 429 or 500 <= status_code <= 599


def error_result(code: str, message: str, retryable: bool, publication_id: str = "") -> PublicationResult:
    """Failed PublicationResult with a freshly stamped error."""
    return PublicationResult(
        success=False,
        publication_id=publication_id,
        error=PublicationError(code=code, message=message, timestamp=now(), retryable=retryable),
    )


def not_connected_result(platform_name: str, publication_id: str = "") -> PublicationResult:
    """Result returned by create/update on an adapter that holds no credentials."""
    return error_result(
        NOT_CONNECTED,
        f"Not connected to {platform_name}. Call connect() first.",
        retryable=False,
        publication_id=publication_id,
    )


def network_error_result(error: Exception, action: str, publication_id: str = "") -> PublicationResult:
    """
    Result for a request that never got an HTTP response (timeout, DNS, reset).

    Only the exception type goes into the message; requests includes the URL,
    and with it any query-string token, in its exception text.
    """
    return error_result(
        NETWORK_ERROR,
        f"Network error {action}: {error.__class__.__name__}",
        retryable=True,
        publication_id=publication_id,
    )


def invalid_response_result(tag: str, platform_name: str, publication_id: str = "") -> PublicationResult:
    """Result for a 2xx response whose body could not be used."""
    return error_result(
        f"{tag}_INVALID_RESPONSE",
        f"{platform_name} returned an unreadable response",
        retryable=False,
        publication_id=publication_id,
    )


def safe_json(response: requests.Response) -> Optional[Any]:
    """
    Parse a response body as JSON.

    Returns:
        The decoded body, or None if it is empty or not JSON.
    """
    try:
        return response.json()
    except ValueError:
        return None
