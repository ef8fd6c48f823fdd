"""
Facebook Events Adapter

This module creates and manages events on a Facebook Page through the Graph
API. It needs a Page access token with the pages_manage_posts permission.
"""

from typing import Optional, List, Dict, Any, Tuple

import requests

from adapters.common import (
    NETWORK_ERROR,
    error_result,
    invalid_response_result,
    is_retryable_status,
    network_error_result,
    not_connected_result,
    safe_json,
)
from adapters.protocols import (
    ConnectionResult,
    PublicationResult,
    TransformedEvent,
    TransformedLocation,
)
from config import settings
from data.models import CanonicalEvent, EventLocation
from platforms.registry import get_platform
from utils.exceptions import DeletionError, NotConnectedError, PlatformError, TokenExchangeError
from utils.helpers import build_address, format_utc_iso, localize, truncate_text
from utils.logger import get_logger

logger = get_logger(__name__)

PLATFORM_ID = "facebook"
ERROR_TAG = "FB"

# Graph API codes for throttling and transient server trouble
RETRYABLE_ERROR_CODES = frozenset({1, 2, 4, 17, 32, 341, 613})

# 190: access token invalid or expired, 102: session invalid
AUTH_ERROR_CODES = frozenset({"FB_190", "FB_102", "FB_401"})

# Graph API "object does not exist" (code 100, subcode 33)
NOT_FOUND_CODE = 100
NOT_FOUND_SUBCODE = 33

CATEGORY_MAP = {
    "business": "BUSINESS",
    "education": "LEARNING",
    "entertainment": "ENTERTAINMENT",
    "food": "FOOD_AND_DRINK",
    "health": "FITNESS_AND_WELLNESS",
    "music": "MUSIC",
    "networking": "NETWORKING",
    "sports": "SPORTS_AND_FITNESS",
    "technology": "TECH",
    "community": "COMMUNITY",
    "art": "ART",
    "film": "FILM_AND_MEDIA",
    "gaming": "GAMES",
    "literature": "LITERATURE",
    "fashion": "FASHION",
    "family": "FAMILY",
    "holiday": "HOLIDAY",
    "nightlife": "NIGHTLIFE",
    "shopping": "SHOPPING",
    "travel": "TRAVEL",
}


def map_category(category: str) -> str:
    """Map an EventFlow category to a Facebook event category."""
    return CATEGORY_MAP.get(category.lower(), "OTHER")


def is_retryable_error(status_code: Optional[int], error_code: Optional[int]) -> bool:
    """
    Decide whether a failed Graph API call is worth retrying.

    Args:
        status_code: HTTP status of the response.
        error_code: The `error.code` field of the Graph error body, if any.

    Returns:
        bool: True for 429, 5xx and the Graph throttling codes.
    """
    if is_retryable_status(status_code):
        return True
    return error_code in RETRYABLE_ERROR_CODES


def parse_error(body: Any) -> Tuple[Optional[int], Optional[int], Optional[str]]:
    """Extract (code, subcode, message) from a Graph API error body."""
    if not isinstance(body, dict) or not isinstance(body.get("error"), dict):
        return None, None, None
    error = body["error"]
    code = error.get("code")
    subcode = error.get("error_subcode")
    return (
        code if isinstance(code, int) else None,
        subcode if isinstance(subcode, int) else None,
        error.get("message"),
    )


def build_facebook_address(location: EventLocation) -> str:
    """Street, city, state, postal code and country joined with commas."""
    return build_address([
        location.address,
        location.city,
        location.state,
        location.postal_code,
        location.country,
    ])


class FacebookAdapter:
    """Publishes events to a Facebook Page."""

    platform_id = PLATFORM_ID
    auth_error_codes = AUTH_ERROR_CODES

    def __init__(self):
        """Initialize a disconnected adapter."""
        self.capabilities = get_platform(PLATFORM_ID).capabilities
        self._access_token: Optional[str] = None
        self._page_id: Optional[str] = None
        self.page_name: Optional[str] = None

    # -------------------------------------------------------------------------
    # Connection lifecycle
    # -------------------------------------------------------------------------

    def _fetch_page(self, page_id: str, access_token: str) -> requests.Response:
        return requests.get(
            f"{settings.FACEBOOK_GRAPH_API_BASE}/{page_id}",
            params={"fields": "id,name", "access_token": access_token},
            timeout=settings.HTTP_TIMEOUT_SECONDS,
        )

    def is_connected(self) -> bool:
        """
        Check if the held Page token still works.

        Returns:
            bool: True if the page could be fetched, False on any failure.
        """
        if not self._access_token or not self._page_id:
            return False

        try:
            response = self._fetch_page(self._page_id, self._access_token)
        except requests.RequestException as e:
            logger.warning(f"Facebook connection check failed: {e.__class__.__name__}")
            return False

        if not response.ok:
            return False
        data = safe_json(response)
        return isinstance(data, dict) and bool(data.get("id"))

    def connect(self, credentials: Dict[str, str]) -> ConnectionResult:
        """
        Connect with a Facebook Page access token.

        Args:
            credentials: Must include access_token and page_id.

        Returns:
            ConnectionResult: Page name and id on success.
        """
        access_token = credentials.get("access_token")
        page_id = credentials.get("page_id")

        if not access_token or not page_id:
            return ConnectionResult(
                success=False,
                platform_id=self.platform_id,
                error="Missing required credentials: access_token and page_id",
            )

        try:
            response = self._fetch_page(page_id, access_token)
        except requests.RequestException as e:
            logger.error(f"Network error connecting to Facebook: {e.__class__.__name__}")
            return ConnectionResult(
                success=False,
                platform_id=self.platform_id,
                error=f"Network error connecting to Facebook: {e.__class__.__name__}",
                retryable=True,
            )

        data = safe_json(response)
        if not response.ok:
            code, _, message = parse_error(data)
            return ConnectionResult(
                success=False,
                platform_id=self.platform_id,
                error=message or "Failed to validate Facebook credentials",
                retryable=is_retryable_error(response.status_code, code),
            )

        if not isinstance(data, dict) or not data.get("id"):
            return ConnectionResult(
                success=False,
                platform_id=self.platform_id,
                error="Facebook returned an unreadable page response",
                retryable=True,
            )

        self._access_token = access_token
        self._page_id = page_id
        self.page_name = data.get("name")
        logger.info(f"Connected to Facebook page {self.page_name} ({data['id']})")

        return ConnectionResult(
            success=True,
            platform_id=self.platform_id,
            account_name=data.get("name"),
            account_id=str(data["id"]),
        )

    def disconnect(self) -> None:
        """Clear the held credentials."""
        self._access_token = None
        self._page_id = None
        self.page_name = None

    # -------------------------------------------------------------------------
    # Transformation
    # -------------------------------------------------------------------------

    def transform_event(self, event: CanonicalEvent) -> TransformedEvent:
        """
        Transform a canonical event to Facebook's limits and fields.

        Args:
            event: The event to publish.

        Returns:
            TransformedEvent: Title and description truncated to Facebook's limits.
        """
        source = event.location
        if source.is_virtual and source.virtual_url:
            location = TransformedLocation(
                is_virtual=True,
                name="Online Event",
                virtual_url=source.virtual_url,
            )
        else:
            location = TransformedLocation(
                is_virtual=source.is_virtual,
                name=source.name,
                address=build_facebook_address(source),
            )

        return TransformedEvent(
            platform_id=self.platform_id,
            title=truncate_text(event.title, self.capabilities.max_title_length),
            description=truncate_text(event.description, self.capabilities.max_description_length),
            start_time=localize(event.start_time, event.timezone),
            end_time=localize(event.end_time, event.timezone),
            timezone=event.timezone,
            location=location,
            image_url=event.cover_image_url,
            metadata={
                "event_id": event.id,
                "category": event.category,
                "is_online": source.is_virtual,
                "ticket_url": event.registration_url,
            },
        )

    def build_event_payload(self, event: TransformedEvent) -> Dict[str, Any]:
        """Graph API body for creating or updating an event (without the token)."""
        payload: Dict[str, Any] = {
            "name": event.title,
            "description": event.description,
            "start_time": format_utc_iso(event.start_time),
            "end_time": format_utc_iso(event.end_time),
            "timezone_id": event.timezone,
        }

        location = event.location
        if location:
            if location.is_virtual:
                payload["is_online"] = True
                if location.virtual_url:
                    payload["online_event_url"] = location.virtual_url
            else:
                payload["is_online"] = False
                if location.name:
                    payload["place"] = {"name": location.name}
                if location.address:
                    payload["location"] = location.address

        if event.image_url:
            payload["cover"] = {"source": event.image_url}

        ticket_url = event.metadata.get("ticket_url")
        if ticket_url:
            payload["ticket_uri"] = ticket_url

        category = event.metadata.get("category")
        if category:
            payload["category"] = map_category(category)

        return payload

    # -------------------------------------------------------------------------
    # Publishing
    # -------------------------------------------------------------------------

    def _failure(self, response: requests.Response, default_message: str,
                 publication_id: str) -> PublicationResult:
        code, _, message = parse_error(safe_json(response))
        error_code = f"{ERROR_TAG}_{code if code is not None else response.status_code}"
        logger.warning(f"Facebook request failed with HTTP {response.status_code} ({error_code})")
        return error_result(
            error_code,
            message or default_message,
            retryable=is_retryable_error(response.status_code, code),
            publication_id=publication_id,
        )

    def create_event(self, event: TransformedEvent) -> PublicationResult:
        """
        Create an event on the connected Page.

        Args:
            event: Output of transform_event().

        Returns:
            PublicationResult: fb-<id> and the event URL on success.
        """
        if not self._access_token:
            return not_connected_result("Facebook")

        body = self.build_event_payload(event)
        body["access_token"] = self._access_token

        try:
            response = requests.post(
                f"{settings.FACEBOOK_GRAPH_API_BASE}/{self._page_id}/events",
                json=body,
                timeout=settings.HTTP_TIMEOUT_SECONDS,
            )
        except requests.RequestException as e:
            logger.error(f"Network error creating Facebook event: {e.__class__.__name__}")
            return network_error_result(e, "creating Facebook event")

        if not response.ok:
            return self._failure(response, "Failed to create Facebook event", "")

        data = safe_json(response)
        if not isinstance(data, dict) or not data.get("id"):
            return invalid_response_result(ERROR_TAG, "Facebook")

        external_id = str(data["id"])
        logger.info(f"Created Facebook event {external_id}")
        return PublicationResult(
            success=True,
            publication_id=f"fb-{external_id}",
            external_id=external_id,
            external_url=self.get_event_url(external_id),
        )

    def update_event(self, external_id: str, event: TransformedEvent) -> PublicationResult:
        """
        Update an existing Facebook event (full field replace via POST).

        Args:
            external_id: Facebook event id.
            event: Output of transform_event().

        Returns:
            PublicationResult: fb-<id> on success.
        """
        publication_id = f"fb-{external_id}"
        if not self._access_token:
            return not_connected_result("Facebook", publication_id)

        body = self.build_event_payload(event)
        body["access_token"] = self._access_token

        try:
            response = requests.post(
                f"{settings.FACEBOOK_GRAPH_API_BASE}/{external_id}",
                json=body,
                timeout=settings.HTTP_TIMEOUT_SECONDS,
            )
        except requests.RequestException as e:
            logger.error(f"Network error updating Facebook event: {e.__class__.__name__}")
            return network_error_result(e, "updating Facebook event", publication_id)

        if not response.ok:
            return self._failure(response, "Failed to update Facebook event", publication_id)

        logger.info(f"Updated Facebook event {external_id}")
        return PublicationResult(
            success=True,
            publication_id=publication_id,
            external_id=external_id,
            external_url=self.get_event_url(external_id),
        )

    def delete_event(self, external_id: str) -> None:
        """
        Delete a Facebook event. An event that no longer exists counts as deleted.

        Raises:
            NotConnectedError: If no Page token is held.
            DeletionError: If Facebook did not delete the event.
        """
        if not self._access_token:
            raise NotConnectedError("Not connected to Facebook. Call connect() first.")

        try:
            response = requests.delete(
                f"{settings.FACEBOOK_GRAPH_API_BASE}/{external_id}",
                params={"access_token": self._access_token},
                timeout=settings.HTTP_TIMEOUT_SECONDS,
            )
        except requests.RequestException as e:
            raise DeletionError(
                f"Network error deleting Facebook event: {e.__class__.__name__}",
                code=NETWORK_ERROR,
                retryable=True,
            ) from e

        if response.ok:
            logger.info(f"Deleted Facebook event {external_id}")
            return

        code, subcode, message = parse_error(safe_json(response))
        if response.status_code == 404 or (code == NOT_FOUND_CODE and subcode == NOT_FOUND_SUBCODE):
            logger.info(f"Facebook event {external_id} was already deleted")
            return

        raise DeletionError(
            message or "Failed to delete Facebook event",
            code=f"{ERROR_TAG}_{code if code is not None else response.status_code}",
            retryable=is_retryable_error(response.status_code, code),
        )

    def get_event_url(self, external_id: str) -> str:
        """Public URL for a Facebook event."""
        return settings.FACEBOOK_EVENT_URL_TEMPLATE.format(external_id=external_id)


# =============================================================================
# OAuth helpers
# =============================================================================

def get_facebook_pages(user_access_token: str) -> List[Dict[str, Any]]:
    """
    List the Pages a user manages, with a Page access token for each.

    Args:
        user_access_token: A user token with pages_show_list.

    Returns:
        List[dict]: Entries with id, name and access_token.

    Raises:
        PlatformError: If the pages could not be fetched.
    """
    try:
        response = requests.get(
            f"{settings.FACEBOOK_GRAPH_API_BASE}/me/accounts",
            params={"fields": "id,name,access_token", "access_token": user_access_token},
            timeout=settings.HTTP_TIMEOUT_SECONDS,
        )
    except requests.RequestException as e:
        raise PlatformError(f"Failed to fetch Facebook pages: {e.__class__.__name__}") from e

    if not response.ok:
        raise PlatformError(f"Failed to fetch Facebook pages (HTTP {response.status_code})")

    data = safe_json(response)
    if not isinstance(data, dict):
        raise PlatformError("Facebook returned an unreadable pages response")
    return list(data.get("data") or [])


def exchange_for_long_lived_token(short_lived_token: str, app_id: str, app_secret: str) -> str:
    """
    Exchange a short-lived user token for a long-lived one (about 60 days).

    Raises:
        TokenExchangeError: If Facebook rejects the exchange.
    """
    try:
        response = requests.get(
            settings.FACEBOOK_TOKEN_URL,
            params={
                "grant_type": "fb_exchange_token",
                "client_id": app_id,
                "client_secret": app_secret,
                "fb_exchange_token": short_lived_token,
            },
            timeout=settings.HTTP_TIMEOUT_SECONDS,
        )
    except requests.RequestException as e:
        raise TokenExchangeError(f"Failed to exchange Facebook token: {e.__class__.__name__}") from e

    if not response.ok:
        raise TokenExchangeError("Failed to exchange Facebook token", status_code=response.status_code)

    data = safe_json(response)
    if not isinstance(data, dict) or not data.get("access_token"):
        raise TokenExchangeError("Facebook token exchange returned no access_token",
                                 status_code=response.status_code)
    return data["access_token"]
