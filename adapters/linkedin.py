"""
LinkedIn Events Adapter

This module creates and manages organization events through the LinkedIn
Marketing (REST) API. It needs an organization admin token with the
w_organization_social permission.
"""

import re
from typing import Optional, List, Dict, Any

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
from utils.exceptions import DeletionError, NotConnectedError, PlatformError
from utils.helpers import build_address, localize, safe_get, to_epoch_millis, truncate_text
from utils.logger import get_logger

logger = get_logger(__name__)

PLATFORM_ID = "linkedin"
ERROR_TAG = "LI"
RESTLI_PROTOCOL_VERSION = "2.0.0"
MAX_EMOJI = 2

AUTH_ERROR_CODES = frozenset({"LI_401"})

# Pictographic blocks: misc symbols, dingbats, arrows/stars and the supplementary emoji planes
EMOJI_PATTERN = re.compile(
    "[⌀-⏿☀-➿⬀-⯿\U0001F000-\U0001FAFF]"
)
EXCESS_NEWLINES = re.compile(r"\n{3,}")


def is_retryable_error(status_code: Optional[int]) -> bool:
    """LinkedIn failures are retryable on 429 and 5xx only."""
    return is_retryable_status(status_code)


def professionalize_description(description: str) -> str:
    """
    Tone a description down for LinkedIn.

    Keeps at most two emoji, collapses runs of three or more newlines into a
    blank line and strips surrounding whitespace.
    """
    count = 0

    def keep_first(match):
        nonlocal count
        count += 1
        return match.group(0) if count <= MAX_EMOJI else ""

    description = EMOJI_PATTERN.sub(keep_first, description)
    description = EXCESS_NEWLINES.sub("\n\n", description)
    return description.strip()


def build_linkedin_address(location: EventLocation) -> str:
    """Street, city, state and country joined with commas."""
    return build_address([location.address, location.city, location.state, location.country])


def _headers(access_token: str, versioned: bool = True) -> Dict[str, str]:
    headers = {
        "Authorization": f"Bearer {access_token}",
        "X-Restli-Protocol-Version": RESTLI_PROTOCOL_VERSION,
    }
    if versioned:
        headers["LinkedIn-Version"] = settings.LINKEDIN_API_VERSION
    return headers


class LinkedInAdapter:
    """Publishes events on behalf of a LinkedIn organization."""

    platform_id = PLATFORM_ID
    auth_error_codes = AUTH_ERROR_CODES

    def __init__(self):
        """Initialize a disconnected adapter."""
        self.capabilities = get_platform(PLATFORM_ID).capabilities
        self._access_token: Optional[str] = None
        self.organization_id: Optional[str] = None
        self.organization_name: Optional[str] = None

    # -------------------------------------------------------------------------
    # Connection lifecycle
    # -------------------------------------------------------------------------

    def _fetch_organization(self, organization_id: str, access_token: str) -> requests.Response:
        return requests.get(
            f"{settings.LINKEDIN_API_BASE}/organizations/{organization_id}",
            headers=_headers(access_token, versioned=False),
            timeout=settings.HTTP_TIMEOUT_SECONDS,
        )

    def is_connected(self) -> bool:
        """Check if the held token can still read the organization."""
        if not self._access_token or not self.organization_id:
            return False
        try:
            response = self._fetch_organization(self.organization_id, self._access_token)
        except requests.RequestException as e:
            logger.warning(f"LinkedIn connection check failed: {e.__class__.__name__}")
            return False

        if not response.ok:
            return False
        data = safe_json(response)
        return isinstance(data, dict) and bool(data.get("id"))

    def connect(self, credentials: Dict[str, str]) -> ConnectionResult:
        """
        Connect with a LinkedIn organization access token.

        Args:
            credentials: Must include access_token and organization_id.

        Returns:
            ConnectionResult: Organization name and id on success.
        """
        access_token = credentials.get("access_token")
        organization_id = credentials.get("organization_id")

        if not access_token or not organization_id:
            return ConnectionResult(
                success=False,
                platform_id=self.platform_id,
                error="Missing required credentials: access_token and organization_id",
            )

        try:
            response = self._fetch_organization(organization_id, access_token)
        except requests.RequestException as e:
            logger.error(f"Network error connecting to LinkedIn: {e.__class__.__name__}")
            return ConnectionResult(
                success=False,
                platform_id=self.platform_id,
                error=f"Network error connecting to LinkedIn: {e.__class__.__name__}",
                retryable=True,
            )

        data = safe_json(response)
        if not response.ok:
            message = safe_get(data, "message")
            return ConnectionResult(
                success=False,
                platform_id=self.platform_id,
                error=message or "Failed to validate LinkedIn credentials",
                retryable=is_retryable_status(response.status_code),
            )

        if not isinstance(data, dict):
            return ConnectionResult(
                success=False,
                platform_id=self.platform_id,
                error="LinkedIn returned an unreadable organization response",
                retryable=True,
            )

        self._access_token = access_token
        self.organization_id = organization_id
        self.organization_name = data.get("localizedName")
        logger.info(f"Connected to LinkedIn organization {self.organization_name} ({organization_id})")

        return ConnectionResult(
            success=True,
            platform_id=self.platform_id,
            account_name=self.organization_name,
            account_id=organization_id,
        )

    def disconnect(self) -> None:
        """Clear the held credentials."""
        self._access_token = None
        self.organization_id = None
        self.organization_name = None

    # -------------------------------------------------------------------------
    # Transformation
    # -------------------------------------------------------------------------

    def transform_event(self, event: CanonicalEvent) -> TransformedEvent:
        """
        Transform a canonical event to LinkedIn's limits and fields.

        The description is truncated first, then cleaned up for a
        professional audience.
        """
        description = truncate_text(event.description, self.capabilities.max_description_length)
        description = professionalize_description(description)

        source = event.location
        if source.is_virtual and source.virtual_url:
            location = TransformedLocation(
                is_virtual=True,
                name="Virtual Event",
                virtual_url=source.virtual_url,
            )
        else:
            location = TransformedLocation(
                is_virtual=source.is_virtual,
                name=source.name,
                address=build_linkedin_address(source),
            )

        return TransformedEvent(
            platform_id=self.platform_id,
            title=truncate_text(event.title, self.capabilities.max_title_length),
            description=description,
            start_time=localize(event.start_time, event.timezone),
            end_time=localize(event.end_time, event.timezone),
            timezone=event.timezone,
            location=location,
            image_url=event.cover_image_url,
            metadata={
                "event_id": event.id,
                "organization_id": self.organization_id,
                "registration_url": event.registration_url,
                "category": event.category,
            },
        )

    def build_event_payload(self, event: TransformedEvent) -> Dict[str, Any]:
        """LinkedIn events API body."""
        organization_id = event.metadata.get("organization_id") or self.organization_id
        payload: Dict[str, Any] = {
            "name": event.title,
            "description": event.description,
            "organizerInfo": {
                "organizerType": "ORGANIZATION",
                "organizer": f"urn:li:organization:{organization_id}",
            },
            "eventTime": {
                "startAt": {
                    "dateTime": to_epoch_millis(event.start_time),
                    "timezone": event.timezone,
                },
                "endAt": {
                    "dateTime": to_epoch_millis(event.end_time),
                    "timezone": event.timezone,
                },
            },
            "visibility": "PUBLIC",
        }

        location = event.location
        if location:
            if location.is_virtual:
                payload["eventFormat"] = "ONLINE"
                if location.virtual_url:
                    payload["onlineContent"] = {"url": location.virtual_url}
            else:
                payload["eventFormat"] = "IN_PERSON"
                if location.address:
                    payload["location"] = {"address": location.address}

        # Sent as a plain URL; an uploaded image URN from upload_linkedin_image() also works here
        if event.image_url:
            payload["coverImage"] = event.image_url

        registration_url = event.metadata.get("registration_url")
        if registration_url:
            payload["externalRegistrationUrl"] = registration_url

        return payload

    # -------------------------------------------------------------------------
    # Publishing
    # -------------------------------------------------------------------------

    def _failure(self, response: requests.Response, default_message: str,
                 publication_id: str) -> PublicationResult:
        data = safe_json(response)
        message = safe_get(data, "message")
        error_code = f"{ERROR_TAG}_{response.status_code}"
        logger.warning(f"LinkedIn request failed with HTTP {response.status_code}")
        return error_result(
            error_code,
            message or default_message,
            retryable=is_retryable_error(response.status_code),
            publication_id=publication_id,
        )

    def create_event(self, event: TransformedEvent) -> PublicationResult:
        """
        Create an event for the connected organization.

        The new id comes from the x-restli-id header, or the body when the
        header is absent.
        """
        if not self._access_token:
            return not_connected_result("LinkedIn")

        headers = _headers(self._access_token)
        headers["Content-Type"] = "application/json"

        try:
            response = requests.post(
                f"{settings.LINKEDIN_REST_API_BASE}/events",
                json=self.build_event_payload(event),
                headers=headers,
                timeout=settings.HTTP_TIMEOUT_SECONDS,
            )
        except requests.RequestException as e:
            logger.error(f"Network error creating LinkedIn event: {e.__class__.__name__}")
            return network_error_result(e, "creating LinkedIn event")

        if not response.ok:
            return self._failure(response, "Failed to create LinkedIn event", "")

        external_id = response.headers.get("x-restli-id")
        if not external_id:
            data = safe_json(response)
            if isinstance(data, dict) and data.get("id"):
                external_id = str(data["id"])
        if not external_id:
            return invalid_response_result(ERROR_TAG, "LinkedIn")

        logger.info(f"Created LinkedIn event {external_id}")
        return PublicationResult(
            success=True,
            publication_id=f"li-{external_id}",
            external_id=external_id,
            external_url=self.get_event_url(external_id),
        )

    def update_event(self, external_id: str, event: TransformedEvent) -> PublicationResult:
        """Partially update an event (POST with X-HTTP-Method-Override: PATCH)."""
        publication_id = f"li-{external_id}"
        if not self._access_token:
            return not_connected_result("LinkedIn", publication_id)

        headers = _headers(self._access_token)
        headers["Content-Type"] = "application/json"
        headers["X-HTTP-Method-Override"] = "PATCH"

        try:
            response = requests.post(
                f"{settings.LINKEDIN_REST_API_BASE}/events/{external_id}",
                json=self.build_event_payload(event),
                headers=headers,
                timeout=settings.HTTP_TIMEOUT_SECONDS,
            )
        except requests.RequestException as e:
            logger.error(f"Network error updating LinkedIn event: {e.__class__.__name__}")
            return network_error_result(e, "updating LinkedIn event", publication_id)

        if not response.ok:
            return self._failure(response, "Failed to update LinkedIn event", publication_id)

        logger.info(f"Updated LinkedIn event {external_id}")
        return PublicationResult(
            success=True,
            publication_id=publication_id,
            external_id=external_id,
            external_url=self.get_event_url(external_id),
        )

    def delete_event(self, external_id: str) -> None:
        """
        Delete a LinkedIn event; a 404 counts as already deleted.

        Raises:
            NotConnectedError: If no token is held.
            DeletionError: If LinkedIn did not delete the event.
        """
        if not self._access_token:
            raise NotConnectedError("Not connected to LinkedIn. Call connect() first.")

        try:
            response = requests.delete(
                f"{settings.LINKEDIN_REST_API_BASE}/events/{external_id}",
                headers=_headers(self._access_token),
                timeout=settings.HTTP_TIMEOUT_SECONDS,
            )
        except requests.RequestException as e:
            raise DeletionError(
                f"Network error deleting LinkedIn event: {e.__class__.__name__}",
                code=NETWORK_ERROR,
                retryable=True,
            ) from e

        if response.ok or response.status_code == 404:
            logger.info(f"Deleted LinkedIn event {external_id}")
            return

        data = safe_json(response)
        message = safe_get(data, "message")
        raise DeletionError(
            message or "Failed to delete LinkedIn event",
            code=f"{ERROR_TAG}_{response.status_code}",
            retryable=is_retryable_error(response.status_code),
        )

    def get_event_url(self, external_id: str) -> str:
        """Best-effort public URL for a LinkedIn event."""
        return settings.LINKEDIN_EVENT_URL_TEMPLATE.format(external_id=external_id)


# =============================================================================
# OAuth helpers
# =============================================================================

def get_linkedin_organizations(access_token: str) -> List[Dict[str, Any]]:
    """
    List the organizations the token's member administers.

    Returns:
        List[dict]: Entries with id, localizedName and vanityName.

    Raises:
        PlatformError: If the organizations could not be fetched.
    """
    try:
        response = requests.get(
            f"{settings.LINKEDIN_API_BASE}/organizationAcls",
            params={
                "q": "roleAssignee",
                "projection": "(elements*(organization~(id,localizedName,vanityName)))",
            },
            headers=_headers(access_token, versioned=False),
            timeout=settings.HTTP_TIMEOUT_SECONDS,
        )
    except requests.RequestException as e:
        raise PlatformError(f"Failed to fetch LinkedIn organizations: {e.__class__.__name__}") from e

    if not response.ok:
        raise PlatformError(f"Failed to fetch LinkedIn organizations (HTTP {response.status_code})")

    data = safe_json(response)
    if not isinstance(data, dict):
        raise PlatformError("LinkedIn returned an unreadable organizations response")

    organizations = []
    for element in data.get("elements") or []:
        org = element.get("organization~") if isinstance(element, dict) else None
        if not isinstance(org, dict) or org.get("id") is None:
            continue
        organizations.append({
            "id": str(org["id"]),
            "localizedName": org.get("localizedName"),
            "vanityName": org.get("vanityName"),
        })
    return organizations


def upload_linkedin_image(access_token: str, organization_id: str, image_url: str) -> str:
    """
    Upload an image so it can be referenced as an event cover.

    Args:
        access_token: Organization admin token.
        organization_id: Owner of the image.
        image_url: Public URL to copy the image from.

    Returns:
        str: The image URN.

    Raises:
        PlatformError: If any step of the upload fails.
    """
    headers = {
        "Authorization": f"Bearer {access_token}",
        "Content-Type": "application/json",
        "LinkedIn-Version": settings.LINKEDIN_API_VERSION,
    }
    try:
        register = requests.post(
            f"{settings.LINKEDIN_REST_API_BASE}/images",
            params={"action": "initializeUpload"},
            json={"initializeUploadRequest": {"owner": f"urn:li:organization:{organization_id}"}},
            headers=headers,
            timeout=settings.HTTP_TIMEOUT_SECONDS,
        )
        if not register.ok:
            raise PlatformError(f"Failed to initialize LinkedIn image upload (HTTP {register.status_code})")

        value = (safe_json(register) or {}).get("value") or {}
        upload_url = value.get("uploadUrl")
        image_urn = value.get("image")
        if not upload_url or not image_urn:
            raise PlatformError("LinkedIn image upload response is missing uploadUrl or image")

        image = requests.get(image_url, timeout=settings.HTTP_TIMEOUT_SECONDS)
        if not image.ok:
            raise PlatformError(f"Failed to download cover image (HTTP {image.status_code})")

        upload = requests.put(
            upload_url,
            data=image.content,
            headers={"Content-Type": image.headers.get("Content-Type", "application/octet-stream")},
            timeout=settings.HTTP_TIMEOUT_SECONDS,
        )
        if not upload.ok:
            raise PlatformError(f"Failed to upload image to LinkedIn (HTTP {upload.status_code})")
    except requests.RequestException as e:
        raise PlatformError(f"Network error uploading LinkedIn image: {e.__class__.__name__}") from e

    logger.info(f"Uploaded LinkedIn cover image {image_urn}")
    return image_urn
