"""
Zoom Adapter

This module creates and manages Zoom meetings and webinars. Both products
share one OAuth credential and one request shape; the adapter is bound to
one of them when it is constructed.
"""

import math
from enum import Enum
from typing import Optional, Dict, Any

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
from data.models import CanonicalEvent
from platforms.registry import get_platform
from utils.exceptions import DeletionError, NotConnectedError, PlatformError
from utils.helpers import format_utc_iso, localize, safe_get, truncate_text
from utils.logger import get_logger

logger = get_logger(__name__)

ERROR_TAG = "ZOOM"
SCHEDULED_TYPE = 2

# 124: invalid access token
AUTH_ERROR_CODES = frozenset({"ZOOM_124", "ZOOM_401"})

# 3001: meeting or webinar does not exist
NOT_FOUND_CODE = 3001


class ZoomMode(Enum):
    """Zoom product an adapter publishes to."""
    MEETING = "meeting"
    WEBINAR = "webinar"

    @property
    def platform_id(self) -> str:
        return f"zoom-{self.value}"

    @property
    def collection(self) -> str:
        return f"{self.value}s"

    @property
    def url_prefix(self) -> str:
        return "w" if self is ZoomMode.WEBINAR else "j"

    @classmethod
    def from_platform_id(cls, platform_id: str) -> "ZoomMode":
        for mode in cls:
            if mode.platform_id == platform_id:
                return mode
        raise ValueError(f"Not a Zoom platform: {platform_id}")


def is_retryable_error(status_code: Optional[int]) -> bool:
    """Zoom failures are retryable on 429 and 5xx only."""
    return is_retryable_status(status_code)


def duration_minutes(event: TransformedEvent) -> int:
    """Event length in whole minutes, rounded up."""
    seconds = (event.end_time - event.start_time).total_seconds()
    return math.ceil(seconds / 60)


def _headers(access_token: str) -> Dict[str, str]:
    return {
        "Authorization": f"Bearer {access_token}",
        "Content-Type": "application/json",
    }


def _error_code(data: Any) -> Optional[int]:
    code = data.get("code") if isinstance(data, dict) else None
    return code if isinstance(code, int) else None


class ZoomAdapter:
    """Publishes events as Zoom meetings or webinars."""

    auth_error_codes = AUTH_ERROR_CODES

    def __init__(self, mode: ZoomMode = ZoomMode.MEETING):
        """
        Initialize a disconnected adapter.

        Args:
            mode: MEETING or WEBINAR; fixed for the adapter's lifetime.
        """
        self.mode = mode
        self.platform_id = mode.platform_id
        self.capabilities = get_platform(self.platform_id).capabilities
        self._access_token: Optional[str] = None
        self.user_id: Optional[str] = None
        self.email: Optional[str] = None
        self.display_name: Optional[str] = None

    # -------------------------------------------------------------------------
    # Connection lifecycle
    # -------------------------------------------------------------------------

    def is_connected(self) -> bool:
        """Check if the held token can still read the current user."""
        if not self._access_token or not self.user_id:
            return False
        try:
            response = requests.get(
                f"{settings.ZOOM_API_BASE}/users/me",
                headers=_headers(self._access_token),
                timeout=settings.HTTP_TIMEOUT_SECONDS,
            )
        except requests.RequestException as e:
            logger.warning(f"Zoom connection check failed: {e.__class__.__name__}")
            return False

        if not response.ok:
            return False
        data = safe_json(response)
        return isinstance(data, dict) and bool(data.get("id"))

    def connect(self, credentials: Dict[str, str]) -> ConnectionResult:
        """
        Connect with a Zoom access token.

        Args:
            credentials: Must include access_token and user_id.

        Returns:
            ConnectionResult: Display name and user id on success.
        """
        access_token = credentials.get("access_token")
        user_id = credentials.get("user_id")

        if not access_token or not user_id:
            return ConnectionResult(
                success=False,
                platform_id=self.platform_id,
                error="Missing required credentials: access_token and user_id",
            )

        try:
            response = requests.get(
                f"{settings.ZOOM_API_BASE}/users/{user_id}",
                headers=_headers(access_token),
                timeout=settings.HTTP_TIMEOUT_SECONDS,
            )
        except requests.RequestException as e:
            logger.error(f"Network error connecting to Zoom: {e.__class__.__name__}")
            return ConnectionResult(
                success=False,
                platform_id=self.platform_id,
                error=f"Network error connecting to Zoom: {e.__class__.__name__}",
                retryable=True,
            )

        data = safe_json(response)
        if not response.ok:
            message = safe_get(data, "message")
            return ConnectionResult(
                success=False,
                platform_id=self.platform_id,
                error=message or "Failed to validate Zoom credentials",
                retryable=is_retryable_status(response.status_code),
            )

        if not isinstance(data, dict):
            return ConnectionResult(
                success=False,
                platform_id=self.platform_id,
                error="Zoom returned an unreadable user response",
                retryable=True,
            )

        self._access_token = access_token
        self.user_id = user_id
        self.email = data.get("email")
        self.display_name = display_name_of(data)
        logger.info(f"Connected to Zoom as {self.display_name} ({self.mode.value})")

        return ConnectionResult(
            success=True,
            platform_id=self.platform_id,
            account_name=self.display_name,
            account_id=user_id,
        )

    def disconnect(self) -> None:
        """Clear the held credentials."""
        self._access_token = None
        self.user_id = None
        self.email = None
        self.display_name = None

    # -------------------------------------------------------------------------
    # Transformation
    # -------------------------------------------------------------------------

    def transform_event(self, event: CanonicalEvent) -> TransformedEvent:
        """
        Transform a canonical event for Zoom.

        The location is always virtual, whatever the canonical event says.
        """
        return TransformedEvent(
            platform_id=self.platform_id,
            title=truncate_text(event.title, self.capabilities.max_title_length),
            description=truncate_text(event.description, self.capabilities.max_description_length),
            start_time=localize(event.start_time, event.timezone),
            end_time=localize(event.end_time, event.timezone),
            timezone=event.timezone,
            location=TransformedLocation(is_virtual=True, virtual_url=event.location.virtual_url),
            image_url=event.cover_image_url,
            metadata={
                "event_id": event.id,
                "user_id": self.user_id,
                "zoom_type": self.mode.value,
                "registration_url": event.registration_url,
            },
        )

    def build_payload(self, event: TransformedEvent) -> Dict[str, Any]:
        """Zoom meetings/webinars API body."""
        meeting_settings: Dict[str, Any] = {
            "host_video": True,
            "participant_video": True,
            "waiting_room": True,
            "approval_type": 0,        # auto-approve registrants
            "registration_type": 1,    # register once, attend any occurrence
            "audio": "voip",
            "auto_recording": "none",
        }

        if self.mode is ZoomMode.WEBINAR:
            meeting_settings.update({
                "hd_video": True,
                "panelists_video": True,
                "practice_session": False,
                "on_demand": False,
                "question_and_answer": {
                    "enable": True,
                    "allow_anonymous_questions": False,
                },
            })

        return {
            "topic": event.title,
            "type": SCHEDULED_TYPE,
            "start_time": format_utc_iso(event.start_time),
            "duration": duration_minutes(event),
            "timezone": event.timezone,
            "agenda": event.description,
            "settings": meeting_settings,
        }

    # -------------------------------------------------------------------------
    # Publishing
    # -------------------------------------------------------------------------

    def _resource_url(self, external_id: str) -> str:
        return f"{settings.ZOOM_API_BASE}/{self.mode.collection}/{external_id}"

    def _publication_id(self, external_id: str) -> str:
        return f"zoom-{self.mode.value}-{external_id}"

    def _failure(self, response: requests.Response, action: str, publication_id: str) -> PublicationResult:
        data = safe_json(response)
        code = _error_code(data)
        message = safe_get(data, "message")
        error_code = f"{ERROR_TAG}_{code if code is not None else response.status_code}"
        logger.warning(f"Zoom {self.mode.value} {action} failed with HTTP {response.status_code} ({error_code})")
        return error_result(
            error_code,
            message or f"Failed to {action} Zoom {self.mode.value}",
            retryable=is_retryable_error(response.status_code),
            publication_id=publication_id,
        )

    def create_event(self, event: TransformedEvent) -> PublicationResult:
        """
        Create a scheduled meeting or webinar for the connected user.

        Returns:
            PublicationResult: zoom-<mode>-<id> with the join URL on success.
        """
        if not self._access_token:
            return not_connected_result("Zoom")

        try:
            response = requests.post(
                f"{settings.ZOOM_API_BASE}/users/{self.user_id}/{self.mode.collection}",
                json=self.build_payload(event),
                headers=_headers(self._access_token),
                timeout=settings.HTTP_TIMEOUT_SECONDS,
            )
        except requests.RequestException as e:
            logger.error(f"Network error creating Zoom {self.mode.value}: {e.__class__.__name__}")
            return network_error_result(e, f"creating Zoom {self.mode.value}")

        if not response.ok:
            return self._failure(response, "create", "")

        data = safe_json(response)
        if not isinstance(data, dict) or data.get("id") is None:
            return invalid_response_result(ERROR_TAG, "Zoom")

        external_id = str(data["id"])
        logger.info(f"Created Zoom {self.mode.value} {external_id}")
        return PublicationResult(
            success=True,
            publication_id=self._publication_id(external_id),
            external_id=external_id,
            external_url=data.get("join_url") or self.get_event_url(external_id),
        )

    def update_event(self, external_id: str, event: TransformedEvent) -> PublicationResult:
        """
        Update a meeting or webinar with PATCH, then re-read it for the join URL.

        The PATCH returns 204 with no body; if the follow-up read fails the
        URL template is used instead.
        """
        publication_id = self._publication_id(external_id)
        if not self._access_token:
            return not_connected_result("Zoom", publication_id)

        endpoint = self._resource_url(external_id)
        headers = _headers(self._access_token)

        try:
            response = requests.patch(
                endpoint,
                json=self.build_payload(event),
                headers=headers,
                timeout=settings.HTTP_TIMEOUT_SECONDS,
            )
        except requests.RequestException as e:
            logger.error(f"Network error updating Zoom {self.mode.value}: {e.__class__.__name__}")
            return network_error_result(e, f"updating Zoom {self.mode.value}", publication_id)

        if not response.ok:
            return self._failure(response, "update", publication_id)

        join_url = self.get_event_url(external_id)
        try:
            info = requests.get(endpoint, headers=headers, timeout=settings.HTTP_TIMEOUT_SECONDS)
            data = safe_json(info) if info.ok else None
            if isinstance(data, dict) and data.get("join_url"):
                join_url = data["join_url"]
        except requests.RequestException as e:
            logger.warning(f"Could not re-read Zoom {self.mode.value} {external_id}: {e.__class__.__name__}")

        logger.info(f"Updated Zoom {self.mode.value} {external_id}")
        return PublicationResult(
            success=True,
            publication_id=publication_id,
            external_id=external_id,
            external_url=join_url,
        )

    def delete_event(self, external_id: str) -> None:
        """
        Delete a meeting or webinar; 404 and code 3001 count as already deleted.

        Raises:
            NotConnectedError: If no token is held.
            DeletionError: If Zoom did not delete it.
        """
        if not self._access_token:
            raise NotConnectedError("Not connected to Zoom. Call connect() first.")

        try:
            response = requests.delete(
                self._resource_url(external_id),
                headers=_headers(self._access_token),
                timeout=settings.HTTP_TIMEOUT_SECONDS,
            )
        except requests.RequestException as e:
            raise DeletionError(
                f"Network error deleting Zoom {self.mode.value}: {e.__class__.__name__}",
                code=NETWORK_ERROR,
                retryable=True,
            ) from e

        if response.ok:
            logger.info(f"Deleted Zoom {self.mode.value} {external_id}")
            return

        data = safe_json(response)
        code = _error_code(data)
        if response.status_code == 404 or code == NOT_FOUND_CODE:
            logger.info(f"Zoom {self.mode.value} {external_id} was already deleted")
            return

        message = safe_get(data, "message")
        raise DeletionError(
            message or f"Failed to delete Zoom {self.mode.value}",
            code=f"{ERROR_TAG}_{code if code is not None else response.status_code}",
            retryable=is_retryable_error(response.status_code),
        )

    def get_event_url(self, external_id: str) -> str:
        """
        Template join URL for a meeting or webinar.

        The real join URL carries a password and comes back from create/update.
        """
        return f"https://zoom.us/{self.mode.url_prefix}/{external_id}"


def display_name_of(user: Dict[str, Any]) -> str:
    """A Zoom user's display name, or first and last name."""
    if user.get("display_name"):
        return user["display_name"]
    return " ".join(part for part in (user.get("first_name"), user.get("last_name")) if part)


# =============================================================================
# OAuth helpers
# =============================================================================

def get_zoom_user(access_token: str) -> Dict[str, Any]:
    """
    Fetch the user the token belongs to.

    Returns:
        dict: The Zoom user (id, email, first_name, last_name, display_name, type).

    Raises:
        PlatformError: If the user could not be fetched.
    """
    try:
        response = requests.get(
            f"{settings.ZOOM_API_BASE}/users/me",
            headers=_headers(access_token),
            timeout=settings.HTTP_TIMEOUT_SECONDS,
        )
    except requests.RequestException as e:
        raise PlatformError(f"Failed to get Zoom user: {e.__class__.__name__}") from e

    if not response.ok:
        raise PlatformError(f"Failed to get Zoom user (HTTP {response.status_code})")

    data = safe_json(response)
    if not isinstance(data, dict) or not data.get("id"):
        raise PlatformError("Zoom returned an unreadable user response")
    return data


def check_zoom_webinar_license(access_token: str, user_id: str) -> bool:
    """True if the user holds a Zoom Webinar licence; False on any failure."""
    try:
        response = requests.get(
            f"{settings.ZOOM_API_BASE}/users/{user_id}",
            headers=_headers(access_token),
            timeout=settings.HTTP_TIMEOUT_SECONDS,
        )
    except requests.RequestException:
        return False

    if not response.ok:
        return False
    data = safe_json(response)
    feature = data.get("feature") if isinstance(data, dict) else None
    return isinstance(feature, dict) and feature.get("webinar") is True
