"""
Platform Adapter Protocol Definitions

This module defines the result types shared by every platform adapter and the
typing.Protocol interface they implement. Services depend on this interface
only, so a new platform is added by writing one class that satisfies it.

Protocols defined:
- PlatformAdapter: Interface for publishing a canonical event to one platform
"""

from typing import Protocol, Optional, Dict, Any, FrozenSet
from datetime import datetime
from dataclasses import dataclass, field

from data.models import CanonicalEvent


@dataclass
class TransformedLocation:
    """Location as a platform will display it."""
    is_virtual: bool
    name: Optional[str] = None
    address: Optional[str] = None
    virtual_url: Optional[str] = None


@dataclass
class TransformedEvent:
    """Platform-shaped projection of a canonical event; built per attempt, never stored."""
    platform_id: str
    title: str
    description: str
    start_time: datetime
    end_time: datetime
    timezone: str
    location: Optional[TransformedLocation] = None
    image_url: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PublicationError:
    """Uniform failure description; code carries a platform prefix such as FB_ or ZOOM_."""
    code: str
    message: str
    timestamp: datetime
    retryable: bool


@dataclass
class PublicationResult:
    """Outcome of a create or update call."""
    success: bool
    publication_id: str
    external_id: Optional[str] = None
    external_url: Optional[str] = None
    error: Optional[PublicationError] = None


@dataclass
class ConnectionResult:
    """Outcome of connect(); retryable marks failures that say nothing about the token."""
    success: bool
    platform_id: str
    account_name: Optional[str] = None
    account_id: Optional[str] = None
    error: Optional[str] = None
    retryable: bool = False


class PlatformAdapter(Protocol):
    """Protocol defining the interface every platform adapter implements.

    Implementations should provide methods for:
    - Validating and holding credentials (connect / disconnect / is_connected)
    - Transforming a canonical event into the platform's shape (pure)
    - Creating, updating and deleting the platform-side event
    - Synthesizing the public URL of a platform-side event (pure)

    create_event and update_event never raise for remote failures; they return
    a PublicationResult carrying a PublicationError. delete_event raises
    NotConnectedError or DeletionError instead.
    """

    platform_id: str
    auth_error_codes: FrozenSet[str]

    def is_connected(self) -> bool:
        """Probe whether the held credentials still work. Never raises."""
        ...

    def connect(self, credentials: Dict[str, str]) -> ConnectionResult:
        """Validate credentials against the platform and hold them on success.

        Args:
            credentials: Snake_case keys, e.g. access_token and page_id.

        Returns:
            ConnectionResult; missing keys fail without a network call.
        """
        ...

    def disconnect(self) -> None:
        """Forget the held credentials."""
        ...

    def transform_event(self, event: CanonicalEvent) -> TransformedEvent:
        """Project a canonical event into this platform's limits and fields."""
        ...

    def create_event(self, event: TransformedEvent) -> PublicationResult:
        """Create the event on the platform."""
        ...

    def update_event(self, external_id: str, event: TransformedEvent) -> PublicationResult:
        """Update a previously created platform event."""
        ...

    def delete_event(self, external_id: str) -> None:
        """Delete a platform event; an event that is already gone counts as deleted.

        Raises:
            NotConnectedError: If the adapter holds no credentials.
            DeletionError: If the platform did not delete the event.
        """
        ...

    def get_event_url(self, external_id: str) -> str:
        """Public URL of a platform event."""
        ...
