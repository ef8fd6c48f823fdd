"""
Data Models for EventFlow

This module contains the canonical event model and the credential / OAuth
state records used throughout the cross-posting layer.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, List, Dict, Any

EVENT_STATUSES = ("draft", "scheduled", "published", "cancelled")
EVENT_VISIBILITIES = ("public", "private", "unlisted")


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


@dataclass(frozen=True)
class EventLocation:
    """Where an event happens; is_virtual selects which fields are authoritative."""
    name: str = ""
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    postal_code: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    virtual_url: Optional[str] = None
    is_virtual: bool = False


@dataclass(frozen=True)
class EventOrganizer:
    """Organizer contact details."""
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None


@dataclass(frozen=True)
class EventTicket:
    """A ticket type; price is in the currency's minor unit (cents)."""
    name: str
    price: int
    currency: str
    quantity: Optional[int] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class CanonicalEvent:
    """
    Platform-agnostic event owned by an organization.

    start_time and end_time are read in `timezone` (an IANA name) when naive.
    The adapter layer treats instances as read-only.
    """
    id: str
    organization_id: str
    title: str
    description: str
    start_time: datetime
    end_time: datetime
    timezone: str
    location: EventLocation
    organizer: EventOrganizer
    short_description: Optional[str] = None
    is_all_day: bool = False
    cover_image_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    gallery_urls: List[str] = field(default_factory=list)
    tickets: List[EventTicket] = field(default_factory=list)
    is_free: bool = True
    registration_url: Optional[str] = None
    max_attendees: Optional[int] = None
    category: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    status: str = "draft"
    visibility: str = "public"
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    created_by: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CanonicalEvent":
        """
        Build an event from a JSON-shaped dictionary.

        Keys follow the attribute names; datetimes are ISO 8601 strings.

        Raises:
            KeyError: If a required key is missing.
            ValueError: If a date, status or visibility is invalid.
        """
        status = data.get("status", "draft")
        if status not in EVENT_STATUSES:
            raise ValueError(f"Invalid event status: {status}")
        visibility = data.get("visibility", "public")
        if visibility not in EVENT_VISIBILITIES:
            raise ValueError(f"Invalid event visibility: {visibility}")

        return cls(
            id=str(data["id"]),
            organization_id=str(data["organization_id"]),
            title=data["title"],
            description=data.get("description", ""),
            short_description=data.get("short_description"),
            start_time=_parse_datetime(data["start_time"]),
            end_time=_parse_datetime(data["end_time"]),
            timezone=data.get("timezone", "UTC"),
            is_all_day=bool(data.get("is_all_day", False)),
            location=EventLocation(**data.get("location", {})),
            organizer=EventOrganizer(**data["organizer"]),
            cover_image_url=data.get("cover_image_url"),
            thumbnail_url=data.get("thumbnail_url"),
            gallery_urls=list(data.get("gallery_urls", [])),
            tickets=[EventTicket(**t) for t in data.get("tickets", [])],
            is_free=bool(data.get("is_free", True)),
            registration_url=data.get("registration_url"),
            max_attendees=data.get("max_attendees"),
            category=data.get("category"),
            tags=list(data.get("tags", [])),
            status=status,
            visibility=visibility,
            created_at=_parse_datetime(data.get("created_at")),
            updated_at=_parse_datetime(data.get("updated_at")),
            created_by=data.get("created_by"),
        )


@dataclass
class Credential:
    """Decrypted platform credential for one (organization, platform) pair."""
    organization_id: str
    platform: str
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    platform_user_id: Optional[str] = None    # Zoom user id
    platform_page_id: Optional[str] = None    # Facebook page id / LinkedIn organization id
    metadata: Dict[str, Any] = field(default_factory=dict)
    is_valid: bool = True
    last_validated: Optional[datetime] = None


@dataclass
class SaveCredentialsInput:
    """Values written by CredentialStore.save(); tokens are plaintext here."""
    organization_id: str
    platform: str
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    platform_user_id: Optional[str] = None
    platform_page_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PlatformConnection:
    """Connection status of one stored credential, without any tokens."""
    platform: str
    is_connected: bool
    account_name: Optional[str] = None
    account_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    last_validated: Optional[datetime] = None


@dataclass(frozen=True)
class OAuthState:
    """Single-use CSRF token issued when an OAuth flow starts."""
    token: str
    organization_id: str
    platform: str
    expires_at: datetime
