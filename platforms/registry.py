"""
Platform Registry

Static, compiled-in metadata for every platform an event can be cross-posted
to: authentication mechanism, minimum subscription tier and the capability set
the adapters use for validation and truncation. Nothing here changes at runtime.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import List, Optional, Tuple, Mapping

from utils.exceptions import UnknownPlatformError

# Auth mechanisms
AUTH_OAUTH2 = "oauth2"
AUTH_API_KEY = "api-key"
AUTH_WEBHOOK = "webhook"
AUTH_NONE = "none"

# Subscription tiers, lowest first
TIER_ORDER: Tuple[str, ...] = ("free", "basic", "pro", "business", "enterprise")


@dataclass(frozen=True)
class PlatformCapabilities:
    """Feature support and numeric limits declared by a platform."""
    supports_images: bool
    supports_video: bool
    supports_rsvp: bool
    supports_ticketing: bool
    supports_recurring: bool
    supports_location: bool
    supports_virtual: bool
    max_description_length: int
    max_title_length: int        # 0 means the platform has no title field
    max_images: int


@dataclass(frozen=True)
class PlatformMetadata:
    """Registry entry for one platform."""
    id: str
    name: str
    display_name: str
    icon: str
    color: str
    auth_type: str
    required_tier: str
    capabilities: PlatformCapabilities
    oauth_scopes: Tuple[str, ...] = ()
    api_docs_url: Optional[str] = None


_PLATFORMS = {
    "facebook": PlatformMetadata(
        id="facebook",
        name="facebook",
        display_name="Facebook Events",
        icon="facebook",
        color="#1877F2",
        auth_type=AUTH_OAUTH2,
        required_tier="basic",
        capabilities=PlatformCapabilities(
            supports_images=True,
            supports_video=True,
            supports_rsvp=True,
            supports_ticketing=False,
            supports_recurring=True,
            supports_location=True,
            supports_virtual=True,
            max_description_length=63206,
            max_title_length=100,
            max_images=10,
        ),
        oauth_scopes=("pages_manage_posts", "pages_read_engagement"),
        api_docs_url="https://developers.facebook.com/docs/graph-api/reference/event/",
    ),
    "linkedin": PlatformMetadata(
        id="linkedin",
        name="linkedin",
        display_name="LinkedIn Events",
        icon="linkedin",
        color="#0A66C2",
        auth_type=AUTH_OAUTH2,
        required_tier="basic",
        capabilities=PlatformCapabilities(
            supports_images=True,
            supports_video=False,
            supports_rsvp=True,
            supports_ticketing=False,
            supports_recurring=False,
            supports_location=True,
            supports_virtual=True,
            max_description_length=2000,
            max_title_length=200,
            max_images=1,
        ),
        oauth_scopes=("w_organization_social", "r_organization_social"),
        api_docs_url="https://learn.microsoft.com/en-us/linkedin/marketing/integrations/community-management/shares/events-api",
    ),
    "eventbrite": PlatformMetadata(
        id="eventbrite",
        name="eventbrite",
        display_name="Eventbrite",
        icon="ticket",
        color="#F05537",
        auth_type=AUTH_OAUTH2,
        required_tier="basic",
        capabilities=PlatformCapabilities(
            supports_images=True,
            supports_video=False,
            supports_rsvp=True,
            supports_ticketing=True,
            supports_recurring=True,
            supports_location=True,
            supports_virtual=True,
            max_description_length=10000,
            max_title_length=75,
            max_images=10,
        ),
        oauth_scopes=("event_management",),
        api_docs_url="https://www.eventbrite.com/platform/api",
    ),
    "meetup": PlatformMetadata(
        id="meetup",
        name="meetup",
        display_name="Meetup",
        icon="users",
        color="#ED1C40",
        auth_type=AUTH_OAUTH2,
        required_tier="pro",
        capabilities=PlatformCapabilities(
            supports_images=True,
            supports_video=False,
            supports_rsvp=True,
            supports_ticketing=False,
            supports_recurring=True,
            supports_location=True,
            supports_virtual=True,
            max_description_length=50000,
            max_title_length=80,
            max_images=1,
        ),
        oauth_scopes=("event_management",),
        api_docs_url="https://www.meetup.com/api/schema/",
    ),
    "instagram": PlatformMetadata(
        id="instagram",
        name="instagram",
        display_name="Instagram",
        icon="instagram",
        color="#E4405F",
        auth_type=AUTH_OAUTH2,
        required_tier="basic",
        capabilities=PlatformCapabilities(
            supports_images=True,
            supports_video=True,
            supports_rsvp=False,
            supports_ticketing=False,
            supports_recurring=False,
            supports_location=True,
            supports_virtual=False,
            max_description_length=2200,
            max_title_length=0,
            max_images=10,
        ),
        oauth_scopes=("instagram_basic", "instagram_content_publish"),
        api_docs_url="https://developers.facebook.com/docs/instagram-api/",
    ),
    "twitter": PlatformMetadata(
        id="twitter",
        name="twitter",
        display_name="X (Twitter)",
        icon="twitter",
        color="#000000",
        auth_type=AUTH_OAUTH2,
        required_tier="basic",
        capabilities=PlatformCapabilities(
            supports_images=True,
            supports_video=True,
            supports_rsvp=False,
            supports_ticketing=False,
            supports_recurring=False,
            supports_location=False,
            supports_virtual=False,
            max_description_length=280,
            max_title_length=0,
            max_images=4,
        ),
        oauth_scopes=("tweet.read", "tweet.write", "users.read"),
        api_docs_url="https://developer.twitter.com/en/docs/twitter-api",
    ),
    "discord": PlatformMetadata(
        id="discord",
        name="discord",
        display_name="Discord",
        icon="message-circle",
        color="#5865F2",
        auth_type=AUTH_WEBHOOK,
        required_tier="pro",
        capabilities=PlatformCapabilities(
            supports_images=True,
            supports_video=False,
            supports_rsvp=False,
            supports_ticketing=False,
            supports_recurring=False,
            supports_location=False,
            supports_virtual=True,
            max_description_length=4096,
            max_title_length=256,
            max_images=10,
        ),
        api_docs_url="https://discord.com/developers/docs/resources/webhook",
    ),
    "whatsapp": PlatformMetadata(
        id="whatsapp",
        name="whatsapp",
        display_name="WhatsApp",
        icon="message-square",
        color="#25D366",
        auth_type=AUTH_API_KEY,
        required_tier="business",
        capabilities=PlatformCapabilities(
            supports_images=True,
            supports_video=True,
            supports_rsvp=False,
            supports_ticketing=False,
            supports_recurring=False,
            supports_location=True,
            supports_virtual=False,
            max_description_length=4096,
            max_title_length=0,
            max_images=1,
        ),
        api_docs_url="https://developers.facebook.com/docs/whatsapp/business-management-api/",
    ),
    "zoom-meeting": PlatformMetadata(
        id="zoom-meeting",
        name="zoom-meeting",
        display_name="Zoom Meeting",
        icon="video",
        color="#2D8CFF",
        auth_type=AUTH_OAUTH2,
        required_tier="basic",
        capabilities=PlatformCapabilities(
            supports_images=False,
            supports_video=False,
            supports_rsvp=True,
            supports_ticketing=False,
            supports_recurring=True,
            supports_location=False,
            supports_virtual=True,
            max_description_length=2000,
            max_title_length=200,
            max_images=0,
        ),
        oauth_scopes=("meeting:write", "user:read"),
        api_docs_url="https://developers.zoom.us/docs/api/",
    ),
    "zoom-webinar": PlatformMetadata(
        id="zoom-webinar",
        name="zoom-webinar",
        display_name="Zoom Webinar",
        icon="presentation",
        color="#2D8CFF",
        auth_type=AUTH_OAUTH2,
        required_tier="pro",
        capabilities=PlatformCapabilities(
            supports_images=False,
            supports_video=False,
            supports_rsvp=True,
            supports_ticketing=False,
            supports_recurring=True,
            supports_location=False,
            supports_virtual=True,
            max_description_length=2000,
            max_title_length=200,
            max_images=0,
        ),
        oauth_scopes=("webinar:write", "user:read"),
        api_docs_url="https://developers.zoom.us/docs/api/",
    ),
    "local-calendar": PlatformMetadata(
        id="local-calendar",
        name="local-calendar",
        display_name="Local Calendar (iCal)",
        icon="calendar",
        color="#6B7280",
        auth_type=AUTH_NONE,
        required_tier="free",
        capabilities=PlatformCapabilities(
            supports_images=False,
            supports_video=False,
            supports_rsvp=False,
            supports_ticketing=False,
            supports_recurring=True,
            supports_location=True,
            supports_virtual=True,
            max_description_length=10000,
            max_title_length=255,
            max_images=0,
        ),
        api_docs_url="https://icalendar.org/",
    ),
}

PLATFORMS: Mapping[str, PlatformMetadata] = MappingProxyType(_PLATFORMS)


def get_platform(platform_id: str) -> PlatformMetadata:
    """
    Look up a platform's registry entry.

    Args:
        platform_id: Registry id, e.g. "facebook" or "zoom-webinar".

    Returns:
        PlatformMetadata: The immutable entry.

    Raises:
        UnknownPlatformError: If the id is not registered.
    """
    try:
        return PLATFORMS[platform_id]
    except KeyError:
        raise UnknownPlatformError(f"Unknown platform: {platform_id}") from None


def tier_rank(tier: str) -> int:
    """Position of a tier in TIER_ORDER; raises ValueError for unknown tiers."""
    try:
        return TIER_ORDER.index(tier)
    except ValueError:
        raise ValueError(f"Unknown subscription tier: {tier}") from None


def platforms_at_or_below_tier(tier: str) -> List[PlatformMetadata]:
    """
    All platforms whose required tier is at or below the given tier.

    Args:
        tier: One of free, basic, pro, business, enterprise.

    Returns:
        List[PlatformMetadata]: Matching entries in registry order.
    """
    rank = tier_rank(tier)
    return [p for p in PLATFORMS.values() if tier_rank(p.required_tier) <= rank]


def is_platform_available(platform_id: str, tier: str) -> bool:
    """True if the platform's required tier is at or below the given tier."""
    return tier_rank(get_platform(platform_id).required_tier) <= tier_rank(tier)
