"""
Adapter factory.

Maps registry platform ids to adapter implementations.
"""

from typing import Callable, Dict, List

from adapters.facebook import FacebookAdapter
from adapters.linkedin import LinkedInAdapter
from adapters.local_calendar import LocalCalendarAdapter
from adapters.protocols import PlatformAdapter
from adapters.zoom import ZoomAdapter, ZoomMode
from platforms.registry import get_platform
from utils.exceptions import UnsupportedPlatformError

ADAPTERS: Dict[str, Callable[[], PlatformAdapter]] = {
    "facebook": FacebookAdapter,
    "linkedin": LinkedInAdapter,
    "zoom-meeting": lambda: ZoomAdapter(ZoomMode.MEETING),
    "zoom-webinar": lambda: ZoomAdapter(ZoomMode.WEBINAR),
    "local-calendar": LocalCalendarAdapter,
}


def create_adapter(platform_id: str) -> PlatformAdapter:
    """
    Build a fresh, disconnected adapter for a platform.

    Raises:
        UnknownPlatformError: If the platform is not registered.
        UnsupportedPlatformError: If it is registered but has no adapter yet.
    """
    get_platform(platform_id)
    try:
        factory = ADAPTERS[platform_id]
    except KeyError:
        raise UnsupportedPlatformError(f"Platform {platform_id} is not yet supported") from None
    return factory()


def supported_platforms() -> List[str]:
    """Registry ids that have an adapter."""
    return list(ADAPTERS)
