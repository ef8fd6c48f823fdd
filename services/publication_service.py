"""
Publication Service Module

This module fans one canonical event out to several platforms and shapes one
Publication record per platform. Platforms are handled independently: a
failure on one never changes the outcome on another.
"""

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Optional, List, Dict, Callable, Iterable

from adapters.common import NOT_CONNECTED
from adapters.protocols import PlatformAdapter, PublicationError, PublicationResult
from config import settings
from data.models import CanonicalEvent
from services.connection_service import ConnectionService
from utils.exceptions import (
    DecryptionError,
    DeletionError,
    NotConnectedError,
    UnknownPlatformError,
    UnsupportedPlatformError,
)
from utils.logger import get_logger

logger = get_logger(__name__)

PUBLICATION_STATUSES = ("pending", "publishing", "published", "failed", "cancelled")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Publication:
    """One event's cross-post to one platform."""
    platform_id: str
    event_id: str
    organization_id: str
    status: str = "pending"
    id: str = ""
    external_id: Optional[str] = None
    external_url: Optional[str] = None
    error: Optional[PublicationError] = None
    retry_count: int = 0
    max_retries: int = settings.PUBLICATION_MAX_RETRIES
    published_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def can_retry(self) -> bool:
        """True if the last failure was transient and retries remain."""
        return (
            self.status == "failed"
            and self.error is not None
            and self.error.retryable
            and self.retry_count < self.max_retries
        )


class PublicationService:
    """Publishes, updates and withdraws an event across platforms."""

    def __init__(self, connection_service: ConnectionService,
                 clock: Callable[[], datetime] = _utcnow):
        """
        Initialize the publication service.

        Args:
            connection_service: Supplies connected adapters.
            clock: Returns the current aware UTC time.
        """
        self.connection_service = connection_service
        self.clock = clock

    # -------------------------------------------------------------------------
    # Record helpers
    # -------------------------------------------------------------------------

    def _failed(self, publication: Publication, code: str, message: str,
                retryable: bool = False) -> Publication:
        now = self.clock()
        return replace(
            publication,
            status="failed",
            error=PublicationError(code=code, message=message, timestamp=now, retryable=retryable),
            updated_at=now,
        )

    def _apply_result(self, publication: Publication, result: PublicationResult) -> Publication:
        now = self.clock()
        if result.success:
            return replace(
                publication,
                status="published",
                id=result.publication_id,
                external_id=result.external_id,
                external_url=result.external_url,
                error=None,
                published_at=now,
                updated_at=now,
            )
        return replace(
            publication,
            status="failed",
            id=result.publication_id or publication.id,
            error=result.error,
            updated_at=now,
        )

    def _connected_adapter(self, publication: Publication):
        """
        Returns (adapter, None) or (None, failed publication).
        """
        platform = publication.platform_id
        try:
            adapter = self.connection_service.get_connected_adapter(publication.organization_id, platform)
        except UnknownPlatformError as e:
            return None, self._failed(publication, "UNKNOWN_PLATFORM", str(e))
        except UnsupportedPlatformError as e:
            return None, self._failed(publication, "UNSUPPORTED_PLATFORM", str(e))
        except DecryptionError as e:
            logger.error(f"Stored {platform} credentials for organization "
                         f"{publication.organization_id} could not be decrypted: {e}")
            return None, self._failed(publication, "CREDENTIAL_DECRYPTION_FAILED", str(e))

        if adapter is None:
            return None, self._failed(publication, NOT_CONNECTED,
                                      f"{platform} is not connected for this organization")
        return adapter, None

    def _send(self, adapter: PlatformAdapter, publication: Publication, event: CanonicalEvent) -> Publication:
        publication = replace(publication, status="publishing", updated_at=self.clock())
        try:
            transformed = adapter.transform_event(event)
        except (KeyError, ValueError) as e:
            # Unknown IANA timezone names surface here as ZoneInfoNotFoundError (a KeyError)
            return self._failed(publication, "INVALID_EVENT", f"Event could not be transformed: {e}")

        if publication.external_id:
            result = adapter.update_event(publication.external_id, transformed)
        else:
            result = adapter.create_event(transformed)

        self.connection_service.record_auth_failure(publication.organization_id, adapter, result)
        updated = self._apply_result(publication, result)
        if updated.status == "published":
            logger.info(f"Published event {event.id} to {publication.platform_id}")
        else:
            logger.warning(f"Publishing event {event.id} to {publication.platform_id} failed: "
                           f"{updated.error.code if updated.error else 'unknown error'}")
        return updated

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def publish(self, event: CanonicalEvent, platforms: Iterable[str]) -> Dict[str, Publication]:
        """
        Publish an event to each platform.

        Args:
            event: The event to publish.
            platforms: Registry platform ids; duplicates are ignored.

        Returns:
            Dict[str, Publication]: One record per platform, in request order.
        """
        publications: Dict[str, Publication] = {}
        for platform in dict.fromkeys(platforms):
            publication = Publication(
                platform_id=platform,
                event_id=event.id,
                organization_id=event.organization_id,
                updated_at=self.clock(),
            )
            adapter, failed = self._connected_adapter(publication)
            publications[platform] = failed if failed else self._send(adapter, publication, event)
        return publications

    def update(self, event: CanonicalEvent, publications: Dict[str, Publication]) -> Dict[str, Publication]:
        """
        Push changes of an event to every platform it was published to.

        Publications without an external id (never created) are created
        instead. Re-attempting a failed publication counts as a retry.

        Returns:
            Dict[str, Publication]: The updated records, keyed by platform.
        """
        updated: Dict[str, Publication] = {}
        for platform, publication in publications.items():
            if publication.status == "cancelled":
                updated[platform] = publication
                continue
            if publication.status == "failed":
                publication = replace(publication, retry_count=publication.retry_count + 1)

            adapter, failed = self._connected_adapter(publication)
            updated[platform] = failed if failed else self._send(adapter, publication, event)
        return updated

    def unpublish(self, publications: Dict[str, Publication]) -> Dict[str, Publication]:
        """
        Delete each published event from its platform.

        Delete failures are recorded on the returned publication rather than raised.

        Returns:
            Dict[str, Publication]: cancelled records, or failed ones carrying the error.
        """
        results: Dict[str, Publication] = {}
        for platform, publication in publications.items():
            if not publication.external_id or publication.status == "cancelled":
                results[platform] = replace(publication, status="cancelled", updated_at=self.clock())
                continue

            adapter, failed = self._connected_adapter(publication)
            if failed:
                results[platform] = failed
                continue

            try:
                adapter.delete_event(publication.external_id)
            except NotConnectedError as e:
                results[platform] = self._failed(publication, NOT_CONNECTED, str(e))
                continue
            except DeletionError as e:
                logger.warning(f"Deleting {platform} event {publication.external_id} failed: {e.code}")
                results[platform] = self._failed(publication, e.code, str(e), retryable=e.retryable)
                continue

            logger.info(f"Withdrew event {publication.event_id} from {platform}")
            results[platform] = replace(publication, status="cancelled", error=None, updated_at=self.clock())
        return results


def summarize(publications: Dict[str, Publication]) -> List[str]:
    """One human-readable line per publication, for CLI output."""
    lines = []
    for platform, publication in publications.items():
        if publication.status == "published":
            target = publication.external_url or publication.id
            lines.append(f"{platform}: published {target}")
        elif publication.error:
            retry = " (retryable)" if publication.error.retryable else ""
            lines.append(f"{platform}: {publication.status} {publication.error.code} - "
                         f"{publication.error.message}{retry}")
        else:
            lines.append(f"{platform}: {publication.status}")
    return lines
