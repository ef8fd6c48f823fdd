"""
Data Layer Protocol Definitions

This module defines typing.Protocol interfaces for data layer operations.
These protocols enable dependency injection for database operations,
making services testable without real database connections.

Protocols defined:
- CredentialStorage: Interface for per-organization platform credentials
- OAuthStateStorage: Interface for single-use OAuth CSRF state tokens
"""

from typing import Protocol, Optional, List
from datetime import datetime

from data.models import Credential, SaveCredentialsInput, PlatformConnection, OAuthState


class CredentialStorage(Protocol):
    """Protocol defining the interface for credential storage operations.

    Implementations should provide methods for:
    - Reading a decrypted credential for an (organization, platform) pair
    - Upserting credentials, encrypting tokens on write
    - Invalidating and deleting credentials
    - Deciding whether a credential is about to expire
    """

    def get(self, organization_id: str, platform: str) -> Optional[Credential]:
        """Fetch the credential for an organization and platform.

        Args:
            organization_id: Owning organization.
            platform: Registry platform id.

        Returns:
            The credential with decrypted tokens, or None if there is none.
        """
        ...

    def save(self, data: SaveCredentialsInput) -> Credential:
        """Create or replace the credential for data's (organization, platform).

        Args:
            data: Plaintext credential values.

        Returns:
            The stored credential, marked valid and freshly validated.
        """
        ...

    def invalidate(self, organization_id: str, platform: str) -> bool:
        """Mark a credential invalid. Returns True if a row was updated."""
        ...

    def delete(self, organization_id: str, platform: str) -> bool:
        """Delete a credential. Returns True if a row was deleted."""
        ...

    def mark_validated(self, organization_id: str, platform: str) -> bool:
        """Stamp a credential as validated now. Returns True if a row was updated."""
        ...

    def list_for_organization(self, organization_id: str) -> List[PlatformConnection]:
        """List connection status for every stored credential of an organization."""
        ...

    def needs_refresh(self, expires_at: Optional[datetime]) -> bool:
        """True if the expiry falls inside the refresh window."""
        ...


class OAuthStateStorage(Protocol):
    """Protocol defining the interface for OAuth state persistence.

    consume() must be atomic: of several concurrent callers presenting the
    same token, at most one receives the record.
    """

    def issue(self, organization_id: str, platform: str) -> OAuthState:
        """Create and persist a fresh state for an organization and platform."""
        ...

    def consume(self, token: str) -> Optional[OAuthState]:
        """Delete the state with this token and return it, or None if absent."""
        ...

    def cleanup_expired(self) -> int:
        """Delete expired states and return how many were removed."""
        ...
