"""
Connection Service Module

This module holds the layer between stored credentials and platform
adapters. It turns a stored credential into a connected adapter, completes
OAuth callbacks by saving the credential the adapters need, and reports or
removes an organization's platform connections.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Optional, List, Dict, Callable, Tuple

from adapters.facebook import exchange_for_long_lived_token, get_facebook_pages
from adapters.factory import create_adapter
from adapters.linkedin import get_linkedin_organizations
from adapters.protocols import PlatformAdapter, PublicationResult
from adapters.zoom import check_zoom_webinar_license, display_name_of, get_zoom_user
from config import settings
from data.models import Credential, PlatformConnection, SaveCredentialsInput
from data.protocols import CredentialStorage
from platforms.oauth import OAuthExchange
from platforms.registry import PLATFORMS
from utils.exceptions import ConfigurationError, OAuthError, PlatformError
from utils.logger import get_logger

logger = get_logger(__name__)

LOCAL_CALENDAR = "local-calendar"

# Registry platform -> (connect() key, Credential attribute holding its value)
CONNECT_KEYS: Dict[str, Tuple[str, str]] = {
    "facebook": ("page_id", "platform_page_id"),
    "linkedin": ("organization_id", "platform_page_id"),
    "zoom-meeting": ("user_id", "platform_user_id"),
    "zoom-webinar": ("user_id", "platform_user_id"),
}

# Registry platforms that share one OAuth grant
SHARED_CREDENTIALS: Dict[str, Tuple[str, ...]] = {
    "zoom-meeting": ("zoom-meeting", "zoom-webinar"),
    "zoom-webinar": ("zoom-meeting", "zoom-webinar"),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class AuthorizationResult:
    """Outcome of an OAuth callback."""
    success: bool
    platform: str
    organization_id: Optional[str] = None
    account_name: Optional[str] = None
    saved_platforms: List[str] = field(default_factory=list)
    error: Optional[str] = None


def adapter_credentials(credential: Credential) -> Dict[str, str]:
    """The connect() map for a stored credential."""
    credentials = {"access_token": credential.access_token}
    key = CONNECT_KEYS.get(credential.platform)
    if key:
        name, attribute = key
        value = getattr(credential, attribute)
        if value:
            credentials[name] = value
    return credentials


class ConnectionService:
    """Builds connected adapters from stored credentials."""

    def __init__(self, credential_store: CredentialStorage,
                 adapter_factory: Callable[[str], PlatformAdapter] = create_adapter,
                 exchange_factory: Optional[Callable[[str], OAuthExchange]] = None,
                 clock: Callable[[], datetime] = _utcnow):
        """
        Initialize the connection service.

        Args:
            credential_store: Encrypted credential storage.
            adapter_factory: Builds a fresh adapter for a registry platform id.
            exchange_factory: Builds the OAuth exchange for a registry platform
                id; without it, expiring credentials are used without refresh.
            clock: Returns the current aware UTC time.
        """
        self.credential_store = credential_store
        self.adapter_factory = adapter_factory
        self.exchange_factory = exchange_factory
        self.clock = clock

    # -------------------------------------------------------------------------
    # Connected adapters
    # -------------------------------------------------------------------------

    def get_connected_adapter(self, organization_id: str, platform: str) -> Optional[PlatformAdapter]:
        """
        Get an adapter connected with the organization's stored credential.

        Args:
            organization_id: Owning organization.
            platform: Registry platform id.

        Returns:
            Optional[PlatformAdapter]: A connected adapter, or None if there is
            no valid credential or the platform rejected it.

        Raises:
            UnknownPlatformError: If the platform is not registered.
            UnsupportedPlatformError: If the platform has no adapter.
            DecryptionError: If the stored token cannot be decrypted.
        """
        adapter = self.adapter_factory(platform)

        if platform == LOCAL_CALENDAR:
            adapter.connect({})
            return adapter

        credential = self.credential_store.get(organization_id, platform)
        if credential is None:
            logger.info(f"No {platform} credentials for organization {organization_id}")
            return None
        if not credential.is_valid:
            logger.warning(f"{platform} credentials for organization {organization_id} are invalid; reconnect required")
            return None

        if self.credential_store.needs_refresh(credential.expires_at):
            credential = self._refresh(credential)

        result = adapter.connect(adapter_credentials(credential))
        if not result.success:
            if result.retryable:
                logger.warning(f"Could not reach {platform} to validate credentials: {result.error}")
            else:
                logger.warning(f"{platform} rejected stored credentials: {result.error}")
                self.credential_store.invalidate(organization_id, platform)
            return None

        self.credential_store.mark_validated(organization_id, platform)
        return adapter

    def _refresh(self, credential: Credential) -> Credential:
        """Refresh an expiring credential; the old one is kept if refresh is impossible or fails."""
        platform = credential.platform
        if not credential.refresh_token or self.exchange_factory is None:
            logger.warning(f"{platform} credentials expire at {credential.expires_at} and cannot be refreshed")
            return credential

        try:
            tokens = self.exchange_factory(platform).refresh(credential.refresh_token)
        except ConfigurationError as e:
            logger.warning(f"Cannot refresh {platform} credentials: {e}")
            return credential
        except OAuthError as e:
            logger.warning(f"Failed to refresh {platform} credentials: {e}")
            return credential

        expires_at = tokens.expires_at(self.clock())
        refreshed = credential
        for sibling in SHARED_CREDENTIALS.get(platform, (platform,)):
            saved = self.credential_store.save(SaveCredentialsInput(
                organization_id=credential.organization_id,
                platform=sibling,
                access_token=tokens.access_token,
                refresh_token=tokens.refresh_token or credential.refresh_token,
                expires_at=expires_at,
                platform_user_id=credential.platform_user_id,
                platform_page_id=credential.platform_page_id,
                metadata=credential.metadata,
            ))
            if sibling == platform:
                refreshed = saved

        logger.info(f"Refreshed {platform} credentials for organization {credential.organization_id}")
        return refreshed

    # -------------------------------------------------------------------------
    # OAuth callbacks
    # -------------------------------------------------------------------------

    def complete_authorization(self, exchange: OAuthExchange, code: str, state: str) -> AuthorizationResult:
        """
        Finish an OAuth flow: validate the state, exchange the code and save credentials.

        Facebook saves the first managed Page's token, LinkedIn the first
        administered organization, Zoom the user's token for both meetings and
        webinars.

        Args:
            exchange: The exchange for the platform being connected.
            code: Authorization code from the callback.
            state: State parameter from the callback.

        Returns:
            AuthorizationResult: What was saved, or why nothing was.

        Raises:
            ConfigurationError: If the platform's OAuth client is not configured.
        """
        platform = exchange.platform
        state_result = exchange.validate_state(state)
        if state_result is None:
            return AuthorizationResult(success=False, platform=platform, error="invalid_state")

        organization_id = state_result.organization_id
        try:
            tokens = exchange.exchange_code(code)
            if platform == "facebook":
                result = self._save_facebook(exchange, organization_id, tokens.access_token)
            elif platform == "linkedin":
                result = self._save_linkedin(organization_id, tokens)
            elif platform == "zoom":
                result = self._save_zoom(organization_id, tokens)
            else:
                result = AuthorizationResult(success=False, platform=platform, error="unsupported_platform")
        except (OAuthError, PlatformError) as e:
            logger.error(f"{platform} OAuth callback failed for organization {organization_id}: {e}")
            return AuthorizationResult(success=False, platform=platform,
                                       organization_id=organization_id, error=str(e))

        result.organization_id = organization_id
        if result.success:
            logger.info(f"Connected {platform} ({result.account_name}) for organization {organization_id}")
        return result

    def _save_facebook(self, exchange: OAuthExchange, organization_id: str, user_token: str) -> AuthorizationResult:
        long_lived = exchange_for_long_lived_token(
            user_token, exchange.config.client_id, exchange.config.client_secret
        )
        pages = get_facebook_pages(long_lived)
        if not pages:
            return AuthorizationResult(success=False, platform="facebook", error="no_pages")

        # Always the first page; there is no page picker
        page = pages[0]
        if not page.get("access_token"):
            return AuthorizationResult(success=False, platform="facebook", error="no_page_token")

        self.credential_store.save(SaveCredentialsInput(
            organization_id=organization_id,
            platform="facebook",
            access_token=page["access_token"],
            expires_at=self.clock() + timedelta(seconds=settings.FACEBOOK_TOKEN_LIFETIME_SECONDS),
            platform_page_id=str(page["id"]),
            metadata={"account_name": page.get("name"), "page_id": str(page["id"])},
        ))
        return AuthorizationResult(success=True, platform="facebook",
                                   account_name=page.get("name"), saved_platforms=["facebook"])

    def _save_linkedin(self, organization_id: str, tokens) -> AuthorizationResult:
        organizations = get_linkedin_organizations(tokens.access_token)
        if not organizations:
            return AuthorizationResult(success=False, platform="linkedin", error="no_organizations")

        # Always the first organization; there is no organization picker
        org = organizations[0]
        self.credential_store.save(SaveCredentialsInput(
            organization_id=organization_id,
            platform="linkedin",
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            expires_at=tokens.expires_at(self.clock()),
            platform_page_id=org["id"],
            metadata={
                "account_name": org.get("localizedName"),
                "organization_id": org["id"],
                "vanity_name": org.get("vanityName"),
            },
        ))
        return AuthorizationResult(success=True, platform="linkedin",
                                   account_name=org.get("localizedName"), saved_platforms=["linkedin"])

    def _save_zoom(self, organization_id: str, tokens) -> AuthorizationResult:
        user = get_zoom_user(tokens.access_token)
        display_name = display_name_of(user)
        metadata = {
            "account_name": display_name,
            "email": user.get("email"),
            "first_name": user.get("first_name"),
            "last_name": user.get("last_name"),
            "webinar_license": check_zoom_webinar_license(tokens.access_token, str(user["id"])),
        }
        expires_at = tokens.expires_at(self.clock())

        saved = []
        for platform in SHARED_CREDENTIALS["zoom-meeting"]:
            self.credential_store.save(SaveCredentialsInput(
                organization_id=organization_id,
                platform=platform,
                access_token=tokens.access_token,
                refresh_token=tokens.refresh_token,
                expires_at=expires_at,
                platform_user_id=str(user["id"]),
                metadata=metadata,
            ))
            saved.append(platform)
        return AuthorizationResult(success=True, platform="zoom",
                                   account_name=display_name, saved_platforms=saved)

    # -------------------------------------------------------------------------
    # Status and disconnect
    # -------------------------------------------------------------------------

    def connection_statuses(self, organization_id: str) -> List[PlatformConnection]:
        """Every registry platform with its stored connection status, in registry order."""
        stored = {c.platform: c for c in self.credential_store.list_for_organization(organization_id)}
        statuses = []
        for platform_id in PLATFORMS:
            if platform_id == LOCAL_CALENDAR:
                statuses.append(PlatformConnection(platform=platform_id, is_connected=True,
                                                   account_name="Local Calendar"))
            else:
                statuses.append(stored.get(platform_id) or PlatformConnection(platform=platform_id,
                                                                              is_connected=False))
        return statuses

    def disconnect(self, organization_id: str, platform: str) -> bool:
        """
        Delete the stored credential for a platform.

        Returns:
            bool: True if a credential was deleted.
        """
        return self.credential_store.delete(organization_id, platform)

    def record_auth_failure(self, organization_id: str, adapter: PlatformAdapter,
                            result: PublicationResult) -> bool:
        """
        Invalidate the stored credential if a publication failed because the token was rejected.

        Returns:
            bool: True if the credential was invalidated.
        """
        if result.success or result.error is None:
            return False
        if result.error.code not in adapter.auth_error_codes:
            return False
        logger.warning(f"{adapter.platform_id} rejected the token ({result.error.code}); invalidating credentials")
        return self.credential_store.invalidate(organization_id, adapter.platform_id)
