"""
OAuth Exchange

Authorization URL construction, CSRF state round-trip and the
code-for-token exchange for each OAuth platform. Facebook and LinkedIn take
the client credentials in the form body; Zoom takes them as HTTP Basic auth.
"""

import base64
import binascii
import json
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, Tuple, Callable
from urllib.parse import urlencode

import requests
from requests.auth import HTTPBasicAuth

from config import settings
from data.protocols import OAuthStateStorage
from utils.exceptions import ConfigurationError, TokenExchangeError
from utils.logger import get_logger

logger = get_logger(__name__)

OAUTH_PLATFORMS = ("facebook", "linkedin", "zoom")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class OAuthConfig:
    """Client registration for one OAuth provider."""
    client_id: str
    client_secret: str
    authorize_url: str
    token_url: str
    scopes: Tuple[str, ...]
    redirect_uri: str


@dataclass
class TokenSet:
    """Tokens returned by a provider's token endpoint."""
    access_token: str
    refresh_token: Optional[str]
    expires_in: int
    expires_in_defaulted: bool = False

    def expires_at(self, now: datetime) -> datetime:
        """Absolute expiry for a token received at `now`."""
        return now + timedelta(seconds=self.expires_in)


@dataclass(frozen=True)
class StateResult:
    """A validated OAuth state."""
    organization_id: str
    token: str


def redirect_uri_for(platform: str) -> str:
    """Callback URL registered with the provider."""
    return f"{settings.APP_BASE_URL}/api/oauth/{platform}/callback"


def encode_state(token: str, organization_id: str) -> str:
    """Encode the state query parameter as base64url JSON."""
    payload = json.dumps({"token": token, "organization_id": organization_id})
    return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii").rstrip("=")


def decode_state(state: str) -> Optional[Dict[str, str]]:
    """
    Decode a state parameter produced by encode_state().

    Returns:
        Optional[dict]: {"token", "organization_id"}, or None if malformed.
    """
    try:
        padded = state + "=" * (-len(state) % 4)
        decoded = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")).decode("utf-8"))
    except (binascii.Error, ValueError, UnicodeError):
        return None

    if not isinstance(decoded, dict):
        return None
    token = decoded.get("token")
    organization_id = decoded.get("organization_id")
    if not isinstance(token, str) or not isinstance(organization_id, str) or not token or not organization_id:
        return None
    return {"token": token, "organization_id": organization_id}


# =============================================================================
# Token Request Builders
# =============================================================================

class BodyCredentialsTokenRequest:
    """Sends client_id and client_secret as form fields."""

    def build(self, config: OAuthConfig, params: Dict[str, str]) -> Dict[str, Any]:
        """Keyword arguments for requests.post()."""
        data = dict(params)
        data["client_id"] = config.client_id
        data["client_secret"] = config.client_secret
        return {
            "data": data,
            "headers": {"Content-Type": "application/x-www-form-urlencoded"},
        }


class BasicAuthTokenRequest:
    """Sends client_id:client_secret as an HTTP Basic Authorization header."""

    def build(self, config: OAuthConfig, params: Dict[str, str]) -> Dict[str, Any]:
        """Keyword arguments for requests.post()."""
        return {
            "data": dict(params),
            "headers": {"Content-Type": "application/x-www-form-urlencoded"},
            "auth": HTTPBasicAuth(config.client_id, config.client_secret),
        }


# =============================================================================
# Exchanges
# =============================================================================

class OAuthExchange:
    """
    Base OAuth 2.0 authorization-code flow for one provider.

    Subclasses set `platform`, `token_request` and `default_lifetime_seconds`.
    """

    platform = ""
    token_request = BodyCredentialsTokenRequest()
    default_lifetime_seconds = 60 * 60

    def __init__(self, config: OAuthConfig, state_store: OAuthStateStorage,
                 clock: Callable[[], datetime] = _utcnow):
        """
        Initialize the exchange.

        Args:
            config: Client registration.
            state_store: Where CSRF states are issued and consumed.
            clock: Returns the current aware UTC time.
        """
        self.config = config
        self.state_store = state_store
        self.clock = clock

    def _require_client(self) -> None:
        if not self.config.client_id or not self.config.client_secret:
            raise ConfigurationError(f"{self.platform} OAuth is not configured: client id and secret are required")

    def authorization_url(self, organization_id: str) -> str:
        """
        Issue a fresh state and build the provider's consent URL.

        Args:
            organization_id: Organization connecting the platform.

        Returns:
            str: URL to redirect the user to.

        Raises:
            ConfigurationError: If the client id or secret is missing.
        """
        self._require_client()
        issued = self.state_store.issue(organization_id, self.platform)
        params = {
            "client_id": self.config.client_id,
            "redirect_uri": self.config.redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.config.scopes),
            "state": encode_state(issued.token, organization_id),
        }
        return f"{self.config.authorize_url}?{urlencode(params)}"

    def validate_state(self, state: str) -> Optional[StateResult]:
        """
        Validate a callback's state parameter.

        The stored state is consumed before anything else is checked, so a
        state can never be replayed even when validation fails.

        Args:
            state: The raw `state` query parameter.

        Returns:
            Optional[StateResult]: The organization the flow belongs to, or
            None if the state is malformed, unknown, expired, already used or
            issued for another organization or platform.
        """
        decoded = decode_state(state) if isinstance(state, str) else None
        if decoded is None:
            logger.warning("Rejected malformed OAuth state")
            return None

        try:
            record = self.state_store.consume(decoded["token"])
        except Exception as e:
            logger.error(f"Failed to consume OAuth state: {e}")
            return None

        if record is None:
            logger.warning("OAuth state not found - possible CSRF attempt or replay")
            return None
        if record.expires_at <= self.clock():
            logger.warning("OAuth state expired")
            return None
        if record.organization_id != decoded["organization_id"]:
            logger.warning("OAuth state organization mismatch - possible tampering")
            return None
        if record.platform != self.platform:
            logger.warning(f"OAuth state was issued for {record.platform}, not {self.platform}")
            return None

        return StateResult(organization_id=record.organization_id, token=record.token)

    def exchange_code(self, code: str) -> TokenSet:
        """
        Exchange an authorization code for tokens.

        Raises:
            ConfigurationError: If the client id or secret is missing.
            TokenExchangeError: If the provider rejects the code.
        """
        return self._request_tokens({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.config.redirect_uri,
        })

    def refresh(self, refresh_token: str) -> TokenSet:
        """
        Exchange a refresh token for a new access token.

        Raises:
            ConfigurationError: If the client id or secret is missing.
            TokenExchangeError: If the provider rejects the refresh token.
        """
        return self._request_tokens({
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        })

    def _request_tokens(self, params: Dict[str, str]) -> TokenSet:
        self._require_client()
        request_kwargs = self.token_request.build(self.config, params)

        try:
            response = requests.post(
                self.config.token_url,
                timeout=settings.HTTP_TIMEOUT_SECONDS,
                **request_kwargs,
            )
        except requests.RequestException as e:
            raise TokenExchangeError(f"{self.platform} token request failed: {e.__class__.__name__}") from e

        if not response.ok:
            raise TokenExchangeError(
                f"{self.platform} token exchange failed: {response.text}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise TokenExchangeError(f"{self.platform} returned an unreadable token response",
                                     status_code=response.status_code) from e

        access_token = data.get("access_token") if isinstance(data, dict) else None
        if not access_token:
            raise TokenExchangeError(f"{self.platform} token response had no access_token",
                                     status_code=response.status_code)

        return self._token_set(data)

    def _token_set(self, data: Dict[str, Any]) -> TokenSet:
        expires_in = data.get("expires_in")
        defaulted = False
        try:
            expires_in = int(expires_in)
        except (TypeError, ValueError):
            logger.warning(
                f"{self.platform} token response had no expires_in; "
                f"assuming {self.default_lifetime_seconds} seconds"
            )
            expires_in = self.default_lifetime_seconds
            defaulted = True

        return TokenSet(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_in=expires_in,
            expires_in_defaulted=defaulted,
        )


class FacebookOAuth(OAuthExchange):
    """Facebook Login for Pages."""

    platform = "facebook"
    token_request = BodyCredentialsTokenRequest()
    default_lifetime_seconds = settings.FACEBOOK_TOKEN_LIFETIME_SECONDS

    @classmethod
    def from_settings(cls, state_store: OAuthStateStorage, **kwargs) -> "FacebookOAuth":
        config = OAuthConfig(
            client_id=settings.FACEBOOK_APP_ID,
            client_secret=settings.FACEBOOK_APP_SECRET,
            authorize_url=settings.FACEBOOK_AUTHORIZE_URL,
            token_url=settings.FACEBOOK_TOKEN_URL,
            scopes=("pages_manage_posts", "pages_read_engagement", "pages_show_list"),
            redirect_uri=redirect_uri_for(cls.platform),
        )
        return cls(config, state_store, **kwargs)


class LinkedInOAuth(OAuthExchange):
    """LinkedIn 3-legged OAuth for organization pages."""

    platform = "linkedin"
    token_request = BodyCredentialsTokenRequest()
    default_lifetime_seconds = settings.LINKEDIN_TOKEN_LIFETIME_SECONDS

    @classmethod
    def from_settings(cls, state_store: OAuthStateStorage, **kwargs) -> "LinkedInOAuth":
        config = OAuthConfig(
            client_id=settings.LINKEDIN_CLIENT_ID,
            client_secret=settings.LINKEDIN_CLIENT_SECRET,
            authorize_url=settings.LINKEDIN_AUTHORIZE_URL,
            token_url=settings.LINKEDIN_TOKEN_URL,
            scopes=("r_organization_social", "w_organization_social", "rw_organization_admin"),
            redirect_uri=redirect_uri_for(cls.platform),
        )
        return cls(config, state_store, **kwargs)


class ZoomOAuth(OAuthExchange):
    """Zoom user-level OAuth app; the token endpoint requires Basic auth."""

    platform = "zoom"
    token_request = BasicAuthTokenRequest()
    default_lifetime_seconds = settings.ZOOM_TOKEN_LIFETIME_SECONDS

    @classmethod
    def from_settings(cls, state_store: OAuthStateStorage, **kwargs) -> "ZoomOAuth":
        config = OAuthConfig(
            client_id=settings.ZOOM_CLIENT_ID,
            client_secret=settings.ZOOM_CLIENT_SECRET,
            authorize_url=settings.ZOOM_AUTHORIZE_URL,
            token_url=settings.ZOOM_TOKEN_URL,
            scopes=("meeting:write", "webinar:write", "user:read"),
            redirect_uri=redirect_uri_for(cls.platform),
        )
        return cls(config, state_store, **kwargs)


EXCHANGES = {
    "facebook": FacebookOAuth,
    "linkedin": LinkedInOAuth,
    "zoom": ZoomOAuth,
}

# Registry platform id -> OAuth platform that issues its credential
OAUTH_PLATFORM_FOR = {
    "facebook": "facebook",
    "linkedin": "linkedin",
    "zoom-meeting": "zoom",
    "zoom-webinar": "zoom",
}


def create_exchange(platform: str, state_store: OAuthStateStorage, **kwargs) -> OAuthExchange:
    """
    Build the exchange for an OAuth platform or a registry platform id.

    Raises:
        ValueError: If the platform does not use one of the supported OAuth flows.
    """
    oauth_platform = OAUTH_PLATFORM_FOR.get(platform, platform)
    try:
        exchange_cls = EXCHANGES[oauth_platform]
    except KeyError:
        raise ValueError(f"No OAuth flow for platform: {platform}") from None
    return exchange_cls.from_settings(state_store, **kwargs)
