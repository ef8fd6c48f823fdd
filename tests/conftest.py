"""
Shared Test Fixtures for EventFlow

This module provides common fixtures used across all test modules.
Fixtures include HTTP response mocks, an in-memory SQLite database,
a fixed clock, in-memory storage doubles and event factories.
"""

import pytest
import sqlite3
from unittest.mock import MagicMock, patch
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, List
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from data.models import (
    CanonicalEvent,
    Credential,
    EventLocation,
    EventOrganizer,
    OAuthState,
    PlatformConnection,
    SaveCredentialsInput,
)

TEST_KEY = bytes(range(32))
FIXED_NOW = datetime(2025, 2, 1, 12, 0, 0, tzinfo=timezone.utc)


# =============================================================================
# Settings Fixtures
# =============================================================================

@pytest.fixture
def oauth_settings():
    """
    Patch config.settings with test OAuth client credentials.

    The exchanges read settings when they are built, so tests never touch
    real client secrets.

    Returns:
        dict: The patched values.
    """
    values = {
        "APP_BASE_URL": "https://app.test",
        "FACEBOOK_APP_ID": "fb-app-id",
        "FACEBOOK_APP_SECRET": "fb-app-secret",
        "LINKEDIN_CLIENT_ID": "li-client-id",
        "LINKEDIN_CLIENT_SECRET": "li-client-secret",
        "ZOOM_CLIENT_ID": "zoom-client-id",
        "ZOOM_CLIENT_SECRET": "zoom-client-secret",
    }
    with patch.multiple("config.settings", **values):
        yield values


# =============================================================================
# Clock Fixtures
# =============================================================================

class FixedClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        """Move the clock forward by a timedelta(**kwargs)."""
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    """
    A FixedClock starting at 2025-02-01 12:00 UTC.

    Usage:
        def test_expiry(clock):
            clock.advance(minutes=16)
    """
    return FixedClock()


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture
def sqlite_db():
    """
    A DatabaseConnection over an in-memory SQLite database with the tables created.

    Returns:
        DatabaseConnection: Ready to use; closed after the test.
    """
    from data.database import DatabaseConnection

    db = DatabaseConnection(conn=sqlite3.connect(":memory:"))
    db.create_tables()
    yield db
    db.close()


@pytest.fixture
def mock_db_connection():
    """
    Mock pyodbc database connection and cursor.

    This fixture provides a mock database connection that simulates
    pyodbc behavior without requiring an actual database connection.

    Returns:
        tuple: A tuple of (mock_connection, mock_cursor).
    """
    mock_cursor = MagicMock()
    mock_cursor.description = None
    mock_cursor.fetchall.return_value = []
    mock_cursor.fetchone.return_value = None
    mock_cursor.rowcount = 0

    mock_conn = MagicMock()
    mock_conn.cursor.return_value = mock_cursor

    with patch('pyodbc.connect', return_value=mock_conn):
        yield mock_conn, mock_cursor


# =============================================================================
# Crypto Fixtures
# =============================================================================

@pytest.fixture
def cipher():
    """A TokenCipher with a fixed test key."""
    from platforms.cipher import TokenCipher
    return TokenCipher(TEST_KEY)


@pytest.fixture
def credential_store(sqlite_db, cipher, clock):
    """A CredentialStore over the in-memory database."""
    from data.credential_store import CredentialStore
    return CredentialStore(sqlite_db, cipher, clock=clock)


@pytest.fixture
def state_store(sqlite_db, clock):
    """An OAuthStateStore over the in-memory database."""
    from data.oauth_state_store import OAuthStateStore
    return OAuthStateStore(sqlite_db, clock=clock)


# =============================================================================
# Logging Fixtures
# =============================================================================

@pytest.fixture
def capture_logs():
    """
    Capture log messages for assertion in tests.

    Records are collected from the root logger, which every application
    logger propagates to.

    Returns:
        list: A list that will contain captured log records.
    """
    import logging

    class LogCapture(logging.Handler):
        def __init__(self):
            super().__init__()
            self.records = []

        def emit(self, record):
            self.records.append(record)

    handler = LogCapture()
    handler.setLevel(logging.DEBUG)

    root_logger = logging.getLogger()
    original_level = root_logger.level
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(handler)

    yield handler.records

    root_logger.removeHandler(handler)
    root_logger.setLevel(original_level)


# =============================================================================
# HTTP Response Fixtures
# =============================================================================

@pytest.fixture
def mock_http_response():
    """
    Factory fixture for creating mock HTTP responses.

    Usage:
        def test_http_request(mock_http_response):
            response = mock_http_response(
                status_code=200,
                json_data={'key': 'value'},
                headers={'x-restli-id': '123'}
            )

    Returns:
        callable: A factory function for creating mock responses.
    """
    def _create_response(
        status_code: int = 200,
        content: bytes = b'',
        text: str = '',
        json_data: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
        url: str = 'https://example.com',
    ) -> MagicMock:
        """
        Create a mock HTTP response object.

        Args:
            status_code: HTTP status code (default 200).
            content: Raw bytes content.
            text: Text content (generated from json_data if not provided).
            json_data: Value to return from response.json(); None makes json() raise.
            headers: Response headers dictionary.
            url: The URL of the response.

        Returns:
            MagicMock: A mock response object mimicking requests.Response.
        """
        import json

        mock_response = MagicMock()
        mock_response.status_code = status_code
        mock_response.content = content
        mock_response.url = url
        mock_response.headers = headers or {'Content-Type': 'application/json'}
        mock_response.ok = 200 <= status_code < 300

        if text:
            mock_response.text = text
        elif json_data is not None:
            mock_response.text = json.dumps(json_data)
        else:
            mock_response.text = content.decode('utf-8') if content else ''

        if json_data is not None:
            mock_response.json.return_value = json_data
        else:
            mock_response.json.side_effect = ValueError("No JSON data")

        return mock_response

    return _create_response


@pytest.fixture
def mock_requests(mock_http_response):
    """
    Mock the requests library for HTTP testing.

    Usage:
        def test_api_call(mock_requests):
            mock_requests.get.return_value = mock_requests.response(
                json_data={'id': '1'}
            )

    Returns:
        MagicMock: A mock requests module with response factory attached.
    """
    with patch('requests.get') as mock_get, \
         patch('requests.post') as mock_post, \
         patch('requests.put') as mock_put, \
         patch('requests.patch') as mock_patch, \
         patch('requests.delete') as mock_delete:

        mock_req = MagicMock()
        mock_req.get = mock_get
        mock_req.post = mock_post
        mock_req.put = mock_put
        mock_req.patch = mock_patch
        mock_req.delete = mock_delete
        mock_req.response = mock_http_response

        yield mock_req


# =============================================================================
# Data Model Factories
# =============================================================================

@pytest.fixture
def event_factory():
    """
    Factory fixture for creating CanonicalEvent test objects.

    Defaults describe an in-person event on 2025-03-01 10:00-11:00 in
    America/Los_Angeles. Pass location=... or any other field to override.

    Usage:
        def test_transform(event_factory):
            event = event_factory(title='Team Sync; Q1')

    Returns:
        callable: A factory function for creating CanonicalEvent objects.
    """
    def _create_event(**overrides) -> CanonicalEvent:
        values: Dict[str, Any] = {
            "id": "evt-1",
            "organization_id": "org-1",
            "title": "Community Meetup",
            "description": "Monthly meetup for local builders.",
            "start_time": datetime(2025, 3, 1, 10, 0),
            "end_time": datetime(2025, 3, 1, 11, 0),
            "timezone": "America/Los_Angeles",
            "location": EventLocation(
                name="Main Hall",
                address="1 Main St",
                city="Portland",
                state="OR",
                postal_code="97201",
                country="US",
            ),
            "organizer": EventOrganizer(name="Ada Lovelace", email="ada@example.com"),
            "category": "technology",
            "registration_url": "https://tickets.example.com/meetup",
        }
        values.update(overrides)
        return CanonicalEvent(**values)

    return _create_event


@pytest.fixture
def virtual_location():
    """An online-only EventLocation."""
    return EventLocation(name="Online", is_virtual=True, virtual_url="https://meet.example.com/abc")


# =============================================================================
# Dependency Injection Fixtures
# =============================================================================

class MockCredentialStorage:
    """In-memory implementation of the CredentialStorage protocol.

    Usage:
        def test_with_di(mock_credential_storage):
            service = ConnectionService(mock_credential_storage)
            mock_credential_storage.put(Credential(...))
    """

    def __init__(self, refresh: bool = False):
        """Initialize empty storage; refresh is what needs_refresh() answers."""
        self.credentials: Dict[tuple, Credential] = {}
        self.saved: List[SaveCredentialsInput] = []
        self.invalidated: List[tuple] = []
        self.validated: List[tuple] = []
        self.refresh = refresh

    def put(self, credential: Credential) -> None:
        """Seed a credential directly."""
        self.credentials[(credential.organization_id, credential.platform)] = credential

    def get(self, organization_id: str, platform: str) -> Optional[Credential]:
        return self.credentials.get((organization_id, platform))

    def list_for_organization(self, organization_id: str) -> List[PlatformConnection]:
        return [
            PlatformConnection(
                platform=c.platform,
                is_connected=c.is_valid,
                account_name=c.metadata.get("account_name"),
                account_id=c.platform_page_id or c.platform_user_id,
                expires_at=c.expires_at,
            )
            for (org, _), c in sorted(self.credentials.items())
            if org == organization_id
        ]

    def save(self, data: SaveCredentialsInput) -> Credential:
        self.saved.append(data)
        credential = Credential(
            organization_id=data.organization_id,
            platform=data.platform,
            access_token=data.access_token,
            refresh_token=data.refresh_token,
            expires_at=data.expires_at,
            platform_user_id=data.platform_user_id,
            platform_page_id=data.platform_page_id,
            metadata=dict(data.metadata),
            is_valid=True,
            last_validated=FIXED_NOW,
        )
        self.put(credential)
        return credential

    def invalidate(self, organization_id: str, platform: str) -> bool:
        self.invalidated.append((organization_id, platform))
        credential = self.credentials.get((organization_id, platform))
        if credential is None:
            return False
        credential.is_valid = False
        return True

    def delete(self, organization_id: str, platform: str) -> bool:
        return self.credentials.pop((organization_id, platform), None) is not None

    def mark_validated(self, organization_id: str, platform: str) -> bool:
        self.validated.append((organization_id, platform))
        return (organization_id, platform) in self.credentials

    def needs_refresh(self, expires_at: Optional[datetime]) -> bool:
        return self.refresh and expires_at is not None


@pytest.fixture
def mock_credential_storage():
    """
    Provide an in-memory CredentialStorage implementation for DI testing.

    Returns:
        MockCredentialStorage: A storage double that records calls.
    """
    return MockCredentialStorage()


class MockStateStorage:
    """In-memory implementation of the OAuthStateStorage protocol."""

    def __init__(self, clock=None, ttl_minutes: int = 15):
        self.clock = clock or FixedClock()
        self.ttl_minutes = ttl_minutes
        self.states: Dict[str, OAuthState] = {}
        self._counter = 0

    def issue(self, organization_id: str, platform: str) -> OAuthState:
        self._counter += 1
        state = OAuthState(
            token=f"state-token-{self._counter}",
            organization_id=organization_id,
            platform=platform,
            expires_at=self.clock() + timedelta(minutes=self.ttl_minutes),
        )
        self.states[state.token] = state
        return state

    def consume(self, token: str) -> Optional[OAuthState]:
        return self.states.pop(token, None)

    def cleanup_expired(self) -> int:
        now = self.clock()
        expired = [t for t, s in self.states.items() if s.expires_at < now]
        for token in expired:
            del self.states[token]
        return len(expired)


@pytest.fixture
def mock_state_storage(clock):
    """
    Provide an in-memory OAuthStateStorage sharing the test clock.

    Returns:
        MockStateStorage: A storage double with predictable tokens.
    """
    return MockStateStorage(clock=clock)
