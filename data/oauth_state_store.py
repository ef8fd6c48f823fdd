"""
OAuth State Store

Persistence for the single-use CSRF state tokens issued when an OAuth flow
starts. A state row is either consumed once or expires.
"""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional, Callable

from config import settings
from data.database import DatabaseConnection, to_db_timestamp, from_db_timestamp
from data.models import OAuthState
from utils.exceptions import QueryError
from utils.logger import get_logger

logger = get_logger(__name__)

TOKEN_BYTES = 32


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OAuthStateStore:
    """Issues, consumes and expires OAuth state rows."""

    def __init__(self, db: DatabaseConnection, ttl_minutes: Optional[int] = None,
                 clock: Callable[[], datetime] = _utcnow):
        """
        Initialize the store.

        Args:
            db: Database connection holding the oauth_states table.
            ttl_minutes: State lifetime; defaults to settings.OAUTH_STATE_TTL_MINUTES.
            clock: Returns the current aware UTC time.
        """
        self.db = db
        self.ttl_minutes = ttl_minutes
        self.clock = clock

    def issue(self, organization_id: str, platform: str) -> OAuthState:
        """
        Create and persist a fresh state token.

        Args:
            organization_id: Organization starting the flow.
            platform: OAuth platform ("facebook", "linkedin", "zoom").

        Returns:
            OAuthState: The stored state.
        """
        ttl = self.ttl_minutes if self.ttl_minutes is not None else settings.OAUTH_STATE_TTL_MINUTES
        state = OAuthState(
            token=secrets.token_urlsafe(TOKEN_BYTES),
            organization_id=organization_id,
            platform=platform,
            expires_at=self.clock() + timedelta(minutes=ttl),
        )
        self.db.execute_update(
            "INSERT INTO oauth_states (token, organization_id, platform, expires_at) VALUES (?, ?, ?, ?)",
            (state.token, state.organization_id, state.platform, to_db_timestamp(state.expires_at)),
        )
        logger.debug(f"Issued {platform} OAuth state for organization {organization_id}")
        return state

    def consume(self, token: str) -> Optional[OAuthState]:
        """
        Atomically remove a state row and return what it held.

        The row is read, then deleted with a conditional DELETE; only the
        caller whose DELETE removed the row gets the state back. Expiry is not
        checked here.

        Args:
            token: The random state token.

        Returns:
            Optional[OAuthState]: The consumed state, or None if it was absent
            or another caller consumed it first.
        """
        try:
            with self.db.transaction() as cursor:
                cursor.execute(
                    "SELECT token, organization_id, platform, expires_at FROM oauth_states WHERE token = ?",
                    (token,),
                )
                row = cursor.fetchone()
                if row is None:
                    return None
                cursor.execute("DELETE FROM oauth_states WHERE token = ?", (token,))
                if cursor.rowcount != 1:
                    return None
        except Exception as e:
            logger.error(f"Error consuming OAuth state: {e}")
            raise QueryError(str(e)) from e

        return OAuthState(
            token=row[0],
            organization_id=row[1],
            platform=row[2],
            expires_at=from_db_timestamp(row[3]),
        )

    def cleanup_expired(self) -> int:
        """
        Delete expired states.

        Returns:
            int: Number of rows removed.
        """
        removed = self.db.execute_update(
            "DELETE FROM oauth_states WHERE expires_at < ?",
            (to_db_timestamp(self.clock()),),
        )
        if removed:
            logger.info(f"Removed {removed} expired OAuth states")
        return removed
