"""
Credential Store

Persists one credential per (organization, platform) pair. Tokens are
encrypted with the TokenCipher on every write and decrypted on read; rows
written before encryption was introduced are still read as plaintext.
"""

import json
from datetime import datetime, timedelta, timezone
from typing import Optional, List, Dict, Any, Callable

from config import settings
from data.database import DatabaseConnection, to_db_timestamp, from_db_timestamp
from data.models import Credential, SaveCredentialsInput, PlatformConnection
from platforms.cipher import TokenCipher
from utils.exceptions import QueryError
from utils.logger import get_logger

logger = get_logger(__name__)

_COLUMNS = (
    "organization_id, platform, access_token, refresh_token, expires_at, "
    "platform_user_id, platform_page_id, metadata_json, is_valid, last_validated"
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CredentialStore:
    """Encrypted CRUD for platform credentials."""

    def __init__(self, db: DatabaseConnection, cipher: TokenCipher,
                 clock: Callable[[], datetime] = _utcnow):
        """
        Initialize the store.

        Args:
            db: Database connection holding the platform_credentials table.
            cipher: Cipher used for tokens at rest.
            clock: Returns the current aware UTC time.
        """
        self.db = db
        self.cipher = cipher
        self.clock = clock

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get(self, organization_id: str, platform: str) -> Optional[Credential]:
        """
        Get credentials for a specific platform.

        Args:
            organization_id: Owning organization.
            platform: Registry platform id.

        Returns:
            Optional[Credential]: The credential with decrypted tokens, or None.

        Raises:
            DecryptionError: If a stored token looks encrypted but cannot be decrypted.
        """
        rows = self.db.execute_query(
            f"SELECT {_COLUMNS} FROM platform_credentials WHERE organization_id = ? AND platform = ?",
            (organization_id, platform),
        )
        if not rows:
            return None
        return self._row_to_credential(rows[0])

    def list_for_organization(self, organization_id: str) -> List[PlatformConnection]:
        """
        Get all connected platforms for an organization.

        Returns:
            List[PlatformConnection]: Status per stored credential, no tokens.
        """
        rows = self.db.execute_query(
            "SELECT platform, is_valid, expires_at, platform_user_id, platform_page_id, "
            "metadata_json, last_validated FROM platform_credentials WHERE organization_id = ? "
            "ORDER BY platform",
            (organization_id,),
        )
        connections = []
        for row in rows:
            metadata = self._load_metadata(row.get("metadata_json"))
            connections.append(PlatformConnection(
                platform=row["platform"],
                is_connected=bool(row["is_valid"]),
                account_name=metadata.get("account_name"),
                account_id=row.get("platform_page_id") or row.get("platform_user_id"),
                expires_at=from_db_timestamp(row.get("expires_at")),
                last_validated=from_db_timestamp(row.get("last_validated")),
            ))
        return connections

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def save(self, data: SaveCredentialsInput) -> Credential:
        """
        Save or update platform credentials.

        Tokens are always re-encrypted, the row is marked valid and
        last_validated is stamped with the current time. No live validation
        happens here; call an adapter's is_connected() for that.

        Args:
            data: Plaintext credential values.

        Returns:
            Credential: The stored values, decrypted.
        """
        now = self.clock()
        access_token = self.cipher.encrypt(data.access_token)
        refresh_token = self.cipher.encrypt(data.refresh_token) if data.refresh_token else None
        values = (
            access_token,
            refresh_token,
            to_db_timestamp(data.expires_at),
            data.platform_user_id,
            data.platform_page_id,
            json.dumps(data.metadata or {}),
            1,
            to_db_timestamp(now),
        )

        update_sql = (
            "UPDATE platform_credentials SET access_token = ?, refresh_token = ?, expires_at = ?, "
            "platform_user_id = ?, platform_page_id = ?, metadata_json = ?, is_valid = ?, "
            "last_validated = ? WHERE organization_id = ? AND platform = ?"
        )
        insert_sql = (
            f"INSERT INTO platform_credentials ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)"
        )
        key = (data.organization_id, data.platform)

        try:
            with self.db.transaction() as cursor:
                cursor.execute(update_sql, values + key)
                if cursor.rowcount == 0:
                    cursor.execute(insert_sql, key + values)
        except Exception as e:
            # A concurrent save inserted the row first; overwrite it (last writer wins)
            logger.warning(f"Credential insert for {data.platform} raced another writer, retrying as update: {e}")
            try:
                with self.db.transaction() as cursor:
                    cursor.execute(update_sql, values + key)
                    if cursor.rowcount == 0:
                        raise QueryError(f"Could not save credentials for {data.platform}")
            except QueryError:
                raise
            except Exception as retry_error:
                raise QueryError(str(retry_error)) from retry_error

        logger.info(f"Saved {data.platform} credentials for organization {data.organization_id}")
        return Credential(
            organization_id=data.organization_id,
            platform=data.platform,
            access_token=data.access_token,
            refresh_token=data.refresh_token,
            expires_at=data.expires_at,
            platform_user_id=data.platform_user_id,
            platform_page_id=data.platform_page_id,
            metadata=dict(data.metadata or {}),
            is_valid=True,
            last_validated=now,
        )

    def invalidate(self, organization_id: str, platform: str) -> bool:
        """
        Mark credentials as invalid (e.g., after the platform rejected the token).

        Returns:
            bool: True if a credential was updated.
        """
        updated = self.db.execute_update(
            "UPDATE platform_credentials SET is_valid = 0 WHERE organization_id = ? AND platform = ?",
            (organization_id, platform),
        )
        if updated:
            logger.warning(f"Invalidated {platform} credentials for organization {organization_id}")
        return updated > 0

    def delete(self, organization_id: str, platform: str) -> bool:
        """
        Delete platform credentials (disconnect).

        Returns:
            bool: True if a credential was deleted.
        """
        deleted = self.db.execute_update(
            "DELETE FROM platform_credentials WHERE organization_id = ? AND platform = ?",
            (organization_id, platform),
        )
        if deleted:
            logger.info(f"Deleted {platform} credentials for organization {organization_id}")
        return deleted > 0

    def mark_validated(self, organization_id: str, platform: str) -> bool:
        """Update the last validated timestamp."""
        updated = self.db.execute_update(
            "UPDATE platform_credentials SET last_validated = ? WHERE organization_id = ? AND platform = ?",
            (to_db_timestamp(self.clock()), organization_id, platform),
        )
        return updated > 0

    # -------------------------------------------------------------------------
    # Expiry policy
    # -------------------------------------------------------------------------

    def needs_refresh(self, expires_at: Optional[datetime]) -> bool:
        """
        Check if credentials need refresh (expire within the refresh window).

        A credential without an expiry never expires.
        """
        if expires_at is None:
            return False
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        window = timedelta(minutes=settings.CREDENTIAL_REFRESH_WINDOW_MINUTES)
        return expires_at <= self.clock() + window

    # -------------------------------------------------------------------------
    # Row mapping
    # -------------------------------------------------------------------------

    def _reveal(self, value: Optional[str], platform: str) -> Optional[str]:
        if not value:
            return value
        if self.cipher.is_encrypted(value):
            return self.cipher.decrypt(value)
        logger.warning(f"Found unencrypted {platform} token in storage; it will be encrypted on next save")
        return value

    @staticmethod
    def _load_metadata(raw: Optional[str]) -> Dict[str, Any]:
        if not raw:
            return {}
        try:
            metadata = json.loads(raw)
        except ValueError:
            logger.warning("Ignoring unreadable credential metadata")
            return {}
        return metadata if isinstance(metadata, dict) else {}

    def _row_to_credential(self, row: Dict[str, Any]) -> Credential:
        platform = row["platform"]
        return Credential(
            organization_id=row["organization_id"],
            platform=platform,
            access_token=self._reveal(row["access_token"], platform),
            refresh_token=self._reveal(row.get("refresh_token"), platform),
            expires_at=from_db_timestamp(row.get("expires_at")),
            platform_user_id=row.get("platform_user_id"),
            platform_page_id=row.get("platform_page_id"),
            metadata=self._load_metadata(row.get("metadata_json")),
            is_valid=bool(row["is_valid"]),
            last_validated=from_db_timestamp(row.get("last_validated")),
        )
