"""
Database Module for EventFlow

This module handles the database connection used by the credential and OAuth
state stores. Production uses pyodbc against SQL Server; any DB-API 2.0
connection that takes "?" parameters can be injected instead.
"""

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any, Iterator

from config import settings
from utils.exceptions import ConnectionError as DatabaseConnectionError, QueryError
from utils.logger import get_logger

logger = get_logger(__name__)

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S.%f"

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE platform_credentials (
        organization_id VARCHAR(64) NOT NULL,
        platform VARCHAR(32) NOT NULL,
        access_token VARCHAR(4000) NOT NULL,
        refresh_token VARCHAR(4000) NULL,
        expires_at VARCHAR(32) NULL,
        platform_user_id VARCHAR(128) NULL,
        platform_page_id VARCHAR(128) NULL,
        metadata_json VARCHAR(4000) NULL,
        is_valid SMALLINT NOT NULL,
        last_validated VARCHAR(32) NOT NULL,
        PRIMARY KEY (organization_id, platform)
    )
    """,
    """
    CREATE TABLE oauth_states (
        token VARCHAR(128) NOT NULL PRIMARY KEY,
        organization_id VARCHAR(64) NOT NULL,
        platform VARCHAR(32) NOT NULL,
        expires_at VARCHAR(32) NOT NULL
    )
    """,
]


def to_db_timestamp(value: Optional[datetime]) -> Optional[str]:
    """
    Serialize a datetime as a fixed-width UTC string.

    Fixed width keeps string comparison in SQL equivalent to time comparison.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def from_db_timestamp(value: Any) -> Optional[datetime]:
    """Parse a value written by to_db_timestamp back into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return datetime.strptime(str(value), TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


class DatabaseConnection:
    """Database connection manager for the credential stores."""

    def __init__(self, connection_string: Optional[str] = None, conn: Any = None):
        """
        Initialize the database connection.

        Args:
            connection_string: ODBC connection string; defaults to settings.DB_CONNECTION_STRING.
            conn: An already open DB-API connection to use instead of pyodbc.
        """
        self.connection_string = connection_string
        self.conn = conn

    def connect(self) -> bool:
        """
        Establish a connection to the database.

        Returns:
            bool: True if connection was successful, False otherwise.

        Raises:
            DatabaseConnectionError: If no connection string is configured.
        """
        if self.conn is not None:
            return True

        connection_string = self.connection_string or settings.DB_CONNECTION_STRING
        if not connection_string:
            raise DatabaseConnectionError("Database connection string is not configured")

        try:
            import pyodbc

            pyodbc.pooling = False
            self.conn = pyodbc.connect(connection_string)
            self.conn.setdecoding(pyodbc.SQL_CHAR, encoding='utf-8')
            logger.info("Successfully connected to database")
            return True
        except DatabaseConnectionError:
            raise
        except Exception as e:
            logger.error(f"Failed to connect to database: {e}")
            self.conn = None
            return False

    def close(self) -> None:
        """Close the database connection."""
        try:
            if self.conn:
                self.conn.close()
                self.conn = None
                logger.info("Database connection closed")
        except Exception as e:
            logger.error(f"Error closing database connection: {e}")

    def _require_connection(self):
        if not self.connect():
            raise DatabaseConnectionError("Could not connect to database")
        return self.conn

    @contextmanager
    def transaction(self) -> Iterator[Any]:
        """
        Yield a cursor inside a transaction.

        Commits when the block exits normally, rolls back and re-raises otherwise.
        """
        conn = self._require_connection()
        cursor = conn.cursor()
        try:
            yield cursor
            conn.commit()
        except Exception:
            try:
                conn.rollback()
            except Exception as rollback_error:
                logger.error(f"Error rolling back transaction: {rollback_error}")
            raise

    def execute_query(self, query: str, params: Optional[tuple] = None) -> List[Dict[str, Any]]:
        """
        Execute a SQL query and return the results.

        Args:
            query: The SQL query to execute.
            params: Query parameters (optional).

        Returns:
            List[Dict]: Rows as dictionaries for SELECT queries, [] otherwise.

        Raises:
            QueryError: If the query fails.
        """
        try:
            with self.transaction() as cursor:
                if params:
                    cursor.execute(query, params)
                else:
                    cursor.execute(query)

                # Check if this is a SELECT query with results
                if cursor.description:
                    columns = [column[0] for column in cursor.description]
                    return [dict(zip(columns, row)) for row in cursor.fetchall()]
                return []
        except DatabaseConnectionError:
            raise
        except Exception as e:
            logger.error(f"Error executing query: {e}")
            raise QueryError(str(e)) from e

    def execute_update(self, query: str, params: Optional[tuple] = None) -> int:
        """
        Execute an INSERT/UPDATE/DELETE and return the affected row count.

        Raises:
            QueryError: If the statement fails.
        """
        try:
            with self.transaction() as cursor:
                cursor.execute(query, params or ())
                return cursor.rowcount
        except DatabaseConnectionError:
            raise
        except Exception as e:
            logger.error(f"Error executing statement: {e}")
            raise QueryError(str(e)) from e

    def create_tables(self) -> None:
        """Create the credential and OAuth state tables."""
        with self.transaction() as cursor:
            for statement in SCHEMA_STATEMENTS:
                cursor.execute(statement)
        logger.info("Created platform_credentials and oauth_states tables")
