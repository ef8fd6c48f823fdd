"""
Custom Exception Classes for EventFlow

This module defines custom exceptions for better error handling and
categorization of failures across the cross-posting layer.
"""

from typing import Optional


class EventFlowError(Exception):
    """Base exception for all EventFlow errors."""
    pass


# =============================================================================
# Configuration Errors
# =============================================================================

class ConfigurationError(EventFlowError):
    """Raised when configuration validation fails or required settings are missing."""
    pass


# =============================================================================
# Credential Errors
# =============================================================================

class DecryptionError(EventFlowError):
    """Raised when an encrypted token is malformed or fails authentication."""
    pass


# =============================================================================
# Platform Errors
# =============================================================================

class PlatformError(EventFlowError):
    """Base exception for platform adapter errors."""
    pass


class NotConnectedError(PlatformError):
    """Raised when an operation needs a connected adapter and there is none."""
    pass


class DeletionError(PlatformError):
    """Raised when a platform verifiably did not delete an event."""

    def __init__(self, message: str, code: str = "UNKNOWN", retryable: bool = False):
        super().__init__(message)
        self.code = code
        self.retryable = retryable


class UnknownPlatformError(PlatformError):
    """Raised when a platform id is not in the registry."""
    pass


class UnsupportedPlatformError(PlatformError):
    """Raised when a registered platform has no adapter implementation yet."""
    pass


# =============================================================================
# OAuth Errors
# =============================================================================

class OAuthError(EventFlowError):
    """Base exception for OAuth flow errors."""
    pass


class TokenExchangeError(OAuthError):
    """Raised when a provider rejects a code or refresh token exchange."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


# =============================================================================
# Database Errors
# =============================================================================

class DatabaseError(EventFlowError):
    """Base exception for database-related errors."""
    pass


class ConnectionError(DatabaseError):
    """Raised when database connection fails."""
    pass


class QueryError(DatabaseError):
    """Raised when a database query fails."""
    pass
