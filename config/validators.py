"""
Configuration Validation for EventFlow

This module contains configuration validation logic. It is kept apart from
settings.py so that importing settings never raises.
"""

from typing import Dict, List, Any

from utils.exceptions import ConfigurationError
from utils.helpers import is_valid_url
from utils.logger import get_logger

logger = get_logger(__name__)


def validate_oauth_env_vars() -> Dict[str, Any]:
    """
    Report which OAuth platforms have client credentials configured.

    Returns:
        dict: {"facebook": bool, "linkedin": bool, "zoom": bool, "errors": [str]}
    """
    from config import settings

    errors: List[str] = []
    pairs = {
        "facebook": [("FACEBOOK_APP_ID", settings.FACEBOOK_APP_ID),
                     ("FACEBOOK_APP_SECRET", settings.FACEBOOK_APP_SECRET)],
        "linkedin": [("LINKEDIN_CLIENT_ID", settings.LINKEDIN_CLIENT_ID),
                     ("LINKEDIN_CLIENT_SECRET", settings.LINKEDIN_CLIENT_SECRET)],
        "zoom": [("ZOOM_CLIENT_ID", settings.ZOOM_CLIENT_ID),
                 ("ZOOM_CLIENT_SECRET", settings.ZOOM_CLIENT_SECRET)],
    }

    result: Dict[str, Any] = {}
    for platform, variables in pairs.items():
        configured = True
        for var_name, var_value in variables:
            if not var_value:
                errors.append(f"{var_name} is not configured")
                configured = False
        result[platform] = configured

    if not settings.APP_BASE_URL:
        errors.append("APP_BASE_URL is not configured (required for OAuth callbacks)")

    result["errors"] = errors
    return result


def is_oauth_configured(platform: str) -> bool:
    """Check if a specific OAuth platform ("facebook", "linkedin", "zoom") is configured."""
    return bool(validate_oauth_env_vars().get(platform, False))


def validate_settings():
    """
    Validate that all required settings are properly configured.

    Raises:
        ConfigurationError: If required settings are missing or invalid.
    """
    # Import settings here to avoid circular imports
    from config import settings

    errors = []

    # Encryption key is mandatory outside development
    key = settings.OAUTH_ENCRYPTION_KEY
    if not key:
        if settings.APP_ENV != "development":
            errors.append("Missing required environment variable: OAUTH_ENCRYPTION_KEY")
        else:
            logger.warning("OAUTH_ENCRYPTION_KEY not set - the development key will be used")
    elif len(key) != 64:
        errors.append("OAUTH_ENCRYPTION_KEY must be 64 hex characters (32 bytes)")
    else:
        try:
            bytes.fromhex(key)
        except ValueError:
            errors.append("OAUTH_ENCRYPTION_KEY must be hex encoded")

    if not settings.DB_CONNECTION_STRING:
        errors.append("Database connection string could not be built. Check DB_SERVER, DB_NAME, DB_USER, DB_PASSWORD.")

    if not is_valid_url(settings.APP_BASE_URL):
        errors.append(f"APP_BASE_URL must be an absolute URL, got {settings.APP_BASE_URL!r}")

    # OAuth platforms are optional individually; report the half-configured ones
    oauth = validate_oauth_env_vars()
    for platform in ("facebook", "linkedin", "zoom"):
        if not oauth[platform]:
            logger.warning(f"{platform} OAuth is not configured; connecting it will fail")

    # Validate numeric settings are within reasonable bounds
    numeric_validations = [
        ("HTTP_TIMEOUT_SECONDS", settings.HTTP_TIMEOUT_SECONDS, 1, 120),
        ("OAUTH_STATE_TTL_MINUTES", settings.OAUTH_STATE_TTL_MINUTES, 1, 60),
        ("CREDENTIAL_REFRESH_WINDOW_MINUTES", settings.CREDENTIAL_REFRESH_WINDOW_MINUTES, 0, 24 * 60),
        ("PUBLICATION_MAX_RETRIES", settings.PUBLICATION_MAX_RETRIES, 0, 20),
    ]

    for name, value, min_val, max_val in numeric_validations:
        if value < min_val or value > max_val:
            errors.append(f"{name} must be between {min_val} and {max_val}, got {value}")

    # Raise all errors at once
    if errors:
        error_msg = "Configuration validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        raise ConfigurationError(error_msg)

    return True


def get_config_summary() -> dict:
    """
    Returns a summary of current configuration (without sensitive values).
    Useful for logging startup state.
    """
    from config import settings

    oauth = validate_oauth_env_vars()
    return {
        "environment": settings.APP_ENV,
        "base_url": settings.APP_BASE_URL,
        "encryption_key_configured": bool(settings.OAUTH_ENCRYPTION_KEY),
        "oauth": {
            "facebook": oauth["facebook"],
            "linkedin": oauth["linkedin"],
            "zoom": oauth["zoom"],
        },
        "database": {
            "server": settings.DB_SERVER[:20] + "..." if settings.DB_SERVER and len(settings.DB_SERVER) > 20 else settings.DB_SERVER,
            "database": settings.DB_NAME,
        },
        "http_timeout_seconds": settings.HTTP_TIMEOUT_SECONDS,
        "default_platforms": settings.DEFAULT_PLATFORMS,
    }
