"""
Configuration Settings for EventFlow

This module centralizes all configuration settings for the cross-posting layer,
including environment variables, OAuth client credentials, platform API
endpoints and application constants.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Determine the application root directory
APP_ROOT = Path(__file__).resolve().parent.parent

# Load environment variables from .env file
load_dotenv(dotenv_path=os.path.join(APP_ROOT, '.env'))

# =============================================================================
# Application Settings
# =============================================================================

APP_ENV = os.getenv("APP_ENV", "production").lower()
APP_BASE_URL = os.getenv("APP_BASE_URL", "http://localhost:3000").rstrip("/")
APP_PRODUCT_ID = "-//EventFlow//EventFlow App//EN"
APP_UID_DOMAIN = "eventflow.app"

# Token encryption key: 32 bytes, hex encoded (generate with: openssl rand -hex 32)
OAUTH_ENCRYPTION_KEY = os.getenv("OAUTH_ENCRYPTION_KEY", "")

# =============================================================================
# OAuth Client Credentials
# =============================================================================

FACEBOOK_APP_ID = os.getenv("FACEBOOK_APP_ID", "")
FACEBOOK_APP_SECRET = os.getenv("FACEBOOK_APP_SECRET", "")

LINKEDIN_CLIENT_ID = os.getenv("LINKEDIN_CLIENT_ID", "")
LINKEDIN_CLIENT_SECRET = os.getenv("LINKEDIN_CLIENT_SECRET", "")

ZOOM_CLIENT_ID = os.getenv("ZOOM_CLIENT_ID", "")
ZOOM_CLIENT_SECRET = os.getenv("ZOOM_CLIENT_SECRET", "")

# =============================================================================
# Database Settings
# =============================================================================

DB_SERVER = os.getenv("DB_SERVER", "")
DB_NAME = os.getenv("DB_NAME", "")
DB_USER = os.getenv("DB_USER", "")
DB_PASSWORD = os.getenv("DB_PASSWORD", "")

# Build connection string safely (validation happens in validate_settings())
DB_CONNECTION_STRING = (
    f"DRIVER={{ODBC Driver 18 for SQL Server}}; "
    f"SERVER={DB_SERVER}; "
    f"DATABASE={DB_NAME}; "
    f"UID={DB_USER}; "
    f"PWD={DB_PASSWORD}; "
    f"TrustServerCertificate=yes; MARS_Connection=yes;"
) if all([DB_SERVER, DB_NAME, DB_USER, DB_PASSWORD]) else ""

# =============================================================================
# Platform API Settings
# =============================================================================

FACEBOOK_GRAPH_API_BASE = "https://graph.facebook.com/v19.0"
FACEBOOK_AUTHORIZE_URL = "https://www.facebook.com/v19.0/dialog/oauth"
FACEBOOK_TOKEN_URL = f"{FACEBOOK_GRAPH_API_BASE}/oauth/access_token"
FACEBOOK_EVENT_URL_TEMPLATE = "https://www.facebook.com/events/{external_id}"

LINKEDIN_API_BASE = "https://api.linkedin.com/v2"
LINKEDIN_REST_API_BASE = "https://api.linkedin.com/rest"
LINKEDIN_API_VERSION = "202401"
LINKEDIN_AUTHORIZE_URL = "https://www.linkedin.com/oauth/v2/authorization"
LINKEDIN_TOKEN_URL = "https://www.linkedin.com/oauth/v2/accessToken"
LINKEDIN_EVENT_URL_TEMPLATE = "https://www.linkedin.com/events/{external_id}"

ZOOM_API_BASE = "https://api.zoom.us/v2"
ZOOM_AUTHORIZE_URL = "https://zoom.us/oauth/authorize"
ZOOM_TOKEN_URL = "https://zoom.us/oauth/token"

HTTP_TIMEOUT_SECONDS = 10            # Applied to every outbound platform request

# =============================================================================
# Credential Lifecycle Settings
# =============================================================================

OAUTH_STATE_TTL_MINUTES = 15                 # Lifetime of a CSRF state token
CREDENTIAL_REFRESH_WINDOW_MINUTES = 60       # needs_refresh() looks this far ahead

# Fallback token lifetimes when a provider omits expires_in
FACEBOOK_TOKEN_LIFETIME_SECONDS = 60 * 24 * 60 * 60   # long-lived page tokens, ~60 days
LINKEDIN_TOKEN_LIFETIME_SECONDS = 60 * 24 * 60 * 60   # LinkedIn access tokens, 60 days
ZOOM_TOKEN_LIFETIME_SECONDS = 60 * 60                 # Zoom access tokens, 1 hour

# =============================================================================
# Publication Settings
# =============================================================================

PUBLICATION_MAX_RETRIES = 3
DEFAULT_PLATFORMS = ["local-calendar"]
