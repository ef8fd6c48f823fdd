"""
EventFlow Cross-Posting CLI

This is the main entry point for the EventFlow cross-posting layer.
It creates the credential tables, starts and completes platform OAuth
connections, publishes events to connected platforms and exports events
as iCalendar files.
"""

import sys
import json
import argparse
import logging
from dataclasses import replace
from typing import Optional, List

from config import settings
from config.validators import validate_settings, get_config_summary
from utils.logger import get_logger, setup_file_logging
from utils.exceptions import EventFlowError, ConfigurationError, DatabaseError, OAuthError
from data.database import DatabaseConnection
from data.credential_store import CredentialStore
from data.oauth_state_store import OAuthStateStore
from data.models import CanonicalEvent
from platforms.cipher import TokenCipher
from platforms.oauth import create_exchange, OAUTH_PLATFORM_FOR
from platforms.registry import PLATFORMS, platforms_at_or_below_tier, TIER_ORDER
from adapters.factory import supported_platforms
from adapters.local_calendar import LocalCalendarAdapter, write_ics
from services.connection_service import ConnectionService
from services.publication_service import PublicationService, summarize

# Set up logging
logger = get_logger(__name__)


def load_event(path: str) -> CanonicalEvent:
    """
    Load a canonical event from a JSON file.

    Raises:
        ValueError: If the file is not valid JSON or misses required fields.
    """
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    try:
        return CanonicalEvent.from_dict(data)
    except KeyError as e:
        raise ValueError(f"Event file {path} is missing required field {e}") from None


class EventFlowApp:
    """
    Command implementations for the CLI.

    Database-backed services are built on first use, so commands that only
    read the registry or export files never need a database.
    """

    def __init__(self, db: Optional[DatabaseConnection] = None,
                 cipher: Optional[TokenCipher] = None,
                 validate: bool = True):
        self._db = db
        self._cipher = cipher
        self._validate = validate

    # -------------------------------------------------------------------------
    # Service wiring
    # -------------------------------------------------------------------------

    @property
    def db(self) -> DatabaseConnection:
        if self._db is None:
            if self._validate:
                validate_settings()
                logger.debug(f"Configuration: {get_config_summary()}")
            self._db = DatabaseConnection()
        return self._db

    @property
    def cipher(self) -> TokenCipher:
        if self._cipher is None:
            self._cipher = TokenCipher.from_settings()
        return self._cipher

    def state_store(self) -> OAuthStateStore:
        return OAuthStateStore(self.db)

    def connection_service(self) -> ConnectionService:
        state_store = self.state_store()
        return ConnectionService(
            CredentialStore(self.db, self.cipher),
            exchange_factory=lambda platform: create_exchange(platform, state_store),
        )

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def init_db(self) -> int:
        self.db.create_tables()
        print("Created platform_credentials and oauth_states tables")
        return 0

    def list_platforms(self, tier: Optional[str] = None) -> int:
        entries = platforms_at_or_below_tier(tier) if tier else list(PLATFORMS.values())
        available = set(supported_platforms())
        for entry in entries:
            marker = "" if entry.id in available else " (not yet supported)"
            print(f"{entry.id:<16} {entry.display_name:<20} tier={entry.required_tier:<10} "
                  f"auth={entry.auth_type}{marker}")
        return 0

    def export_ics(self, event_path: str, output: Optional[str] = None) -> int:
        event = load_event(event_path)
        adapter = LocalCalendarAdapter()
        result = adapter.create_event(adapter.transform_event(event))
        if output:
            target = write_ics(result.external_id, output)
            print(f"Wrote {target}")
        else:
            sys.stdout.write(result.external_id + "\r\n")
        return 0

    def authorize(self, platform: str, organization_id: str) -> int:
        exchange = create_exchange(platform, self.state_store())
        print(exchange.authorization_url(organization_id))
        return 0

    def callback(self, platform: str, code: str, state: str) -> int:
        exchange = create_exchange(platform, self.state_store())
        result = self.connection_service().complete_authorization(exchange, code, state)
        if not result.success:
            print(f"Authorization failed: {result.error}")
            return 1
        print(f"Connected {result.account_name} for {', '.join(result.saved_platforms)}")
        return 0

    def connections(self, organization_id: str) -> int:
        for status in self.connection_service().connection_statuses(organization_id):
            state = "connected" if status.is_connected else "not connected"
            account = f" ({status.account_name})" if status.account_name else ""
            expires = f" expires {status.expires_at.isoformat()}" if status.expires_at else ""
            print(f"{status.platform:<16} {state}{account}{expires}")
        return 0

    def publish(self, event_path: str, platforms: List[str], organization_id: Optional[str] = None) -> int:
        event = load_event(event_path)
        if organization_id and organization_id != event.organization_id:
            event = replace(event, organization_id=organization_id)

        service = PublicationService(self.connection_service())
        publications = service.publish(event, platforms)
        for line in summarize(publications):
            print(line)
        return 0 if all(p.status == "published" for p in publications.values()) else 1

    def cleanup_states(self) -> int:
        removed = self.state_store().cleanup_expired()
        print(f"Removed {removed} expired OAuth states")
        return 0


def parse_arguments(argv: Optional[List[str]] = None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description='EventFlow cross-posting tools')
    parser.add_argument('--log-file', type=str, default=None, help='Also write logs to this file')
    parser.add_argument('--debug', action='store_true', help='Enable debug logging')

    subparsers = parser.add_subparsers(dest='command', required=True)

    subparsers.add_parser('init-db', help='Create the credential and OAuth state tables')

    platforms_parser = subparsers.add_parser('platforms', help='List registered platforms')
    platforms_parser.add_argument('--tier', choices=TIER_ORDER, help='Only platforms available on this tier')

    export_parser = subparsers.add_parser('export-ics', help='Export an event JSON file as iCalendar')
    export_parser.add_argument('event_json')
    export_parser.add_argument('-o', '--output', help='Output .ics file (default: stdout)')

    oauth_platforms = sorted(OAUTH_PLATFORM_FOR)
    authorize_parser = subparsers.add_parser('authorize', help='Print the OAuth consent URL for a platform')
    authorize_parser.add_argument('platform', choices=oauth_platforms)
    authorize_parser.add_argument('--org', required=True, help='Organization id')

    callback_parser = subparsers.add_parser('callback', help='Complete an OAuth flow with the callback parameters')
    callback_parser.add_argument('platform', choices=oauth_platforms)
    callback_parser.add_argument('--code', required=True)
    callback_parser.add_argument('--state', required=True)

    connections_parser = subparsers.add_parser('connections', help="Show an organization's platform connections")
    connections_parser.add_argument('--org', required=True, help='Organization id')

    publish_parser = subparsers.add_parser('publish', help='Publish an event JSON file to platforms')
    publish_parser.add_argument('event_json')
    publish_parser.add_argument('--org', default=None, help="Organization id (default: the event's)")
    publish_parser.add_argument('--platform', dest='platforms', action='append', default=None,
                                help='Platform id; repeat for several (default: DEFAULT_PLATFORMS)')

    subparsers.add_parser('cleanup-states', help='Delete expired OAuth states')

    return parser.parse_args(argv)


def run_command(app: EventFlowApp, args) -> int:
    """Dispatch parsed arguments to the app."""
    if args.command == 'init-db':
        return app.init_db()
    if args.command == 'platforms':
        return app.list_platforms(args.tier)
    if args.command == 'export-ics':
        return app.export_ics(args.event_json, args.output)
    if args.command == 'authorize':
        return app.authorize(args.platform, args.org)
    if args.command == 'callback':
        return app.callback(args.platform, args.code, args.state)
    if args.command == 'connections':
        return app.connections(args.org)
    if args.command == 'publish':
        return app.publish(args.event_json, args.platforms or list(settings.DEFAULT_PLATFORMS), args.org)
    if args.command == 'cleanup-states':
        return app.cleanup_states()
    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Optional[List[str]] = None, app: Optional[EventFlowApp] = None) -> int:
    """Main entry point for the application."""
    # Parse command line arguments
    args = parse_arguments(argv)

    # Set up logging
    log_level = logging.DEBUG if args.debug else logging.INFO
    if args.log_file:
        setup_file_logging(args.log_file, log_level)
    else:
        get_logger().setLevel(log_level)

    logger.debug(f"Running command {args.command}")
    app = app or EventFlowApp()

    try:
        exit_code = run_command(app, args)
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        exit_code = 2
    except (OSError, ValueError) as e:
        logger.error(f"Invalid input: {e}")
        exit_code = 2
    except OAuthError as e:
        logger.error(f"OAuth error: {e}")
        exit_code = 1
    except DatabaseError as e:
        logger.error(f"Database error: {e}", exc_info=True)
        exit_code = 2
    except EventFlowError as e:
        logger.error(f"EventFlow error: {e}", exc_info=True)
        exit_code = 2
    except Exception as e:
        logger.error(f"Unhandled exception in {args.command}: {e}", exc_info=True)
        exit_code = 2

    logger.debug(f"Command {args.command} finished with exit code {exit_code}")
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
