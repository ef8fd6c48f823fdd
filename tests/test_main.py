"""
Tests for the EventFlow CLI

Tests cover argument parsing, each command against an in-memory database,
exit codes and the error handling in main().
"""

import pytest
import json
import sqlite3
from unittest.mock import patch
from urllib.parse import urlparse, parse_qs
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from main import EventFlowApp, load_event, main, parse_arguments
from data.database import DatabaseConnection
from utils.exceptions import ConfigurationError

EVENT_JSON = {
    "id": "evt-42",
    "organization_id": "org-1",
    "title": "Team Sync; Q1",
    "description": "Line1\nLine2",
    "start_time": "2025-03-01T10:00:00",
    "end_time": "2025-03-01T11:00:00",
    "timezone": "America/Los_Angeles",
    "location": {"name": "Main Hall", "address": "1 Main St", "city": "Portland"},
    "organizer": {"name": "Ada Lovelace", "email": "ada@example.com"},
}


@pytest.fixture
def event_file(tmp_path):
    """Path of an event JSON file."""
    path = tmp_path / "event.json"
    path.write_text(json.dumps(EVENT_JSON), encoding="utf-8")
    return str(path)


@pytest.fixture
def app(sqlite_db, cipher):
    """An EventFlowApp over the in-memory database."""
    return EventFlowApp(db=sqlite_db, cipher=cipher, validate=False)


# =============================================================================
# Argument Parsing
# =============================================================================

class TestParseArguments:
    """Tests for parse_arguments."""

    def test_publish_platforms(self):
        """--platform may be repeated."""
        args = parse_arguments(["publish", "event.json", "--platform", "facebook", "--platform", "linkedin"])
        assert args.command == "publish"
        assert args.platforms == ["facebook", "linkedin"]
        assert args.org is None

    def test_global_options(self):
        """--debug and --log-file come before the command."""
        args = parse_arguments(["--debug", "--log-file", "run.log", "platforms", "--tier", "pro"])
        assert args.debug is True
        assert args.log_file == "run.log"
        assert args.tier == "pro"

    def test_command_required(self):
        """A command must be given."""
        with pytest.raises(SystemExit):
            parse_arguments([])

    def test_authorize_platform_choices(self):
        """Only OAuth platforms can be authorized."""
        with pytest.raises(SystemExit):
            parse_arguments(["authorize", "local-calendar", "--org", "org-1"])


# =============================================================================
# Commands
# =============================================================================

class TestLoadEvent:
    """Tests for load_event."""

    def test_loads_event(self, event_file):
        """JSON files become CanonicalEvents."""
        event = load_event(event_file)
        assert event.id == "evt-42"
        assert event.organizer.email == "ada@example.com"

    def test_missing_field(self, tmp_path):
        """Missing required keys are reported as ValueError."""
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"id": "x"}), encoding="utf-8")
        with pytest.raises(ValueError, match="missing required field"):
            load_event(str(path))


class TestCommands:
    """Tests for the EventFlowApp commands."""

    def test_init_db(self, cipher, capsys):
        """init-db creates both tables."""
        db = DatabaseConnection(conn=sqlite3.connect(":memory:"))
        assert main(["init-db"], app=EventFlowApp(db=db, cipher=cipher, validate=False)) == 0
        assert db.execute_query("SELECT COUNT(*) AS n FROM oauth_states")[0]["n"] == 0
        assert "Created" in capsys.readouterr().out

    def test_platforms(self, app, capsys):
        """Every platform is listed; adapterless ones are marked."""
        assert main(["platforms"], app=app) == 0
        lines = capsys.readouterr().out.splitlines()

        assert len(lines) == 11
        assert any(line.startswith("eventbrite") and "(not yet supported)" in line for line in lines)
        assert any(line.startswith("facebook") and "not yet supported" not in line for line in lines)

    def test_platforms_by_tier(self, app, capsys):
        """The free tier only has the local calendar."""
        main(["platforms", "--tier", "free"], app=app)
        lines = capsys.readouterr().out.splitlines()
        assert len(lines) == 1
        assert lines[0].startswith("local-calendar")

    def test_export_ics_stdout(self, app, event_file, capsys):
        """Calendar text goes to stdout without an output file."""
        assert main(["export-ics", event_file], app=app) == 0
        out = capsys.readouterr().out

        assert "SUMMARY:Team Sync\\; Q1" in out
        assert "DESCRIPTION:Line1\\nLine2" in out
        assert "DTSTART;TZID=America/Los_Angeles:20250301T100000" in out

    def test_export_ics_file(self, app, event_file, tmp_path):
        """-o writes an .ics file."""
        assert main(["export-ics", event_file, "-o", str(tmp_path / "sync")], app=app) == 0
        assert (tmp_path / "sync.ics").read_bytes().startswith(b"BEGIN:VCALENDAR\r\n")

    def test_publish_local_calendar(self, app, event_file, capsys):
        """Publishing to the local calendar needs no connection."""
        assert main(["publish", event_file, "--platform", "local-calendar"], app=app) == 0
        assert capsys.readouterr().out.startswith("local-calendar: published ical-")

    def test_publish_unconnected_platform(self, app, event_file, capsys):
        """A platform without credentials fails the run."""
        code = main(["publish", event_file, "--platform", "local-calendar", "--platform", "facebook"], app=app)
        out = capsys.readouterr().out

        assert code == 1
        assert "facebook: failed NOT_CONNECTED" in out

    def test_publish_default_platforms(self, app, event_file, capsys):
        """Without --platform the default platforms are used."""
        with patch("config.settings.DEFAULT_PLATFORMS", ["local-calendar"]):
            assert main(["publish", event_file], app=app) == 0

    def test_authorize(self, app, oauth_settings, capsys):
        """authorize prints a consent URL with a stored state."""
        assert main(["authorize", "zoom-webinar", "--org", "org-1"], app=app) == 0
        url = capsys.readouterr().out.strip()

        assert urlparse(url).netloc == "zoom.us"
        assert "state" in parse_qs(urlparse(url).query)

    def test_callback_invalid_state(self, app, oauth_settings, capsys):
        """A callback with an unknown state fails."""
        assert main(["callback", "facebook", "--code", "c", "--state", "bogus"], app=app) == 1
        assert "invalid_state" in capsys.readouterr().out

    def test_connections(self, app, capsys):
        """connections lists every platform's status."""
        assert main(["connections", "--org", "org-1"], app=app) == 0
        out = capsys.readouterr().out
        assert "local-calendar" in out
        assert "facebook" in out and "not connected" in out

    def test_cleanup_states(self, app, capsys):
        """cleanup-states reports how many states were removed."""
        assert main(["cleanup-states"], app=app) == 0
        assert "Removed 0 expired OAuth states" in capsys.readouterr().out


# =============================================================================
# Error Handling
# =============================================================================

class TestMainErrors:
    """Tests for exit codes on failure."""

    def test_missing_event_file(self, app, tmp_path):
        """Unreadable input exits with 2."""
        assert main(["export-ics", str(tmp_path / "missing.json")], app=app) == 2

    def test_invalid_json(self, app, tmp_path):
        """Malformed JSON exits with 2."""
        path = tmp_path / "broken.json"
        path.write_text("{not json", encoding="utf-8")
        assert main(["export-ics", str(path)], app=app) == 2

    def test_configuration_error(self, capture_logs):
        """Invalid configuration is reported before any database work."""
        with patch("main.validate_settings", side_effect=ConfigurationError("OAUTH_ENCRYPTION_KEY missing")):
            assert main(["init-db"], app=EventFlowApp()) == 2
        assert any("Configuration error" in r.getMessage() for r in capture_logs)

    def test_unconfigured_oauth(self, app, capsys):
        """Authorizing an unconfigured provider exits with 2."""
        with patch("config.settings.FACEBOOK_APP_ID", ""):
            assert main(["authorize", "facebook", "--org", "org-1"], app=app) == 2
