"""
Tests for the Zoom Meeting and Webinar Adapter

Tests cover both modes, the meeting/webinar payloads, duration rounding,
join URLs, error code mapping and deletion semantics.
"""

import pytest
import requests
from datetime import datetime
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from adapters.zoom import (
    ZoomAdapter,
    ZoomMode,
    check_zoom_webinar_license,
    display_name_of,
    get_zoom_user,
)
from utils.exceptions import DeletionError, NotConnectedError, PlatformError

API = "https://api.zoom.us/v2"
ZOOM_USER = {"id": "u-1", "email": "ada@example.com", "first_name": "Ada", "last_name": "Lovelace"}


def _connect(mock_requests, mode: ZoomMode) -> ZoomAdapter:
    mock_requests.get.return_value = mock_requests.response(json_data=ZOOM_USER)
    adapter = ZoomAdapter(mode)
    assert adapter.connect({"access_token": "zoom-token", "user_id": "u-1"}).success
    mock_requests.get.reset_mock()
    return adapter


@pytest.fixture
def meeting_adapter(mock_requests):
    """A connected meeting adapter."""
    return _connect(mock_requests, ZoomMode.MEETING)


@pytest.fixture
def webinar_adapter(mock_requests):
    """A connected webinar adapter."""
    return _connect(mock_requests, ZoomMode.WEBINAR)


class TestModes:
    """Tests for ZoomMode."""

    def test_platform_ids(self):
        """Modes map to their registry ids and back."""
        assert ZoomMode.MEETING.platform_id == "zoom-meeting"
        assert ZoomMode.from_platform_id("zoom-webinar") is ZoomMode.WEBINAR

    def test_unknown_platform_id(self):
        """Non-Zoom ids are rejected."""
        with pytest.raises(ValueError):
            ZoomMode.from_platform_id("facebook")

    def test_display_name(self):
        """display_name wins, otherwise first and last name."""
        assert display_name_of({"display_name": "Ada L."}) == "Ada L."
        assert display_name_of(ZOOM_USER) == "Ada Lovelace"


class TestConnect:
    """Tests for connect and is_connected."""

    def test_connect_success(self, mock_requests):
        """The user's display name becomes the account name."""
        mock_requests.get.return_value = mock_requests.response(json_data=ZOOM_USER)
        adapter = ZoomAdapter(ZoomMode.MEETING)
        result = adapter.connect({"access_token": "zoom-token", "user_id": "u-1"})

        assert result.success is True
        assert result.account_name == "Ada Lovelace"
        assert result.account_id == "u-1"
        assert adapter.email == "ada@example.com"
        assert mock_requests.get.call_args[0][0] == f"{API}/users/u-1"

    def test_connect_missing_user_id(self, mock_requests):
        """Missing credentials fail without a network call."""
        assert ZoomAdapter().connect({"access_token": "zoom-token"}).success is False
        mock_requests.get.assert_not_called()

    def test_connect_network_error(self, mock_requests):
        """Network failures are retryable."""
        mock_requests.get.side_effect = requests.Timeout()
        result = ZoomAdapter().connect({"access_token": "zoom-token", "user_id": "u-1"})
        assert result.retryable is True

    def test_is_connected(self, meeting_adapter, mock_requests):
        """is_connected reads /users/me."""
        mock_requests.get.return_value = mock_requests.response(json_data=ZOOM_USER)
        assert meeting_adapter.is_connected() is True
        assert mock_requests.get.call_args[0][0] == f"{API}/users/me"

    @pytest.mark.parametrize("json_data", [None, "ok", {"email": "ada@example.com"}])
    def test_is_connected_malformed_body(self, meeting_adapter, mock_requests, json_data):
        """A 200 without a usable user body is not a connection."""
        mock_requests.get.return_value = mock_requests.response(json_data=json_data)
        assert meeting_adapter.is_connected() is False


class TestTransform:
    """Tests for transform_event and build_payload."""

    def test_location_always_virtual(self, event_factory):
        """Zoom events are virtual whatever the canonical location says."""
        transformed = ZoomAdapter().transform_event(event_factory())
        assert transformed.location.is_virtual is True

    def test_meeting_payload(self, meeting_adapter, event_factory):
        """Meetings are scheduled (type 2) with a duration in minutes."""
        payload = meeting_adapter.build_payload(meeting_adapter.transform_event(event_factory()))

        assert payload["type"] == 2
        assert payload["duration"] == 60
        assert payload["start_time"] == "2025-03-01T18:00:00Z"
        assert payload["timezone"] == "America/Los_Angeles"
        assert payload["agenda"] == "Monthly meetup for local builders."
        assert payload["settings"]["waiting_room"] is True
        assert "question_and_answer" not in payload["settings"]

    def test_webinar_payload(self, webinar_adapter, event_factory):
        """Webinars add panelist and Q&A settings."""
        payload = webinar_adapter.build_payload(webinar_adapter.transform_event(event_factory()))
        assert payload["settings"]["panelists_video"] is True
        assert payload["settings"]["question_and_answer"]["enable"] is True

    def test_duration_rounds_up(self, meeting_adapter, event_factory):
        """Partial minutes round up."""
        event = event_factory(end_time=datetime(2025, 3, 1, 10, 30, 20))
        payload = meeting_adapter.build_payload(meeting_adapter.transform_event(event))
        assert payload["duration"] == 31


class TestPublishing:
    """Tests for create, update and delete."""

    def test_not_connected(self, mock_requests, event_factory):
        """A fresh adapter never calls Zoom."""
        adapter = ZoomAdapter()
        result = adapter.create_event(adapter.transform_event(event_factory()))
        assert result.error.code == "NOT_CONNECTED"
        mock_requests.post.assert_not_called()

    def test_create_meeting(self, meeting_adapter, mock_requests, event_factory):
        """The join URL from the response is the external URL."""
        mock_requests.post.return_value = mock_requests.response(
            status_code=201, json_data={"id": 85012345678, "join_url": "https://zoom.us/j/85012345678?pwd=abc"}
        )
        result = meeting_adapter.create_event(meeting_adapter.transform_event(event_factory()))

        assert result.success is True
        assert result.publication_id == "zoom-meeting-85012345678"
        assert result.external_id == "85012345678"
        assert result.external_url == "https://zoom.us/j/85012345678?pwd=abc"
        assert mock_requests.post.call_args[0][0] == f"{API}/users/u-1/meetings"

    def test_create_webinar(self, webinar_adapter, mock_requests, event_factory):
        """Webinars post to the webinars collection."""
        mock_requests.post.return_value = mock_requests.response(status_code=201, json_data={"id": 9})
        result = webinar_adapter.create_event(webinar_adapter.transform_event(event_factory()))

        assert result.publication_id == "zoom-webinar-9"
        assert result.external_url == "https://zoom.us/w/9"
        assert mock_requests.post.call_args[0][0] == f"{API}/users/u-1/webinars"

    def test_create_error_uses_body_code(self, meeting_adapter, mock_requests, event_factory):
        """Zoom body codes become ZOOM_<code>."""
        mock_requests.post.return_value = mock_requests.response(
            status_code=401, json_data={"code": 124, "message": "Invalid access token."}
        )
        result = meeting_adapter.create_event(meeting_adapter.transform_event(event_factory()))

        assert result.error.code == "ZOOM_124"
        assert result.error.retryable is False
        assert "ZOOM_124" in meeting_adapter.auth_error_codes

    def test_create_server_error(self, meeting_adapter, mock_requests, event_factory):
        """5xx without a body code is ZOOM_<status> and retryable."""
        mock_requests.post.return_value = mock_requests.response(status_code=503)
        result = meeting_adapter.create_event(meeting_adapter.transform_event(event_factory()))
        assert result.error.code == "ZOOM_503"
        assert result.error.retryable is True

    def test_update_rereads_join_url(self, meeting_adapter, mock_requests, event_factory):
        """After PATCH the meeting is read again for its join URL."""
        mock_requests.patch.return_value = mock_requests.response(status_code=204)
        mock_requests.get.return_value = mock_requests.response(
            json_data={"id": 5, "join_url": "https://zoom.us/j/5?pwd=new"}
        )
        result = meeting_adapter.update_event("5", meeting_adapter.transform_event(event_factory()))

        assert result.success is True
        assert result.external_url == "https://zoom.us/j/5?pwd=new"
        assert mock_requests.patch.call_args[0][0] == f"{API}/meetings/5"

    def test_update_falls_back_to_template(self, meeting_adapter, mock_requests, event_factory):
        """If the re-read fails the template URL is used."""
        mock_requests.patch.return_value = mock_requests.response(status_code=204)
        mock_requests.get.side_effect = requests.ConnectionError()
        result = meeting_adapter.update_event("5", meeting_adapter.transform_event(event_factory()))
        assert result.success is True
        assert result.external_url == "https://zoom.us/j/5"

    def test_update_failure(self, meeting_adapter, mock_requests, event_factory):
        """A rejected PATCH is reported with the publication id."""
        mock_requests.patch.return_value = mock_requests.response(
            status_code=404, json_data={"code": 3001, "message": "Meeting does not exist"}
        )
        result = meeting_adapter.update_event("5", meeting_adapter.transform_event(event_factory()))
        assert result.publication_id == "zoom-meeting-5"
        assert result.error.code == "ZOOM_3001"

    @pytest.mark.parametrize("status,body", [
        (204, None),
        (404, None),
        (400, {"code": 3001, "message": "Meeting does not exist"}),
    ])
    def test_delete_success_or_gone(self, meeting_adapter, mock_requests, status, body):
        """Deleted and already-gone events both return normally."""
        mock_requests.delete.return_value = mock_requests.response(status_code=status, json_data=body)
        meeting_adapter.delete_event("5")

    def test_delete_failure(self, webinar_adapter, mock_requests):
        """Other failures raise DeletionError."""
        mock_requests.delete.return_value = mock_requests.response(
            status_code=400, json_data={"code": 3000, "message": "Cannot delete"}
        )
        with pytest.raises(DeletionError) as exc_info:
            webinar_adapter.delete_event("9")
        assert exc_info.value.code == "ZOOM_3000"
        assert mock_requests.delete.call_args[0][0] == f"{API}/webinars/9"

    def test_delete_not_connected(self):
        """Deleting without credentials raises NotConnectedError."""
        with pytest.raises(NotConnectedError):
            ZoomAdapter().delete_event("5")


class TestOAuthHelpers:
    """Tests for the user and licence helpers."""

    def test_get_user(self, mock_requests):
        """The token's user is returned."""
        mock_requests.get.return_value = mock_requests.response(json_data=ZOOM_USER)
        assert get_zoom_user("zoom-token")["id"] == "u-1"

    def test_get_user_failure(self, mock_requests):
        """Errors raise PlatformError."""
        mock_requests.get.return_value = mock_requests.response(status_code=401)
        with pytest.raises(PlatformError):
            get_zoom_user("zoom-token")

    def test_webinar_license(self, mock_requests):
        """The webinar feature flag decides the licence check."""
        mock_requests.get.return_value = mock_requests.response(json_data={"feature": {"webinar": True}})
        assert check_zoom_webinar_license("zoom-token", "u-1") is True

        mock_requests.get.return_value = mock_requests.response(json_data={"feature": {}})
        assert check_zoom_webinar_license("zoom-token", "u-1") is False
