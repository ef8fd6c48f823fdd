"""
Tests for the Facebook Events Adapter

Tests cover connecting with a Page token, event transformation, Graph API
payloads, error code mapping, retryability and deletion semantics.
"""

import pytest
import requests
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from adapters.facebook import (
    FacebookAdapter,
    exchange_for_long_lived_token,
    get_facebook_pages,
    is_retryable_error,
    map_category,
)
from utils.exceptions import DeletionError, NotConnectedError, PlatformError, TokenExchangeError

GRAPH = "https://graph.facebook.com/v19.0"


@pytest.fixture
def connected_adapter(mock_requests):
    """A FacebookAdapter connected to page-123; the connect call is cleared."""
    mock_requests.get.return_value = mock_requests.response(json_data={"id": "page-123", "name": "Acme Events"})
    adapter = FacebookAdapter()
    result = adapter.connect({"access_token": "page-token", "page_id": "page-123"})
    assert result.success
    mock_requests.get.reset_mock()
    return adapter


class TestConnect:
    """Tests for connect, disconnect and is_connected."""

    def test_connect_success(self, mock_requests):
        """A readable page validates the token."""
        mock_requests.get.return_value = mock_requests.response(json_data={"id": "page-123", "name": "Acme Events"})

        result = FacebookAdapter().connect({"access_token": "page-token", "page_id": "page-123"})

        assert result.success is True
        assert result.account_name == "Acme Events"
        assert result.account_id == "page-123"
        assert mock_requests.get.call_args[0][0] == f"{GRAPH}/page-123"
        assert mock_requests.get.call_args.kwargs["params"]["access_token"] == "page-token"

    def test_connect_missing_keys_makes_no_call(self, mock_requests):
        """Missing credentials fail without any network call."""
        result = FacebookAdapter().connect({"access_token": "page-token"})
        assert result.success is False
        mock_requests.get.assert_not_called()

    def test_connect_rejected_token(self, mock_requests):
        """A Graph error is a terminal connect failure."""
        mock_requests.get.return_value = mock_requests.response(
            status_code=400,
            json_data={"error": {"code": 190, "message": "Error validating access token"}},
        )
        adapter = FacebookAdapter()
        result = adapter.connect({"access_token": "bad", "page_id": "page-123"})

        assert result.success is False
        assert result.retryable is False
        assert "Error validating access token" in result.error
        assert adapter.is_connected() is False

    def test_connect_network_error_is_retryable(self, mock_requests):
        """Transport failures are retryable and do not leak the URL."""
        mock_requests.get.side_effect = requests.ConnectionError(f"{GRAPH}/page-123?access_token=secret")
        result = FacebookAdapter().connect({"access_token": "secret", "page_id": "page-123"})

        assert result.success is False
        assert result.retryable is True
        assert "secret" not in result.error

    def test_is_connected(self, connected_adapter, mock_requests):
        """is_connected probes the page."""
        mock_requests.get.return_value = mock_requests.response(json_data={"id": "page-123"})
        assert connected_adapter.is_connected() is True

        mock_requests.get.side_effect = requests.Timeout()
        assert connected_adapter.is_connected() is False

    def test_disconnect(self, connected_adapter, mock_requests, event_factory):
        """After disconnect the adapter behaves as never connected."""
        connected_adapter.disconnect()
        result = connected_adapter.create_event(connected_adapter.transform_event(event_factory()))
        assert result.error.code == "NOT_CONNECTED"
        mock_requests.post.assert_not_called()


class TestTransform:
    """Tests for transform_event and the payload."""

    def test_title_truncated_to_limit(self, event_factory):
        """Titles over 100 characters are cut to exactly 100 with an ellipsis."""
        transformed = FacebookAdapter().transform_event(event_factory(title="x" * 150))
        assert len(transformed.title) == 100
        assert transformed.title.endswith("...")

    def test_in_person_location(self, event_factory):
        """Physical events carry the joined address."""
        transformed = FacebookAdapter().transform_event(event_factory())
        assert transformed.location.is_virtual is False
        assert transformed.location.address == "1 Main St, Portland, OR, 97201, US"

    def test_virtual_location(self, event_factory, virtual_location):
        """Online events are labelled Online Event."""
        transformed = FacebookAdapter().transform_event(event_factory(location=virtual_location))
        assert transformed.location.name == "Online Event"
        assert transformed.location.virtual_url == "https://meet.example.com/abc"

    def test_payload_fields(self, event_factory):
        """The payload uses UTC ISO times, the category map and the ticket link."""
        adapter = FacebookAdapter()
        payload = adapter.build_event_payload(adapter.transform_event(
            event_factory(cover_image_url="https://img.example.com/c.png")
        ))

        assert payload["start_time"] == "2025-03-01T18:00:00Z"
        assert payload["end_time"] == "2025-03-01T19:00:00Z"
        assert payload["timezone_id"] == "America/Los_Angeles"
        assert payload["category"] == "TECH"
        assert payload["ticket_uri"] == "https://tickets.example.com/meetup"
        assert payload["cover"] == {"source": "https://img.example.com/c.png"}
        assert payload["place"] == {"name": "Main Hall"}
        assert payload["is_online"] is False
        assert "access_token" not in payload

    def test_category_fallback(self):
        """Unknown categories map to OTHER."""
        assert map_category("Technology") == "TECH"
        assert map_category("underwater-basket-weaving") == "OTHER"


class TestCreateAndUpdate:
    """Tests for create_event and update_event."""

    def test_not_connected_makes_no_call(self, mock_requests, event_factory):
        """create_event on a fresh adapter fails without a network call."""
        adapter = FacebookAdapter()
        result = adapter.create_event(adapter.transform_event(event_factory()))

        assert result.success is False
        assert result.error.code == "NOT_CONNECTED"
        assert result.error.retryable is False
        mock_requests.post.assert_not_called()

    def test_create_success(self, connected_adapter, mock_requests, event_factory):
        """A created event gets an fb- id and its public URL."""
        mock_requests.post.return_value = mock_requests.response(json_data={"id": "987"})
        result = connected_adapter.create_event(connected_adapter.transform_event(event_factory()))

        assert result.success is True
        assert result.publication_id == "fb-987"
        assert result.external_id == "987"
        assert result.external_url == "https://www.facebook.com/events/987"
        assert mock_requests.post.call_args[0][0] == f"{GRAPH}/page-123/events"
        assert mock_requests.post.call_args.kwargs["json"]["access_token"] == "page-token"

    def test_create_graph_error_code(self, connected_adapter, mock_requests, event_factory):
        """Graph error codes become FB_<code>."""
        mock_requests.post.return_value = mock_requests.response(
            status_code=400, json_data={"error": {"code": 190, "message": "Session has expired"}}
        )
        result = connected_adapter.create_event(connected_adapter.transform_event(event_factory()))

        assert result.error.code == "FB_190"
        assert result.error.message == "Session has expired"
        assert result.error.retryable is False
        assert "FB_190" in connected_adapter.auth_error_codes

    def test_create_rate_limited_is_retryable(self, connected_adapter, mock_requests, event_factory):
        """429 responses are retryable."""
        mock_requests.post.return_value = mock_requests.response(status_code=429)
        result = connected_adapter.create_event(connected_adapter.transform_event(event_factory()))

        assert result.error.code == "FB_429"
        assert result.error.retryable is True

    def test_create_throttling_code_is_retryable(self, connected_adapter, mock_requests, event_factory):
        """Graph throttling codes are retryable even on a 400."""
        mock_requests.post.return_value = mock_requests.response(
            status_code=400, json_data={"error": {"code": 613, "message": "Calls limited"}}
        )
        result = connected_adapter.create_event(connected_adapter.transform_event(event_factory()))
        assert result.error.retryable is True

    def test_create_network_error(self, connected_adapter, mock_requests, event_factory):
        """Network errors are NETWORK_ERROR and retryable."""
        mock_requests.post.side_effect = requests.Timeout()
        result = connected_adapter.create_event(connected_adapter.transform_event(event_factory()))

        assert result.error.code == "NETWORK_ERROR"
        assert result.error.retryable is True

    def test_create_unreadable_body(self, connected_adapter, mock_requests, event_factory):
        """A 2xx without an id is an invalid response."""
        mock_requests.post.return_value = mock_requests.response(text="<html>")
        result = connected_adapter.create_event(connected_adapter.transform_event(event_factory()))
        assert result.error.code == "FB_INVALID_RESPONSE"

    def test_update_success(self, connected_adapter, mock_requests, event_factory):
        """Updates POST to the event id."""
        mock_requests.post.return_value = mock_requests.response(json_data={"success": True})
        result = connected_adapter.update_event("987", connected_adapter.transform_event(event_factory()))

        assert result.success is True
        assert result.publication_id == "fb-987"
        assert mock_requests.post.call_args[0][0] == f"{GRAPH}/987"

    def test_update_failure_keeps_publication_id(self, connected_adapter, mock_requests, event_factory):
        """Failed updates still name the publication."""
        mock_requests.post.return_value = mock_requests.response(status_code=500)
        result = connected_adapter.update_event("987", connected_adapter.transform_event(event_factory()))

        assert result.publication_id == "fb-987"
        assert result.error.code == "FB_500"
        assert result.error.retryable is True


class TestDelete:
    """Tests for delete_event."""

    def test_delete_not_connected(self, mock_requests):
        """Deleting without credentials raises NotConnectedError."""
        with pytest.raises(NotConnectedError):
            FacebookAdapter().delete_event("987")
        mock_requests.delete.assert_not_called()

    def test_delete_success(self, connected_adapter, mock_requests):
        """A 2xx delete returns normally."""
        mock_requests.delete.return_value = mock_requests.response(json_data={"success": True})
        connected_adapter.delete_event("987")
        assert mock_requests.delete.call_args[0][0] == f"{GRAPH}/987"

    def test_delete_already_gone(self, connected_adapter, mock_requests):
        """Graph code 100/subcode 33 means the event no longer exists."""
        mock_requests.delete.return_value = mock_requests.response(
            status_code=400,
            json_data={"error": {"code": 100, "error_subcode": 33, "message": "Object does not exist"}},
        )
        connected_adapter.delete_event("987")

    def test_delete_failure(self, connected_adapter, mock_requests):
        """Other failures raise DeletionError with the platform code."""
        mock_requests.delete.return_value = mock_requests.response(
            status_code=403, json_data={"error": {"code": 200, "message": "Permissions error"}}
        )
        with pytest.raises(DeletionError) as exc_info:
            connected_adapter.delete_event("987")
        assert exc_info.value.code == "FB_200"
        assert exc_info.value.retryable is False

    def test_delete_network_error(self, connected_adapter, mock_requests):
        """Network failures raise a retryable DeletionError."""
        mock_requests.delete.side_effect = requests.ConnectionError()
        with pytest.raises(DeletionError) as exc_info:
            connected_adapter.delete_event("987")
        assert exc_info.value.code == "NETWORK_ERROR"
        assert exc_info.value.retryable is True


class TestRetryability:
    """Tests for is_retryable_error."""

    @pytest.mark.parametrize("status,code,expected", [
        (429, None, True),
        (500, None, True),
        (503, None, True),
        (400, None, False),
        (401, 190, False),
        (400, 4, True),
        (400, 17, True),
        (400, 100, False),
    ])
    def test_mapping(self, status, code, expected):
        """429, 5xx and throttling codes are retryable; the rest are not."""
        assert is_retryable_error(status, code) is expected


class TestOAuthHelpers:
    """Tests for the page listing and token upgrade helpers."""

    def test_get_pages(self, mock_requests):
        """Managed pages are returned with their tokens."""
        mock_requests.get.return_value = mock_requests.response(json_data={
            "data": [{"id": "1", "name": "Acme", "access_token": "page-token"}]
        })
        pages = get_facebook_pages("user-token")
        assert pages == [{"id": "1", "name": "Acme", "access_token": "page-token"}]

    def test_get_pages_failure(self, mock_requests):
        """Errors listing pages raise PlatformError."""
        mock_requests.get.return_value = mock_requests.response(status_code=400)
        with pytest.raises(PlatformError):
            get_facebook_pages("user-token")

    def test_long_lived_token(self, mock_requests):
        """The fb_exchange_token grant returns the long-lived token."""
        mock_requests.get.return_value = mock_requests.response(json_data={"access_token": "long-lived"})
        assert exchange_for_long_lived_token("short", "app", "secret") == "long-lived"
        params = mock_requests.get.call_args.kwargs["params"]
        assert params["grant_type"] == "fb_exchange_token"
        assert params["fb_exchange_token"] == "short"

    def test_long_lived_token_failure(self, mock_requests):
        """A rejected upgrade raises TokenExchangeError."""
        mock_requests.get.return_value = mock_requests.response(status_code=400)
        with pytest.raises(TokenExchangeError):
            exchange_for_long_lived_token("short", "app", "secret")
