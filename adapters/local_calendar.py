"""
Local Calendar Adapter

Generates iCalendar (.ics, RFC 5545) text for universal calendar import.
No authentication and no network: the generated text is returned as the
publication's external id.
"""

import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, List, Dict, Any, Callable
from urllib.parse import urlencode

from adapters.protocols import (
    ConnectionResult,
    PublicationResult,
    TransformedEvent,
    TransformedLocation,
)
from config import settings
from data.models import CanonicalEvent, EventLocation
from platforms.registry import get_platform
from utils.helpers import build_address, format_utc_iso, localize, to_utc, truncate_text
from utils.logger import get_logger

logger = get_logger(__name__)

PLATFORM_ID = "local-calendar"
LINE_BREAK = "\r\n"
MAX_LINE_OCTETS = 75

GOOGLE_CALENDAR_URL = "https://calendar.google.com/calendar/render"
OUTLOOK_CALENDAR_URL = "https://outlook.live.com/calendar/0/deeplink/compose"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def escape_ics(text: str) -> str:
    """
    Escape TEXT values for iCalendar.

    Backslash goes first so the escapes added afterwards are not doubled.
    """
    return (
        text.replace("\\", "\\\\")
        .replace(";", "\\;")
        .replace(",", "\\,")
        .replace("\r\n", "\\n")
        .replace("\n", "\\n")
    )


def fold_line(line: str) -> str:
    """
    Fold a content line at 75 octets.

    Continuation lines start with a single space. Characters are never split
    across lines, so multi-byte UTF-8 sequences stay intact.
    """
    if len(line.encode("utf-8")) <= MAX_LINE_OCTETS:
        return line

    folded: List[str] = []
    current = ""
    current_octets = 0
    limit = MAX_LINE_OCTETS
    for char in line:
        char_octets = len(char.encode("utf-8"))
        if current_octets + char_octets > limit:
            folded.append(current)
            current = ""
            current_octets = 0
            limit = MAX_LINE_OCTETS - 1   # room for the leading space
        current += char
        current_octets += char_octets
    folded.append(current)
    return (LINE_BREAK + " ").join(folded)


def format_ics_local(value: datetime) -> str:
    """Wall-clock time without zone designator, e.g. 20250301T100000."""
    return value.strftime("%Y%m%dT%H%M%S")


def format_ics_utc(value: datetime) -> str:
    """UTC time with the Z designator, e.g. 20250301T180000Z."""
    return to_utc(value).strftime("%Y%m%dT%H%M%SZ")


def format_local_address(location: EventLocation) -> str:
    """Street, city, state, postal code and country joined with commas."""
    return build_address([
        location.address,
        location.city,
        location.state,
        location.postal_code,
        location.country,
    ])


class LocalCalendarAdapter:
    """Exports events as .ics text; always connected."""

    platform_id = PLATFORM_ID
    auth_error_codes = frozenset()

    def __init__(self, clock: Callable[[], datetime] = _utcnow):
        """
        Initialize the adapter.

        Args:
            clock: Returns the current aware UTC time; used for DTSTAMP and ids.
        """
        self.capabilities = get_platform(PLATFORM_ID).capabilities
        self.clock = clock

    def is_connected(self) -> bool:
        return True

    def connect(self, credentials: Optional[Dict[str, str]] = None) -> ConnectionResult:
        """No authentication is needed; always succeeds."""
        return ConnectionResult(success=True, platform_id=self.platform_id, account_name="Local Calendar")

    def disconnect(self) -> None:
        pass

    def transform_event(self, event: CanonicalEvent) -> TransformedEvent:
        """Transform a canonical event into the fields an .ics file carries."""
        source = event.location
        return TransformedEvent(
            platform_id=self.platform_id,
            title=truncate_text(event.title, self.capabilities.max_title_length),
            description=truncate_text(event.description, self.capabilities.max_description_length),
            start_time=localize(event.start_time, event.timezone),
            end_time=localize(event.end_time, event.timezone),
            timezone=event.timezone,
            location=TransformedLocation(
                is_virtual=source.is_virtual,
                name=source.name,
                address=format_local_address(source),
                virtual_url=source.virtual_url,
            ),
            image_url=event.cover_image_url,
            metadata={
                "organizer": {"name": event.organizer.name, "email": event.organizer.email},
                "category": event.category,
                "uid": event.id,
            },
        )

    def create_event(self, event: TransformedEvent) -> PublicationResult:
        """
        Generate the .ics text.

        Returns:
            PublicationResult: The calendar text as external_id, no URL.
        """
        content = self.generate_ics(event)
        millis = int(self.clock().timestamp() * 1000)
        return PublicationResult(
            success=True,
            publication_id=f"ical-{millis}",
            external_id=content,
            external_url=None,
        )

    def update_event(self, external_id: str, event: TransformedEvent) -> PublicationResult:
        """Regenerate the .ics text; the previous text is discarded."""
        return self.create_event(event)

    def delete_event(self, external_id: str) -> None:
        """Nothing is stored anywhere, so there is nothing to delete."""
        pass

    def get_event_url(self, external_id: str) -> str:
        return ""

    def generate_ics(self, event: TransformedEvent) -> str:
        """
        Render one VEVENT inside a VCALENDAR.

        DTSTART/DTEND are wall-clock times in the event timezone with a TZID
        parameter; DTSTAMP is UTC.
        """
        uid = event.metadata.get("uid") or f"{uuid.uuid4()}@{settings.APP_UID_DOMAIN}"
        start = localize(event.start_time, event.timezone)
        end = localize(event.end_time, event.timezone)

        lines = [
            "BEGIN:VCALENDAR",
            "VERSION:2.0",
            f"PRODID:{settings.APP_PRODUCT_ID}",
            "CALSCALE:GREGORIAN",
            "METHOD:PUBLISH",
            "BEGIN:VEVENT",
            f"UID:{uid}",
            f"DTSTAMP:{format_ics_utc(self.clock())}",
            f"DTSTART;TZID={event.timezone}:{format_ics_local(start)}",
            f"DTEND;TZID={event.timezone}:{format_ics_local(end)}",
            f"SUMMARY:{escape_ics(event.title)}",
            f"DESCRIPTION:{escape_ics(event.description)}",
        ]

        location = event.location
        if location:
            if location.is_virtual and location.virtual_url:
                lines.append(f"LOCATION:{escape_ics(location.virtual_url)}")
                lines.append(f"URL:{location.virtual_url}")
            elif location.address:
                lines.append(f"LOCATION:{escape_ics(location.address)}")
            elif location.name:
                lines.append(f"LOCATION:{escape_ics(location.name)}")

        organizer = event.metadata.get("organizer") or {}
        if organizer.get("email"):
            lines.append(f"ORGANIZER;CN={escape_ics(organizer.get('name') or '')}:mailto:{organizer['email']}")

        category = event.metadata.get("category")
        if category:
            lines.append(f"CATEGORIES:{escape_ics(category)}")

        lines.extend(["END:VEVENT", "END:VCALENDAR"])
        return LINE_BREAK.join(fold_line(line) for line in lines)


def write_ics(content: str, path: str) -> Path:
    """
    Write calendar text to a file, adding the .ics suffix if missing.

    Returns:
        Path: The file written.
    """
    target = Path(path)
    if target.suffix.lower() != ".ics":
        target = target.with_name(target.name + ".ics")
    # newline="" keeps the CRLF line endings intact
    with open(target, "w", encoding="utf-8", newline="") as f:
        f.write(content)
    logger.info(f"Wrote calendar file {target}")
    return target


def generate_google_calendar_url(event: TransformedEvent) -> str:
    """Google Calendar "add event" link."""
    params: Dict[str, Any] = {
        "action": "TEMPLATE",
        "text": event.title,
        "dates": f"{format_ics_utc(event.start_time)}/{format_ics_utc(event.end_time)}",
        "details": event.description,
        "ctz": event.timezone,
    }
    if event.location and event.location.address:
        params["location"] = event.location.address
    elif event.location and event.location.virtual_url:
        params["location"] = event.location.virtual_url
    return f"{GOOGLE_CALENDAR_URL}?{urlencode(params)}"


def generate_outlook_url(event: TransformedEvent) -> str:
    """Outlook.com "add event" link."""
    params: Dict[str, Any] = {
        "rru": "addevent",
        "subject": event.title,
        "body": event.description,
        "startdt": format_utc_iso(event.start_time),
        "enddt": format_utc_iso(event.end_time),
    }
    if event.location and event.location.address:
        params["location"] = event.location.address
    return f"{OUTLOOK_CALENDAR_URL}?{urlencode(params)}"
