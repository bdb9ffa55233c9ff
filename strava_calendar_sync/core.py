"""
Core types for Strava Calendar Sync.

This module contains the logger, the club event model, the Google Calendar
item model and the helpers shared by the serializer and the reconciler.
"""

import datetime
import re
from enum import Enum, auto
from typing import Any, Dict, Optional, Union

from dateutil import tz
from dateutil.parser import isoparse

# Timezone used for calendar entries and human readable timestamps
TIMEZONE = "Europe/London"

# Suffix of the iCalUID used to recognise events managed by this tool
UID_DOMAIN = "strava.com"

# Strava does not publish an end time for club events
DEFAULT_EVENT_DURATION = datetime.timedelta(hours=1)

SYNC_NOTE_PREFIX = "Synced from Strava Club "

_CORRELATION_RE = re.compile(r"([0-9]+)@" + re.escape(UID_DOMAIN))


class LogLevel(Enum):
    """Logging levels for the script."""
    ERROR = auto()
    NORMAL = auto()
    WARN = auto()
    DEBUG = auto()


class Logger:
    """Simple logger with configurable levels."""

    def __init__(self, level: LogLevel = LogLevel.NORMAL):
        self.level = level

    def log(self, message: str, level: LogLevel = LogLevel.NORMAL) -> None:
        """
        Log a message if the current level is sufficient.

        Args:
            message: Message to log
            level: Level of the message
        """
        if level.value <= self.level.value:
            print(message)

    def error(self, message: str) -> None:
        """Log an error. Errors are always shown."""
        self.log(f"ERROR: {message}", LogLevel.ERROR)

    def normal(self, message: str) -> None:
        """Log a normal priority message."""
        self.log(message, LogLevel.NORMAL)

    def warn(self, message: str) -> None:
        """Log a warning priority message."""
        self.log(message, LogLevel.WARN)

    def debug(self, message: str) -> None:
        """Log a debug priority message."""
        self.log(message, LogLevel.DEBUG)


def get_log_level(verbose_count: int) -> LogLevel:
    """
    Convert verbose count to log level.

    Args:
        verbose_count: Number of -v flags

    Returns:
        Appropriate log level
    """
    if verbose_count >= 2:
        return LogLevel.DEBUG
    elif verbose_count == 1:
        return LogLevel.WARN
    return LogLevel.NORMAL


def get_timezone() -> datetime.tzinfo:
    """Return the tzinfo for TIMEZONE."""
    return tz.gettz(TIMEZONE)


class ClubEvent:
    """
    A Strava club event, normalised for calendar output.

    Attributes:
        id: Strava group event ID, the correlation key across syncs
        title: Event title
        start: Timezone-aware start instant
        end: Timezone-aware end instant
        description: Free text description (phone numbers redacted)
        url: Link back to the event on Strava
        location: Meeting point text
        organizer: Name of the organizing athlete
        skill_levels: Optional Strava skill bitmask (1, 2, 4)
        terrain: Optional Strava terrain code (0 road, 1 trail, 2 mixed)
    """

    def __init__(
        self,
        id: int,
        title: str,
        start: datetime.datetime,
        end: Optional[datetime.datetime] = None,
        description: str = "",
        url: str = "",
        location: str = "",
        organizer: str = "",
        skill_levels: Optional[int] = None,
        terrain: Optional[int] = None,
    ):
        if start.tzinfo is None:
            raise ValueError(f"start time for event {id} must be timezone-aware")
        if end is None:
            end = start + DEFAULT_EVENT_DURATION
        if end <= start:
            raise ValueError(f"end time for event {id} must be after its start")

        self.id = id
        self.title = title
        self.start = start
        self.end = end
        self.description = description
        self.url = url
        self.location = location
        self.organizer = organizer
        self.skill_levels = skill_levels
        self.terrain = terrain

    def __repr__(self) -> str:
        return f"ClubEvent(id={self.id}, title={self.title!r}, start={self.start.isoformat()})"

    def to_dict(self) -> Dict[str, Any]:
        """Serialise to the JSON cache shape."""
        data = {
            "id": self.id,
            "title": self.title,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "description": self.description,
            "url": self.url,
            "location": self.location,
            "organizer": self.organizer,
        }
        if self.skill_levels is not None:
            data["skill_levels"] = self.skill_levels
        if self.terrain is not None:
            data["terrain"] = self.terrain
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClubEvent":
        """
        Build an event from the JSON cache shape.

        Raises:
            KeyError: If a required field is missing
            ValueError: If a timestamp does not parse
        """
        return cls(
            id=int(data["id"]),
            title=data.get("title", ""),
            start=parse_instant(data["start"]),
            end=parse_instant(data["end"]) if data.get("end") else None,
            description=data.get("description", ""),
            url=data.get("url", ""),
            location=data.get("location", ""),
            organizer=data.get("organizer", ""),
            skill_levels=data.get("skill_levels"),
            terrain=data.get("terrain"),
        )


class CalendarEvent:
    """
    An event as it currently exists in Google Calendar.

    Attributes:
        google_event_id: Opaque Google Calendar event ID
        ical_uid: iCalUID of the event, used as the correlation tag
        summary: Event title
        start: Start as a datetime (timed) or date (all-day), None if absent
        end: End as a datetime (timed) or date (all-day), None if absent
        description: Event description
        location: Event location
    """

    def __init__(
        self,
        google_event_id: str,
        ical_uid: str = "",
        summary: str = "",
        start: Union[datetime.datetime, datetime.date, None] = None,
        end: Union[datetime.datetime, datetime.date, None] = None,
        description: str = "",
        location: str = "",
    ):
        self.google_event_id = google_event_id
        self.ical_uid = ical_uid
        self.summary = summary
        self.start = start
        self.end = end
        self.description = description
        self.location = location

    def __repr__(self) -> str:
        return f"CalendarEvent(id={self.google_event_id!r}, uid={self.ical_uid!r})"

    @property
    def strava_id(self) -> Optional[int]:
        """Strava event ID encoded in the iCalUID, None if unmanaged."""
        return parse_correlation_id(self.ical_uid)


def format_correlation_id(event_id: int) -> str:
    """Return the iCalUID for a Strava event ID."""
    return f"{event_id}@{UID_DOMAIN}"


def parse_correlation_id(uid: Optional[str]) -> Optional[int]:
    """
    Extract the Strava event ID from an iCalUID.

    Args:
        uid: iCalUID of a calendar event

    Returns:
        The Strava event ID, or None if the UID is not one of ours
    """
    if not uid:
        return None
    match = _CORRELATION_RE.fullmatch(uid)
    if not match:
        return None
    event_id = int(match.group(1))
    if event_id == 0:
        return None
    return event_id


def format_sync_time(now: datetime.datetime) -> str:
    """
    Format a sync timestamp like "Mon, 2 Jan @ 3:04 PM" in TIMEZONE.

    Args:
        now: Timezone-aware instant of the sync
    """
    local = now.astimezone(get_timezone())
    hour = local.hour % 12 or 12
    return (
        f"{local.strftime('%a')}, {local.day} {local.strftime('%b')} "
        f"@ {hour}:{local.strftime('%M')} {'AM' if local.hour < 12 else 'PM'}"
    )


def compose_description(event: ClubEvent, club_id: str, sync_time: str) -> str:
    """
    Build the plain text description used in both Google Calendar and the ICS file.

    Args:
        event: Source club event
        club_id: Strava club ID, shown in the sync note
        sync_time: Preformatted sync timestamp

    Returns:
        Description text with leader, location, body, link and sync note
    """
    return (
        f"Leader: {event.organizer}\n\n"
        f"Location: {event.location}\n\n"
        f"{event.description}\n\n"
        f"View on Strava: {event.url}\n\n"
        f"{SYNC_NOTE_PREFIX}{club_id} on {sync_time}"
    )


def description_body(description: Optional[str]) -> str:
    """
    Strip the trailing sync note and surrounding whitespace from a description.

    The sync note changes on every run, so only the body takes part in
    change detection.
    """
    text = (description or "").strip()
    head, sep, _ = text.rpartition("\n\n" + SYNC_NOTE_PREFIX)
    if sep:
        text = head
    return text.strip()


def parse_instant(value: str) -> datetime.datetime:
    """Parse an RFC 3339 timestamp, treating naive values as UTC."""
    parsed = isoparse(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed
