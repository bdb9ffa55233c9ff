"""
Strava API access and event conversion.

Club events come from the undocumented ``/clubs/{id}/group_events`` endpoint.
The payload shape was reverse-engineered, so every assumption about it lives
in convert_strava_event and a bad record only drops that one event.
"""

import re
from typing import Any, Dict, Iterable, List, Optional

import requests

from .core import ClubEvent, DEFAULT_EVENT_DURATION, Logger, parse_instant

STRAVA_API_BASE = "https://www.strava.com/api/v3"
STRAVA_TOKEN_URL = "https://www.strava.com/oauth/token"

# Page size for group events, keeps us well under the rate limit
PER_PAGE = 200

REQUEST_TIMEOUT = 30

PHONE_REDACTED = "[Phone Number Redacted]"

_OLD_REDACTION_RE = re.compile(r"<Phone Number Redacted>")

# Order matters: 4-digit area codes are tried before mobiles
_PHONE_PATTERNS = [
    # UK landlines with 4-digit area codes (0xxx xxx xxxx)
    re.compile(r"\b0[1-9]\d{2}[\s\-]*\d{3}[\s\-]*\d{4}\b"),
    # UK mobiles
    re.compile(r"\b07\d{3}[\s\-]*\d{3}[\s\-]*\d{3}\b"),
    # London (020) xxxx xxxx
    re.compile(r"\b020[\s\-]*\d{4}[\s\-]*\d{4}\b"),
    # UK landlines with 3-digit area codes (0xx xxxx xxxx)
    re.compile(r"\b0[1-9]\d{2}[\s\-]*\d{4}[\s\-]*\d{4}\b"),
    # Remaining landline layouts
    re.compile(r"\b0[1-3]\d{2,3}[\s\-]*\d{3,4}[\s\-]*\d{3,4}\b"),
    # International +44
    re.compile(r"\+44\s*(?:\(0\))?\s*[1-9]\d{1,3}[\s\-]*\d{3,4}[\s\-]*\d{3,4}\b"),
    # Bracketed area codes
    re.compile(r"\([0-9]{3,4}\)[\s\-]*\d{3,4}[\s\-]*\d{4}\b"),
    # 10-11 digits starting with 0
    re.compile(r"\b0\d{9,10}\b"),
]


class StravaAPIError(Exception):
    """Raised when the Strava API returns an unexpected response."""


class ConversionError(Exception):
    """Raised when a raw Strava event cannot be converted."""


class NoOccurrenceError(ConversionError):
    """The event has no upcoming occurrence."""


class TimeParseError(ConversionError):
    """The occurrence timestamp could not be parsed."""


class StravaAPI:
    """
    Client for the Strava club events API.

    Attributes:
        club_id: Strava club ID
        client_id: OAuth client ID
        client_secret: OAuth client secret
        refresh_token: OAuth refresh token, replaced on every refresh
        access_token: Current access token, empty until the first refresh
    """

    def __init__(
        self,
        club_id: str,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        access_token: str = "",
        session: Optional[requests.Session] = None,
    ):
        self.club_id = club_id
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token
        self.access_token = access_token
        self.session = session or requests.Session()

    @classmethod
    def from_config(cls, config) -> "StravaAPI":
        """Create a client from a Config."""
        config.require_strava()
        return cls(
            club_id=config.club_id,
            client_id=config.client_id,
            client_secret=config.client_secret,
            refresh_token=config.refresh_token,
        )

    def refresh_tokens(self) -> None:
        """
        Exchange the refresh token for a new access token.

        Raises:
            StravaAPIError: If Strava rejects the refresh
            requests.exceptions.RequestException: If the request fails
        """
        response = self.session.post(
            STRAVA_TOKEN_URL,
            json={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "grant_type": "refresh_token",
                "refresh_token": self.refresh_token,
            },
            timeout=REQUEST_TIMEOUT,
        )
        if response.status_code != 200:
            raise StravaAPIError(
                f"Token refresh failed with status {response.status_code}: "
                f"{response.text}"
            )

        data = response.json()
        self.access_token = data["access_token"]
        self.refresh_token = data.get("refresh_token", self.refresh_token)

    def _make_request(self, url: str, params: Optional[Dict] = None) -> requests.Response:
        """
        Make an authenticated GET request, refreshing the token once on 401.

        Args:
            url: Full request URL
            params: Optional query parameters

        Returns:
            The response of the last attempt
        """
        if not self.access_token:
            self.refresh_tokens()

        response = self.session.get(
            url,
            headers={"Authorization": f"Bearer {self.access_token}"},
            params=params,
            timeout=REQUEST_TIMEOUT,
        )

        if response.status_code == 401:
            self.refresh_tokens()
            response = self.session.get(
                url,
                headers={"Authorization": f"Bearer {self.access_token}"},
                params=params,
                timeout=REQUEST_TIMEOUT,
            )

        return response

    def fetch_club_events(self, logger: Optional[Logger] = None) -> List[Dict[str, Any]]:
        """
        Fetch every upcoming group event for the club.

        Returns:
            Raw event dictionaries as returned by Strava

        Raises:
            StravaAPIError: On a non-200 response
            requests.exceptions.RequestException: If a request fails
        """
        if logger is None:
            logger = Logger()

        url = f"{STRAVA_API_BASE}/clubs/{self.club_id}/group_events"
        all_events = []
        page = 1

        while True:
            response = self._make_request(
                url, params={"upcoming": "true", "page": page, "per_page": PER_PAGE}
            )
            if response.status_code != 200:
                raise StravaAPIError(
                    f"API request failed with status {response.status_code}: "
                    f"{response.text}"
                )

            events = response.json()
            if not events:
                break

            all_events.extend(events)
            logger.debug(f"Fetched page {page}, got {len(events)} events")

            if len(events) < PER_PAGE:
                break
            page += 1

        return all_events


def redact_phone_numbers(text: str) -> str:
    """
    Replace UK and international phone numbers with a redaction marker.

    Args:
        text: Free text from an event description

    Returns:
        Text with phone numbers replaced by "[Phone Number Redacted]"
    """
    if not text:
        return text or ""
    result = _OLD_REDACTION_RE.sub(PHONE_REDACTED, text)
    for pattern in _PHONE_PATTERNS:
        result = pattern.sub(PHONE_REDACTED, result)
    return result


def event_url(club_id: str, event_id: int) -> str:
    """Link to a group event on strava.com."""
    return f"https://www.strava.com/clubs/{club_id}/group_events/{event_id}"


def _text_field(data: Dict[str, Any], name: str, event_id: int) -> str:
    value = data.get(name)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ConversionError(
            f"{name} for event {event_id} is {type(value).__name__}, expected text"
        )
    return value


def convert_strava_event(raw: Dict[str, Any], club_id: str) -> ClubEvent:
    """
    Convert a raw Strava group event into a ClubEvent.

    Only the first upcoming occurrence is used; the end time is estimated
    as one hour after the start since Strava does not provide one.

    Args:
        raw: Event dictionary from the group_events endpoint
        club_id: Strava club ID, used for the event link

    Returns:
        The converted event

    Raises:
        NoOccurrenceError: If there are no upcoming occurrences
        TimeParseError: If the first occurrence is not a valid timestamp
        ConversionError: If the event ID is missing or a field has the wrong type
    """
    if not isinstance(raw, dict):
        raise ConversionError(f"event is not an object: {type(raw).__name__}")

    try:
        event_id = int(raw["id"])
    except (KeyError, TypeError, ValueError) as e:
        raise ConversionError(f"invalid event id: {raw.get('id')!r}") from e

    occurrences = raw.get("upcoming_occurrences") or []
    if not isinstance(occurrences, (list, tuple)):
        raise ConversionError(
            f"upcoming_occurrences for event {event_id} is not a list"
        )
    if not occurrences:
        raise NoOccurrenceError(f"no upcoming occurrences for event {event_id}")

    try:
        start = parse_instant(occurrences[0])
    except (AttributeError, TypeError, ValueError, OverflowError) as e:
        raise TimeParseError(
            f"failed to parse start time {occurrences[0]!r} for event {event_id}"
        ) from e

    athlete = raw.get("organizing_athlete") or {}
    if not isinstance(athlete, dict):
        raise ConversionError(
            f"organizing_athlete for event {event_id} is not an object"
        )

    try:
        return ClubEvent(
            id=event_id,
            title=_text_field(raw, "title", event_id),
            start=start,
            end=start + DEFAULT_EVENT_DURATION,
            description=redact_phone_numbers(_text_field(raw, "description", event_id)),
            url=event_url(club_id, event_id),
            location=_text_field(raw, "address", event_id),
            organizer=" ".join(
                name for name in (
                    _text_field(athlete, "firstname", event_id),
                    _text_field(athlete, "lastname", event_id),
                ) if name
            ).strip(),
            skill_levels=raw.get("skill_levels"),
            terrain=raw.get("terrain"),
        )
    except (KeyError, IndexError, AttributeError) as e:
        raise ConversionError(f"unexpected shape for event {event_id}: {e}") from e


def convert_strava_events(
    raw_events: Iterable[Dict[str, Any]],
    club_id: str,
    logger: Optional[Logger] = None,
) -> List[ClubEvent]:
    """
    Convert raw events, logging and dropping the ones that fail.

    Args:
        raw_events: Raw event dictionaries
        club_id: Strava club ID
        logger: Optional logger instance for output

    Returns:
        Converted events in input order
    """
    if logger is None:
        logger = Logger()

    events = []
    for raw in raw_events:
        try:
            events.append(convert_strava_event(raw, club_id))
        except ConversionError as e:
            event_id = raw.get("id") if isinstance(raw, dict) else None
            logger.normal(f"Failed to convert event {event_id}: {e}")
    return events
