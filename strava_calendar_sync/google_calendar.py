"""
Google Calendar access.

GoogleCalendarClient is the only place that talks to the Calendar API; the
reconciler works against its list/insert/update/delete methods.
"""

import datetime
import os.path
from typing import Any, Dict, List, Optional, Union

from dateutil.parser import isoparse
from google.auth.transport.requests import Request
from google.oauth2 import service_account
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build

from .core import CalendarEvent, Logger

# If modifying these scopes, delete the file token.json.
SCOPES = ["https://www.googleapis.com/auth/calendar"]


def get_google_credentials(config, logger: Optional[Logger] = None):
    """
    Get Google Calendar API credentials.

    Tries, in order: the service account JSON from GOOGLE_SERVICE_ACCOUNT,
    the service account key file, then the installed-app OAuth flow with a
    cached token (for local development).

    Args:
        config: Runtime Config
        logger: Optional logger instance for output

    Returns:
        Credentials object for Google Calendar API
    """
    if logger is None:
        logger = Logger()

    if config.service_account_info:
        logger.normal("Using service account from GOOGLE_SERVICE_ACCOUNT environment variable")
        return service_account.Credentials.from_service_account_info(
            config.service_account_info, scopes=SCOPES
        )

    if os.path.exists(config.service_account_file):
        logger.normal(f"Using service account from {config.service_account_file}")
        return service_account.Credentials.from_service_account_file(
            config.service_account_file, scopes=SCOPES
        )

    logger.normal("No service account found, using OAuth client credentials")
    creds = None
    if os.path.exists(config.token_path):
        creds = Credentials.from_authorized_user_file(config.token_path, SCOPES)

    if not creds or not creds.valid:
        if creds and creds.expired and creds.refresh_token:
            creds.refresh(Request())
        else:
            flow = InstalledAppFlow.from_client_secrets_file(
                config.credentials_path, SCOPES
            )
            creds = flow.run_local_server(port=0)
        with open(config.token_path, "w") as token:
            token.write(creds.to_json())

    return creds


def build_calendar_service(credentials) -> Any:
    """Build the Calendar v3 API service."""
    return build("calendar", "v3", credentials=credentials, cache_discovery=False)


def parse_event_time(value: Optional[Dict[str, str]]) -> Union[datetime.datetime, datetime.date, None]:
    """
    Convert a Google Calendar start/end object.

    Args:
        value: {"dateTime": ..., "timeZone": ...} or {"date": ...}

    Returns:
        Aware datetime for timed events, date for all-day events, None if
        the value is missing or unreadable
    """
    if not value:
        return None
    try:
        if value.get("dateTime"):
            parsed = isoparse(value["dateTime"])
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=datetime.timezone.utc)
            return parsed
        if value.get("date"):
            return datetime.date.fromisoformat(value["date"])
    except ValueError:
        return None
    return None


def calendar_event_from_item(item: Dict[str, Any]) -> CalendarEvent:
    """Convert an item from events().list() to a CalendarEvent."""
    return CalendarEvent(
        google_event_id=item["id"],
        ical_uid=item.get("iCalUID", ""),
        summary=item.get("summary", ""),
        start=parse_event_time(item.get("start")),
        end=parse_event_time(item.get("end")),
        description=item.get("description", ""),
        location=item.get("location", ""),
    )


class GoogleCalendarClient:
    """
    Thin wrapper around the Calendar API events collection.

    Attributes:
        service: Google Calendar API service instance
    """

    def __init__(self, service: Any):
        self.service = service

    def list_events(
        self,
        calendar_id: str,
        time_min: datetime.datetime,
        time_max: datetime.datetime,
    ) -> List[CalendarEvent]:
        """
        List events overlapping a time window, following pagination.

        Raises:
            HttpError: If the Google Calendar API request fails
        """
        events = []
        page_token = None
        while True:
            result = self.service.events().list(
                calendarId=calendar_id,
                timeMin=time_min.isoformat(),
                timeMax=time_max.isoformat(),
                singleEvents=True,
                pageToken=page_token,
            ).execute()

            for item in result.get("items", []):
                events.append(calendar_event_from_item(item))

            page_token = result.get("nextPageToken")
            if not page_token:
                break
        return events

    def insert_event(self, calendar_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return self.service.events().insert(calendarId=calendar_id, body=body).execute()

    def update_event(self, calendar_id: str, event_id: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return self.service.events().update(
            calendarId=calendar_id, eventId=event_id, body=body
        ).execute()

    def delete_event(self, calendar_id: str, event_id: str) -> None:
        self.service.events().delete(calendarId=calendar_id, eventId=event_id).execute()
