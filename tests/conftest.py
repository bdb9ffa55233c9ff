"""Shared fixtures for the test suite."""
import copy
import datetime
import itertools
import json

import httplib2
import pytest
from googleapiclient.errors import HttpError

from strava_calendar_sync.config import Config
from strava_calendar_sync.core import ClubEvent, LogLevel, Logger
from strava_calendar_sync.google_calendar import calendar_event_from_item

UTC = datetime.timezone.utc
NOW = datetime.datetime(2025, 5, 25, 12, 0, tzinfo=UTC)


def make_http_error(status, message="error"):
    """Build a googleapiclient HttpError with the given status."""
    content = json.dumps({"error": {"code": status, "message": message}}).encode("utf-8")
    return HttpError(httplib2.Response({"status": status}), content)


class FakeCalendarClient:
    """In-memory stand-in for GoogleCalendarClient."""

    def __init__(self, items=None):
        self._ids = itertools.count(1)
        self.items = {}
        self.calls = []
        for item in items or []:
            self.items[item["id"]] = copy.deepcopy(item)

    def list_events(self, calendar_id, time_min, time_max):
        self.calls.append(("list", calendar_id))
        return [calendar_event_from_item(copy.deepcopy(item)) for item in self.items.values()]

    def insert_event(self, calendar_id, body):
        self.calls.append(("insert", body["iCalUID"]))
        if any(item.get("iCalUID") == body["iCalUID"] for item in self.items.values()):
            raise make_http_error(409, "The requested identifier already exists.")
        item = copy.deepcopy(body)
        item["id"] = f"gcal{next(self._ids)}"
        self.items[item["id"]] = item
        return item

    def update_event(self, calendar_id, event_id, body):
        self.calls.append(("update", event_id))
        if event_id not in self.items:
            raise make_http_error(404, "Not Found")
        item = copy.deepcopy(body)
        item["id"] = event_id
        self.items[event_id] = item
        return item

    def delete_event(self, calendar_id, event_id):
        self.calls.append(("delete", event_id))
        if event_id not in self.items:
            raise make_http_error(410, "Resource has been deleted")
        del self.items[event_id]

    def operations(self):
        return [call for call in self.calls if call[0] != "list"]


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def logger():
    return Logger(LogLevel.DEBUG)


@pytest.fixture
def config(tmp_path):
    return Config(
        club_id="123456",
        client_id="client",
        client_secret="secret",
        refresh_token="refresh",
        calendar_id="club@group.calendar.google.com",
        events_file=str(tmp_path / "events" / "events.json"),
        calendar_file=str(tmp_path / "calendar.ics"),
        sample_file=str(tmp_path / "events_raw.json"),
    )


@pytest.fixture
def tempo_run():
    return ClubEvent(
        id=1,
        title="Tempo Run",
        start=datetime.datetime(2025, 6, 1, 17, 30, tzinfo=UTC),
        description="Steady 5k at tempo pace, then cool down.",
        url="https://www.strava.com/clubs/123456/group_events/1",
        location="Priory Park, Great Malvern",
        organizer="Sam Jones",
    )


@pytest.fixture
def hill_reps():
    return ClubEvent(
        id=2,
        title="Hill Reps",
        start=datetime.datetime(2025, 6, 8, 17, 30, tzinfo=UTC),
        description="6 x British Camp climb.\nBring a head torch; it gets dark.",
        url="https://www.strava.com/clubs/123456/group_events/2",
        location="British Camp car park",
        organizer="Alex Smith",
        skill_levels=2,
        terrain=1,
    )


@pytest.fixture
def raw_strava_event():
    return {
        "id": 987654,
        "title": "Sunday Long Run",
        "description": "Meet at the clock tower. Questions? Call 07801 252100",
        "club_id": 123456,
        "organizing_athlete": {"id": 42, "firstname": "Sam", "lastname": "Jones"},
        "activity_type": "Run",
        "route_id": None,
        "women_only": False,
        "private": True,
        "skill_levels": 4,
        "terrain": 2,
        "upcoming_occurrences": ["2025-06-01T08:00:00Z", "2025-06-08T08:00:00Z"],
        "zone": "Europe/London",
        "address": "Clock Tower, Malvern",
        "joined": False,
        "start_latlng": [52.11, -2.32],
    }
