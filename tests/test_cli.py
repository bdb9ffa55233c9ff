"""Tests for the command-line entry points."""
import datetime
import json
from unittest.mock import Mock

import pytest

from strava_calendar_sync.cli import (
    main,
    parse_args,
    run_full_sync,
    run_ics_only,
    run_test_sample,
)
from strava_calendar_sync.storage import StorageError, load_events
from strava_calendar_sync.strava import StravaAPIError
from tests.conftest import FakeCalendarClient

UTC = datetime.timezone.utc
NOW = datetime.datetime(2025, 5, 25, 12, 0, tzinfo=UTC)


def raw_event(event_id, when, title):
    return {
        "id": event_id,
        "title": title,
        "description": f"{title} with the club",
        "organizing_athlete": {"firstname": "Sam", "lastname": "Jones"},
        "address": "Priory Park, Great Malvern",
        "upcoming_occurrences": [when] if when else [],
    }


RAW_EVENTS = [
    raw_event(1, "2025-06-01T17:30:00Z", "Tempo Run"),
    raw_event(2, "2025-06-08T17:30:00Z", "Hill Reps"),
    raw_event(3, "2025-05-10T08:00:00Z", "Last Month"),
    raw_event(4, "2025-09-01T17:30:00Z", "Autumn Relay"),
    raw_event(5, None, "Cancelled"),
]


def mock_api(raw_events=RAW_EVENTS):
    api = Mock()
    api.fetch_club_events.return_value = raw_events
    return api


class TestParseArgs:

    def test_defaults(self):
        args = parse_args([])
        assert args.command == "sync"
        assert args.verbose == 0
        assert args.raw_newlines is None

    def test_options(self):
        args = parse_args(["ics", "-vv", "--raw-newlines", "--calendar-file", "club.ics"])
        assert args.command == "ics"
        assert args.verbose == 2
        assert args.raw_newlines is True
        assert args.calendar_file == "club.ics"

    def test_unknown_command(self):
        with pytest.raises(SystemExit):
            parse_args(["publish"])


class TestRunFullSync:
    """Test cases for the full fetch, cache, sync and publish run."""

    def test_end_to_end(self, config, logger):
        client = FakeCalendarClient()

        result = run_full_sync(config, logger, now=NOW, api=mock_api(), client=client)

        assert result.created == 2
        assert result.errors == []
        assert sorted(item["iCalUID"] for item in client.items.values()) == ["1@strava.com", "2@strava.com"]

        cached = load_events(config.events_file)
        assert [event.id for event in cached] == [4, 2, 1]

        with open(config.calendar_file, encoding="utf-8", newline="") as f:
            content = f.read()
        assert content.count("BEGIN:VEVENT") == 2
        assert content.index("UID:1@strava.com") < content.index("UID:2@strava.com")
        assert "UID:4@strava.com" not in content
        assert content.endswith("END:VCALENDAR\r\n\r\n")

    def test_second_run_changes_nothing(self, config, logger):
        client = FakeCalendarClient()
        run_full_sync(config, logger, now=NOW, api=mock_api(), client=client)
        operations = client.operations()

        result = run_full_sync(
            config, logger, now=NOW + datetime.timedelta(hours=1), api=mock_api(), client=client
        )

        assert client.operations() == operations
        assert result.unchanged == 2

    def test_without_calendar_id(self, config, logger, capsys):
        config.calendar_id = ""

        result = run_full_sync(config, logger, now=NOW, api=mock_api())

        assert result is None
        assert "GOOGLE_CALENDAR_ID not set" in capsys.readouterr().out
        with open(config.calendar_file, encoding="utf-8") as f:
            assert f.read().count("BEGIN:VEVENT") == 2

    def test_fetch_failure_leaves_files(self, config, logger, tmp_path):
        with open(config.calendar_file, "w") as f:
            f.write("previous")
        api = Mock()
        api.fetch_club_events.side_effect = StravaAPIError("API request failed with status 500")

        with pytest.raises(StravaAPIError):
            run_full_sync(config, logger, now=NOW, api=api, client=FakeCalendarClient())

        with open(config.calendar_file) as f:
            assert f.read() == "previous"

    def test_raw_newlines(self, config, logger):
        config.raw_newlines = True
        config.calendar_id = ""

        run_full_sync(config, logger, now=NOW, api=mock_api())

        with open(config.calendar_file, encoding="utf-8", newline="") as f:
            content = f.read()
        assert "DESCRIPTION:Leader: Sam Jones\r\n\r\nLocation: Priory Park\\, Great Malvern" in content


class TestRunICSOnly:

    def test_uses_cache(self, config, logger):
        run_full_sync(config, logger, now=NOW, api=mock_api(), client=FakeCalendarClient())

        count = run_ics_only(config, logger, now=NOW + datetime.timedelta(days=10))

        # Tempo Run has started by then
        assert count == 1


class TestRunTestSample:

    def test_converts_sample(self, config, logger, capsys):
        with open(config.sample_file, "w", encoding="utf-8") as f:
            json.dump(RAW_EVENTS, f)

        events = run_test_sample(config, logger, now=NOW)

        assert [event.id for event in events] == [4, 2, 1]
        output = capsys.readouterr().out
        assert "Loaded 5 sample events" in output
        assert "Event 2: Hill Reps - 2025-06-08 18:30 (Priory Park, Great Malvern)" in output
        assert "Failed to convert event 5" in output

    def test_missing_sample(self, config, logger):
        with pytest.raises(StorageError):
            run_test_sample(config, logger, now=NOW)


class TestMain:
    """Test cases for the main entry point exit status."""

    def test_missing_credentials(self, tmp_path, capsys):
        status = main(["sync", "--events-file", str(tmp_path / "events.json")], environ={})

        assert status == 1
        assert "ERROR: missing required environment variables" in capsys.readouterr().out

    def test_gcal_without_calendar(self, tmp_path, capsys):
        status = main(["gcal"], environ={"EVENTS_FILE": str(tmp_path / "events.json")})

        assert status == 1
        assert "GOOGLE_CALENDAR_ID" in capsys.readouterr().out

    def test_ics_from_empty_cache(self, tmp_path):
        calendar_file = tmp_path / "out" / "calendar.ics"

        status = main(
            ["ics", "--events-file", str(tmp_path / "events.json"), "--calendar-file", str(calendar_file)],
            environ={"STRAVA_CLUB_ID": "123456"},
        )

        assert status == 0
        assert calendar_file.read_bytes().startswith(b"BEGIN:VCALENDAR\r\n")

    def test_invalid_cache(self, tmp_path, capsys):
        events_file = tmp_path / "events.json"
        events_file.write_text("{broken")

        status = main(
            ["ics", "--events-file", str(events_file), "--calendar-file", str(tmp_path / "calendar.ics")],
            environ={},
        )

        assert status == 1
        assert "failed to parse events file" in capsys.readouterr().out
