"""
Command-line interface for Strava Calendar Sync.

Commands:
  sync   fetch from Strava, update the cache, sync Google Calendar, write ICS
  ics    write the ICS file from the cached events
  gcal   sync the cached events to Google Calendar
  test   convert a saved raw API response into the cache
"""

import argparse
import datetime
import json
import sys
from typing import List, Optional

import requests
from google.auth.exceptions import GoogleAuthError
from googleapiclient.errors import HttpError

from .config import Config, ConfigError, load_config
from .core import ClubEvent, Logger, get_log_level, get_timezone
from .google_calendar import GoogleCalendarClient, build_calendar_service, get_google_credentials
from .ics import ICSValidationError, generate_ics, validate_ics
from .storage import (
    StorageError,
    filter_retained,
    filter_upcoming,
    load_events,
    save_events,
    sort_chronological,
    sort_newest_first,
    write_file_atomic,
)
from .strava import StravaAPI, StravaAPIError, convert_strava_events
from .sync import SyncResult, sync_events_to_calendar

COMMANDS = ("sync", "ics", "gcal", "test")

# Errors that abort a run; previously written files are left untouched
FATAL_ERRORS = (
    ConfigError,
    StravaAPIError,
    StorageError,
    ICSValidationError,
    HttpError,
    GoogleAuthError,
    requests.exceptions.RequestException,
)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """
    Parse command line arguments.

    Returns:
        Parsed arguments
    """
    parser = argparse.ArgumentParser(
        description="Sync Strava club events to Google Calendar and an ICS file"
    )
    parser.add_argument(
        "command",
        nargs="?",
        default="sync",
        choices=COMMANDS,
        help="What to run (default: sync)"
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (use -v for warnings, -vv for debug)"
    )
    parser.add_argument(
        "--raw-newlines",
        action="store_true",
        default=None,
        help="Keep real line breaks in ICS text values instead of escaping them"
    )
    parser.add_argument(
        "--events-file",
        help="Path to the JSON event cache"
    )
    parser.add_argument(
        "--calendar-file",
        help="Path to the generated ICS file"
    )
    parser.add_argument(
        "--sample",
        help="Raw Strava events JSON used by the test command"
    )
    return parser.parse_args(argv)


def apply_args(config: Config, args: argparse.Namespace) -> Config:
    """Override configuration values given on the command line."""
    if args.raw_newlines:
        config.raw_newlines = True
    if args.events_file:
        config.events_file = args.events_file
    if args.calendar_file:
        config.calendar_file = args.calendar_file
    if args.sample:
        config.sample_file = args.sample
    return config


def fetch_events(config: Config, logger: Logger, api: Optional[StravaAPI] = None) -> List[ClubEvent]:
    """
    Fetch and convert the club's upcoming events.

    Raises:
        ConfigError: If Strava credentials are missing
        StravaAPIError: If the API returns an error
    """
    if api is None:
        api = StravaAPI.from_config(config)

    logger.normal("Fetching club events from Strava API...")
    raw_events = api.fetch_club_events(logger)
    logger.normal(f"Fetched {len(raw_events)} events from Strava")

    events = convert_strava_events(raw_events, config.club_id, logger)
    logger.debug(f"Converted {len(events)} events")
    return events


def update_cache(config: Config, events: List[ClubEvent], logger: Logger, now: datetime.datetime) -> List[ClubEvent]:
    """Filter to the retention window, sort newest first and save."""
    final_events = sort_newest_first(filter_retained(events, now, config.retain_days))
    logger.normal(f"Saving {len(final_events)} events to {config.events_file}...")
    save_events(config.events_file, final_events)
    return final_events


def write_ics(config: Config, events: List[ClubEvent], logger: Logger, now: datetime.datetime) -> int:
    """
    Render the upcoming events to the ICS file.

    Returns:
        Number of events written

    Raises:
        ICSValidationError: If the rendered document does not parse
        StorageError: If the file cannot be written
    """
    upcoming = sort_chronological(filter_upcoming(events, now, config.sync_days))
    content = generate_ics(
        upcoming,
        config.club_id,
        now=now,
        calendar_name=config.calendar_name,
        raw_newlines=config.raw_newlines,
        html_description=config.html_description,
    )

    # raw line breaks are not RFC 5545 content, icalendar cannot read them back
    if not config.raw_newlines:
        count = validate_ics(content)
        if count != len(upcoming):
            raise ICSValidationError(
                f"Generated calendar has {count} events, expected {len(upcoming)}"
            )

    try:
        write_file_atomic(config.calendar_file, content)
    except OSError as e:
        raise StorageError(f"Error saving ICS file {config.calendar_file}: {e}") from e

    logger.normal(
        f"Generated {config.calendar_file} with {len(upcoming)} events "
        f"from next {config.sync_days} days"
    )
    return len(upcoming)


def get_calendar_client(config: Config, logger: Logger) -> GoogleCalendarClient:
    logger.normal("Authenticating with Google Calendar...")
    credentials = get_google_credentials(config, logger)
    return GoogleCalendarClient(build_calendar_service(credentials))


def sync_google_calendar(
    config: Config,
    events: List[ClubEvent],
    logger: Logger,
    now: datetime.datetime,
    client: Optional[GoogleCalendarClient] = None,
) -> SyncResult:
    """Sync the upcoming events to Google Calendar."""
    if client is None:
        client = get_calendar_client(config, logger)

    events_to_sync = filter_upcoming(events, now, config.sync_days)
    logger.normal(f"Syncing {len(events_to_sync)} events with Google Calendar...")
    result = sync_events_to_calendar(client, config, events_to_sync, logger, now)
    logger.normal("Google Calendar sync completed")
    return result


def run_full_sync(
    config: Config,
    logger: Logger,
    now: Optional[datetime.datetime] = None,
    api: Optional[StravaAPI] = None,
    client: Optional[GoogleCalendarClient] = None,
) -> Optional[SyncResult]:
    """
    Fetch from Strava, update the cache, sync Google Calendar and write the ICS file.

    Returns:
        The Google Calendar SyncResult, or None if no calendar is configured
    """
    if now is None:
        now = datetime.datetime.now(datetime.timezone.utc)

    config.require_strava()
    events = fetch_events(config, logger, api)
    update_cache(config, events, logger, now)

    result = None
    if not config.calendar_id:
        logger.normal("Warning: GOOGLE_CALENDAR_ID not set, skipping Google Calendar sync")
    else:
        result = sync_google_calendar(config, events, logger, now, client)

    logger.normal("Generating ICS file...")
    write_ics(config, load_events(config.events_file), logger, now)
    return result


def run_ics_only(config: Config, logger: Logger, now: Optional[datetime.datetime] = None) -> int:
    """Generate the ICS file from cached events."""
    if now is None:
        now = datetime.datetime.now(datetime.timezone.utc)
    logger.normal("Generating ICS file from cached events...")
    return write_ics(config, load_events(config.events_file), logger, now)


def run_gcal_only(
    config: Config,
    logger: Logger,
    now: Optional[datetime.datetime] = None,
    client: Optional[GoogleCalendarClient] = None,
) -> SyncResult:
    """Sync cached events to Google Calendar."""
    if now is None:
        now = datetime.datetime.now(datetime.timezone.utc)
    config.require_calendar()
    logger.normal("Syncing cached events to Google Calendar...")
    return sync_google_calendar(config, load_events(config.events_file), logger, now, client)


def run_test_sample(config: Config, logger: Logger, now: Optional[datetime.datetime] = None) -> List[ClubEvent]:
    """
    Convert a saved raw Strava response into the event cache.

    Raises:
        StorageError: If the sample cannot be read
    """
    if now is None:
        now = datetime.datetime.now(datetime.timezone.utc)

    logger.normal(f"Testing with sample data from {config.sample_file}...")
    try:
        with open(config.sample_file, encoding="utf-8") as f:
            raw_events = json.load(f)
    except OSError as e:
        raise StorageError(f"Failed to read sample events file: {e}") from e
    except json.JSONDecodeError as e:
        raise StorageError(f"Failed to parse sample events: {e}") from e

    logger.normal(f"Loaded {len(raw_events)} sample events")
    events = convert_strava_events(raw_events, config.club_id, logger)
    logger.normal(f"Converted {len(events)} events")

    final_events = update_cache(config, events, logger, now)

    london = get_timezone()
    for event in final_events[:5]:
        logger.normal(
            f"Event {event.id}: {event.title} - "
            f"{event.start.astimezone(london).strftime('%Y-%m-%d %H:%M')} ({event.location})"
        )
    if len(final_events) > 5:
        logger.normal(f"... and {len(final_events) - 5} more events")
    return final_events


def main(argv: Optional[List[str]] = None, environ=None) -> int:
    """
    Main entry point for the CLI.

    Returns:
        Process exit status: 0 on success, 1 if the run was aborted
    """
    args = parse_args(argv)
    logger = Logger(get_log_level(args.verbose))

    try:
        config = apply_args(load_config(environ), args)

        if args.command == "ics":
            run_ics_only(config, logger)
        elif args.command == "gcal":
            run_gcal_only(config, logger)
        elif args.command == "test":
            run_test_sample(config, logger)
        else:
            logger.normal("Starting Strava to Google Calendar Sync...")
            run_full_sync(config, logger)
            logger.normal("All tasks completed successfully!")

    except FATAL_ERRORS as e:
        logger.error(str(e))
        return 1

    return 0


def run() -> None:
    """Console script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    run()
