"""
Strava Calendar Sync Package

This package synchronizes a Strava club's upcoming group events with a
Google Calendar and publishes them as an iCalendar (ICS) file.
"""

from .core import (
    CalendarEvent,
    ClubEvent,
    LogLevel,
    Logger,
    format_correlation_id,
    parse_correlation_id,
)
from .ics import escape_text, fold_line, format_property, generate_ics, strip_markup
from .strava import StravaAPI, convert_strava_event, redact_phone_numbers
from .sync import SyncPlan, SyncResult, apply_sync_plan, plan_sync, sync_events_to_calendar

__version__ = "0.1.0"
