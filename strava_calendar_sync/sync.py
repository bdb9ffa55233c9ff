"""
Reconcile Strava club events with a Google Calendar.

Events are matched on their iCalUID (``<strava id>@strava.com``). Calendar
entries with any other UID were not created by this tool and are never
touched. The sync is a plan step (pure) followed by an apply step, so a
second run against an unchanged calendar plans nothing.
"""

import datetime
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from googleapiclient.errors import HttpError

from .core import (
    CalendarEvent,
    ClubEvent,
    Logger,
    TIMEZONE,
    compose_description,
    description_body,
    format_correlation_id,
    format_sync_time,
    get_timezone,
)


@dataclass
class SyncPlan:
    """Operations needed to bring a calendar in line with the Strava events."""
    creates: List[ClubEvent] = field(default_factory=list)
    updates: List[Tuple[CalendarEvent, ClubEvent]] = field(default_factory=list)
    deletes: List[CalendarEvent] = field(default_factory=list)
    unchanged: List[CalendarEvent] = field(default_factory=list)
    unmanaged: List[CalendarEvent] = field(default_factory=list)

    @property
    def operation_count(self) -> int:
        return len(self.creates) + len(self.updates) + len(self.deletes)


@dataclass
class SyncResult:
    """Result of applying a SyncPlan."""
    created: int = 0
    updated: int = 0
    deleted: int = 0
    unchanged: int = 0
    skipped: int = 0
    errors: List[str] = field(default_factory=list)


def build_google_event(event: ClubEvent, description: str) -> Dict[str, Any]:
    """
    Create the full Google Calendar event body for a club event.

    Args:
        event: Source club event
        description: Composed description text

    Returns:
        Event resource suitable for events().insert() and events().update()
    """
    london = get_timezone()
    body = {
        "summary": event.title,
        "location": event.location,
        "description": description,
        "start": {
            "dateTime": event.start.astimezone(london).isoformat(),
            "timeZone": TIMEZONE,
        },
        "end": {
            "dateTime": event.end.astimezone(london).isoformat(),
            "timeZone": TIMEZONE,
        },
        "iCalUID": format_correlation_id(event.id),
    }
    if event.url:
        body["source"] = {"title": "Strava", "url": event.url}
    return body


def _same_instant(existing: Any, expected: datetime.datetime) -> bool:
    # all-day entries carry a bare date and never match a timed event
    if not isinstance(existing, datetime.datetime):
        return False
    return existing == expected


def event_needs_update(item: CalendarEvent, event: ClubEvent, club_id: str) -> bool:
    """
    Compare a calendar entry with the club event it mirrors.

    Summary, start, end and the description body are compared. The trailing
    sync note is left out so the sync timestamp alone never triggers an
    update.
    """
    if item.summary != event.title:
        return True
    if not _same_instant(item.start, event.start) or not _same_instant(item.end, event.end):
        return True
    expected = compose_description(event, club_id, "")
    return description_body(item.description) != description_body(expected)


def plan_sync(
    desired: Iterable[ClubEvent],
    existing: Iterable[CalendarEvent],
    club_id: str,
    logger: Optional[Logger] = None,
) -> SyncPlan:
    """
    Work out which calendar entries to create, update and delete.

    Args:
        desired: Club events that should be in the calendar
        existing: Entries currently in the calendar window
        club_id: Strava club ID, part of the composed description
        logger: Optional logger instance for output

    Returns:
        The SyncPlan; neither input is modified
    """
    if logger is None:
        logger = Logger()

    desired = list(desired)
    desired_by_id = {event.id: event for event in desired}
    processed = set()
    plan = SyncPlan()

    for item in existing:
        strava_id = item.strava_id
        if strava_id is None:
            logger.debug(
                f"[DEBUG] Skipping non-Strava event: {item.summary} (UID: {item.ical_uid})"
            )
            plan.unmanaged.append(item)
            continue

        event = desired_by_id.get(strava_id)
        if event is None:
            plan.deletes.append(item)
            continue

        processed.add(strava_id)
        if event_needs_update(item, event, club_id):
            plan.updates.append((item, event))
        else:
            plan.unchanged.append(item)

    for event in desired:
        if event.id not in processed:
            plan.creates.append(event)
            processed.add(event.id)

    logger.debug(
        f"Sync plan: {len(plan.creates)} to create, {len(plan.updates)} to update, "
        f"{len(plan.deletes)} to delete, {len(plan.unchanged)} unchanged, "
        f"{len(plan.unmanaged)} unmanaged"
    )
    return plan


def _status(error: HttpError) -> Optional[int]:
    try:
        return int(error.resp.status)
    except (AttributeError, TypeError, ValueError):
        return None


def _describe_error(error: HttpError) -> str:
    if "insufficientPermissions" in str(error):
        return (
            "Insufficient permissions. Please check your Google Calendar API "
            "scopes and ensure you have write access to the calendar."
        )
    return str(error)


def _is_duplicate(error: HttpError) -> bool:
    return _status(error) == 409 or "duplicate" in str(error).lower()


def _local_day(value: datetime.datetime) -> str:
    local = value.astimezone(get_timezone())
    return f"{local.strftime('%a')} {local.day} {local.strftime('%b')}"


def apply_sync_plan(
    client: Any,
    calendar_id: str,
    plan: SyncPlan,
    club_id: str,
    sync_time: str,
    logger: Optional[Logger] = None,
) -> SyncResult:
    """
    Apply a SyncPlan: deletes first, then updates, then creates.

    A failed operation is logged and recorded in SyncResult.errors; the
    remaining operations still run. A create rejected as a duplicate is
    counted as skipped.

    Args:
        client: Object with insert_event/update_event/delete_event methods
        calendar_id: ID of the calendar to modify
        plan: Operations to apply
        club_id: Strava club ID, part of the composed description
        sync_time: Preformatted sync timestamp for the description note
        logger: Optional logger instance for output

    Returns:
        Counts of applied operations and error messages
    """
    if logger is None:
        logger = Logger()

    result = SyncResult(unchanged=len(plan.unchanged))

    for item in plan.deletes:
        try:
            client.delete_event(calendar_id, item.google_event_id)
        except HttpError as error:
            if _status(error) == 410:
                logger.normal(f"[SYNC] Already deleted: {item.summary}")
                result.deleted += 1
                continue
            message = f"Failed to delete event {item.strava_id}: {_describe_error(error)}"
            logger.error(message)
            result.errors.append(message)
        else:
            logger.normal(f"[SYNC] Deleted: {item.summary} (no longer on Strava)")
            result.deleted += 1

    for item, event in plan.updates:
        body = build_google_event(event, compose_description(event, club_id, sync_time))
        try:
            client.update_event(calendar_id, item.google_event_id, body)
        except HttpError as error:
            message = f"Failed to update event {event.id}: {_describe_error(error)}"
            logger.error(message)
            result.errors.append(message)
        else:
            logger.normal(f"[SYNC] Updated: {event.title} ({_local_day(event.start)})")
            result.updated += 1

    for event in plan.creates:
        body = build_google_event(event, compose_description(event, club_id, sync_time))
        try:
            client.insert_event(calendar_id, body)
        except HttpError as error:
            if _is_duplicate(error):
                logger.normal(
                    f"[SYNC] Event {event.id} already exists (skipped duplicate): {event.title}"
                )
                result.skipped += 1
                continue
            message = f"Failed to create event {event.id}: {_describe_error(error)}"
            logger.error(message)
            result.errors.append(message)
        else:
            logger.normal(f"[SYNC] Created: {event.title} ({_local_day(event.start)})")
            result.created += 1

    return result


def sync_events_to_calendar(
    client: Any,
    config,
    events: Iterable[ClubEvent],
    logger: Optional[Logger] = None,
    now: Optional[datetime.datetime] = None,
) -> SyncResult:
    """
    Sync club events to the configured Google Calendar.

    This function:
    1. Lists calendar entries from lookback_days ago to lookahead_days (or
       sync_days, if larger) ahead
    2. Deletes entries whose Strava event is gone
    3. Updates entries that have changed
    4. Creates entries for new events

    Args:
        client: GoogleCalendarClient (or compatible) instance
        config: Runtime Config with calendar_id, club_id and window sizes
        events: Club events that should be in the calendar
        logger: Optional logger instance for output
        now: Current time, defaults to now

    Returns:
        SyncResult for the applied operations

    Raises:
        HttpError: If the existing events cannot be listed
    """
    if logger is None:
        logger = Logger()
    if now is None:
        now = datetime.datetime.now(datetime.timezone.utc)

    # the listing must reach every synced event or it is created again each run
    lookahead_days = max(config.lookahead_days, config.sync_days)
    time_min = now - datetime.timedelta(days=config.lookback_days)
    time_max = now + datetime.timedelta(days=lookahead_days)
    existing = client.list_events(config.calendar_id, time_min, time_max)
    logger.normal(f"Found {len(existing)} events in Google Calendar")

    plan = plan_sync(events, existing, config.club_id, logger)
    result = apply_sync_plan(
        client,
        config.calendar_id,
        plan,
        config.club_id,
        format_sync_time(now),
        logger,
    )
    logger.normal(
        f"Sync complete: {result.created} created, {result.updated} updated, "
        f"{result.deleted} deleted, {result.unchanged} unchanged, "
        f"{result.skipped} skipped, {len(result.errors)} errors"
    )
    return result
