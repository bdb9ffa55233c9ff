"""JSON event cache and the time-window filters applied around it."""

import datetime
import json
import os
import tempfile
from typing import Iterable, List

from .core import ClubEvent
from .strava import redact_phone_numbers


class StorageError(Exception):
    """Raised when the event cache cannot be read or written."""


def write_file_atomic(path: str, content: str) -> None:
    """
    Write a file through a temporary file in the same directory.

    Either the old or the new content is on disk afterwards, never a
    partial write.

    Raises:
        OSError: If the directory cannot be created or the write fails
    """
    directory = os.path.dirname(path) or "."
    os.makedirs(directory, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".tmp-", suffix=os.path.basename(path))
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(content)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise


def save_events(path: str, events: Iterable[ClubEvent]) -> None:
    """
    Save events to the JSON cache file.

    Raises:
        StorageError: If the file cannot be written
    """
    data = json.dumps([event.to_dict() for event in events], indent=2, ensure_ascii=False)
    try:
        write_file_atomic(path, data)
    except OSError as e:
        raise StorageError(f"failed to write events file {path}: {e}") from e


def load_events(path: str) -> List[ClubEvent]:
    """
    Load events from the JSON cache file.

    Phone number redaction is applied again so caches written by older
    versions never leak numbers.

    Returns:
        Cached events, or an empty list if the file does not exist

    Raises:
        StorageError: If the file cannot be read or parsed
    """
    if not os.path.exists(path):
        return []

    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except OSError as e:
        raise StorageError(f"failed to read events file {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise StorageError(f"failed to parse events file {path}: {e}") from e

    if not isinstance(data, list):
        raise StorageError(f"events file {path} does not contain a list")

    events = []
    for item in data:
        try:
            event = ClubEvent.from_dict(item)
        except (KeyError, TypeError, ValueError) as e:
            raise StorageError(f"invalid event in {path}: {e}") from e
        event.description = redact_phone_numbers(event.description)
        events.append(event)
    return events


def filter_retained(
    events: Iterable[ClubEvent],
    now: datetime.datetime,
    retain_days: int = 7,
) -> List[ClubEvent]:
    """Keep events starting on or after now - retain_days."""
    cutoff = now - datetime.timedelta(days=retain_days)
    return [event for event in events if event.start >= cutoff]


def filter_upcoming(
    events: Iterable[ClubEvent],
    now: datetime.datetime,
    days: int = 60,
) -> List[ClubEvent]:
    """Keep events starting strictly between now and now + days."""
    horizon = now + datetime.timedelta(days=days)
    return [event for event in events if now < event.start < horizon]


def sort_chronological(events: Iterable[ClubEvent]) -> List[ClubEvent]:
    return sorted(events, key=lambda event: (event.start, event.id))


def sort_newest_first(events: Iterable[ClubEvent]) -> List[ClubEvent]:
    return sorted(events, key=lambda event: (event.start, event.id), reverse=True)
