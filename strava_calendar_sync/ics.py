"""
iCalendar (RFC 5545) output for Strava club events.

The document is written by hand rather than through icalendar's encoder so
that escaping, line folding and the line-break policy stay under our
control. icalendar is used to re-parse the result before it is published.

Two line-break policies are supported:

* escaped (default): every CR, LF or CRLF inside a text value becomes the
  two characters ``\\n``. This is what RFC 5545 requires and what Apple
  Calendar and most strict parsers expect.
* raw: line breaks are left in the value and each paragraph is folded on
  its own. Some web calendar importers show these as separate paragraphs,
  but the output is no longer valid RFC 5545 content.
"""

import datetime
import html
import re
from typing import Iterable, Optional

from icalendar import Calendar

from .core import (
    ClubEvent,
    TIMEZONE,
    compose_description,
    format_correlation_id,
    format_sync_time,
    get_timezone,
)

CRLF = "\r\n"

# RFC 5545 section 3.1: lines SHOULD NOT be longer than 75 octets
MAX_LINE_OCTETS = 75

PRODID = "-//StravaCal//Strava Club Events//EN"
DEFAULT_CALENDAR_NAME = "Malvern Buzzards Running Club"
CALENDAR_DESCRIPTION = "Club running events from Strava"
CATEGORIES = "Running,Club Event"

VTIMEZONE = (
    "BEGIN:VTIMEZONE",
    f"TZID:{TIMEZONE}",
    "BEGIN:DAYLIGHT",
    "DTSTART:20070325T010000",
    "RRULE:FREQ=YEARLY;BYMONTH=3;BYDAY=-1SU",
    "TZOFFSETFROM:+0000",
    "TZOFFSETTO:+0100",
    "TZNAME:BST",
    "END:DAYLIGHT",
    "BEGIN:STANDARD",
    "DTSTART:20071028T020000",
    "RRULE:FREQ=YEARLY;BYMONTH=10;BYDAY=-1SU",
    "TZOFFSETFROM:+0100",
    "TZOFFSETTO:+0000",
    "TZNAME:GMT",
    "END:STANDARD",
    "END:VTIMEZONE",
)

_TAG_RE = re.compile(r"<[^>]*>")
_LINE_BREAK_RE = re.compile(r"\r\n|\r|\n")
_ESCAPE_SEQUENCE_RE = re.compile(r"\\(.)", re.DOTALL)

# &amp; is decoded last so "&amp;lt;" becomes "&lt;" and not "<"
_ENTITIES = (
    ("&nbsp;", " "),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&quot;", '"'),
    ("&#39;", "'"),
    ("&apos;", "'"),
    ("&amp;", "&"),
)


class ICSValidationError(Exception):
    """Raised when a rendered calendar does not parse back."""


def strip_markup(text: str) -> str:
    """
    Remove HTML tags and decode common entities.

    Args:
        text: Text that may contain inline markup

    Returns:
        Plain text
    """
    text = _TAG_RE.sub("", text)
    for entity, char in _ENTITIES:
        text = text.replace(entity, char)
    return text


def escape_text(text: str, raw_newlines: bool = False) -> str:
    """
    Escape a TEXT value per RFC 5545.

    Backslash is escaped first so the backslashes introduced for ';', ','
    and newlines are not doubled.

    Args:
        text: Plain text value
        raw_newlines: Leave line breaks in place instead of writing ``\\n``

    Returns:
        Escaped value
    """
    text = text.replace("\\", "\\\\")
    text = text.replace(";", "\\;")
    text = text.replace(",", "\\,")
    if not raw_newlines:
        text = _LINE_BREAK_RE.sub("\\\\n", text)
    return text


def unescape_text(text: str) -> str:
    """Reverse escape_text for the escaped newline policy."""
    def replace(match):
        char = match.group(1)
        if char in "nN":
            return "\n"
        return char

    return _ESCAPE_SEQUENCE_RE.sub(replace, text)


def _fold_segment(text: str) -> str:
    pieces = []
    current = []
    size = 0
    budget = MAX_LINE_OCTETS
    for char in text:
        width = len(char.encode("utf-8"))
        if size + width > budget:
            pieces.append("".join(current))
            current = []
            size = 0
            # continuation lines start with a space
            budget = MAX_LINE_OCTETS - 1
        current.append(char)
        size += width
    pieces.append("".join(current))
    return (CRLF + " ").join(pieces)


def fold_line(line: str) -> str:
    """
    Fold a content line so no physical line exceeds 75 octets.

    Folds never split a multi-byte UTF-8 character. A real line break inside
    the value (raw newline policy) ends a paragraph: each paragraph is folded
    on its own and paragraphs are joined with a plain CRLF.

    Args:
        line: Logical content line without the trailing CRLF

    Returns:
        Folded text without the trailing CRLF
    """
    return CRLF.join(_fold_segment(segment) for segment in _LINE_BREAK_RE.split(line))


def unfold_lines(text: str) -> str:
    """Undo fold_line continuation breaks."""
    return text.replace(CRLF + " ", "")


def format_property(
    name: str,
    value: str,
    strip_html: bool = True,
    escape: bool = True,
    raw_newlines: bool = False,
) -> str:
    """
    Format a property with markup stripping, escaping and line folding.

    Args:
        name: Property name including any parameters (e.g. "DTSTART;TZID=...")
        value: Raw property value
        strip_html: Remove markup before escaping
        escape: Apply TEXT escaping (disable for URI and date values)
        raw_newlines: Line-break policy passed to escape_text

    Returns:
        The folded content line terminated by CRLF
    """
    if value is None:
        value = ""
    if strip_html:
        value = strip_markup(value)
    if escape:
        value = escape_text(value, raw_newlines)
    return fold_line(f"{name}:{value}") + CRLF


def compose_html_description(event: ClubEvent, club_id: str, sync_time: str) -> str:
    """Build the X-ALT-DESC variant of the description."""
    def paragraph(text: str) -> str:
        return html.escape(text).replace("\n", "<br>")

    url = html.escape(event.url, quote=True)
    return (
        f"<p><strong>Leader:</strong> {paragraph(event.organizer)}</p>"
        f"<p><strong>Location:</strong> {paragraph(event.location)}</p>"
        f"<p>{paragraph(event.description)}</p>"
        f'<p><strong>View on Strava:</strong> <a href="{url}">{url}</a></p>'
        f"<p><strong>Synced from Strava Club {html.escape(club_id)} on:</strong> "
        f"{html.escape(sync_time)}</p>"
    )


def _format_local(value: datetime.datetime) -> str:
    return value.astimezone(get_timezone()).strftime("%Y%m%dT%H%M%S")


def render_event(
    event: ClubEvent,
    club_id: str,
    now: datetime.datetime,
    raw_newlines: bool = False,
    html_description: bool = True,
) -> str:
    """Render one VEVENT block."""
    sync_time = format_sync_time(now)
    stamp = now.astimezone(datetime.timezone.utc).strftime("%Y%m%dT%H%M%SZ")

    lines = [
        "BEGIN:VEVENT" + CRLF,
        f"UID:{format_correlation_id(event.id)}" + CRLF,
        format_property(f"DTSTART;TZID={TIMEZONE}", _format_local(event.start), escape=False),
        format_property(f"DTEND;TZID={TIMEZONE}", _format_local(event.end), escape=False),
        format_property("DTSTAMP", stamp, escape=False),
        format_property("SUMMARY", event.title, raw_newlines=raw_newlines),
        format_property(
            "DESCRIPTION",
            compose_description(event, club_id, sync_time),
            raw_newlines=raw_newlines,
        ),
    ]
    if html_description:
        lines.append(format_property(
            "X-ALT-DESC;FMTTYPE=text/html",
            compose_html_description(event, club_id, sync_time),
            strip_html=False,
            raw_newlines=raw_newlines,
        ))
    if event.location:
        lines.append(format_property("LOCATION", event.location, raw_newlines=raw_newlines))
    if event.url:
        lines.append(format_property("URL", event.url, strip_html=False, escape=False))
    lines.append(f"CATEGORIES:{CATEGORIES}" + CRLF)
    lines.append("END:VEVENT" + CRLF)
    return "".join(lines)


def generate_ics(
    events: Optional[Iterable[ClubEvent]],
    club_id: str,
    now: Optional[datetime.datetime] = None,
    calendar_name: str = DEFAULT_CALENDAR_NAME,
    raw_newlines: bool = False,
    html_description: bool = True,
) -> str:
    """
    Render events as an iCalendar document.

    Events are written in the order given; callers sort them first
    (chronologically for the published feed).

    Args:
        events: Events to render, None is treated as empty
        club_id: Strava club ID shown in descriptions
        now: Render time used for DTSTAMP and the sync note, defaults to now
        calendar_name: X-WR-CALNAME value
        raw_newlines: Keep real line breaks in text values
        html_description: Emit an X-ALT-DESC HTML description

    Returns:
        The calendar document with CRLF line endings
    """
    if now is None:
        now = datetime.datetime.now(datetime.timezone.utc)

    parts = [
        "BEGIN:VCALENDAR" + CRLF,
        "VERSION:2.0" + CRLF,
        f"PRODID:{PRODID}" + CRLF,
        "CALSCALE:GREGORIAN" + CRLF,
        "METHOD:PUBLISH" + CRLF,
        format_property("X-WR-CALNAME", calendar_name),
        format_property("X-WR-CALDESC", CALENDAR_DESCRIPTION),
    ]
    parts.extend(line + CRLF for line in VTIMEZONE)

    for event in events or ():
        parts.append(render_event(event, club_id, now, raw_newlines, html_description))

    parts.append("END:VCALENDAR" + CRLF)
    parts.append(CRLF)
    return "".join(parts)


def validate_ics(content: str) -> int:
    """
    Parse a rendered document with icalendar.

    Args:
        content: Calendar document

    Returns:
        Number of VEVENT components found

    Raises:
        ICSValidationError: If the document does not parse
    """
    try:
        calendar = Calendar.from_ical(content)
    except ValueError as e:
        raise ICSValidationError(f"Generated calendar does not parse: {e}") from e
    return len(calendar.walk("VEVENT"))
