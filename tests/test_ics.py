"""Unit tests for the iCalendar serializer."""
import datetime

import pytest
from icalendar import Calendar

from strava_calendar_sync.core import ClubEvent, compose_description, format_sync_time
from strava_calendar_sync.ics import (
    ICSValidationError,
    MAX_LINE_OCTETS,
    escape_text,
    fold_line,
    format_property,
    generate_ics,
    strip_markup,
    unescape_text,
    unfold_lines,
    validate_ics,
)

UTC = datetime.timezone.utc
NOW = datetime.datetime(2025, 5, 25, 12, 0, tzinfo=UTC)


def physical_lines(text):
    return text.split("\r\n")


class TestEscapeText:
    """Test cases for TEXT value escaping."""

    def test_special_characters(self):
        assert escape_text("a\\b;c,d") == "a\\\\b\\;c\\,d"

    def test_backslash_escaped_before_others(self):
        """Test that escapes added for ';' are not escaped again."""
        assert escape_text(";") == "\\;"
        assert escape_text("\\;") == "\\\\\\;"

    def test_all_line_break_forms(self):
        assert escape_text("one\r\ntwo\nthree\rfour") == "one\\ntwo\\nthree\\nfour"

    def test_raw_newline_policy_keeps_breaks(self):
        assert escape_text("one\ntwo, three", raw_newlines=True) == "one\ntwo\\, three"

    @pytest.mark.parametrize("text", ["", "\\", ";;", ",", "a\\,b;c\\\\", "\\n literal"])
    def test_unescape_round_trip(self, text):
        assert unescape_text(escape_text(text)) == text

    def test_unescape_newline(self):
        assert unescape_text(escape_text("one\ntwo")) == "one\ntwo"


class TestStripMarkup:
    """Test cases for HTML stripping."""

    def test_removes_tags_and_decodes_entities(self):
        assert strip_markup("<p>Run &amp; chat</p><br/>5&nbsp;km") == "Run & chat5 km"

    def test_decodes_quotes_and_brackets(self):
        assert strip_markup("&quot;hills&quot; &lt;3 it&#39;s &apos;fun&apos; &gt;") == \
            "\"hills\" <3 it's 'fun' >"

    def test_ampersand_decoded_last(self):
        assert strip_markup("&amp;lt;b&amp;gt;") == "&lt;b&gt;"

    def test_plain_text_untouched(self):
        assert strip_markup("Meet at 6:30, bring water") == "Meet at 6:30, bring water"


class TestFoldLine:
    """Test cases for RFC 5545 line folding."""

    def test_short_line_unchanged(self):
        assert fold_line("SUMMARY:Tempo Run") == "SUMMARY:Tempo Run"

    def test_long_line_folded(self):
        line = "DESCRIPTION:" + "x" * 200
        folded = fold_line(line)
        lines = physical_lines(folded)

        assert len(lines) == 3
        assert len(lines[0]) == MAX_LINE_OCTETS
        assert all(len(part.encode("utf-8")) <= MAX_LINE_OCTETS for part in lines)
        assert all(part.startswith(" ") for part in lines[1:])
        assert unfold_lines(folded) == line

    def test_multibyte_characters_not_split(self):
        line = "SUMMARY:" + "é" * 100
        folded = fold_line(line)

        assert all(len(part.encode("utf-8")) <= MAX_LINE_OCTETS for part in physical_lines(folded))
        assert len(physical_lines(folded)[0].encode("utf-8")) == 74
        assert unfold_lines(folded) == line

    def test_raw_paragraphs_folded_independently(self):
        line = "DESCRIPTION:Leader: Sam\n\n" + "y" * 100
        assert fold_line(line) == (
            "DESCRIPTION:Leader: Sam\r\n"
            "\r\n"
            + "y" * 75 + "\r\n"
            " " + "y" * 25
        )

    @pytest.mark.parametrize("text", [
        "",
        "Tempo Run",
        "Hills, hills; and more hills\n" * 10,
        "☃ snow run ☃ " * 20,
        "https://www.strava.com/clubs/123456/group_events/1 " * 5,
    ])
    def test_property_lines_within_limit(self, text):
        """Test that every physical line fits and unfolding restores the logical line."""
        formatted = format_property("DESCRIPTION", text)
        assert formatted.endswith("\r\n")

        body = formatted[:-2]
        for part in physical_lines(body):
            assert len(part.encode("utf-8")) <= MAX_LINE_OCTETS
        assert unfold_lines(body) == "DESCRIPTION:" + escape_text(text)


class TestFormatProperty:
    """Test cases for format_property."""

    def test_escapes_value(self):
        assert format_property("SUMMARY", "Tempo, Hills; Chat") == "SUMMARY:Tempo\\, Hills\\; Chat\r\n"

    def test_strips_markup(self):
        assert format_property("SUMMARY", "<b>Tempo</b> Run") == "SUMMARY:Tempo Run\r\n"

    def test_keeps_markup_when_disabled(self):
        result = format_property("X-ALT-DESC;FMTTYPE=text/html", "<p>Hi</p>", strip_html=False)
        assert result == "X-ALT-DESC;FMTTYPE=text/html:<p>Hi</p>\r\n"

    def test_unescaped_uri(self):
        url = "https://example.com/?a=1,2"
        assert format_property("URL", url, strip_html=False, escape=False) == f"URL:{url}\r\n"

    def test_none_value(self):
        assert format_property("LOCATION", None) == "LOCATION:\r\n"


class TestGenerateICS:
    """Test cases for whole-document rendering."""

    def test_events_in_given_order(self, tempo_run, hill_reps):
        content = generate_ics([tempo_run, hill_reps], "123456", now=NOW)

        assert content.count("BEGIN:VEVENT") == 2
        assert content.count("END:VEVENT") == 2
        assert content.index("UID:1@strava.com") < content.index("UID:2@strava.com")

        first = content.index("DTSTART;TZID=Europe/London:20250601T183000")
        second = content.index("DTSTART;TZID=Europe/London:20250608T183000")
        assert first < second
        assert "DTEND;TZID=Europe/London:20250601T193000\r\n" in content
        assert "DTEND;TZID=Europe/London:20250608T193000\r\n" in content

    def test_does_not_sort(self, tempo_run, hill_reps):
        content = generate_ics([hill_reps, tempo_run], "123456", now=NOW)
        assert content.index("UID:2@strava.com") < content.index("UID:1@strava.com")

    def test_document_frame(self, tempo_run):
        content = generate_ics([tempo_run], "123456", now=NOW)

        assert content.startswith("BEGIN:VCALENDAR\r\nVERSION:2.0\r\n")
        assert content.endswith("END:VCALENDAR\r\n\r\n")
        assert "\n" not in content.replace("\r\n", "")
        assert "TZID:Europe/London\r\n" in content
        assert "RRULE:FREQ=YEARLY;BYMONTH=3;BYDAY=-1SU\r\n" in content
        assert "RRULE:FREQ=YEARLY;BYMONTH=10;BYDAY=-1SU\r\n" in content
        assert "DTSTAMP:20250525T120000Z\r\n" in content
        assert "CATEGORIES:Running,Club Event\r\n" in content
        assert "URL:https://www.strava.com/clubs/123456/group_events/1\r\n" in content

    def test_all_lines_within_limit(self, tempo_run, hill_reps):
        for raw_newlines in (False, True):
            content = generate_ics([tempo_run, hill_reps], "123456", now=NOW, raw_newlines=raw_newlines)
            for line in physical_lines(content):
                assert len(line.encode("utf-8")) <= MAX_LINE_OCTETS

    def test_parses_with_icalendar(self, tempo_run, hill_reps):
        """Test that a strict parser reads back the escaped and folded values."""
        content = generate_ics([tempo_run, hill_reps], "123456", now=NOW)
        events = Calendar.from_ical(content).walk("VEVENT")

        assert len(events) == 2
        assert str(events[0]["UID"]) == "1@strava.com"
        assert str(events[0]["LOCATION"]) == "Priory Park, Great Malvern"
        assert str(events[1]["SUMMARY"]) == "Hill Reps"
        assert str(events[1]["DESCRIPTION"]) == compose_description(
            hill_reps, "123456", format_sync_time(NOW)
        )
        assert events[0]["DTSTART"].dt == tempo_run.start

    def test_location_omitted_when_empty(self):
        event = ClubEvent(
            id=3,
            title="Virtual 5k",
            start=datetime.datetime(2025, 6, 3, 18, 0, tzinfo=UTC),
        )
        content = generate_ics([event], "123456", now=NOW)
        assert "LOCATION:" not in content
        assert "URL:" not in content

    def test_html_description_optional(self, tempo_run):
        with_html = generate_ics([tempo_run], "123456", now=NOW)
        without_html = generate_ics([tempo_run], "123456", now=NOW, html_description=False)

        assert "X-ALT-DESC;FMTTYPE=text/html:<p><strong>Leader:</strong>" in with_html
        assert "X-ALT-DESC" not in without_html

    def test_raw_newline_policy(self, tempo_run):
        content = generate_ics([tempo_run], "123456", now=NOW, raw_newlines=True)
        assert "DESCRIPTION:Leader: Sam Jones\r\n\r\nLocation: Priory Park\\, Great Malvern" in content

    def test_empty_and_none(self):
        for events in ([], None):
            content = generate_ics(events, "123456", now=NOW)
            assert "BEGIN:VEVENT" not in content
            assert validate_ics(content) == 0

    def test_calendar_name(self):
        content = generate_ics([], "123456", now=NOW, calendar_name="Hill Runners, Worcs")
        assert "X-WR-CALNAME:Hill Runners\\, Worcs\r\n" in content


class TestValidateICS:
    """Test cases for validate_ics."""

    def test_counts_events(self, tempo_run, hill_reps):
        content = generate_ics([tempo_run, hill_reps], "123456", now=NOW)
        assert validate_ics(content) == 2

    def test_rejects_garbage(self):
        with pytest.raises(ICSValidationError):
            validate_ics("this is not a calendar")
