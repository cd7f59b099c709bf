from __future__ import annotations

from datetime import date, datetime
from unittest.mock import MagicMock
from zoneinfo import ZoneInfo

import pytest
from google.auth.exceptions import RefreshError
from google.oauth2.credentials import Credentials

from notecal.errors import CalendarError
from notecal.google_calendar import CalendarConfig, GoogleCalendarClient, parse_event

ROME = ZoneInfo("Europe/Rome")


def _client() -> GoogleCalendarClient:
    client = GoogleCalendarClient(Credentials("a1"), CalendarConfig(), tz=ROME)
    client._service = MagicMock()
    return client


def test_parse_timed_event_converts_to_local_time() -> None:
    event = parse_event(
        {
            "id": "e1",
            "summary": "Standup",
            "start": {"dateTime": "2025-01-06T08:30:00Z"},
            "end": {"dateTime": "2025-01-06T09:00:00Z"},
            "location": "Room 1",
        },
        ROME,
    )
    assert event.title == "Standup"
    assert not event.is_all_day
    assert event.start == datetime(2025, 1, 6, 9, 30, tzinfo=ROME)
    assert event.start.hour == 9
    assert event.location == "Room 1"
    assert event.description is None


def test_parse_all_day_event_without_title() -> None:
    event = parse_event(
        {"id": "e2", "start": {"date": "2025-01-06"}, "end": {"date": "2025-01-07"}},
        ROME,
    )
    assert event.title == "(No title)"
    assert event.is_all_day
    assert event.start == datetime(2025, 1, 6, tzinfo=ROME)
    assert event.end == datetime(2025, 1, 7, tzinfo=ROME)


def test_events_for_date_follows_pages() -> None:
    client = _client()
    list_call = client._service.events.return_value.list
    list_call.return_value.execute.side_effect = [
        {
            "items": [{"id": "1", "summary": "A", "start": {"date": "2025-01-06"}}],
            "nextPageToken": "p2",
        },
        {"items": [{"id": "2", "summary": "B", "start": {"date": "2025-01-06"}}]},
    ]

    events = client.events_for_date(date(2025, 1, 6))

    assert [e.title for e in events] == ["A", "B"]
    first_kwargs = list_call.call_args_list[0].kwargs
    assert first_kwargs["calendarId"] == "primary"
    assert first_kwargs["timeMin"] == "2025-01-06T00:00:00+01:00"
    assert first_kwargs["timeMax"] == "2025-01-06T23:59:59.999000+01:00"
    assert first_kwargs["singleEvents"] is True
    assert first_kwargs["orderBy"] == "startTime"
    assert first_kwargs["pageToken"] is None
    assert list_call.call_args_list[1].kwargs["pageToken"] == "p2"


def test_refresh_failure_asks_for_reauthentication() -> None:
    client = _client()
    client._service.events.return_value.list.return_value.execute.side_effect = RefreshError(
        "invalid_grant"
    )
    with pytest.raises(CalendarError, match="re-authenticate"):
        client.events_for_range(datetime(2025, 1, 6, tzinfo=ROME), datetime(2025, 1, 7, tzinfo=ROME))


def test_connection_check() -> None:
    client = _client()
    assert client.test_connection() is True
    client._service.calendarList.return_value.list.return_value.execute.side_effect = RefreshError(
        "expired"
    )
    assert client.test_connection() is False
