from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any
from zoneinfo import ZoneInfo

from dateutil import parser as date_parser
from google.auth.credentials import Credentials
from google.auth.exceptions import GoogleAuthError
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from .errors import CalendarError
from .models import CalendarEvent

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/calendar.readonly"]


@dataclass(frozen=True)
class CalendarConfig:
    calendar_id: str = "primary"


def day_bounds(day: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day, time(23, 59, 59, 999000), tzinfo=tz)
    return start, end


def _parse_when(value: dict[str, Any], tz: ZoneInfo) -> tuple[datetime, bool]:
    if value.get("dateTime"):
        return date_parser.isoparse(value["dateTime"]).astimezone(tz), False
    if value.get("date"):
        day = date.fromisoformat(value["date"])
        return datetime.combine(day, time.min, tzinfo=tz), True
    raise ValueError(f"Event time has neither dateTime nor date: {value!r}")


def parse_event(item: dict[str, Any], tz: ZoneInfo) -> CalendarEvent:
    start, is_all_day = _parse_when(item.get("start") or {}, tz)
    end_raw = item.get("end") or {}
    if end_raw:
        end, _ = _parse_when(end_raw, tz)
    else:
        end = start + (timedelta(days=1) if is_all_day else timedelta(0))
    return CalendarEvent(
        id=str(item.get("id") or ""),
        title=item.get("summary") or "(No title)",
        start=start,
        end=end,
        location=item.get("location") or None,
        description=item.get("description") or None,
        is_all_day=is_all_day,
    )


class GoogleCalendarClient:
    def __init__(self, credentials: Credentials, cfg: CalendarConfig, *, tz: ZoneInfo) -> None:
        self._credentials = credentials
        self._cfg = cfg
        self._tz = tz
        self._service: Any = None

    def _get_service(self) -> Any:
        if self._service is None:
            self._service = build(
                "calendar", "v3", credentials=self._credentials, cache_discovery=False
            )
        return self._service

    def events_for_date(self, day: date) -> list[CalendarEvent]:
        start, end = day_bounds(day, self._tz)
        return self.events_for_range(start, end)

    def events_for_range(self, start: datetime, end: datetime) -> list[CalendarEvent]:
        service = self._get_service()
        items: list[dict[str, Any]] = []
        page_token: str | None = None
        try:
            while True:
                resp = (
                    service.events()
                    .list(
                        calendarId=self._cfg.calendar_id,
                        timeMin=start.isoformat(),
                        timeMax=end.isoformat(),
                        singleEvents=True,
                        orderBy="startTime",
                        pageToken=page_token,
                    )
                    .execute()
                )
                items.extend(resp.get("items", []))
                page_token = resp.get("nextPageToken")
                if not page_token:
                    break
        except (HttpError, GoogleAuthError) as exc:
            raise CalendarError("Failed to fetch calendar events. Please re-authenticate.") from exc

        events = [parse_event(item, self._tz) for item in items]
        logger.info(
            "Calendar events fetched",
            extra={
                "event": "calendar_fetched",
                "calendar_id": self._cfg.calendar_id,
                "event_count": len(events),
            },
        )
        return events

    def test_connection(self) -> bool:
        try:
            self._get_service().calendarList().list().execute()
        except (HttpError, GoogleAuthError):
            logger.warning("Calendar connection check failed", extra={"event": "calendar_check_failed"})
            return False
        return True
