from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime

from .models import CalendarEvent, TimeFormat

CALENDAR_HEADER = "## Calendar Events"


@dataclass(frozen=True)
class FormatOptions:
    time_format: TimeFormat = "12h"
    include_location: bool = True
    include_description: bool = False
    include_ongoing_events: bool = True


class EventFormatter:
    def __init__(self, options: FormatOptions) -> None:
        self._options = options

    def format_date_header(self, day: date) -> str:  # noqa: ARG002
        return CALENDAR_HEADER

    def format_events(self, events: list[CalendarEvent]) -> str:
        if not events:
            return "No events scheduled for this day."
        return "\n".join(self._format_event(e) for e in events)

    def format_events_grouped_by_day(
        self,
        events: list[CalendarEvent],
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> str:
        """Group events under one heading per local day.

        Events that began before ``start`` but are still running are listed on the
        first day of the range when ongoing events are enabled, and dropped otherwise.
        """
        if not events:
            return "No events scheduled for this period."

        by_day: dict[date, list[CalendarEvent]] = {}
        for event in events:
            if start is not None and event.start < start:
                if self._options.include_ongoing_events and event.end >= start:
                    by_day.setdefault(start.date(), []).append(event)
                continue
            if end is not None and event.start > end:
                continue
            by_day.setdefault(event.start.date(), []).append(event)

        lines: list[str] = []
        for day in sorted(by_day):
            lines.append(f"### {_format_day(day)}")
            lines.append("")
            for event in by_day[day]:
                ongoing = start is not None and event.start < start
                lines.append(self._format_event(event, ongoing=ongoing))
            lines.append("")
        return "\n".join(lines)

    def _format_event(self, event: CalendarEvent, *, ongoing: bool = False) -> str:
        line = f"- {self._format_time(event)}: {event.title}"
        if ongoing:
            line += " (ongoing)"
        if self._options.include_location and event.location:
            line += f" ({event.location})"
        if self._options.include_description and event.description:
            line += f"\n  {event.description}"
        return line

    def _format_time(self, event: CalendarEvent) -> str:
        if event.is_all_day:
            return "All day"
        return f"{self._format_clock(event.start)} - {self._format_clock(event.end)}"

    def _format_clock(self, value: datetime) -> str:
        if self._options.time_format == "24h":
            return f"{value.hour:02d}:{value.minute:02d}"
        period = "PM" if value.hour >= 12 else "AM"
        hour = value.hour % 12 or 12
        return f"{hour}:{value.minute:02d} {period}"


def _format_day(day: date) -> str:
    return f"{day.strftime('%A')}, {day.strftime('%B')} {day.day}, {day.year}"
