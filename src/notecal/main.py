from __future__ import annotations

import argparse
import asyncio
import logging
import re
import sys
import webbrowser
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from functools import partial
from pathlib import Path
from zoneinfo import ZoneInfo

from .config import Settings
from .deps import Deps
from .errors import AuthError, CalendarError
from .formatter import CALENDAR_HEADER, EventFormatter
from .google_calendar import CalendarConfig, GoogleCalendarClient, day_bounds
from .logging import configure_logging
from .models import ClientCredentials, CredentialSet
from .oauth_client import GoogleOAuthClient
from .oauth_flow import FlowCoordinator
from .settings_store import SettingsStore

logger = logging.getLogger(__name__)

_DAILY_NOTE_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})(\s|$|-)")


@dataclass(frozen=True)
class Snippet:
    text: str
    event_count: int


def _announce_url(url: str) -> None:
    print(f"Open this URL in your browser to authorize:\n\n{url}\n", file=sys.stderr)


def _launch_browser(url: str) -> None:
    _announce_url(url)
    webbrowser.open(url, new=2)


def build_coordinator(settings: Settings) -> FlowCoordinator:
    return FlowCoordinator(
        port=settings.oauth_port,
        bind_addr=settings.oauth_bind_addr,
        redirect_host=settings.oauth_redirect_host,
        callback_path=settings.oauth_callback_path,
        oauth_client_factory=partial(
            GoogleOAuthClient, timeout=settings.oauth_exchange_timeout_seconds
        ),
        launch_url=_launch_browser if settings.open_browser else _announce_url,
    )


def build_deps(settings: Settings) -> Deps:
    store = SettingsStore(settings.database_path)
    coordinator = build_coordinator(settings)
    coordinator.add_refresh_listener(store.merge_credentials)
    return Deps(settings=settings, store=store, coordinator=coordinator)


def resolve_client_credentials(deps: Deps) -> ClientCredentials:
    stored = deps.store.client_credentials()
    return ClientCredentials(
        client_id=deps.settings.google_client_id or stored.client_id,
        client_secret=deps.settings.google_client_secret or stored.client_secret,
    )


def resolve_auth_timeout(flag: float | None, settings: Settings) -> float | None:
    """``--timeout`` wins over ``OAUTH_TIMEOUT_SECONDS``; zero or less waits forever."""
    if flag is None:
        return settings.auth_timeout
    return None if flag <= 0 else flag


async def authenticate(deps: Deps, *, timeout: float | None) -> CredentialSet:
    client = resolve_client_credentials(deps)
    credential_set = await deps.coordinator.start_flow(client, timeout=timeout)
    deps.store.replace_credentials(credential_set)
    logger.info("Authenticated with Google Calendar", extra={"event": "authenticated"})
    return credential_set


def build_calendar(deps: Deps) -> GoogleCalendarClient | None:
    stored = deps.store.credential_set()
    if stored is None:
        return None
    credentials = deps.coordinator.build_credentials(resolve_client_credentials(deps), stored)
    return GoogleCalendarClient(
        credentials,
        CalendarConfig(calendar_id=deps.settings.google_calendar_id),
        tz=ZoneInfo(deps.settings.tz),
    )


def week_range(day: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    monday = day - timedelta(days=day.weekday())
    start, _ = day_bounds(monday, tz)
    _, end = day_bounds(monday + timedelta(days=6), tz)
    return start, end


def month_range(day: date, tz: ZoneInfo) -> tuple[datetime, datetime]:
    first = day.replace(day=1)
    next_first = (first + timedelta(days=32)).replace(day=1)
    start = datetime.combine(first, time.min, tzinfo=tz)
    _, end = day_bounds(next_first - timedelta(days=1), tz)
    return start, end


def render_day(calendar: GoogleCalendarClient, formatter: EventFormatter, day: date) -> Snippet:
    events = calendar.events_for_date(day)
    header = formatter.format_date_header(day)
    return Snippet(f"\n{header}\n\n{formatter.format_events(events)}\n", len(events))


def render_week(
    calendar: GoogleCalendarClient, formatter: EventFormatter, day: date, tz: ZoneInfo
) -> Snippet:
    start, end = week_range(day, tz)
    events = calendar.events_for_range(start, end)
    body = formatter.format_events_grouped_by_day(events, start, end)
    return Snippet(f"\n## This Week's Events\n\n{body}\n", len(events))


def render_month(
    calendar: GoogleCalendarClient, formatter: EventFormatter, day: date, tz: ZoneInfo
) -> Snippet:
    start, end = month_range(day, tz)
    events = calendar.events_for_range(start, end)
    body = formatter.format_events_grouped_by_day(events, start, end)
    return Snippet(f"\n## {day.strftime('%B %Y')} Events\n\n{body}\n", len(events))


def daily_note_date(path: Path) -> date | None:
    m = _DAILY_NOTE_RE.match(path.stem)
    if m is None:
        return None
    try:
        return date.fromisoformat(m.group(1))
    except ValueError:
        return None


def insert_into_note(path: Path, text: str) -> bool:
    content = path.read_text(encoding="utf-8") if path.exists() else ""
    if CALENDAR_HEADER in content:
        return False
    path.write_text(content + text, encoding="utf-8")
    return True


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid date {value!r}, expected YYYY-MM-DD") from exc


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="notecal", description="Pull Google Calendar events into Markdown notes."
    )
    sub = p.add_subparsers(dest="command", required=True)

    configure = sub.add_parser("configure", help="Save the OAuth client ID and secret.")
    configure.add_argument("--client-id", required=True)
    configure.add_argument("--client-secret", required=True)

    auth = sub.add_parser("auth", help="Authorize access to Google Calendar in the browser.")
    auth.add_argument("--timeout", type=float, default=None, help="Seconds to wait for the redirect.")
    auth.add_argument("--no-browser", action="store_true", help="Only print the authorization URL.")

    sub.add_parser("today", help="Print today's events.")
    on_date = sub.add_parser("date", help="Print events for a specific date.")
    on_date.add_argument("day", type=_parse_date)
    for name, text in (("week", "this week's"), ("month", "this month's")):
        period = sub.add_parser(name, help=f"Print {text} events.")
        period.add_argument("--date", dest="day", type=_parse_date, default=None)

    insert = sub.add_parser("insert", help="Append a day's events to a daily note.")
    insert.add_argument("note", type=Path)
    insert.add_argument("--date", dest="day", type=_parse_date, default=None)

    sub.add_parser("status", help="Check the stored credentials against the API.")
    sub.add_parser("clear-tokens", help="Remove stored authentication tokens.")
    return p


async def _run_auth(deps: Deps, *, timeout: float | None) -> None:
    try:
        await authenticate(deps, timeout=timeout)
    finally:
        await deps.coordinator.shutdown()


def _run_calendar_command(args: argparse.Namespace, deps: Deps) -> int:
    calendar = build_calendar(deps)
    if calendar is None:
        print("Please authenticate with Google Calendar first (notecal auth).", file=sys.stderr)
        return 1
    if args.command == "status":
        ok = calendar.test_connection()
        print("Connected." if ok else "Connection failed. Please re-authenticate.")
        return 0 if ok else 1

    tz = ZoneInfo(deps.settings.tz)
    today = datetime.now(tz=tz).date()
    formatter = EventFormatter(deps.settings.format_options)
    if args.command == "today":
        snippet = render_day(calendar, formatter, today)
    elif args.command == "date":
        snippet = render_day(calendar, formatter, args.day)
    elif args.command == "week":
        snippet = render_week(calendar, formatter, args.day or today, tz)
    elif args.command == "month":
        snippet = render_month(calendar, formatter, args.day or today, tz)
    else:
        note_day = args.day or daily_note_date(args.note)
        if note_day is None:
            print(f"{args.note} is not a daily note (expected a YYYY-MM-DD name).", file=sys.stderr)
            return 2
        snippet = render_day(calendar, formatter, note_day)
        if not insert_into_note(args.note, snippet.text):
            print(f"{args.note} already contains calendar events.", file=sys.stderr)
            return 0
        print(f"Inserted {snippet.event_count} event(s) into {args.note}", file=sys.stderr)
        return 0

    sys.stdout.write(snippet.text)
    return 0


def run(argv: list[str] | None = None, *, settings: Settings | None = None) -> int:
    args = _build_parser().parse_args(argv)
    settings = settings or Settings()  # type: ignore[call-arg]
    settings.notecal_data_dir.mkdir(parents=True, exist_ok=True)
    configure_logging(settings.log_level)
    if getattr(args, "no_browser", False):
        settings = settings.model_copy(update={"open_browser": False})

    deps = build_deps(settings)
    try:
        if args.command == "configure":
            deps.store.set_client_credentials(args.client_id, args.client_secret)
            print("Client credentials saved.")
            return 0
        if args.command == "clear-tokens":
            deps.store.clear_credentials()
            print("Stored tokens removed.")
            return 0
        if args.command == "auth":
            timeout = resolve_auth_timeout(args.timeout, settings)
            asyncio.run(_run_auth(deps, timeout=timeout))
            print("Successfully authenticated with Google Calendar.")
            return 0
        return _run_calendar_command(args, deps)
    except AuthError as exc:
        logger.error("Authentication failed: %s", exc, extra={"event": "auth_failed"})
        print(f"Authentication failed: {exc}", file=sys.stderr)
        return 1
    except CalendarError as exc:
        logger.exception("Calendar request failed", extra={"event": "calendar_failed"})
        print(str(exc), file=sys.stderr)
        return 1
    finally:
        deps.store.close()


def main() -> None:
    raise SystemExit(run())


if __name__ == "__main__":
    main()
