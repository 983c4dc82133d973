"""
Microsoft Graph calendar poller.
Reads the access token from the credential manager on every poll, keeps the upcoming events,
and writes the soonest one to a plain-text status file.
"""
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable
from zoneinfo import ZoneInfo

import httpx

from calendar_client.config import CalendarConfig

logger = logging.getLogger(__name__)

GRAPH_DATETIME_FORMAT = "%Y-%m-%dT%H:%M:%S"
NO_EVENTS_TEXT = "No events"


@dataclass(frozen=True)
class CalendarEvent:
    subject: str
    start: datetime
    end: datetime
    location: str = ""

    def display(self) -> str:
        return f"{self.subject} - {self.start:%H:%M}"


def _parse_graph_datetime(value: dict[str, Any] | None) -> datetime:
    """Graph dateTimeTimeZone: {"dateTime": "2024-05-01T09:30:00.0000000", "timeZone": "UTC"}."""
    if not isinstance(value, dict) or not isinstance(value.get("dateTime"), str):
        raise ValueError("missing dateTime")
    # Graph sends 7 fractional digits; seconds precision is enough
    return datetime.strptime(value["dateTime"][:19], GRAPH_DATETIME_FORMAT)


def parse_event(raw: dict[str, Any]) -> CalendarEvent:
    """Parse one Graph event. Raises ValueError on a missing or malformed start/end."""
    location = raw.get("location") or {}
    return CalendarEvent(
        subject=raw.get("subject") or "(No title)",
        start=_parse_graph_datetime(raw.get("start")),
        end=_parse_graph_datetime(raw.get("end")),
        location=location.get("displayName", "") if isinstance(location, dict) else "",
    )


class CalendarPoller:
    def __init__(
        self,
        token_source: Callable[[], tuple[str, bool]],
        config: CalendarConfig,
        clock: Callable[[], datetime] | None = None,
        wait: Callable[[float], bool] | None = None,
    ):
        self.token_source = token_source
        self.config = config
        self._zone = ZoneInfo(config.timezone)
        self._clock = clock or self._local_now
        self._stop_event = threading.Event()
        self._wait = wait or self._stop_event.wait
        self._lock = threading.Lock()
        self._events: list[CalendarEvent] = []
        self._thread: threading.Thread | None = None

    def _local_now(self) -> datetime:
        # Naive wall time in the Prefer zone, comparable with the dateTime values Graph returns
        return datetime.now(self._zone).replace(tzinfo=None)

    @property
    def events(self) -> list[CalendarEvent]:
        with self._lock:
            return list(self._events)

    def _fetch(self, access_token: str) -> list[CalendarEvent]:
        now = self._clock()
        until = now + timedelta(hours=self.config.lookahead_hours)
        r = httpx.get(
            f"{self.config.graph_url}/me/calendarview",
            params={
                "startdatetime": now.strftime(GRAPH_DATETIME_FORMAT),
                "enddatetime": until.strftime(GRAPH_DATETIME_FORMAT),
                "$select": "subject,start,end,location",
                "$orderby": "start/dateTime",
            },
            headers={
                "Authorization": f"Bearer {access_token}",
                "Prefer": f'outlook.timezone="{self.config.timezone}"',
                "Accept": "application/json",
            },
            timeout=10.0,
        )
        r.raise_for_status()
        body = r.json()
        raw_events = body.get("value") if isinstance(body, dict) else None
        if not isinstance(raw_events, list):
            raise ValueError("calendarview response has no value list")
        events = []
        for raw in raw_events:
            if not isinstance(raw, dict):
                logger.debug("Skipping non-object event entry")
                continue
            try:
                events.append(parse_event(raw))
            except ValueError as e:
                logger.debug("Skipping event %s: %s", raw.get("id"), e)
        return events

    def poll_once(self) -> bool:
        """
        Fetch the calendar view with the current access token. Skipped when not authenticated.
        On failure the previous event list is kept. Returns True when the fetch succeeded.
        """
        access_token, authenticated = self.token_source()
        if not authenticated or not access_token:
            logger.debug("Not authenticated; skipping calendar poll")
            self.write_status()
            return False
        try:
            events = self._fetch(access_token)
        except httpx.HTTPStatusError as e:
            logger.warning("Calendar request returned %s", e.response.status_code)
            return False
        except (httpx.HTTPError, ValueError) as e:
            logger.error("Calendar request failed: %s", e)
            return False
        with self._lock:
            self._events = sorted(events, key=lambda ev: ev.start)
        logger.info("Retrieved %d calendar events", len(events))
        self.write_status()
        return True

    def next_event(self) -> CalendarEvent | None:
        """Soonest event that has not ended yet."""
        now = self._clock()
        with self._lock:
            upcoming = [ev for ev in self._events if ev.end > now]
        return upcoming[0] if upcoming else None

    def status_text(self) -> str:
        event = self.next_event()
        return event.display() if event else NO_EVENTS_TEXT

    def write_status(self) -> bool:
        if not self.config.status_file:
            return False
        path = Path(self.config.status_file)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(self.status_text() + "\n", encoding="utf-8")
        except OSError as e:
            logger.error("Error writing status file %s: %s", path, e)
            return False
        return True

    def start(self) -> bool:
        if self._thread is not None:
            return False
        self._thread = threading.Thread(target=self._run, name="calendar-poller", daemon=True)
        self._thread.start()
        return True

    def stop(self, timeout: float | None = None) -> None:
        self._stop_event.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)

    def _run(self) -> None:
        while True:
            try:
                self.poll_once()
            except Exception:
                logger.exception("Calendar poll failed")
            if self._wait(self.config.poll_interval_seconds) or self._stop_event.is_set():
                break
