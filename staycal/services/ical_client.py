"""
iCal Feed Client

Fetches an external calendar (Airbnb, Vrbo, Booking.com... export URL) and
parses its VEVENTs. Nothing here touches the database; the whole feed is
parsed before any caller writes anything.

- all-day events: DTEND is exclusive, like our interval ends
- timed events: converted to UTC; floating times are read as UTC
- zero events is a valid, empty feed
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional, Union

import httpx
from icalendar import Calendar

from ..config import settings
from ..exceptions import FeedImportError, ValidationFailure
from .occupancy_store import BlockSpan

logger = logging.getLogger(__name__)

USER_AGENT = "staycal-feed-sync/1.0"


@dataclass
class FeedEvent:
    start: Union[date, datetime]
    end: Union[date, datetime]  # exclusive
    summary: Optional[str] = None
    uid: Optional[str] = None
    url: Optional[str] = None

    @property
    def all_day(self) -> bool:
        return not isinstance(self.start, datetime)

    @property
    def nights(self) -> Optional[int]:
        if not self.all_day:
            return None
        return max(1, (self.end - self.start).days)

    def to_span(self) -> BlockSpan:
        """Stored span: all-day events keep their last night, timed ones their instants."""
        if self.all_day:
            last = self.end - timedelta(days=1)
            return BlockSpan.days(self.start, max(last, self.start))
        return BlockSpan.instants(self.start, max(self.end, self.start))


@dataclass
class FeedImport:
    url: str
    events: List[FeedEvent] = field(default_factory=list)


def normalize_feed_url(url: str) -> str:
    url = (url or "").strip()
    if url.lower().startswith("webcal://"):
        url = "https://" + url[len("webcal://"):]
    if not url.lower().startswith(("http://", "https://")):
        raise ValidationFailure("Feed URL must be an http(s) or webcal URL")
    return url


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _event_from_component(component) -> Optional[FeedEvent]:
    dtstart = component.get("dtstart")
    if dtstart is None:
        return None

    start = dtstart.dt
    dtend = component.get("dtend")
    duration = component.get("duration")

    if dtend is not None:
        end = dtend.dt
    elif duration is not None:
        end = start + duration.dt
    elif isinstance(start, datetime):
        end = start
    else:
        end = start + timedelta(days=1)

    if isinstance(start, datetime) or isinstance(end, datetime):
        if not isinstance(start, datetime):
            start = datetime(start.year, start.month, start.day)
        if not isinstance(end, datetime):
            end = datetime(end.year, end.month, end.day)
        start, end = _as_utc(start), _as_utc(end)

    summary = component.get("summary")
    uid = component.get("uid")
    url = component.get("url")
    return FeedEvent(
        start=start,
        end=end,
        summary=str(summary) if summary is not None else None,
        uid=str(uid) if uid is not None else None,
        url=str(url) if url is not None else None,
    )


def parse_ical(text: str) -> List[FeedEvent]:
    """All VEVENTs of an iCalendar document. Raises FeedImportError when malformed."""
    if not text or "BEGIN:VCALENDAR" not in text.upper():
        raise FeedImportError(details={"reason": "not an iCalendar document"})
    try:
        calendar = Calendar.from_ical(text)
        events = []
        for component in calendar.walk("VEVENT"):
            event = _event_from_component(component)
            if event is not None:
                events.append(event)
    except (ValueError, TypeError, KeyError) as e:
        logger.warning(f"Malformed iCal payload: {e}")
        raise FeedImportError(details={"reason": "malformed iCalendar payload"})
    return events


class ICalFeedClient:
    """
    Synchronous feed fetcher.

    ``transport`` is passed through to ``httpx.Client`` (tests use
    ``httpx.MockTransport``).
    """

    def __init__(self, timeout: Optional[float] = None, transport: Optional[httpx.BaseTransport] = None):
        self.timeout = timeout if timeout is not None else settings.ical_timeout_seconds
        self.transport = transport

    def fetch(self, url: str) -> str:
        try:
            with httpx.Client(
                timeout=self.timeout,
                transport=self.transport,
                follow_redirects=True,
                headers={"User-Agent": USER_AGENT, "Accept": "text/calendar, text/plain, */*"},
            ) as client:
                response = client.get(url)
        except httpx.HTTPError as e:
            logger.warning(f"Feed fetch failed for {url}: {e}")
            raise FeedImportError(details={"reason": "network error"})

        if response.status_code < 200 or response.status_code >= 300:
            logger.warning(f"Feed fetch for {url} returned {response.status_code}")
            raise FeedImportError(details={"status_code": response.status_code})
        return response.text

    def import_feed(self, url: str) -> FeedImport:
        """Fetch and parse a feed. All-or-nothing: any failure raises FeedImportError."""
        url = normalize_feed_url(url)
        events = parse_ical(self.fetch(url))
        logger.info(f"Parsed {len(events)} events from {url}")
        return FeedImport(url=url, events=events)
