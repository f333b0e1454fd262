"""
Feed Sync Service

Imports an external calendar feed into a listing's blocks:
1. fetch + parse the whole feed (nothing written on failure)
2. replace the blocks previously imported from that feed, in one transaction
3. stamp ``last_synced_at`` on the feed's registry entries

A feed with no events is a successful no-op: earlier blocks stay put.

One sync per (listing, feed) at a time; different feeds of the same listing
may sync concurrently.
"""

import logging
import time
from dataclasses import dataclass
from threading import Lock
from typing import List, Optional, Sequence, Set, Tuple

from sqlalchemy.orm import Session

from ..exceptions import NotFound, SyncInProgress
from ..models import CalendarFeed
from ..utils.logging_config import get_logger
from ..utils.metrics import record_feed_sync
from .ical_client import ICalFeedClient, normalize_feed_url
from .occupancy import BLOCK_SOURCE_TEXT, Channel, classify_block_source, classify_label_heuristic
from .occupancy_store import FeedBlock, OccupancyStore

logger = logging.getLogger(__name__)
structured_logger = get_logger(__name__)


@dataclass
class FeedSyncResult:
    listing_id: str
    feed_url: str
    source: str
    events: int
    blocks_written: int
    duration_ms: float


def feed_source(url: str, source: Optional[str] = None) -> Channel:
    """Channel for a feed: explicit source, else a hint in the URL, else OTHER."""
    if source:
        channel = classify_block_source(source, None)
        return Channel.OTHER if channel == Channel.MANUAL else channel
    return classify_label_heuristic(url) or Channel.OTHER


class FeedSyncService:
    _in_flight: Set[Tuple[str, str]] = set()
    _lock = Lock()

    def __init__(self, db: Session, client: Optional[ICalFeedClient] = None):
        self.db = db
        self.store = OccupancyStore(db)
        self.client = client or ICalFeedClient()

    @classmethod
    def _acquire(cls, key: Tuple[str, str]) -> bool:
        with cls._lock:
            if key in cls._in_flight:
                return False
            cls._in_flight.add(key)
            return True

    @classmethod
    def _release(cls, key: Tuple[str, str]) -> None:
        with cls._lock:
            cls._in_flight.discard(key)

    @classmethod
    def is_syncing(cls, listing_id: str, url: str) -> bool:
        with cls._lock:
            return (listing_id, url) in cls._in_flight

    def sync_feed(self, listing_id: str, url: str, source: Optional[str] = None) -> FeedSyncResult:
        url = normalize_feed_url(url)
        if self.store.get_listing(listing_id) is None:
            raise NotFound("Listing not found")

        channel = feed_source(url, source)
        key = (listing_id, url)
        if not self._acquire(key):
            raise SyncInProgress("A sync for this feed is already running")

        started = time.perf_counter()
        written = 0
        try:
            feed = self.client.import_feed(url)
            if feed.events:
                written = self._store_events(listing_id, url, channel, feed.events)
        except Exception:
            record_feed_sync(False, time.perf_counter() - started)
            raise
        finally:
            self._release(key)

        duration = time.perf_counter() - started
        record_feed_sync(True, duration)
        if feed.events:
            structured_logger.feed_synced(listing_id, url, len(feed.events), round(duration * 1000, 2))
        else:
            logger.info(f"No events in feed {url} for listing {listing_id}, nothing changed")

        return FeedSyncResult(
            listing_id=listing_id,
            feed_url=url,
            source=channel.value,
            events=len(feed.events),
            blocks_written=written,
            duration_ms=round(duration * 1000, 2),
        )

    def _store_events(self, listing_id: str, url: str, channel: Channel, events) -> int:
        blocks = [
            FeedBlock(
                span=event.to_span(),
                label=(event.summary or "").strip() or BLOCK_SOURCE_TEXT[channel],
                external_uid=event.uid,
            )
            for event in events
        ]
        written = self.store.replace_feed_blocks(listing_id, url, channel.value, blocks)
        self.store.mark_feed_synced(listing_id, url)
        return written

    # ================================
    # FEED REGISTRY
    # ================================

    def register_feed(
        self,
        listing_id: str,
        url: str,
        label: Optional[str] = None,
        source: Optional[str] = None,
        color: Optional[str] = None,
    ) -> CalendarFeed:
        url = normalize_feed_url(url)
        return self.store.add_feed(listing_id, url, feed_source(url, source).value, label, color)

    def sync_registered_feed(self, feed_id: str) -> FeedSyncResult:
        feed = self.store.get_feed(feed_id)
        if feed is None:
            raise NotFound("Feed not found")
        return self.sync_feed(feed.listing_id, feed.url, feed.source)

    def list_feeds(self, listing_ids: Sequence[str]) -> List[CalendarFeed]:
        return self.store.list_feeds(listing_ids)

    def delete_feed(self, feed_id: str) -> None:
        self.store.delete_feed(feed_id)
        logger.info(f"Feed {feed_id} removed")
