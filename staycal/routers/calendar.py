"""
Calendar API Router

Host timeline (day and hourly) and external iCal feeds.
"""

from typing import List
from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from ..database import get_db
from ..exceptions import ValidationFailure
from ..schemas.feed import (
    CalendarFeedCreate,
    CalendarFeedListResponse,
    CalendarFeedResponse,
    CalendarFeedWriteResponse,
    FeedEventResponse,
    FeedImportResponse,
    FeedRequest,
    FeedSyncResponse,
)
from ..schemas.occupancy import (
    LaneAssignmentResponse,
    OccupancyIntervalResponse,
    ResourceTimelineResponse,
    TimelineResponse,
)
from ..services.calendar_service import CalendarService, CalendarView
from ..services.feed_sync_service import FeedSyncResult, FeedSyncService
from ..services.ical_client import ICalFeedClient
from ..services.occupancy import OccupancyInterval
from ..utils.dates import parse_iso_date
from ..utils.dependencies import MANAGE_CALENDAR, get_calendar_service, get_feed_client, require_capability
from ..utils.rate_limiter import limiter, get_rate_limit

router = APIRouter(prefix="/api/calendar", tags=["Calendar"])

MAX_TIMELINE_DAYS = 366


def _parse_day(value: str, field: str):
    try:
        return parse_iso_date(value)
    except ValueError:
        raise ValidationFailure(f"Invalid {field}. Use YYYY-MM-DD.")


def interval_response(interval: OccupancyInterval) -> OccupancyIntervalResponse:
    return OccupancyIntervalResponse(
        id=interval.id,
        resource_id=interval.resource_id,
        start=interval.start,
        end=interval.end,
        display_end=interval.display_end,
        channel=interval.channel.value,
        granularity=interval.granularity.value,
        mutable=interval.mutable,
        label=interval.label,
        color=interval.color,
        meta=dict(interval.meta),
    )


def sync_response(result: FeedSyncResult) -> FeedSyncResponse:
    return FeedSyncResponse(
        listing_id=result.listing_id,
        feed_url=result.feed_url,
        source=result.source,
        events=result.events,
        blocks_written=result.blocks_written,
        duration_ms=result.duration_ms,
    )


def timeline_response(view: CalendarView) -> TimelineResponse:
    grid = view.layout.grid
    resources = []
    for resource_id in view.layout.resource_ids:
        lanes = [
            LaneAssignmentResponse(
                interval=interval_response(assignment.interval),
                lane_index=assignment.lane_index,
                start_index=assignment.start_index,
                end_index=assignment.end_index,
                extends_before=assignment.extends_before,
                extends_after=assignment.extends_after,
                conflict_days=assignment.conflict_days,
            )
            for assignment in view.layout.assignments_for(resource_id)
        ]
        resources.append(ResourceTimelineResponse(
            resource_id=resource_id,
            lane_count=view.layout.lane_count[resource_id],
            lanes=lanes,
        ))

    return TimelineResponse(
        window_start=grid.start,
        cells=grid.cells,
        granularity=grid.granularity.value,
        resources=resources,
        partial=view.partial,
        load_errors=view.load_errors,
        dropped_rows=view.dropped_rows,
    )


@router.get("/timeline", response_model=TimelineResponse)
@limiter.limit(get_rate_limit("timeline"))
async def get_timeline(
    request: Request,
    listing_id: List[str] = Query(..., min_length=1),
    start: str = Query(...),
    days: int = Query(14),
    service: CalendarService = Depends(get_calendar_service),
):
    """
    Day timeline for one or more listings.

    ``partial`` is true when bookings or blocks failed to load; whatever did
    load is still returned.
    """
    if days < 1 or days > MAX_TIMELINE_DAYS:
        raise ValidationFailure(f"days must be between 1 and {MAX_TIMELINE_DAYS}")
    start_day = _parse_day(start, "start").date()
    view = service.timeline(listing_id, start_day, days)
    return timeline_response(view)


@router.get("/hourly", response_model=TimelineResponse)
@limiter.limit(get_rate_limit("timeline"))
async def get_hourly_timeline(
    request: Request,
    listing_id: str = Query(...),
    day: str = Query(...),
    service: CalendarService = Depends(get_calendar_service),
):
    """Half-hour slots of one day for an hourly listing."""
    view = service.hourly(listing_id, _parse_day(day, "day").date())
    return timeline_response(view)


@router.post("/import-ical", response_model=FeedImportResponse)
@limiter.limit(get_rate_limit("feed_import"))
async def import_ical(
    request: Request,
    body: FeedRequest,
    client: ICalFeedClient = Depends(get_feed_client),
):
    """Fetch and parse a feed without storing anything (preview)."""
    feed = client.import_feed(body.url)
    return FeedImportResponse(
        url=feed.url,
        count=len(feed.events),
        events=[
            FeedEventResponse(
                uid=event.uid,
                summary=event.summary,
                url=event.url,
                start=event.start,
                end=event.end,
                all_day=event.all_day,
                nights=event.nights,
            )
            for event in feed.events
        ],
    )


@router.post(
    "/feeds/sync",
    response_model=FeedSyncResponse,
    dependencies=[Depends(require_capability(MANAGE_CALENDAR))],
)
@limiter.limit(get_rate_limit("feed_sync"))
async def sync_feed(
    request: Request,
    body: FeedRequest,
    db: Session = Depends(get_db),
    client: ICalFeedClient = Depends(get_feed_client),
):
    """Replace the listing's blocks from this feed with its current events."""
    if not body.listing_id:
        raise ValidationFailure("listingId is required")
    result = FeedSyncService(db, client=client).sync_feed(body.listing_id, body.url, body.source)
    return sync_response(result)


# ================================
# FEED REGISTRY
# ================================

@router.get("/feeds", response_model=CalendarFeedListResponse)
@limiter.limit(get_rate_limit("timeline"))
async def list_feeds(
    request: Request,
    listing_id: List[str] = Query(..., min_length=1),
    db: Session = Depends(get_db),
):
    feeds = FeedSyncService(db).list_feeds(listing_id)
    return CalendarFeedListResponse(feeds=[CalendarFeedResponse.model_validate(feed) for feed in feeds])


@router.post(
    "/feeds",
    response_model=CalendarFeedWriteResponse,
    dependencies=[Depends(require_capability(MANAGE_CALENDAR))],
)
@limiter.limit(get_rate_limit("feed_sync"))
async def register_feed(
    request: Request,
    body: CalendarFeedCreate,
    db: Session = Depends(get_db),
    client: ICalFeedClient = Depends(get_feed_client),
):
    """
    Save a feed on a listing and, unless ``sync`` is false, import it.

    The feed stays registered when the first import fails.
    """
    service = FeedSyncService(db, client=client)
    feed = service.register_feed(body.listing_id, body.url, body.label, body.source, body.color)
    result = None
    if body.sync:
        result = sync_response(service.sync_registered_feed(feed.id))
        db.refresh(feed)
    return CalendarFeedWriteResponse(feed=CalendarFeedResponse.model_validate(feed), sync=result)


@router.post(
    "/feeds/{feed_id}/sync",
    response_model=FeedSyncResponse,
    dependencies=[Depends(require_capability(MANAGE_CALENDAR))],
)
@limiter.limit(get_rate_limit("feed_sync"))
async def sync_registered_feed(
    request: Request,
    feed_id: str,
    db: Session = Depends(get_db),
    client: ICalFeedClient = Depends(get_feed_client),
):
    return sync_response(FeedSyncService(db, client=client).sync_registered_feed(feed_id))


@router.delete(
    "/feeds/{feed_id}",
    response_model=CalendarFeedWriteResponse,
    dependencies=[Depends(require_capability(MANAGE_CALENDAR))],
)
@limiter.limit(get_rate_limit("feed_sync"))
async def delete_feed(
    request: Request,
    feed_id: str,
    db: Session = Depends(get_db),
):
    """Stop tracking a feed. Blocks it already imported are kept."""
    FeedSyncService(db).delete_feed(feed_id)
    return CalendarFeedWriteResponse(deleted=feed_id)
