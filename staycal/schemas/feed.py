from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional, Union
from datetime import date, datetime


class FeedRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    url: str = Field(..., min_length=1, max_length=1000)
    listing_id: Optional[str] = Field(None, alias="listingId")
    source: Optional[str] = Field(None, max_length=30)


class FeedEventResponse(BaseModel):
    uid: Optional[str] = None
    summary: Optional[str] = None
    url: Optional[str] = None
    start: Union[datetime, date]
    end: Union[datetime, date]
    all_day: bool
    nights: Optional[int] = None


class FeedImportResponse(BaseModel):
    url: str
    count: int
    events: List[FeedEventResponse] = []


class FeedSyncResponse(BaseModel):
    ok: bool = True
    listing_id: str
    feed_url: str
    source: str
    events: int
    blocks_written: int
    duration_ms: float


class CalendarFeedCreate(BaseModel):
    """Register a feed; ``sync`` runs the first import straight away."""
    model_config = ConfigDict(populate_by_name=True)

    listing_id: str = Field(..., alias="listingId", min_length=1)
    url: str = Field(..., min_length=1, max_length=1000)
    label: Optional[str] = Field(None, max_length=200)
    source: Optional[str] = Field(None, max_length=30)
    color: Optional[str] = Field(None, max_length=20)
    sync: bool = True


class CalendarFeedResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    listing_id: str
    label: str
    url: str
    source: str
    color: Optional[str] = None
    last_synced_at: Optional[datetime] = None


class CalendarFeedListResponse(BaseModel):
    feeds: List[CalendarFeedResponse] = []


class CalendarFeedWriteResponse(BaseModel):
    ok: bool = True
    feed: Optional[CalendarFeedResponse] = None
    sync: Optional[FeedSyncResponse] = None
    deleted: Optional[str] = None
