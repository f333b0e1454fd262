from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, Union, List, Dict, Any
from datetime import datetime, date

# Raw dates stay as given (str / date / datetime); normalization parses them
RawDate = Optional[Union[datetime, date, str]]


class BookingRow(BaseModel):
    """Booking as read from the store. Every field may be missing on bad data."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = None
    resource_id: Optional[str] = Field(None, alias="listing_id")
    check_in: RawDate = Field(None, alias="check_in_time")
    check_out: RawDate = Field(None, alias="check_out_time")
    status: Optional[str] = None
    channel: Optional[str] = None
    guest_name: Optional[str] = Field(None, alias="guest_full_name")
    price_total: Optional[float] = None
    currency: Optional[str] = None
    stay_type: Optional[str] = None


class BlockRow(BaseModel):
    """
    Calendar block as read from the store.

    ``start``/``end`` are day values (``end`` is the last blocked day);
    ``start_at``/``end_at`` are instants with an exclusive end.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = None
    resource_id: Optional[str] = Field(None, alias="listing_id")
    start: RawDate = Field(None, alias="start_date")
    end: RawDate = Field(None, alias="end_date")
    start_at: RawDate = None
    end_at: RawDate = None
    source: Optional[str] = None
    label: Optional[str] = None
    color: Optional[str] = None
    notes: Optional[str] = None


class OccupancyIntervalResponse(BaseModel):
    id: str
    resource_id: str
    start: datetime
    end: datetime
    display_end: datetime
    channel: str
    granularity: str
    mutable: bool
    label: str
    color: str
    meta: Dict[str, Any] = {}


class LaneAssignmentResponse(BaseModel):
    interval: OccupancyIntervalResponse
    lane_index: int
    start_index: int
    end_index: int
    extends_before: bool
    extends_after: bool
    conflict_days: List[date] = []


class ResourceTimelineResponse(BaseModel):
    resource_id: str
    lane_count: int
    lanes: List[LaneAssignmentResponse]


class TimelineResponse(BaseModel):
    window_start: datetime
    cells: int
    granularity: str
    resources: List[ResourceTimelineResponse]
    partial: bool = False
    load_errors: Dict[str, str] = {}
    dropped_rows: int = 0
