from pydantic import BaseModel, ConfigDict, Field
from typing import Optional
from datetime import datetime, date


class ManualBlockCreate(BaseModel):
    """
    A manual block over whole days (``start_date``..``end_date`` inclusive)
    or an hourly span (``start_at``..``end_at``, end exclusive).
    """
    model_config = ConfigDict(populate_by_name=True)

    listing_id: Optional[str] = Field(None, alias="listingId")
    start_date: Optional[date] = Field(None, alias="startDate")
    end_date: Optional[date] = Field(None, alias="endDate")
    start_at: Optional[datetime] = Field(None, alias="startAt")
    end_at: Optional[datetime] = Field(None, alias="endAt")
    label: Optional[str] = Field(None, max_length=200)
    notes: Optional[str] = Field(None, max_length=2000)
    color: Optional[str] = Field(None, max_length=20)

    @property
    def is_hourly(self) -> bool:
        return self.start_at is not None or self.end_at is not None

    @property
    def has_range(self) -> bool:
        if self.is_hourly:
            return self.start_at is not None and self.end_at is not None
        return self.start_date is not None and self.end_date is not None


class ManualBlockUpdate(BaseModel):
    id: Optional[str] = None
    notes: Optional[str] = Field(None, max_length=2000)
    label: Optional[str] = Field(None, max_length=200)
    color: Optional[str] = Field(None, max_length=20)

    def updates(self) -> dict:
        """Only the fields the client actually sent."""
        return self.model_dump(exclude_unset=True, exclude={"id"})


class ManualBlockDelete(BaseModel):
    id: Optional[str] = None


class ManualBlockResponse(BaseModel):
    id: str
    listing_id: str
    start_date: date
    end_date: date
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    source: str = "manual"
    label: Optional[str] = None
    color: Optional[str] = None
    notes: Optional[str] = None


class ManualBlockWriteResponse(BaseModel):
    ok: bool = True
    inserted: Optional[ManualBlockResponse] = None
    updated: Optional[dict] = None
    deleted: Optional[str] = None
