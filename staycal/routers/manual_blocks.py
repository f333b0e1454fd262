"""
Manual Blocks API Router

Create, annotate and delete host-created calendar blocks.
"""

from fastapi import APIRouter, Depends, Request

from ..exceptions import ValidationFailure
from ..schemas.manual_block import (
    ManualBlockCreate,
    ManualBlockDelete,
    ManualBlockResponse,
    ManualBlockUpdate,
    ManualBlockWriteResponse,
)
from ..services.calendar_service import CalendarService
from ..services.occupancy_store import BlockSpan
from ..utils.dependencies import MANAGE_CALENDAR, get_calendar_service, require_capability
from ..utils.rate_limiter import limiter, get_rate_limit

router = APIRouter(
    prefix="/api/manual-blocks",
    tags=["Manual Blocks"],
    dependencies=[Depends(require_capability(MANAGE_CALENDAR))],
)


@router.post("", response_model=ManualBlockWriteResponse)
@limiter.limit(get_rate_limit("block_write"))
async def create_manual_block(
    request: Request,
    body: ManualBlockCreate,
    service: CalendarService = Depends(get_calendar_service),
):
    if not body.listing_id or not body.has_range:
        raise ValidationFailure("listingId and a start/end range are required.")

    if body.is_hourly:
        span = BlockSpan.instants(body.start_at, body.end_at)
    else:
        span = BlockSpan.days(body.start_date, body.end_date)

    result = service.create_manual_block(
        body.listing_id,
        span,
        label=body.label,
        notes=body.notes,
        color=body.color,
        created_by=getattr(request.state, "host_id", None),
    )
    return ManualBlockWriteResponse(inserted=ManualBlockResponse(**result.row))


@router.patch("", response_model=ManualBlockWriteResponse)
@limiter.limit(get_rate_limit("block_write"))
async def update_manual_block(
    request: Request,
    body: ManualBlockUpdate,
    service: CalendarService = Depends(get_calendar_service),
):
    """Update notes, label or color. Send only the fields to change."""
    if not body.id:
        raise ValidationFailure("id is required.")
    updated = service.update_block(body.id, body.updates())
    return ManualBlockWriteResponse(updated=updated)


@router.delete("", response_model=ManualBlockWriteResponse)
@limiter.limit(get_rate_limit("block_write"))
async def delete_manual_block(
    request: Request,
    body: ManualBlockDelete,
    service: CalendarService = Depends(get_calendar_service),
):
    if not body.id:
        raise ValidationFailure("id is required.")
    service.delete_manual_block(body.id)
    return ManualBlockWriteResponse(deleted=body.id)
