"""
Shared FastAPI dependencies.

Host and ops permissions are decided outside this service. The app holds a
``capability_checker(request, capability) -> bool`` on ``app.state``;
the default allows everything.
"""

import logging
from typing import Callable

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from ..database import get_db
from ..services.calendar_service import CalendarService
from ..services.ical_client import ICalFeedClient

logger = logging.getLogger(__name__)

CapabilityChecker = Callable[[Request, str], bool]

# Capabilities checked by the API
CANCEL_BOOKINGS = "ops.bookings.cancel"
MANAGE_CALENDAR = "host.calendar.manage"


def allow_all(request: Request, capability: str) -> bool:
    return True


def require_capability(capability: str):
    """Dependency factory: 403 unless the configured checker allows ``capability``."""

    def checker(request: Request) -> None:
        check: CapabilityChecker = getattr(request.app.state, "capability_checker", None) or allow_all
        if not check(request, capability):
            logger.info(f"Capability {capability} denied for {request.url.path}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="You do not have permission to perform this action"
            )

    return checker


def get_calendar_service(db: Session = Depends(get_db)) -> CalendarService:
    return CalendarService(db)


def get_feed_client(request: Request) -> ICalFeedClient:
    """Feed client from app state (tests swap in a mock transport)."""
    client = getattr(request.app.state, "feed_client", None)
    return client or ICalFeedClient()
