"""
Health Check Endpoints

- /health        - simple status
- /health/live   - liveness (is the process running)
- /health/ready  - readiness (can we reach the database)
"""

import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import text
from sqlalchemy.orm import Session

from ..config import settings
from ..database import get_db

router = APIRouter(prefix="/health", tags=["Health"])

VERSION = "1.0.0"


def get_db_health(db: Session) -> dict:
    """Check database connectivity and latency"""
    try:
        start = time.time()
        db.execute(text("SELECT 1"))
        latency_ms = (time.time() - start) * 1000
        return {
            "status": "up",
            "latency_ms": round(latency_ms, 2),
            "type": "postgresql" if "postgresql" in str(db.bind.url) else "sqlite"
        }
    except Exception as e:
        return {
            "status": "down",
            "error": str(e)[:100]
        }


@router.get("/live")
async def liveness_check():
    return {
        "status": "alive",
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


@router.get("/ready")
async def readiness_check(db: Session = Depends(get_db)):
    """Ready when the database answers."""
    db_health = get_db_health(db)

    if db_health["status"] == "up":
        return {
            "status": "ready",
            "database": db_health,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }

    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail={
            "status": "not_ready",
            "reason": "database_unavailable",
            "timestamp": datetime.now(timezone.utc).isoformat()
        }
    )


@router.get("")
async def simple_health_check():
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": VERSION,
        "environment": settings.environment,
    }
