"""
Structured Logging Configuration

JSON log lines with:
- Request ID tracking
- Listing / block entity fields
- Structured extra data for log aggregation
"""

import logging
import json
import sys
from datetime import datetime, timezone
from typing import Optional, Any, Dict
from contextvars import ContextVar

# Context variables for request tracking
request_id_var: ContextVar[str] = ContextVar('request_id', default='')
host_id_var: ContextVar[str] = ContextVar('host_id', default='')


class JSONFormatter(logging.Formatter):
    """One JSON object per log record."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        host_id = host_id_var.get()
        if host_id:
            log_data["host_id"] = host_id

        log_data["module"] = record.module
        log_data["function"] = record.funcName
        log_data["line"] = record.lineno

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        if hasattr(record, 'extra_data'):
            log_data["data"] = record.extra_data

        if hasattr(record, 'duration_ms'):
            log_data["duration_ms"] = record.duration_ms

        if hasattr(record, 'entity_type'):
            log_data["entity_type"] = record.entity_type
        if hasattr(record, 'entity_id'):
            log_data["entity_id"] = record.entity_id

        return json.dumps(log_data, ensure_ascii=False, default=str)


class StructuredLogger(logging.LoggerAdapter):
    """Logger adapter with calendar event helpers."""

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra = kwargs.get('extra', {})
        extra.update(self.extra)
        kwargs['extra'] = extra
        return msg, kwargs

    def log_with_context(
        self,
        level: int,
        msg: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        duration_ms: Optional[float] = None,
        **extra_data
    ):
        """Log with additional structured context."""
        extra = {}
        if entity_type:
            extra['entity_type'] = entity_type
        if entity_id:
            extra['entity_id'] = entity_id
        if duration_ms is not None:
            extra['duration_ms'] = duration_ms
        if extra_data:
            extra['extra_data'] = extra_data

        self.log(level, msg, extra=extra)

    def block_created(self, block_id: str, listing_id: str, start: str, end: str):
        self.log_with_context(
            logging.INFO,
            f"Manual block created on {listing_id}",
            entity_type="calendar_block",
            entity_id=block_id,
            listing_id=listing_id,
            start=start,
            end=end
        )

    def rows_dropped(self, listing_ids, bookings: int, blocks: int):
        """Rows skipped by normalization because required fields were missing."""
        self.log_with_context(
            logging.WARNING,
            f"Dropped {bookings + blocks} occupancy rows with missing fields",
            entity_type="listing",
            listing_ids=list(listing_ids),
            bookings=bookings,
            blocks=blocks
        )

    def feed_synced(self, listing_id: str, feed_url: str, events: int, duration_ms: float):
        self.log_with_context(
            logging.INFO,
            f"Feed synced for {listing_id}: {events} events",
            entity_type="listing",
            entity_id=listing_id,
            duration_ms=duration_ms,
            feed_url=feed_url,
            events=events
        )

    def write_rolled_back(self, operation: str, interval_id: str, error: str):
        self.log_with_context(
            logging.WARNING,
            f"Rolled back {operation} of {interval_id}: {error}",
            entity_type="calendar_block",
            entity_id=interval_id,
            operation=operation,
            error=error
        )

    def api_request(self, method: str, path: str, status_code: int, duration_ms: float):
        self.log_with_context(
            logging.INFO,
            f"{method} {path} - {status_code}",
            duration_ms=duration_ms,
            method=method,
            path=path,
            status_code=status_code
        )


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    include_uvicorn: bool = True
) -> None:
    """
    Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: Use JSON format (True for production)
        include_uvicorn: Also configure uvicorn loggers
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)

    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [handler]

    logging.getLogger("staycal").setLevel(log_level)

    if include_uvicorn:
        for logger_name in ["uvicorn", "uvicorn.access", "uvicorn.error"]:
            logging.getLogger(logger_name).handlers = [handler]

    # Reduce noise from third-party loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger for the given module."""
    return StructuredLogger(logging.getLogger(name), {})


def set_request_context(request_id: str, host_id: Optional[str] = None):
    request_id_var.set(request_id)
    if host_id:
        host_id_var.set(host_id)


def clear_request_context():
    request_id_var.set('')
    host_id_var.set('')
