"""
Shared FastAPI dependencies and error mapping for the HTTP routers.
"""

import logging

from fastapi import Depends, HTTPException

from remindsync.domain.errors import (
    InvalidTransitionError,
    NotFoundError,
    RemindSyncError,
    StoreError,
    SyncError,
    ValidationError,
)
from remindsync.infrastructure.database import get_store
from remindsync.infrastructure.store import RecordStore
from remindsync.usecases.reminder_service import ReminderService, build_reminder_service
from remindsync.usecases.sync_service import CalendarSyncService, build_sync_service

logger = logging.getLogger(__name__)


async def get_reminder_service(store: RecordStore = Depends(get_store)) -> ReminderService:
    return build_reminder_service(store)


async def get_sync_service(store: RecordStore = Depends(get_store)) -> CalendarSyncService:
    return build_sync_service(store)


def to_http_error(error: RemindSyncError) -> HTTPException:
    """Map a domain error onto the HTTP status it should surface as."""
    if isinstance(error, NotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, InvalidTransitionError):
        return HTTPException(status_code=409, detail=str(error))
    if isinstance(error, ValidationError):
        return HTTPException(status_code=422, detail=str(error))
    if isinstance(error, SyncError):
        return HTTPException(status_code=502, detail=str(error))
    if isinstance(error, StoreError):
        logger.error(f"Store failure: {error}")
        return HTTPException(status_code=500, detail="Failed to persist changes")

    logger.error(f"Unhandled domain error: {error}")
    return HTTPException(status_code=500, detail=str(error))
