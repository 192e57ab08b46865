"""
Calendar feed source endpoints and manual sync trigger.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from remindsync.api.deps import get_reminder_service, get_sync_service, to_http_error
from remindsync.domain.errors import RemindSyncError
from remindsync.domain.feed_source import FeedSourceCreate, FeedSourceResponse, SyncResult
from remindsync.usecases.reminder_service import ReminderService
from remindsync.usecases.sync_service import CalendarSyncService

logger = logging.getLogger(__name__)
router = APIRouter()


class IgnoreOriginRequest(BaseModel):
    origin_key: str = Field(..., min_length=1, max_length=255)


class SyncResponse(BaseModel):
    results: List[SyncResult]
    last_error: Optional[str]


@router.get("/sources", response_model=List[FeedSourceResponse])
async def list_sources(service: ReminderService = Depends(get_reminder_service)):
    try:
        return await service.list_sources()
    except RemindSyncError as e:
        raise to_http_error(e) from e


@router.post("/sources", response_model=FeedSourceResponse, status_code=201)
async def add_source(data: FeedSourceCreate, service: ReminderService = Depends(get_reminder_service)):
    """Subscribe to a calendar feed (http, https or webcal)."""
    try:
        return await service.add_source(data)
    except RemindSyncError as e:
        raise to_http_error(e) from e


@router.post("/sources/{source_id}/ignore", response_model=FeedSourceResponse)
async def ignore_origin(
    source_id: str,
    data: IgnoreOriginRequest,
    service: ReminderService = Depends(get_reminder_service),
):
    """Stop syncing one event of a feed."""
    try:
        return await service.ignore_origin(source_id, data.origin_key)
    except RemindSyncError as e:
        raise to_http_error(e) from e


@router.post("/sync", response_model=SyncResponse)
async def run_sync(force: bool = True, service: CalendarSyncService = Depends(get_sync_service)):
    """
    Sync feed sources now.

    Per-source failures are reported in the response rather than as an
    error status.
    """
    try:
        results = await service.sync_all(force=force)
    except RemindSyncError as e:
        raise to_http_error(e) from e

    if service.last_error:
        logger.warning(f"Manual sync finished with errors: {service.last_error}")
    return SyncResponse(results=results, last_error=service.last_error)
