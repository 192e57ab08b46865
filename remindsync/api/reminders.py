"""
Reminder endpoints: CRUD, lifecycle actions, the alert command channel
and the calendar export.
"""

import logging
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from pydantic import BaseModel

from remindsync.api.deps import get_reminder_service, to_http_error
from remindsync.domain.errors import RemindSyncError
from remindsync.domain.reminder import ReminderCreate, ReminderResponse, ReminderState, ReminderUpdate
from remindsync.usecases.escalation_engine import ArmResult
from remindsync.usecases.reminder_service import AlertAction, ReminderService
from remindsync.utils.time import SnoozeOption

logger = logging.getLogger(__name__)
router = APIRouter()


class SnoozeRequest(BaseModel):
    """Snooze until an explicit instant or a named option."""
    until: Optional[datetime] = None
    option: Optional[SnoozeOption] = None


class ArmResponse(BaseModel):
    """Reminder plus what was handed to the scheduler."""
    reminder: ReminderResponse
    scheduled: List[datetime]
    errors: List[str]


def _arm_response(reminder, result: ArmResult) -> ArmResponse:
    return ArmResponse(
        reminder=ReminderResponse.model_validate(reminder),
        scheduled=[alert.at for alert in result.scheduled],
        errors=[str(e) for e in result.errors],
    )


@router.get("/reminders", response_model=List[ReminderResponse])
async def list_reminders(
    state: Optional[List[ReminderState]] = Query(None),
    service: ReminderService = Depends(get_reminder_service),
):
    """List reminders, optionally filtered by state."""
    try:
        return await service.list_reminders(state)
    except RemindSyncError as e:
        raise to_http_error(e) from e


@router.post("/reminders", response_model=ReminderResponse, status_code=201)
async def create_reminder(
    data: ReminderCreate,
    service: ReminderService = Depends(get_reminder_service),
):
    try:
        return await service.create_reminder(data)
    except RemindSyncError as e:
        raise to_http_error(e) from e


@router.get("/reminders/{reminder_id}", response_model=ReminderResponse)
async def get_reminder(reminder_id: str, service: ReminderService = Depends(get_reminder_service)):
    try:
        return await service.get_reminder(reminder_id)
    except RemindSyncError as e:
        raise to_http_error(e) from e


@router.patch("/reminders/{reminder_id}", response_model=ReminderResponse)
async def update_reminder(
    reminder_id: str,
    data: ReminderUpdate,
    service: ReminderService = Depends(get_reminder_service),
):
    """Edit a reminder. Editing a synced reminder detaches it from its feed."""
    try:
        return await service.update_reminder(reminder_id, data)
    except RemindSyncError as e:
        raise to_http_error(e) from e


@router.delete("/reminders/{reminder_id}", status_code=204)
async def delete_reminder(reminder_id: str, service: ReminderService = Depends(get_reminder_service)):
    try:
        await service.delete_reminder(reminder_id)
    except RemindSyncError as e:
        raise to_http_error(e) from e
    return Response(status_code=204)


@router.post("/reminders/{reminder_id}/complete", response_model=ReminderResponse)
async def complete_reminder(reminder_id: str, service: ReminderService = Depends(get_reminder_service)):
    try:
        return await service.complete(reminder_id)
    except RemindSyncError as e:
        raise to_http_error(e) from e


@router.post("/reminders/{reminder_id}/ignore", response_model=ReminderResponse)
async def ignore_reminder(reminder_id: str, service: ReminderService = Depends(get_reminder_service)):
    try:
        return await service.ignore(reminder_id)
    except RemindSyncError as e:
        raise to_http_error(e) from e


@router.post("/reminders/{reminder_id}/snooze", response_model=ArmResponse)
async def snooze_reminder(
    reminder_id: str,
    data: SnoozeRequest,
    service: ReminderService = Depends(get_reminder_service),
):
    try:
        result = await service.snooze(reminder_id, until=data.until, option=data.option)
        reminder = await service.get_reminder(reminder_id)
    except RemindSyncError as e:
        raise to_http_error(e) from e
    return _arm_response(reminder, result)


@router.post("/alerts/action")
async def alert_action(command: AlertAction, service: ReminderService = Depends(get_reminder_service)):
    """
    Command channel for the alert delivery side.

    Fired alerts for reminders that no longer exist are acknowledged and
    dropped.
    """
    try:
        reminder = await service.handle_alert_action(command)
    except RemindSyncError as e:
        raise to_http_error(e) from e

    if reminder is None:
        return {"status": "dropped", "reminder": None}
    return {"status": "ok", "reminder": ReminderResponse.model_validate(reminder)}


@router.get("/calendar.ics")
async def export_calendar(
    ids: Optional[List[str]] = Query(None),
    service: ReminderService = Depends(get_reminder_service),
):
    """Export reminders as an iCalendar document."""
    try:
        body = await service.export_calendar(ids)
    except RemindSyncError as e:
        raise to_http_error(e) from e
    return Response(
        content=body,
        media_type="text/calendar; charset=utf-8",
        headers={"Content-Disposition": 'attachment; filename="remindsync.ics"'},
    )
