"""
Escalation policy endpoints.
"""

from typing import List

from fastapi import APIRouter, Depends

from remindsync.api.deps import get_reminder_service, to_http_error
from remindsync.domain.errors import RemindSyncError
from remindsync.domain.escalation import PolicyCreate, PolicyResponse, PolicyUpdate
from remindsync.usecases.reminder_service import ReminderService

router = APIRouter()


@router.get("/policies", response_model=List[PolicyResponse])
async def list_policies(service: ReminderService = Depends(get_reminder_service)):
    """List presets first, then custom policies."""
    try:
        return await service.list_policies()
    except RemindSyncError as e:
        raise to_http_error(e) from e


@router.post("/policies", response_model=PolicyResponse, status_code=201)
async def create_policy(data: PolicyCreate, service: ReminderService = Depends(get_reminder_service)):
    try:
        return await service.create_policy(data)
    except RemindSyncError as e:
        raise to_http_error(e) from e


@router.patch("/policies/{policy_id}", response_model=PolicyResponse)
async def update_policy(
    policy_id: str,
    data: PolicyUpdate,
    service: ReminderService = Depends(get_reminder_service),
):
    try:
        return await service.update_policy(policy_id, data)
    except RemindSyncError as e:
        raise to_http_error(e) from e
