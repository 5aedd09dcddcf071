"""
EV Dealer Hub - Routes Notifications
In-app inbox of the logged-in user.
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from typing import List, Optional

from routes.auth import get_current_user
from routes.deps import get_notification_service
from services.errors import NotFound

router = APIRouter(tags=["Notifications"])


class BulkRead(BaseModel):
    notification_ids: Optional[List[str]] = None  # None -> everything unread


@router.get("/notifications")
async def list_notifications(
    unread_only: bool = False,
    limit: int = 50,
    user: dict = Depends(get_current_user),
    service=Depends(get_notification_service),
):
    return await service.list_for_user(user["id"], unread_only=unread_only, limit=min(limit, 200))


@router.put("/notifications/bulk")
async def mark_notifications_read(
    data: BulkRead,
    user: dict = Depends(get_current_user),
    service=Depends(get_notification_service),
):
    updated = await service.mark_many_read(user["id"], data.notification_ids)
    return {"success": True, "updated": updated}


@router.put("/notifications/{notification_id}")
async def mark_notification_read(
    notification_id: str,
    user: dict = Depends(get_current_user),
    service=Depends(get_notification_service),
):
    if not await service.mark_read(user["id"], notification_id):
        raise NotFound("Notification not found", code="notification_not_found")
    return {"success": True}
