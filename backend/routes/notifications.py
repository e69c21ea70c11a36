"""
PROTRAIN CRM - Routes Notifications (inbox in-app)
"""

from fastapi import APIRouter, Depends, HTTPException, Query

from routes.auth import get_current_user
from services.notifications import NotificationService, get_notification_service

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get("")
async def list_notifications(
    limit: int = Query(50, ge=1, le=200),
    user: dict = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    """Notifications de l'utilisateur connecte, plus recentes d'abord"""
    notifications = await service.find_for_email(user["email"], limit=limit)
    unread = sum(1 for n in notifications if not n.get("read"))
    return {"notifications": notifications, "count": len(notifications), "unread": unread}


@router.patch("/{notification_id}/read")
async def mark_notification_read(
    notification_id: str,
    user: dict = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service),
):
    found = await service.mark_read(notification_id, email=user["email"])
    if not found:
        raise HTTPException(status_code=404, detail="Notification not found")
    return {"success": True}
