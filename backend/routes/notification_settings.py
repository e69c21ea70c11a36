"""
PROTRAIN CRM - Routes Notification Settings (Admin)

- GET  /notification-settings             settings courants (defaults crees a la 1ere lecture)
- PUT  /notification-settings             remplacement complet
- POST /notification-settings/test-email  verification de la config SendGrid
"""

import asyncio

from fastapi import APIRouter, Depends, HTTPException

from email_service import EmailService, get_email_service
from models.settings import EmailTestRequest, NotificationSettings
from routes.auth import require_admin
from services.event_logger import log_event
from services.notification_settings import (
    NotificationSettingsService,
    SettingsUnavailableError,
    get_notification_settings_service,
)

router = APIRouter(prefix="/notification-settings", tags=["Notification Settings"])


@router.get("")
async def get_notification_settings(
    user: dict = Depends(require_admin),
    service: NotificationSettingsService = Depends(get_notification_settings_service),
):
    try:
        settings = await service.get_settings()
    except SettingsUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return settings.model_dump(mode="json", by_alias=True)


@router.put("")
async def update_notification_settings(
    data: NotificationSettings,
    user: dict = Depends(require_admin),
    service: NotificationSettingsService = Depends(get_notification_settings_service),
):
    """Remplace les settings. Valide par le modele (HH:MM, advanceDays >= 0, emails)"""
    updated_by = user.get("email", "admin")
    try:
        settings = await service.update_settings(data, updated_by=updated_by)
    except SettingsUnavailableError as e:
        raise HTTPException(status_code=503, detail=str(e))

    payload = settings.model_dump(mode="json", by_alias=True)
    await log_event(
        action="settings_update",
        entity_type="settings",
        entity_id="notification_settings",
        user=updated_by,
        details=payload,
        database=service.db,
    )
    return payload


@router.post("/test-email")
async def send_test_email(
    data: EmailTestRequest,
    user: dict = Depends(require_admin),
    email: EmailService = Depends(get_email_service),
):
    sent = await asyncio.to_thread(email.send_test_email, data.email)
    if sent:
        return {"success": True, "message": f"Test email sent to {data.email}"}
    return {"success": False, "message": "Failed to send test email, check SendGrid configuration"}
