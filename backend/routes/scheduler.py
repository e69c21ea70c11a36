"""
PROTRAIN CRM - Routes Scheduler (Admin)

- POST /scheduler/run                 declenchement manuel (dryRun, force)
- GET  /scheduler/status              etat Idle/Running + dernier sweep
- POST /scheduler/records/{id}/send   renvoi immediat d'un record
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from models.billing import SchedulerRunRequest
from routes.auth import require_admin
from scheduler_service import TriggerDriver, get_trigger_driver
from services.billing_scheduler import (
    RecordNotFoundError,
    SweepInProgressError,
)
from services.event_logger import log_event
from services.notification_settings import SettingsUnavailableError

router = APIRouter(prefix="/scheduler", tags=["Scheduler"])


@router.post("/run")
async def run_scheduler(
    data: Optional[SchedulerRunRequest] = None,
    user: dict = Depends(require_admin),
    driver: TriggerDriver = Depends(get_trigger_driver),
):
    """Sweep manuel. Echecs metier => success=false, jamais d'exception"""
    data = data or SchedulerRunRequest()
    return await driver.run_manual(dry_run=data.dry_run, force=data.force)


@router.get("/status")
async def scheduler_status(
    user: dict = Depends(require_admin),
    driver: TriggerDriver = Depends(get_trigger_driver),
):
    return await driver.status()


@router.post("/records/{record_id}/send")
async def send_record_now(
    record_id: str,
    user: dict = Depends(require_admin),
    driver: TriggerDriver = Depends(get_trigger_driver),
):
    """Renvoi operateur: ignore le calendrier et l'idempotence du jour"""
    try:
        outcome = await driver.scheduler.send_record_now(record_id)
    except RecordNotFoundError:
        raise HTTPException(status_code=404, detail="Billing record not found")
    except SweepInProgressError as e:
        return {"success": False, "message": str(e), "outcome": None}
    except SettingsUnavailableError as e:
        return {"success": False, "message": str(e), "outcome": None}

    payload = outcome.model_dump(mode="json", by_alias=True)
    await log_event(
        action="billing_send_now",
        entity_type="billing_record",
        entity_id=record_id,
        user=user.get("email", "admin"),
        details=payload,
        database=driver.scheduler.database,
    )

    if outcome.status == "notified":
        message = "Reminder sent"
    elif outcome.status == "failed":
        message = f"Reminder failed: {outcome.error}"
    else:
        message = f"Reminder skipped: {outcome.reason}"
    return {"success": outcome.status == "notified", "message": message, "outcome": payload}
