"""
Scheduler pour les rappels de facturation Protrain CRM
- Tick toutes les SCHEDULER_TICK_SECONDS (60s par defaut)
- Sweep billing une fois par jour a l'heure configuree (settings.triggerTime)
- Declenchement manuel (dry-run / force) depuis /api/scheduler/run
"""

import logging
from typing import Dict, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from config import REFERENCE_TIMEZONE, SCHEDULER_TICK_SECONDS
from models.billing import SweepResult
from services.billing_scheduler import (
    BillingScheduler,
    SweepInProgressError,
    SweepLockUnavailableError,
)
from services.clock import Clock
from services.notification_settings import NotificationSettingsService, SettingsUnavailableError
from services.scheduler_state import SchedulerStateStore

logger = logging.getLogger("scheduler")


class TriggerDriver:
    """
    Deux points d'entree sur le meme sweep:
    - tick(): appele par le timer, declenche au plus un sweep par jour
    - run_manual(): declenchement operateur, dry-run / force
    """

    def __init__(
        self,
        scheduler: BillingScheduler,
        settings_service: Optional[NotificationSettingsService] = None,
        state: Optional[SchedulerStateStore] = None,
        clock: Optional[Clock] = None,
    ):
        self.scheduler = scheduler
        self.settings = settings_service or scheduler.settings
        self.state = state or scheduler.state
        self.clock = clock or scheduler.clock

    async def tick(self) -> Optional[SweepResult]:
        """
        Lance le sweep si:
        - aucun sweep en cours
        - heure courante >= triggerTime (tolere un tick rate / une panne)
        - pas deja lance aujourd'hui pour ce triggerTime
        Le marqueur du jour est persiste AVANT le sweep.
        """
        if self.scheduler.is_running:
            logger.debug("[TRIGGER] Sweep in progress, tick ignored")
            return None

        now = self.clock.now()
        today = now.date()

        try:
            settings = await self.settings.get_settings()
        except SettingsUnavailableError as e:
            logger.warning(f"[TRIGGER] Settings unavailable, tick skipped: {str(e)}")
            return None

        state = await self.state.get_trigger_state()
        last_sweep_date = state.get("lastSweepDate")

        if state.get("triggerTime") != settings.trigger_time:
            if state.get("triggerTime"):
                logger.info(
                    f"[TRIGGER] triggerTime changed {state.get('triggerTime')} -> "
                    f"{settings.trigger_time}, daily marker reset"
                )
            await self.state.reset_trigger(settings.trigger_time)
            last_sweep_date = None

        if last_sweep_date == today.isoformat():
            return None

        if now.time() < settings.trigger_clock:
            return None

        await self.state.mark_swept(today, settings.trigger_time)
        logger.info(f"[TRIGGER] Daily billing sweep fired at {now.strftime('%Y-%m-%d %H:%M')} ({settings.trigger_time})")

        try:
            return await self.scheduler.run_sweep(trigger="daily")
        except SweepInProgressError:
            logger.info("[TRIGGER] Sweep already running, daily run skipped")
        except SweepLockUnavailableError as e:
            logger.warning(f"[TRIGGER] {str(e)}")
        return None

    async def run_manual(self, dry_run: bool = False, force: bool = False) -> Dict:
        """
        Retourne toujours un resultat structure pour les echecs metier.
        Les pannes d'infrastructure (store injoignable) sont propagees.
        """
        try:
            result = await self.scheduler.run_sweep(dry_run=dry_run, force=force, trigger="manual")
        except (SweepInProgressError, SweepLockUnavailableError) as e:
            return {
                "success": False,
                "message": str(e),
                "result": SweepResult(dry_run=dry_run, force=force).model_dump(mode="json", by_alias=True),
            }

        payload = result.model_dump(mode="json", by_alias=True)

        if result.aborted:
            return {"success": False, "message": result.aborted, "result": payload}

        message = (
            f"Checked {result.checked} record(s): {result.notified} notified, "
            f"{result.failed} failed, {result.skipped} skipped"
        )
        if dry_run:
            message = f"[dry run] {message}"
        return {"success": True, "message": message, "result": payload}

    async def status(self) -> Dict:
        state = await self.state.get_trigger_state()
        return {
            "state": self.scheduler.status,
            "lastSweepDate": state.get("lastSweepDate"),
            "triggerTime": state.get("triggerTime"),
            "lastResult": state.get("lastResult"),
        }


class TaskScheduler:
    """Timer: APScheduler appelle TriggerDriver.tick() a intervalle fixe"""

    def __init__(self, driver: TriggerDriver, tick_seconds: int = SCHEDULER_TICK_SECONDS):
        self.driver = driver
        self.tick_seconds = tick_seconds
        self.scheduler = AsyncIOScheduler(timezone=REFERENCE_TIMEZONE)

    def start(self):
        """Démarre le scheduler"""
        self.scheduler.add_job(
            self._tick_job,
            IntervalTrigger(seconds=self.tick_seconds),
            id="billing_notifications_tick",
            name="Rappels de facturation",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

        self.scheduler.start()
        logger.info(f"Scheduler démarré (tick toutes les {self.tick_seconds}s, zone {REFERENCE_TIMEZONE})")

    def stop(self):
        """Arrête le scheduler"""
        if self.scheduler.running:
            self.scheduler.shutdown()
            logger.info("Scheduler arrêté")

    async def _tick_job(self):
        try:
            await self.driver.tick()
        except Exception as e:
            logger.error(f"Erreur tick rappels de facturation: {str(e)}")


# Instances globales
billing_scheduler = BillingScheduler()
trigger_driver = TriggerDriver(billing_scheduler)
task_scheduler = TaskScheduler(trigger_driver)


def get_billing_scheduler() -> BillingScheduler:
    return billing_scheduler


def get_trigger_driver() -> TriggerDriver:
    return trigger_driver
