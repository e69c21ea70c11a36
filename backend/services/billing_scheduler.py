"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  PROTRAIN CRM - Billing Scheduler (rappels de facturation recurrente)        ║
║                                                                              ║
║  SWEEP = un passage sur TOUS les billing_records a un "today" fixe           ║
║                                                                              ║
║  PAR RECORD:                                                                 ║
║  1. Record mal forme -> skipped (log), jamais bloquant                       ║
║  2. occurrence = align(anchorDate, intervalMonths, today)                    ║
║     ancre differente -> anchorDate corrige IMMEDIATEMENT                     ║
║  3. daysUntil = occurrence - today                                           ║
║  4. Hors fenetre contrat -> skipped                                          ║
║  5. Deja notifie (lastNotifiedDate == today ET                               ║
║     lastNotifiedOccurrence == occurrence) -> skipped, sauf force             ║
║  6. Jour J (onDueDateEnabled, daysUntil == 0) ou                             ║
║     anticipe (advanceEnabled, daysUntil == advanceDays), sinon no-op         ║
║  7. Dispatch (email + notifications in-app)                                  ║
║  8. Succes -> lastNotified* + status=sent + count++                          ║
║     Jour J avec intervalle -> anchorDate = occurrence + intervalle           ║
║  9. Echec -> status=failed + erreur + count++, lastNotified* INCHANGES       ║
║     (le record reste eligible au sweep suivant)                              ║
║                                                                              ║
║  ISOLATION: une exception sur un record n'interrompt JAMAIS le sweep         ║
║  DRY-RUN: memes decisions, aucun dispatch, aucune ecriture                   ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import asyncio
import logging
import time
from datetime import date
from typing import Dict, List, Optional

from pydantic import ValidationError
from pymongo.errors import PyMongoError

from config import now_iso
from models.billing import (
    BillingRecord,
    NotificationKind,
    RecordOutcome,
    ReminderContext,
    SweepResult,
)
from models.settings import NotificationSettings
from services.billing_records import BillingRecordStore
from services.clock import Clock, system_clock
from services.cycle_aligner import add_months, align, cycle_day, days_until, describe_cycle
from services.event_logger import log_event
from services.notification_settings import (
    NotificationSettingsService,
    SettingsUnavailableError,
    notification_settings_service,
)
from services.reminder_dispatcher import ReminderDispatcher
from services.scheduler_state import SchedulerStateStore

logger = logging.getLogger("billing_scheduler")


class SweepInProgressError(Exception):
    """Un sweep tourne deja dans ce process"""
    pass


class SweepLockUnavailableError(Exception):
    """Le bail de sweep est detenu par une autre instance"""
    pass


class RecordNotFoundError(Exception):
    pass


def notification_kind(settings: NotificationSettings, days: int) -> Optional[NotificationKind]:
    """Jour J prioritaire sur l'anticipe (seul le jour J avance l'ancre)"""
    if settings.on_due_date_enabled and days == 0:
        return NotificationKind.DUE
    if settings.advance_enabled and days == settings.advance_days:
        return NotificationKind.ADVANCE
    return None


class BillingScheduler:

    def __init__(
        self,
        store: Optional[BillingRecordStore] = None,
        settings_service: Optional[NotificationSettingsService] = None,
        dispatcher: Optional[ReminderDispatcher] = None,
        state: Optional[SchedulerStateStore] = None,
        clock: Optional[Clock] = None,
        database=None,
    ):
        self.store = store or BillingRecordStore(database)
        self.settings = settings_service or (
            NotificationSettingsService(database) if database is not None else notification_settings_service
        )
        self.dispatcher = dispatcher or ReminderDispatcher()
        self.state = state or SchedulerStateStore(database)
        self.clock = clock or system_clock
        self.database = database
        self.last_result: Optional[SweepResult] = None
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    @property
    def status(self) -> str:
        return "running" if self.is_running else "idle"

    # ════════════════════════════════════════════════════════════════════════
    # SWEEP
    # ════════════════════════════════════════════════════════════════════════

    async def run_sweep(self, dry_run: bool = False, force: bool = False, trigger: str = "manual") -> SweepResult:
        """
        Idle -> Running -> Idle. Pas de re-entrance: un second appel pendant
        un sweep leve SweepInProgressError au lieu d'attendre.
        """
        if self._lock.locked():
            raise SweepInProgressError("A billing sweep is already running")

        async with self._lock:
            leased = False
            if not dry_run:
                leased = await self.state.acquire_lock()
                if not leased:
                    raise SweepLockUnavailableError("Billing sweep lease is held by another instance")
            try:
                return await self._sweep(dry_run=dry_run, force=force, trigger=trigger)
            finally:
                if leased:
                    await self.state.release_lock()

    async def _sweep(self, dry_run: bool, force: bool, trigger: str) -> SweepResult:
        # Un seul "today" pour tout le sweep
        today = self.clock.today()
        result = SweepResult(trigger=trigger, today=today, dry_run=dry_run, force=force, started_at=now_iso())

        logger.info(
            f"[BILLING_SWEEP] START trigger={trigger} today={today.isoformat()} "
            f"dry_run={dry_run} force={force}"
        )

        try:
            settings = await self.settings.get_settings()
        except SettingsUnavailableError as e:
            logger.warning(f"[BILLING_SWEEP] Aborted, settings unavailable: {str(e)}")
            result.aborted = f"Settings unavailable: {str(e)}"
            result.finished_at = now_iso()
            self.last_result = result
            return result

        recipients = await self.settings.get_all_recipients(settings)
        if not recipients:
            logger.warning("[BILLING_SWEEP] No active recipients, due reminders will be recorded as failed")

        records = await self.store.list_all()

        lease_renewed = time.monotonic()
        renew_every = self.state.lock_ttl.total_seconds() / 3

        for doc in records:
            if not dry_run and time.monotonic() - lease_renewed >= renew_every:
                if not await self.state.renew_lock():
                    logger.error("[BILLING_SWEEP] Sweep lease lost, remaining records left for the next sweep")
                    result.aborted = "Sweep lease lost to another instance"
                    break
                lease_renewed = time.monotonic()

            try:
                outcome = await self.process_record(
                    doc, today, settings, recipients, dry_run=dry_run, force=force
                )
            except Exception as e:
                record_id = str(doc.get("id")) if isinstance(doc, dict) and doc.get("id") is not None else None
                logger.error(f"[BILLING_SWEEP] record={record_id} unexpected error: {str(e)}")
                outcome = RecordOutcome.failed(record_id, f"Unexpected error: {str(e)}", dry_run=dry_run)
            result.add(outcome)

        result.finished_at = now_iso()
        self.last_result = result

        logger.info(
            f"[BILLING_SWEEP] END checked={result.checked} notified={result.notified} "
            f"failed={result.failed} skipped={result.skipped} anchors_corrected={result.anchors_corrected}"
        )

        if not dry_run:
            await self._audit(result)

        return result

    async def _audit(self, result: SweepResult):
        summary = result.summary()
        try:
            await self.state.record_last_result(summary)
            await log_event(
                action="billing_sweep",
                entity_type="scheduler",
                entity_id=result.today.isoformat(),
                details=summary,
                database=self.database,
            )
        except PyMongoError as e:
            logger.error(f"[BILLING_SWEEP] Failed to write sweep audit: {str(e)}")

    # ════════════════════════════════════════════════════════════════════════
    # UN RECORD
    # ════════════════════════════════════════════════════════════════════════

    async def process_record(
        self,
        doc: Dict,
        today: date,
        settings: NotificationSettings,
        recipients: List[str],
        dry_run: bool = False,
        force: bool = False,
        ignore_schedule: bool = False,
    ) -> RecordOutcome:
        record_id = doc.get("id")
        if record_id is not None:
            record_id = str(record_id)

        # 1. Record mal forme
        try:
            record = BillingRecord.model_validate(doc)
        except ValidationError as e:
            first = e.errors()[0]
            error = f"{'.'.join(str(p) for p in first['loc'])}: {first['msg']}"
            logger.warning(f"[BILLING_SWEEP] record={record_id} malformed, skipped ({error})")
            return RecordOutcome.skipped(record_id, "malformed", error=error, dry_run=dry_run)

        # 2. Alignement + correction immediate de l'ancre
        day = cycle_day(record.anchor_date, record.anchor_day)
        occurrence = align(record.anchor_date, record.interval_months, today, day)
        anchor_corrected = occurrence != record.anchor_date
        if anchor_corrected:
            logger.info(
                f"[BILLING_SWEEP] record={record.id} anchor {record.anchor_date.isoformat()} "
                f"-> {occurrence.isoformat()}"
            )
            if not dry_run:
                await self.store.update_anchor(record.id, occurrence, day)

        # 3.
        days = days_until(occurrence, today)
        details = {
            "occurrence": occurrence,
            "days_until": days,
            "anchor_corrected": anchor_corrected,
            "dry_run": dry_run,
        }

        # 4. Fenetre contrat
        if not record.in_contract_window(today):
            return RecordOutcome.skipped(record.id, "outside_contract_window", **details)

        # 5. Idempotence
        if (
            not force
            and record.last_notified_date == today
            and record.last_notified_occurrence == occurrence
        ):
            return RecordOutcome.skipped(record.id, "already_notified", **details)

        # 6. Condition d'envoi
        if ignore_schedule:
            kind = NotificationKind.DUE if days == 0 else NotificationKind.ADVANCE
        else:
            kind = notification_kind(settings, days)
        if kind is None:
            return RecordOutcome.skipped(record.id, "not_due", **details)

        if dry_run:
            logger.info(f"[BILLING_SWEEP] record={record.id} would notify ({kind.value}, J-{days})")
            return RecordOutcome.notified(record.id, kind, **details)

        # 7. Dispatch
        context = ReminderContext(
            record_id=record.id,
            subject=record.display_name,
            company_id=record.company_id,
            occurrence_date=occurrence,
            cycle_description=describe_cycle(record.interval_months),
            days_until=days,
            amount_due=record.amount_due,
            kind=kind,
        )
        dispatch = await self.dispatcher.send(recipients, context, settings.email_template)

        # 8. Succes
        if dispatch["success"]:
            next_anchor = None
            if kind == NotificationKind.DUE and record.interval_months > 0:
                next_anchor = add_months(occurrence, record.interval_months, day)
            await self.store.commit_sent(record.id, today, occurrence, next_anchor, day)
            return RecordOutcome.notified(record.id, kind, **details)

        # 9. Echec -> retry au prochain sweep
        await self.store.commit_failed(record.id, dispatch["error"])
        return RecordOutcome.failed(record.id, dispatch["error"], kind=kind, **details)

    # ════════════════════════════════════════════════════════════════════════
    # ENVOI MANUEL D'UN RECORD
    # ════════════════════════════════════════════════════════════════════════

    async def send_record_now(self, record_id: str) -> RecordOutcome:
        """
        Renvoi operateur pour un record: ignore le calendrier et l'idempotence,
        respecte la fenetre contrat. Meme chemin de commit qu'un sweep.
        """
        if self._lock.locked():
            raise SweepInProgressError("A billing sweep is already running")

        async with self._lock:
            doc = await self.store.get(record_id)
            if not doc:
                raise RecordNotFoundError(f"Billing record {record_id} not found")

            settings = await self.settings.get_settings()
            recipients = await self.settings.get_all_recipients(settings)
            outcome = await self.process_record(
                doc, self.clock.today(), settings, recipients, force=True, ignore_schedule=True
            )
            logger.info(f"[BILLING_SEND] record={record_id} status={outcome.status}")
            return outcome
