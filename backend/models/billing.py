"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  PROTRAIN CRM - Modèle Billing Record (vue scheduler)                        ║
║                                                                              ║
║  Le document est cree/modifie par le CRUD billing (hors scheduler).          ║
║  Le scheduler LIT les champs metier et n'ECRIT que:                          ║
║  - anchorDate, anchorDay (realignement / avancement de cycle)                ║
║  - lastNotifiedDate, lastNotifiedOccurrence                                  ║
║  - lastNotificationStatus, lastNotificationError, lastNotificationAt         ║
║  - notificationsSentCount                                                    ║
║                                                                              ║
║  INVARIANT: anchorDate represente toujours une VRAIE occurrence du cycle     ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from datetime import date
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from services.cycle_aligner import parse_date, parse_interval


class NotificationStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"


class NotificationKind(str, Enum):
    """advance = X jours avant, due = le jour meme (avance l'ancre)"""
    ADVANCE = "advance"
    DUE = "due"


class BillingRecord(BaseModel):
    """
    Parsed billing document. Only the fields the scheduler decides on
    (id, anchor, interval, contract window, last notified dates) can make a
    record malformed; summary and audit fields are coerced leniently.
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    id: str
    anchor_date: date
    anchor_day: Optional[int] = None
    interval_months: int = 0
    contract_start: Optional[date] = None
    contract_end: Optional[date] = None
    amount_due: float = 0.0

    company_id: Optional[str] = None
    company_name: Optional[str] = None
    description: Optional[str] = None

    last_notified_date: Optional[date] = None
    last_notified_occurrence: Optional[date] = None
    notifications_sent_count: int = 0
    last_notification_status: Optional[NotificationStatus] = None
    last_notification_error: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v):
        if v is None or v == "":
            raise ValueError("Record has no id")
        return str(v)

    @field_validator("anchor_date", mode="before")
    @classmethod
    def parse_anchor(cls, v):
        return parse_date(v)

    @field_validator(
        "contract_start", "contract_end", "last_notified_date", "last_notified_occurrence",
        mode="before",
    )
    @classmethod
    def parse_optional_date(cls, v):
        if v is None or v == "":
            return None
        return parse_date(v)

    @field_validator("interval_months", mode="before")
    @classmethod
    def parse_interval_months(cls, v):
        return parse_interval(v)

    # ---- champs de resume / audit: jamais bloquants ----

    @field_validator("anchor_day", mode="before")
    @classmethod
    def parse_anchor_day(cls, v):
        try:
            day = int(v)
        except (TypeError, ValueError):
            return None
        return day if 1 <= day <= 31 else None

    @field_validator("amount_due", mode="before")
    @classmethod
    def parse_amount(cls, v):
        if isinstance(v, bool):
            return 0.0
        try:
            amount = float(v)
        except (TypeError, ValueError):
            return 0.0
        return amount if amount >= 0 else 0.0

    @field_validator("company_id", "company_name", "description", "last_notification_error", mode="before")
    @classmethod
    def coerce_text(cls, v):
        if v is None or v == "":
            return None
        return str(v)

    @field_validator("notifications_sent_count", mode="before")
    @classmethod
    def parse_count(cls, v):
        if isinstance(v, bool):
            return 0
        try:
            return max(int(v), 0)
        except (TypeError, ValueError):
            return 0

    @field_validator("last_notification_status", mode="before")
    @classmethod
    def parse_status(cls, v):
        try:
            return NotificationStatus(v)
        except (TypeError, ValueError):
            return None

    def in_contract_window(self, today: date) -> bool:
        if self.contract_start and today < self.contract_start:
            return False
        if self.contract_end and today > self.contract_end:
            return False
        return True

    @property
    def display_name(self) -> str:
        return self.company_name or "(Unknown)"


# ==================== DISPATCH ====================

class ReminderContext(BaseModel):
    """Resume d'un record passe au dispatcher (email + notifications in-app)"""
    record_id: str
    subject: str  # nom de la societe facturee
    company_id: Optional[str] = None
    occurrence_date: date
    cycle_description: str
    days_until: int
    amount_due: float = 0.0
    kind: NotificationKind

    @property
    def is_due_today(self) -> bool:
        return self.days_until == 0


# ==================== SCHEDULER RESULTS ====================

class RecordOutcome(BaseModel):
    """
    Resultat tague du traitement d'un record:
    skipped{reason} | notified{kind} | failed{error}
    """
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    record_id: Optional[str] = None
    status: str  # skipped | notified | failed
    reason: Optional[str] = None
    error: Optional[str] = None
    kind: Optional[NotificationKind] = None
    occurrence: Optional[date] = None
    days_until: Optional[int] = None
    anchor_corrected: bool = False
    dry_run: bool = False

    @classmethod
    def skipped(cls, record_id: Optional[str], reason: str, **extra: Any) -> "RecordOutcome":
        return cls(record_id=record_id, status="skipped", reason=reason, **extra)

    @classmethod
    def notified(cls, record_id: str, kind: NotificationKind, **extra: Any) -> "RecordOutcome":
        return cls(record_id=record_id, status="notified", kind=kind, **extra)

    @classmethod
    def failed(cls, record_id: Optional[str], error: str, **extra: Any) -> "RecordOutcome":
        return cls(record_id=record_id, status="failed", error=error, **extra)


class SweepResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    trigger: str = "manual"
    today: Optional[date] = None
    dry_run: bool = False
    force: bool = False
    checked: int = 0
    notified: int = 0
    failed: int = 0
    skipped: int = 0
    anchors_corrected: int = 0
    aborted: Optional[str] = None
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    outcomes: List[RecordOutcome] = []

    def add(self, outcome: RecordOutcome):
        self.checked += 1
        if outcome.status == "notified":
            self.notified += 1
        elif outcome.status == "failed":
            self.failed += 1
        else:
            self.skipped += 1
        if outcome.anchor_corrected:
            self.anchors_corrected += 1
        self.outcomes.append(outcome)

    def summary(self) -> dict:
        """Forme compacte stockee en event_log / status"""
        return self.model_dump(mode="json", by_alias=True, exclude={"outcomes"})


class SchedulerRunRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    dry_run: bool = False
    force: bool = False
