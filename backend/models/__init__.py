"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  PROTRAIN CRM - Models Package                                               ║
║                                                                              ║
║  from models import BillingRecord, NotificationSettings, SweepResult, etc.   ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from .billing import (
    NotificationStatus,
    NotificationKind,
    BillingRecord,
    ReminderContext,
    RecordOutcome,
    SweepResult,
    SchedulerRunRequest,
)

from .settings import (
    Recipient,
    NotificationSettings,
    EmailTestRequest,
    is_valid_email_format,
)

__all__ = [
    # Billing
    "NotificationStatus",
    "NotificationKind",
    "BillingRecord",
    "ReminderContext",
    "RecordOutcome",
    "SweepResult",
    "SchedulerRunRequest",
    # Settings
    "Recipient",
    "NotificationSettings",
    "EmailTestRequest",
    "is_valid_email_format",
]
