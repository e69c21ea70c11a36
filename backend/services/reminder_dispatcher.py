"""
PROTRAIN CRM - Reminder Dispatcher

Envoi d'un rappel de facturation:
1. Email (SendGrid, bloquant -> thread) borne par DISPATCH_TIMEOUT_SECONDS
2. Une notification in-app par destinataire, independamment du resultat email

Timeout, exception transport, refus SendGrid, aucun destinataire
=> {"success": False, "error": ...}. Ne leve jamais pour une erreur d'envoi.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from config import DISPATCH_TIMEOUT_SECONDS
from email_service import email_service as default_email_service, reminder_subject
from models.billing import ReminderContext
from services.notifications import notification_service as default_notification_service

logger = logging.getLogger("reminder_dispatcher")


class ReminderDispatcher:

    def __init__(self, email=None, notifications=None, timeout: float = DISPATCH_TIMEOUT_SECONDS):
        self.email = email if email is not None else default_email_service
        self.notifications = notifications if notifications is not None else default_notification_service
        self.timeout = timeout

    async def send(
        self,
        recipients: List[str],
        context: ReminderContext,
        custom_template: Optional[str] = None,
    ) -> Dict[str, Any]:
        if not recipients:
            logger.warning(f"[DISPATCH] record={context.record_id} no recipients configured")
            return {"success": False, "error": "No recipients configured"}

        error = None
        try:
            ok = await asyncio.wait_for(
                asyncio.to_thread(self.email.send_billing_reminder, recipients, context, custom_template),
                timeout=self.timeout,
            )
            if not ok:
                error = "Email transport reported a failure"
        except asyncio.TimeoutError:
            error = f"Email dispatch timed out after {self.timeout}s"
        except Exception as e:
            error = f"Email dispatch error: {str(e)}"

        await self.create_notifications(recipients, context)

        if error:
            logger.error(f"[DISPATCH] record={context.record_id} failed: {error}")
            return {"success": False, "error": error}

        logger.info(
            f"[DISPATCH] record={context.record_id} sent to {len(recipients)} recipient(s) "
            f"({context.kind.value}, J-{context.days_until})"
        )
        return {"success": True, "error": None}

    async def create_notifications(self, recipients: List[str], context: ReminderContext) -> int:
        """Best effort: un echec par destinataire est logge, jamais propage"""
        title = reminder_subject(context).replace("🔔 ", "")
        body = (
            f"{context.subject}: {context.cycle_description} billing on "
            f"{context.occurrence_date.isoformat()}, amount due {context.amount_due:,.2f}"
        )
        data = {
            "recordId": context.record_id,
            "companyId": context.company_id,
            "occurrenceDate": context.occurrence_date.isoformat(),
            "daysUntil": context.days_until,
            "kind": context.kind.value,
        }

        created = 0
        for to_email in recipients:
            try:
                await self.notifications.create(to_email, title, body, data)
                created += 1
            except Exception as e:
                logger.error(f"[DISPATCH] Failed to create notification for {to_email}: {str(e)}")
        return created
