"""
Service d'emails SendGrid pour Protrain CRM
- Rappels de facturation (anticipe / jour J)
- Email de test (verification de la configuration)
"""

import os
import logging
from datetime import datetime
from html import escape
from typing import List, Optional

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail, Email, To, Content

from models.billing import ReminderContext

logger = logging.getLogger("email_service")

# Configuration
SENDGRID_API_KEY = os.environ.get('SENDGRID_API_KEY', '')
SENDER_EMAIL = os.environ.get('SENDER_EMAIL', 'noreply@protrain-crm.com')
SENDER_NAME = os.environ.get('SENDER_NAME', 'Protrain CRM')

TEMPLATE_PLACEHOLDERS = (
    "companyName",
    "billingDate",
    "billingCycle",
    "daysUntilBilling",
    "amountDue",
)


def format_amount(amount: float) -> str:
    return f"{amount:,.2f}"


def reminder_subject(context: ReminderContext) -> str:
    if context.is_due_today:
        return f"🔔 Billing Due Today: {context.subject}"
    return f"🔔 Billing Reminder: {context.subject} - Due in {context.days_until} days"


def render_billing_reminder(context: ReminderContext, custom_template: Optional[str] = None) -> str:
    """
    HTML du rappel. Un template personnalise (settings.emailTemplate) remplace
    le template par defaut; ses placeholders {{companyName}}, {{billingDate}},
    {{billingCycle}}, {{daysUntilBilling}}, {{amountDue}} sont substitues.
    """
    values = {
        "companyName": escape(context.subject),
        "billingDate": context.occurrence_date.isoformat(),
        "billingCycle": escape(context.cycle_description),
        "daysUntilBilling": str(context.days_until),
        "amountDue": format_amount(context.amount_due),
    }

    if custom_template and custom_template.strip():
        html_content = custom_template
        for key in TEMPLATE_PLACEHOLDERS:
            html_content = html_content.replace("{{" + key + "}}", values[key])
        return html_content

    if context.is_due_today:
        intro = "This is a reminder that the following company has a billing due <strong>today</strong>:"
    else:
        intro = (
            "This is a reminder that the following company has an upcoming billing date "
            f"in <strong>{context.days_until} days</strong>:"
        )

    return f"""
    <!DOCTYPE html>
    <html>
    <head>
        <style>
            body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
            .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
            .header {{ background: #dc3545; color: white; padding: 20px; text-align: center; border-radius: 8px 8px 0 0; }}
            .content {{ background: #f8f9fa; padding: 20px; border-radius: 0 0 8px 8px; }}
            .info-box {{ background: white; padding: 15px; border-radius: 8px; margin: 10px 0; }}
            .label {{ color: #6c757d; font-size: 12px; text-transform: uppercase; }}
            .value {{ font-size: 16px; font-weight: bold; color: #333; }}
            .footer {{ text-align: center; margin-top: 20px; color: #6c757d; font-size: 12px; }}
        </style>
    </head>
    <body>
        <div class="container">
            <div class="header">
                <h1 style="margin: 0;">🔔 Billing Reminder</h1>
            </div>
            <div class="content">
                <p>Dear Admin,</p>
                <p>{intro}</p>

                <div class="info-box">
                    <div class="label">Company</div>
                    <div class="value">{values['companyName']}</div>
                </div>

                <div class="info-box">
                    <div class="label">Billing Date</div>
                    <div class="value">{values['billingDate']}</div>
                </div>

                <div class="info-box">
                    <div class="label">Billing Cycle</div>
                    <div class="value">{values['billingCycle']}</div>
                </div>

                <div class="info-box">
                    <div class="label">Amount Due</div>
                    <div class="value">{values['amountDue']}</div>
                </div>

                <p>Please prepare for the billing process.</p>
            </div>
            <div class="footer">
                <p>This is an automated message from Protrain CRM</p>
            </div>
        </div>
    </body>
    </html>
    """


class EmailService:
    """Service centralisé pour l'envoi d'emails"""

    def __init__(self, api_key: str = SENDGRID_API_KEY, sender: str = SENDER_EMAIL):
        self.api_key = api_key
        self.sender = sender

    def _send_email(self, to_emails: List[str], subject: str, html_content: str) -> bool:
        """Envoie un email via SendGrid (bloquant)"""
        if not self.api_key:
            logger.error("SENDGRID_API_KEY non configurée")
            return False

        if not to_emails:
            logger.error("Aucun destinataire")
            return False

        try:
            message = Mail(
                from_email=Email(self.sender, SENDER_NAME),
                to_emails=[To(email) for email in to_emails],
                subject=subject,
                html_content=Content("text/html", html_content)
            )

            sg = SendGridAPIClient(self.api_key)
            response = sg.send(message)

            if response.status_code in [200, 202]:
                logger.info(f"Email envoyé à {', '.join(to_emails)}: {subject}")
                return True
            else:
                logger.error(f"Erreur envoi email: {response.status_code}")
                return False

        except Exception as e:
            logger.error(f"Exception envoi email: {str(e)}")
            return False

    # ==================== RAPPELS DE FACTURATION ====================

    def send_billing_reminder(
        self,
        recipients: List[str],
        context: ReminderContext,
        custom_template: Optional[str] = None,
    ) -> bool:
        subject = reminder_subject(context)
        html_content = render_billing_reminder(context, custom_template)
        return self._send_email(recipients, subject, html_content)

    # ==================== EMAIL DE TEST ====================

    def send_test_email(self, to_email: str) -> bool:
        html_content = f"""
        <!DOCTYPE html>
        <html>
        <head>
            <style>
                body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
                .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
                .header {{ background: #28a745; color: white; padding: 20px; text-align: center; border-radius: 8px; }}
            </style>
        </head>
        <body>
            <div class="container">
                <div class="header">
                    <h1 style="margin: 0;">✅ Test Email Successful</h1>
                    <p style="margin: 10px 0 0;">Your email notification is configured correctly!</p>
                    <p style="margin: 10px 0 0; font-size: 12px;">{datetime.now().strftime('%d/%m/%Y %H:%M:%S')}</p>
                </div>
            </div>
        </body>
        </html>
        """
        return self._send_email([to_email], "✅ Protrain CRM - Test Email", html_content)


# Instance globale
email_service = EmailService()


def get_email_service() -> EmailService:
    return email_service
