"""
PROTRAIN CRM - Email Service Tests (no SendGrid call)
Tests: subject lines, default template, custom template placeholders,
configuration guards.
"""

from datetime import date

from email_service import EmailService, render_billing_reminder, reminder_subject
from models.billing import NotificationKind, ReminderContext


def reminder_context(days_until=7, subject="Acme <Training>"):
    return ReminderContext(
        record_id="r1",
        subject=subject,
        occurrence_date=date(2024, 3, 22),
        cycle_description="Every 3 months",
        days_until=days_until,
        amount_due=12500.5,
        kind=NotificationKind.DUE if days_until == 0 else NotificationKind.ADVANCE,
    )


class TestSubjects:

    def test_advance_subject(self):
        assert reminder_subject(reminder_context(7, "Acme")) == "🔔 Billing Reminder: Acme - Due in 7 days"

    def test_due_subject(self):
        assert reminder_subject(reminder_context(0, "Acme")) == "🔔 Billing Due Today: Acme"


class TestTemplates:

    def test_default_template(self):
        html = render_billing_reminder(reminder_context())

        assert "Acme &lt;Training&gt;" in html
        assert "2024-03-22" in html
        assert "Every 3 months" in html
        assert "12,500.50" in html
        assert "in <strong>7 days</strong>" in html
        print("✅ Default reminder template rendered")

    def test_default_template_due_today(self):
        html = render_billing_reminder(reminder_context(0))

        assert "due <strong>today</strong>" in html

    def test_custom_template_placeholders(self):
        template = (
            "<p>{{companyName}} bills on {{billingDate}} ({{billingCycle}}), "
            "in {{daysUntilBilling}} days: {{amountDue}}</p>"
        )

        html = render_billing_reminder(reminder_context(), template)

        assert html == (
            "<p>Acme &lt;Training&gt; bills on 2024-03-22 (Every 3 months), "
            "in 7 days: 12,500.50</p>"
        )
        print("✅ Custom template placeholders substituted")

    def test_blank_custom_template_falls_back(self):
        html = render_billing_reminder(reminder_context(), "   ")

        assert "Billing Reminder" in html


class TestConfigurationGuards:

    def test_missing_api_key(self):
        service = EmailService(api_key="")

        assert service.send_billing_reminder(["a@protrain.test"], reminder_context()) is False

    def test_no_recipients(self):
        service = EmailService(api_key="SG.test")

        assert service.send_billing_reminder([], reminder_context()) is False
