import logging
from typing import Optional

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail

from core.config import settings

logger = logging.getLogger(__name__)


class EmailService:
    """
    Transactional notifications for business owners via SendGrid.
    Without SENDGRID_API_KEY / MAIL_FROM every message is logged instead of sent.
    """

    def __init__(self, api_key: Optional[str] = None, sender_email: Optional[str] = None):
        self.sendgrid_api_key = api_key if api_key is not None else settings.SENDGRID_API_KEY
        self.sender_email = sender_email if sender_email is not None else settings.MAIL_FROM

        self.enabled = bool(self.sendgrid_api_key and self.sender_email)
        if not self.enabled:
            logger.warning("📧 Email service not configured. Missing SENDGRID_API_KEY or MAIL_FROM.")
        else:
            logger.info(f"📧 Email service configured and ready. Sender: {self.sender_email}")

    def _send(self, to_email: str, subject: str, html_content: str) -> bool:
        if not self.enabled:
            logger.info(f"📨 [Mock Email] To: {to_email} | Subject: {subject}")
            return True

        try:
            message = Mail(
                from_email=self.sender_email,
                to_emails=to_email,
                subject=subject,
                html_content=html_content,
            )
            sg = SendGridAPIClient(self.sendgrid_api_key)
            response = sg.send(message)
            logger.info(f"✅ Email '{subject}' sent to {to_email}. Status: {response.status_code}")
            return True
        except Exception as e:
            # Notification failures never roll back billing work
            logger.error(f"❌ Failed to send email to {to_email}: {e}")
            return False

    # ============================================================
    # ⏸️ Subscription paused
    # ============================================================
    def send_subscription_paused_email(
        self,
        to_email: str,
        business_name: str,
        plan_name: str,
        consumer_label: str,
    ) -> bool:
        subject = f"⏸️ A {plan_name} subscription was paused"
        html_content = f"""
        <div style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
            <h2>Subscription paused</h2>
            <p><strong>{consumer_label}</strong> paused their <strong>{plan_name}</strong>
            subscription with <strong>{business_name}</strong>.</p>
            <p>No invoices will be collected until it is resumed.</p>
            <p><a href="{settings.DASHBOARD_URL}">Open your dashboard</a></p>
        </div>
        """
        return self._send(to_email, subject, html_content)

    # ============================================================
    # 💲 Missing dynamic price reminder
    # ============================================================
    def send_missing_price_email(
        self,
        to_email: str,
        business_name: str,
        plan_name: str,
        month_label: str,
        days_remaining: int,
        severity: str,
    ) -> bool:
        subject = f"[{severity}] Set the {month_label} price for {plan_name}"
        html_content = f"""
        <div style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
            <h2>⚠️ Price needed for {month_label}</h2>
            <p><strong>{plan_name}</strong> at <strong>{business_name}</strong> has no price
            for {month_label}. Billing starts in <strong>{days_remaining} day(s)</strong>.</p>
            <p>Members cannot be charged, and new signups are blocked, until a price is set.</p>
            <p><a href="{settings.DASHBOARD_URL}">Set the price now</a></p>
        </div>
        """
        return self._send(to_email, subject, html_content)


# ============================================================
# ✅ Global instance for app-wide import
# ============================================================
email_service = EmailService()
