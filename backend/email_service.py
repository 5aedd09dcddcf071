"""
SendGrid email service for EV Dealer Hub
- Dealer payout emails (created, status changes)
- Lead assignment emails
- Order status emails for customers
- Test ride booking confirmations
"""

import logging
from datetime import datetime, timezone
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail, Email, To, Content

from config import SENDGRID_API_KEY, SENDER_EMAIL, SENDER_NAME, format_inr

logger = logging.getLogger("email_service")


# ==================== TEMPLATES ====================
# template_id -> (subject, body builder). Bodies are kept minimal; the
# storefront owns the branded versions of these templates.

def _payout_created(props: dict) -> tuple:
    amount = format_inr(props.get("amount", 0))
    return (
        f"New payout of ₹{amount} created",
        f"<p>Hello {props.get('dealer_name', '')},</p>"
        f"<p>A payout of <strong>₹{amount}</strong> covering "
        f"{props.get('orders_count', 0)} order(s) has been created for your account.</p>"
    )


def _payout_status(props: dict) -> tuple:
    amount = format_inr(props.get("amount", 0))
    return (
        f"Payout update: {props.get('status', '')}",
        f"<p>Your payout of <strong>₹{amount}</strong> {props.get('status_message', '')}.</p>"
        + (f"<p>Bank reference: {props['bank_reference']}</p>" if props.get("bank_reference") else "")
    )


def _lead_assigned(props: dict) -> tuple:
    return (
        f"New lead assigned: {props.get('lead_name', '')}",
        "<h2>New Lead Assigned to You</h2>"
        "<p>A new lead has been assigned to you. Please follow up promptly.</p>"
        f"<p><strong>Name:</strong> {props.get('lead_name', '')}<br>"
        f"<strong>Email:</strong> {props.get('lead_email', '')}<br>"
        f"<strong>Phone:</strong> {props.get('lead_phone', '')}<br>"
        f"<strong>Subject:</strong> {props.get('subject', '')}<br>"
        f"<strong>Priority:</strong> {props.get('priority', 'normal')}<br>"
        f"<strong>Source:</strong> {props.get('source', '')}</p>"
    )


def _order_status(props: dict) -> tuple:
    return (
        f"Your order is now {props.get('status', '')}",
        f"<p>Order <strong>{props.get('order_id', '')}</strong> is now "
        f"<strong>{props.get('status', '')}</strong>.</p>"
        + (f"<p>Tracking number: {props['tracking_number']}</p>" if props.get("tracking_number") else "")
        + (f"<p>Reason: {props['cancellation_reason']}</p>" if props.get("cancellation_reason") else "")
    )


def _test_ride_booked(props: dict) -> tuple:
    return (
        "Test ride request received",
        f"<p>Hello {props.get('name', '')},</p>"
        f"<p>Your test ride request for {props.get('date', '')} at {props.get('time', '')} "
        "has been received. The dealer will confirm shortly.</p>"
    )


TEMPLATES = {
    "payout_created": _payout_created,
    "payout_status": _payout_status,
    "lead_assigned": _lead_assigned,
    "order_status": _order_status,
    "test_ride_booked": _test_ride_booked,
}


class EmailService:
    """Centralised transactional email sender"""

    def __init__(self, api_key: str = None, sender: str = None):
        self.api_key = SENDGRID_API_KEY if api_key is None else api_key
        self.sender = sender or SENDER_EMAIL

    def _send_email(self, to_email: str, subject: str, html_content: str) -> bool:
        """Sends one email through SendGrid"""
        if not self.api_key:
            logger.warning(f"SENDGRID_API_KEY not configured, email to {to_email} skipped")
            return False

        try:
            message = Mail(
                from_email=Email(self.sender, SENDER_NAME),
                to_emails=To(to_email),
                subject=subject,
                html_content=Content("text/html", html_content)
            )

            sg = SendGridAPIClient(self.api_key)
            response = sg.send(message)

            if response.status_code in [200, 202]:
                logger.info(f"Email sent to {to_email}: {subject}")
                return True
            else:
                logger.error(f"Email send error: {response.status_code}")
                return False

        except Exception as e:
            logger.error(f"Email send exception: {str(e)}")
            return False

    def send_template(self, template_id: str, to_email: str, props: dict) -> bool:
        """
        Renders template_id with props and sends it.
        Returns False (never raises) when the template is unknown,
        the recipient is missing or the provider refuses the message.
        """
        builder = TEMPLATES.get(template_id)
        if builder is None:
            logger.error(f"Unknown email template: {template_id}")
            return False
        if not to_email:
            logger.warning(f"No recipient for template {template_id}")
            return False

        subject, body = builder(props or {})
        html_content = f"""
        <!DOCTYPE html>
        <html>
        <body style="font-family: Arial, sans-serif;">
            {body}
            <p style="color: #9CA3AF; font-size: 12px;">
                {datetime.now(timezone.utc).strftime('%d/%m/%Y %H:%M')} UTC - EV Dealer Hub
            </p>
        </body>
        </html>
        """
        return self._send_email(to_email, subject, html_content)
