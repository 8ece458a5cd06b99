"""
Email Service using Resend

Handles transactional billing emails: installment reminders and payment receipts.
"""

import asyncio
import logging
from decimal import Decimal
from html import escape

import resend

from tuitionpay.core.config import settings

logger = logging.getLogger(__name__)

resend.api_key = settings.resend_api_key

_STYLE = """
        <style>
            body { font-family: system-ui, -apple-system, sans-serif; line-height: 1.6; color: #1f2937; }
            .container { max-width: 600px; margin: 0 auto; padding: 40px 20px; }
            .header { color: #1a365d; margin-bottom: 24px; }
            .warning { background-color: #fef3c7; border: 1px solid #f59e0b; padding: 16px; border-radius: 8px; margin: 16px 0; }
            .success { background-color: #d1fae5; border: 1px solid #10b981; padding: 16px; border-radius: 8px; margin: 16px 0; }
            .button { display: inline-block; background-color: #1a365d; color: white; padding: 14px 28px; text-decoration: none; border-radius: 8px; margin: 24px 0; }
            .footer { margin-top: 40px; padding-top: 20px; border-top: 1px solid #e5e7eb; color: #6b7280; font-size: 14px; }
        </style>
"""


def format_peso(amount: Decimal) -> str:
    return f"₱{amount:,.2f}"


async def send_email(
    to_email: str,
    subject: str,
    html_content: str,
) -> bool:
    """
    Send an email using Resend.

    Returns:
        True if email was sent (or logged when no API key is configured)
    """
    if not resend.api_key:
        logger.warning("RESEND_API_KEY not set - logging email instead of sending")
        logger.info(f"EMAIL TO: {to_email} | SUBJECT: {subject}")
        return True

    try:
        params: resend.Emails.SendParams = {
            "from": settings.email_from,
            "to": [to_email],
            "subject": subject,
            "html": html_content,
        }

        # Resend is synchronous; keep it off the event loop
        email = await asyncio.to_thread(resend.Emails.send, params)
        logger.info(f"Email sent successfully to {to_email}, id: {email['id']}")
        return True
    except Exception as e:
        logger.error(f"Failed to send email to {to_email}: {e}")
        return False


async def send_installment_reminder(
    to_email: str,
    student_name: str,
    period_name: str,
    amount: Decimal,
    due_date: str,
) -> bool:
    """Remind a student that an installment is coming due."""
    safe_student_name = escape(student_name)
    safe_period_name = escape(period_name)

    payment_url = f"{settings.frontend_url}/student/payment"
    html_content = f"""
    <!DOCTYPE html>
    <html>
    <head>{_STYLE}</head>
    <body>
        <div class="container">
            <h1 class="header">Payment Reminder: {safe_period_name}</h1>

            <p>Hello {safe_student_name},</p>

            <div class="warning">
                <strong>Your {safe_period_name} payment of {format_peso(amount)} is due on {escape(due_date)}.</strong>
            </div>

            <p>Please settle this installment on or before the due date to keep your enrollment in good standing.</p>

            <a href="{payment_url}" class="button">Pay Now</a>

            <div class="footer">
                <p>If you have already paid, you can ignore this email.</p>
                <p>TuitionPay - Enrollment Billing</p>
            </div>
        </div>
    </body>
    </html>
    """
    return await send_email(
        to_email=to_email,
        subject=f"Payment reminder: {safe_period_name} due {due_date}",
        html_content=html_content,
    )


async def send_payment_receipt(
    to_email: str,
    student_name: str,
    payment_id: int,
    amount: Decimal,
    description: str,
    reference_no: str | None,
) -> bool:
    """Confirm a completed payment to the student."""
    safe_student_name = escape(student_name)
    safe_description = escape(description)
    safe_reference = escape(reference_no or "-")

    html_content = f"""
    <!DOCTYPE html>
    <html>
    <head>{_STYLE}</head>
    <body>
        <div class="container">
            <h1 class="header">Payment Received</h1>

            <p>Hello {safe_student_name},</p>

            <div class="success">
                <strong>We received your payment of {format_peso(amount)}.</strong>
            </div>

            <p>Payment: #{payment_id} ({safe_description})<br>Reference: {safe_reference}</p>

            <div class="footer">
                <p>Keep this email as your official acknowledgement.</p>
                <p>TuitionPay - Enrollment Billing</p>
            </div>
        </div>
    </body>
    </html>
    """
    return await send_email(
        to_email=to_email,
        subject=f"Payment receipt #{payment_id}",
        html_content=html_content,
    )
