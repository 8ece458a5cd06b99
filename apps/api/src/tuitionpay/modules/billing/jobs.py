"""
Billing Background Jobs

Scheduled tasks for the billing ledger:
1. Remind students of installments coming due (weekly, Monday 09:00 UTC)
2. Expire Pending payments whose checkout session has lapsed (hourly)

Design Principles:
- Jobs are idempotent: reminders are stamped with reminder_sent_at and
  expiry uses the same conditional Pending transition as cancellation
- Each item is processed in its own session so one failure does not stop
  the batch
- Email failures are logged; the installment is left unstamped so the
  next run retries it
"""

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from tuitionpay.core.config import settings
from tuitionpay.core.database import async_session_maker
from tuitionpay.core.email import format_peso, send_installment_reminder
from tuitionpay.core.scheduler import register_job
from tuitionpay.modules.billing import repository
from tuitionpay.modules.billing.completion import expire_payment

logger = logging.getLogger(__name__)

JOB_ID_SEND_INSTALLMENT_REMINDERS = "billing_send_installment_reminders"
JOB_ID_EXPIRE_STALE_CHECKOUTS = "billing_expire_stale_checkouts"

NOTIFICATION_TYPE_PAYMENT_REMINDER = "payment_reminder"

# Grading periods covered by a four-installment plan
PERIOD_NAMES = {
    1: "Prelim",
    2: "Midterms",
    3: "Semi-Finals",
    4: "Finals",
}


def period_name(installment_number: int) -> str:
    return PERIOD_NAMES.get(installment_number, f"Installment {installment_number}")


async def _send_one_reminder(installment_id: int) -> dict[str, Any]:
    """Email and notify for one installment, then stamp it as reminded."""
    async with async_session_maker() as db:
        try:
            match = await repository.get_installment_for_reminder(db, installment_id)
            if match is None:
                return {"installment_id": installment_id, "status": "skipped"}

            installment, enrollment = match
            student = enrollment.student
            name = period_name(installment.installment_number)
            due = installment.due_date.strftime("%B %d, %Y")

            if student.email:
                sent = await send_installment_reminder(
                    to_email=student.email,
                    student_name=student.full_name,
                    period_name=name,
                    amount=installment.amount,
                    due_date=due,
                )
                if not sent:
                    logger.error(f"Reminder email failed for installment {installment_id}")
                    return {"installment_id": installment_id, "status": "email_failed"}
            else:
                logger.warning(f"Student {student.id} has no email, notification only")

            await repository.create_notification(
                db,
                student_id=student.id,
                type=NOTIFICATION_TYPE_PAYMENT_REMINDER,
                title=f"{name} Payment Reminder",
                message=(
                    f"Your {name} payment of {format_peso(installment.amount)} "
                    f"is due on {due}."
                ),
            )
            await repository.mark_reminder_sent(db, installment_id)
            await db.commit()
            return {"installment_id": installment_id, "status": "sent"}
        except Exception:
            await db.rollback()
            raise


async def send_installment_reminders() -> dict[str, Any]:
    """
    Send reminders for pending installments due within the reminder window.

    Returns:
        Summary with counts of sent, failed and skipped reminders
    """
    today = datetime.now(UTC).date()
    window_end = today + timedelta(days=settings.installment_reminder_days)

    async with async_session_maker() as db:
        due = await repository.list_installments_due_for_reminder(db, today, window_end)
        installment_ids = [installment.id for installment, _ in due]

    logger.info(f"Found {len(installment_ids)} installments due by {window_end.isoformat()}")

    results: dict[str, Any] = {"sent": 0, "failed": 0, "skipped": 0, "errors": []}

    for installment_id in installment_ids:
        try:
            outcome = await _send_one_reminder(installment_id)
        except Exception as e:
            logger.error(f"Error sending reminder for installment {installment_id}: {e}")
            results["failed"] += 1
            results["errors"].append({"installment_id": installment_id, "error": str(e)})
            continue

        if outcome["status"] == "sent":
            results["sent"] += 1
        elif outcome["status"] == "email_failed":
            results["failed"] += 1
            results["errors"].append({"installment_id": installment_id, "error": "email failed"})
        else:
            results["skipped"] += 1

    logger.info(
        f"Installment reminders: sent={results['sent']}, failed={results['failed']}, "
        f"skipped={results['skipped']}"
    )
    return results


async def expire_stale_checkouts() -> dict[str, Any]:
    """Cancel Pending payments whose checkout session expired."""
    now = datetime.now(UTC)

    async with async_session_maker() as db:
        stale = await repository.list_expired_pending_payments(db, now)
        payment_ids = [payment.id for payment in stale]

    results: dict[str, Any] = {"expired": 0, "skipped": 0, "failed": 0}

    for payment_id in payment_ids:
        try:
            async with async_session_maker() as db:
                if await expire_payment(db, payment_id):
                    results["expired"] += 1
                else:
                    results["skipped"] += 1
        except Exception as e:
            logger.error(f"Error expiring payment {payment_id}: {e}")
            results["failed"] += 1

    logger.info(
        f"Checkout expiry: expired={results['expired']}, skipped={results['skipped']}, "
        f"failed={results['failed']}"
    )
    return results


def register_billing_jobs() -> None:
    """Register billing jobs with the scheduler."""
    register_job(
        JOB_ID_SEND_INSTALLMENT_REMINDERS,
        send_installment_reminders,
        CronTrigger(day_of_week="mon", hour=9, minute=0, timezone="UTC"),
    )
    register_job(
        JOB_ID_EXPIRE_STALE_CHECKOUTS,
        expire_stale_checkouts,
        IntervalTrigger(hours=1),
    )
