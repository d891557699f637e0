"""
Appointment reminder worker.

Two scheduled jobs on a single event loop:
1. send_reminders (every REMINDER_SWEEP_INTERVAL_SECONDS): remind customers of
   pending/confirmed appointments starting within REMINDER_LEAD_HOURS
2. purge_notifications (daily): delete read notifications older than
   NOTIFICATION_RETENTION_DAYS

Reminders are claimed atomically (UPDATE ... RETURNING on reminder_sent_at)
before anything is sent, so overlapping sweeps or several worker replicas
never remind the same appointment twice.
"""

import asyncio
import logging
import signal
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import update

from booking.services.notification_dispatcher import NotificationDispatcher
from booking.services.notification_service import NotificationService
from booking.services.push_service import build_notifier
from booking.utils.date_parser import now_local
from database.connection import Database
from database.models import Appointment, AppointmentStatus
from shared.config import get_settings
from shared.logging_config import configure_logging

logger = logging.getLogger(__name__)

# Global flag for graceful shutdown
shutdown_requested = False

REMINDABLE_STATUSES = (AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED)


def signal_handler(signum: int, frame: Any) -> None:
    """
    Handle SIGTERM/SIGINT for graceful shutdown.
    """
    global shutdown_requested
    logger.info(f"Received signal {signum}, initiating graceful shutdown...")
    shutdown_requested = True


async def claim_due_reminders(db: Database, now: datetime, lead_hours: int) -> list[UUID]:
    """Mark due appointments as reminded and return their ids."""
    async with db.session() as session:
        result = await session.execute(
            update(Appointment)
            .where(
                Appointment.status.in_(REMINDABLE_STATUSES),
                Appointment.reminder_sent_at.is_(None),
                Appointment.start_time > now,
                Appointment.start_time <= now + timedelta(hours=lead_hours),
            )
            .values(reminder_sent_at=now)
            .returning(Appointment.id)
        )
        claimed = list(result.scalars().all())
        await session.commit()
    return claimed


async def send_reminders(
    db: Database,
    dispatcher: NotificationDispatcher,
    now_provider: Callable[[], datetime] = now_local,
) -> int:
    """
    Send reminders for every due appointment.

    Returns:
        Number of reminders delivered
    """
    settings = get_settings()
    now = now_provider()
    logger.info(f"Starting send_reminders job at {now.isoformat()}")

    claimed = await claim_due_reminders(db, now, settings.REMINDER_LEAD_HOURS)
    if not claimed:
        logger.info("No appointments need reminders")
        return 0

    logger.info(f"Claimed {len(claimed)} appointment(s) for reminders")

    sent = 0
    errors = 0
    for appointment_id in claimed:
        # Dispatcher never raises; False means nothing reached the customer
        if await dispatcher.notify_reminder(appointment_id):
            sent += 1
        else:
            errors += 1

    duration = (now_provider() - now).total_seconds()
    logger.info(
        f"Completed send_reminders in {duration:.2f}s: sent={sent}, errors={errors}"
    )
    return sent


async def purge_notifications(notifications: NotificationService) -> int:
    return await notifications.purge_read_older_than(get_settings().NOTIFICATION_RETENTION_DAYS)


async def async_main(db: Database | None = None) -> None:
    """
    Main async entry point - runs the jobs on schedule using a single event loop.

    Handles graceful shutdown on SIGTERM/SIGINT.
    """
    settings = get_settings()
    owns_db = db is None
    db = db or Database.from_settings()
    dispatcher = NotificationDispatcher(db, build_notifier())
    notifications = NotificationService(db)

    logger.info(
        f"Reminder worker starting: lead={settings.REMINDER_LEAD_HOURS}h, "
        f"interval={settings.REMINDER_SWEEP_INTERVAL_SECONDS}s, "
        f"retention={settings.NOTIFICATION_RETENTION_DAYS}d, TIMEZONE={settings.TIMEZONE}"
    )

    last_purge_date: str | None = None  # Format: "YYYY-MM-DD"

    try:
        while not shutdown_requested:
            current_date = now_local().strftime("%Y-%m-%d")

            try:
                await send_reminders(db, dispatcher)
            except Exception as e:
                logger.error(f"Error in send_reminders: {e}", exc_info=True)

            if last_purge_date != current_date:
                try:
                    await purge_notifications(notifications)
                    last_purge_date = current_date
                except Exception as e:
                    logger.error(f"Error in purge_notifications: {e}", exc_info=True)

            # Sleep in 1s steps so a shutdown signal is honored promptly
            for _ in range(settings.REMINDER_SWEEP_INTERVAL_SECONDS):
                if shutdown_requested:
                    break
                await asyncio.sleep(1)
    finally:
        if owns_db:
            await db.dispose()

    logger.info("Reminder worker shutting down gracefully...")


def run_reminder_worker() -> None:
    """
    Synchronous entry point that sets up logging and signal handlers,
    then runs the async main function.
    """
    configure_logging()

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    asyncio.run(async_main())


if __name__ == "__main__":
    run_reminder_worker()
