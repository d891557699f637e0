"""
Unit tests for reminder_worker.py.

Tests coverage:
- claim_due_reminders() marks and returns due appointments in one statement
- send_reminders() counts deliveries, tolerates failures
- purge_notifications() uses the retention setting
- signal_handler() / async_main() shutdown behaviour
"""

import signal
from unittest.mock import AsyncMock, patch
from uuid import uuid4

import pytest
from sqlalchemy.sql.dml import Update

from booking.workers import reminder_worker
from booking.workers.reminder_worker import (
    claim_due_reminders,
    purge_notifications,
    send_reminders,
    signal_handler,
)
from shared.config import get_settings


class TestClaimDueReminders:
    @pytest.mark.asyncio
    async def test_claims_with_single_update(self, fake_db, mock_session, result_factory, fixed_now):
        ids = [uuid4(), uuid4()]
        mock_session.execute.return_value = result_factory(scalars=ids)

        claimed = await claim_due_reminders(fake_db, fixed_now, lead_hours=24)

        assert claimed == ids
        stmt = mock_session.execute.call_args.args[0]
        assert isinstance(stmt, Update)
        assert stmt.table.name == "appointments"
        mock_session.commit.assert_awaited_once()


class TestSendReminders:
    @pytest.mark.asyncio
    async def test_counts_delivered_reminders(self, fake_db, fixed_now):
        ids = [uuid4(), uuid4(), uuid4()]
        dispatcher = AsyncMock()
        dispatcher.notify_reminder.side_effect = [True, False, True]

        with patch(
            "booking.workers.reminder_worker.claim_due_reminders", new=AsyncMock(return_value=ids)
        ) as claim:
            sent = await send_reminders(fake_db, dispatcher, now_provider=lambda: fixed_now)

        assert sent == 2
        claim.assert_awaited_once_with(fake_db, fixed_now, get_settings().REMINDER_LEAD_HOURS)
        assert [c.args[0] for c in dispatcher.notify_reminder.await_args_list] == ids

    @pytest.mark.asyncio
    async def test_nothing_due(self, fake_db, fixed_now):
        dispatcher = AsyncMock()

        with patch(
            "booking.workers.reminder_worker.claim_due_reminders", new=AsyncMock(return_value=[])
        ):
            sent = await send_reminders(fake_db, dispatcher, now_provider=lambda: fixed_now)

        assert sent == 0
        dispatcher.notify_reminder.assert_not_awaited()


class TestPurgeNotifications:
    @pytest.mark.asyncio
    async def test_uses_retention_days(self):
        notifications = AsyncMock()
        notifications.purge_read_older_than.return_value = 7

        assert await purge_notifications(notifications) == 7
        notifications.purge_read_older_than.assert_awaited_once_with(
            get_settings().NOTIFICATION_RETENTION_DAYS
        )


class TestShutdown:
    def test_signal_handler_sets_flag(self, monkeypatch):
        monkeypatch.setattr(reminder_worker, "shutdown_requested", False)

        signal_handler(signal.SIGTERM, None)

        assert reminder_worker.shutdown_requested is True

    @pytest.mark.asyncio
    async def test_async_main_stops_when_shutdown_requested(self, monkeypatch, fake_db):
        monkeypatch.setattr(reminder_worker, "shutdown_requested", True)

        with patch("booking.workers.reminder_worker.send_reminders", new=AsyncMock()) as send:
            await reminder_worker.async_main(db=fake_db)

        send.assert_not_awaited()
        # A database handed in by the caller is not disposed here
        fake_db.dispose.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_job_errors_do_not_stop_the_loop(self, monkeypatch, fake_db):
        monkeypatch.setattr(reminder_worker, "shutdown_requested", False)
        calls = []

        async def failing_send(*args, **kwargs):
            calls.append(1)
            reminder_worker.shutdown_requested = True
            raise RuntimeError("db unavailable")

        with patch("booking.workers.reminder_worker.send_reminders", new=failing_send), \
             patch("booking.workers.reminder_worker.purge_notifications", new=AsyncMock(return_value=0)) as purge:
            await reminder_worker.async_main(db=fake_db)

        assert calls == [1]
        purge.assert_awaited_once()
