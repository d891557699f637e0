"""
Google Calendar Push Service - Fire-and-Forget Async Push.

In the DB-first architecture the database is the source of truth and Google
Calendar is a push-only mirror for staff members' mobile viewing:
- DB commit happens FIRST
- Calendar push runs after the commit and never rolls anything back
- Event IDs are stored back on the appointment when a push succeeds

Two layers:
- ``GoogleCalendarSync``: the ``CalendarSync`` adapter over the Calendar v3 API
- ``CalendarMirror``: loads an appointment, builds the event and keeps
  ``google_calendar_event_id`` in step. Its methods never raise.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar
from uuid import UUID

from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from sqlalchemy import select, update
from sqlalchemy.orm import selectinload

from booking.interfaces import CalendarSync, NullCalendarSync
from booking.utils.date_parser import to_local
from database.connection import Database
from database.models import Appointment, AppointmentService, Customer, Staff
from shared.config import get_settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Retry configuration for GCal API calls
GCAL_MAX_RETRIES = 3
GCAL_RETRY_BASE_DELAY = 1.0  # seconds

# Event color codes for Google Calendar
EVENT_COLORS = {
    "pending": "5",      # Yellow
    "confirmed": "10",   # Green
    "in_progress": "9",  # Blue
    "completed": "8",    # Gray
}

STATUS_EMOJIS = {
    "pending": "🟡",
    "confirmed": "🟢",
    "in_progress": "🔵",
    "completed": "✅",
}


async def _retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    operation_name: str,
    max_retries: int = GCAL_MAX_RETRIES,
    base_delay: float = GCAL_RETRY_BASE_DELAY,
    idempotent: bool = True,
) -> T:
    """
    Execute an operation with exponential backoff retry.

    400 and 404 responses are not retried. A non-idempotent operation (event
    insert) is only retried on 429, where the request was rejected before it
    was applied; any other failure may have reached the server and is raised
    at once.

    Raises:
        Last exception if all retries fail
    """
    last_exception: Exception | None = None

    for attempt in range(max_retries):
        try:
            return await operation()
        except HttpError as e:
            if e.resp.status in (400, 404):
                raise
            if not idempotent and e.resp.status != 429:
                raise
            last_exception = e
        except Exception as e:
            if not idempotent:
                raise
            last_exception = e

        if attempt < max_retries - 1:
            delay = base_delay * (2 ** attempt)
            logger.warning(
                f"GCal {operation_name} failed (attempt {attempt + 1}/{max_retries}), "
                f"retrying in {delay}s: {last_exception}"
            )
            await asyncio.sleep(delay)

    logger.error(f"GCal {operation_name} failed after {max_retries} attempts")
    raise last_exception


class GoogleCalendarSync:
    """``CalendarSync`` implementation over the Google Calendar v3 API."""

    def __init__(self, service: Any = None):
        self._service = service

    @property
    def service(self) -> Any:
        if self._service is None:
            settings = get_settings()
            creds = service_account.Credentials.from_service_account_file(
                settings.GOOGLE_SERVICE_ACCOUNT_JSON,
                scopes=["https://www.googleapis.com/auth/calendar"],
            )
            self._service = build("calendar", "v3", credentials=creds, cache_discovery=False)
        return self._service

    async def _execute(
        self, request_factory: Callable[[], Any], operation_name: str, idempotent: bool = True
    ) -> Any:
        loop = asyncio.get_running_loop()

        async def call() -> Any:
            return await loop.run_in_executor(None, lambda: request_factory().execute())

        return await _retry_with_backoff(call, operation_name, idempotent=idempotent)

    async def create_event(self, calendar_id: str, event_body: dict[str, Any]) -> str | None:
        event = await self._execute(
            lambda: self.service.events().insert(calendarId=calendar_id, body=event_body),
            "create event",
            idempotent=False,
        )
        return event.get("id")

    async def update_event(
        self, calendar_id: str, event_id: str, event_body: dict[str, Any]
    ) -> bool:
        try:
            await self._execute(
                lambda: self.service.events().patch(
                    calendarId=calendar_id, eventId=event_id, body=event_body
                ),
                f"update event {event_id}",
            )
        except HttpError as e:
            if e.resp.status == 404:
                return False
            raise
        return True

    async def delete_event(self, calendar_id: str, event_id: str) -> bool:
        try:
            await self._execute(
                lambda: self.service.events().delete(calendarId=calendar_id, eventId=event_id),
                f"delete event {event_id}",
            )
        except HttpError as e:
            # Already gone (404) or deleted earlier (410)
            if e.resp.status in (404, 410):
                logger.info(f"GCal event {event_id} already deleted")
                return True
            raise
        return True


def build_calendar_sync() -> CalendarSync:
    """Calendar adapter for this process: Google when enabled, otherwise a no-op."""
    if not get_settings().GOOGLE_CALENDAR_ENABLED:
        logger.info("Google Calendar sync disabled")
        return NullCalendarSync()
    return GoogleCalendarSync()


def staff_calendar_id(staff: Staff) -> str:
    """Calendar holding a staff member's events, falling back to the shared one."""
    return staff.google_calendar_id or get_settings().GOOGLE_CALENDAR_ID


def build_event_body(appointment: Appointment) -> dict[str, Any]:
    """Calendar event body for an appointment with customer, staff and line items loaded."""
    settings = get_settings()
    status = appointment.status.value
    customer_name = appointment.customer.user.full_name
    service_names = ", ".join(item.service.name for item in appointment.line_items)
    emoji = STATUS_EMOJIS.get(status, "")

    return {
        "summary": f"{emoji} {customer_name} - {service_names}".strip(),
        "description": (
            f"Cliente: {customer_name}\n"
            f"Servicios: {service_names}\n"
            f"Estado: {status}\n"
            f"ID de la cita: {appointment.id}"
        ),
        "start": {
            "dateTime": to_local(appointment.start_time).isoformat(),
            "timeZone": settings.TIMEZONE,
        },
        "end": {
            "dateTime": to_local(appointment.end_time).isoformat(),
            "timeZone": settings.TIMEZONE,
        },
        "colorId": EVENT_COLORS.get(status, "5"),
    }


class CalendarMirror:
    """Keeps the external calendar in step with appointments. Never raises."""

    def __init__(self, db: Database, calendar: CalendarSync):
        self.db = db
        self.calendar = calendar

    async def _load(self, appointment_id: UUID) -> Appointment | None:
        async with self.db.session() as session:
            result = await session.execute(
                select(Appointment)
                .where(Appointment.id == appointment_id)
                .options(
                    selectinload(Appointment.customer).selectinload(Customer.user),
                    selectinload(Appointment.staff),
                    selectinload(Appointment.line_items).selectinload(AppointmentService.service),
                )
            )
            return result.scalar_one_or_none()

    async def _store_event_id(self, appointment_id: UUID, event_id: str | None) -> None:
        async with self.db.session() as session:
            await session.execute(
                update(Appointment)
                .where(Appointment.id == appointment_id)
                .values(google_calendar_event_id=event_id)
            )
            await session.commit()

    async def push_appointment(self, appointment_id: UUID) -> str | None:
        """Create the calendar event and store its id. Returns the event id or None."""
        try:
            appointment = await self._load(appointment_id)
            if appointment is None:
                logger.warning(f"Cannot push appointment {appointment_id}: not found")
                return None

            event_id = await self.calendar.create_event(
                staff_calendar_id(appointment.staff), build_event_body(appointment)
            )
            if event_id:
                await self._store_event_id(appointment_id, event_id)
                logger.info(
                    f"Pushed appointment {appointment_id} to Google Calendar: event_id={event_id}",
                    extra={"appointment_id": appointment_id},
                )
            return event_id

        except Exception as e:
            logger.warning(
                f"Error pushing appointment {appointment_id} to Google Calendar: {e}",
                extra={"appointment_id": appointment_id},
                exc_info=True,
            )
            return None

    async def update_appointment(
        self, appointment_id: UUID, previous_calendar_id: str | None = None
    ) -> bool:
        """
        Patch the event after a reschedule or status change; create it if missing.

        ``previous_calendar_id`` is the calendar the event was pushed to before a
        staff reassignment. When it differs from the current staff member's
        calendar the old event is deleted there and a new one is pushed.
        """
        try:
            appointment = await self._load(appointment_id)
            if appointment is None:
                return False

            event_id = appointment.google_calendar_event_id
            if not event_id:
                return await self.push_appointment(appointment_id) is not None

            calendar_id = staff_calendar_id(appointment.staff)
            if previous_calendar_id and previous_calendar_id != calendar_id:
                await self.calendar.delete_event(previous_calendar_id, event_id)
                await self._store_event_id(appointment_id, None)
                logger.info(
                    f"GCal event {event_id} moved off calendar {previous_calendar_id}",
                    extra={"appointment_id": appointment_id},
                )
                return await self.push_appointment(appointment_id) is not None

            updated = await self.calendar.update_event(
                calendar_id, event_id, build_event_body(appointment)
            )
            if not updated:
                # Event deleted on the calendar side: recreate it
                return await self.push_appointment(appointment_id) is not None
            return True

        except Exception as e:
            logger.warning(
                f"Error updating GCal event for appointment {appointment_id}: {e}",
                extra={"appointment_id": appointment_id},
                exc_info=True,
            )
            return False

    async def remove_appointment(self, appointment_id: UUID) -> bool:
        """Delete the event of a cancelled appointment and clear the stored id."""
        try:
            appointment = await self._load(appointment_id)
            if appointment is None or not appointment.google_calendar_event_id:
                return False

            deleted = await self.calendar.delete_event(
                staff_calendar_id(appointment.staff), appointment.google_calendar_event_id
            )
            if deleted:
                await self._store_event_id(appointment_id, None)
                logger.info(
                    f"GCal event {appointment.google_calendar_event_id} deleted",
                    extra={"appointment_id": appointment_id},
                )
            return deleted

        except Exception as e:
            logger.warning(
                f"Failed to delete GCal event for appointment {appointment_id}: {e}",
                extra={"appointment_id": appointment_id},
                exc_info=True,
            )
            return False
