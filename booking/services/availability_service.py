"""
DB-First Availability Engine.

Computes bookable slot starts for a staff member on a date:

    working windows (weekday)  -  absences  -  non-cancelled appointments
        -> open sub-intervals
        -> candidate starts on the weekday's step grid that fit the duration

The interval arithmetic lives in pure functions so it can be reasoned about
and tested without a database. ``AvailabilityService`` only loads rows and
delegates to them.

Usage:
    availability = AvailabilityService(db)
    slots = await availability.compute_available_slots(
        staff_id=uuid,
        day=date(2026, 3, 16),
        selections=[ServiceSelection(service_id=uuid)],
    )
"""

import logging
from collections.abc import Callable
from datetime import date, datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from booking.utils.date_parser import combine_local, get_business_tz, now_local
from booking.validators.transaction_validators import (
    Interval,
    ServiceSelection,
    load_active_staff,
    normalize_selections,
    validate_service_selection,
)
from database.connection import Database
from database.models import Appointment, AppointmentStatus, StaffAbsence, StaffWorkingHours
from shared.config import get_settings

logger = logging.getLogger(__name__)


# ============================================================================
# Interval arithmetic
# ============================================================================


def merge_intervals(intervals: list[Interval]) -> list[Interval]:
    """Sort and merge overlapping or touching half-open intervals."""
    merged: list[Interval] = []
    for start, end in sorted(i for i in intervals if i[1] > i[0]):
        if merged and start <= merged[-1][1]:
            if end > merged[-1][1]:
                merged[-1] = (merged[-1][0], end)
        else:
            merged.append((start, end))
    return merged


def subtract_intervals(base: list[Interval], remove: list[Interval]) -> list[Interval]:
    """
    Return the parts of ``base`` not covered by any interval in ``remove``.

    Both inputs are half-open [start, end) intervals; the result is sorted.
    """
    result: list[Interval] = []
    blockers = merge_intervals(remove)

    for start, end in merge_intervals(base):
        cursor = start
        for block_start, block_end in blockers:
            if block_end <= cursor:
                continue
            if block_start >= end:
                break
            if block_start > cursor:
                result.append((cursor, block_start))
            cursor = max(cursor, block_end)
            if cursor >= end:
                break
        if cursor < end:
            result.append((cursor, end))

    return result


def working_windows_for_date(day: date, rows: list[StaffWorkingHours]) -> list[Interval]:
    """Timezone-aware working windows of ``day`` from the weekly schedule rows."""
    windows = [
        (combine_local(day, row.start_time), combine_local(day, row.end_time))
        for row in rows
        if row.day_of_week == day.weekday()
    ]
    return merge_intervals(windows)


def generate_slot_starts(
    open_intervals: list[Interval],
    windows: list[Interval],
    duration_minutes: int,
    step_minutes: int,
    not_before: datetime | None = None,
) -> list[datetime]:
    """
    Candidate starts inside the open intervals.

    Candidates sit on a grid anchored at the start of the working window that
    contains them (window_start + k * step). A candidate is kept only when
    ``candidate + duration <= open_interval.end`` and it is not before
    ``not_before``.
    """
    duration = timedelta(minutes=duration_minutes)
    step = timedelta(minutes=step_minutes)
    slots: set[datetime] = set()

    for open_start, open_end in open_intervals:
        anchor = next(
            (w_start for w_start, w_end in windows if w_start <= open_start < w_end),
            open_start,
        )
        # First grid point at or after the open interval start
        offset = (open_start - anchor) % step
        candidate = open_start if not offset else open_start + (step - offset)

        while candidate + duration <= open_end:
            if not_before is None or candidate >= not_before:
                slots.add(candidate)
            candidate += step

    return sorted(slots)


# ============================================================================
# Engine
# ============================================================================


class AvailabilityService:
    """Availability Engine backed by PostgreSQL."""

    def __init__(self, db: Database, now_provider: Callable[[], datetime] = now_local):
        self.db = db
        self.now_provider = now_provider

    @staticmethod
    def day_bounds(day: date) -> Interval:
        start = datetime.combine(day, datetime.min.time(), tzinfo=get_business_tz())
        return start, start + timedelta(days=1)

    async def get_working_windows(
        self, session: AsyncSession, staff_id: UUID, day: date
    ) -> list[Interval]:
        result = await session.execute(
            select(StaffWorkingHours).where(
                StaffWorkingHours.staff_id == staff_id,
                StaffWorkingHours.day_of_week == day.weekday(),
            )
        )
        return working_windows_for_date(day, list(result.scalars().all()))

    async def get_busy_periods(
        self,
        session: AsyncSession,
        staff_id: UUID,
        start_time: datetime,
        end_time: datetime,
        exclude_appointment_id: UUID | None = None,
    ) -> list[dict[str, Any]]:
        """
        Absences and non-cancelled appointments overlapping [start_time, end_time).

        Returns:
            List of {"start", "end", "type"} dicts sorted by start
        """
        periods: list[dict[str, Any]] = []

        absence_result = await session.execute(
            select(StaffAbsence).where(
                StaffAbsence.staff_id == staff_id,
                StaffAbsence.start_time < end_time,
                StaffAbsence.end_time > start_time,
            )
        )
        for absence in absence_result.scalars().all():
            periods.append({"start": absence.start_time, "end": absence.end_time, "type": "absence"})

        appt_stmt = select(Appointment).where(
            Appointment.staff_id == staff_id,
            Appointment.status != AppointmentStatus.CANCELLED,
            Appointment.start_time < end_time,
            Appointment.end_time > start_time,
        )
        if exclude_appointment_id is not None:
            appt_stmt = appt_stmt.where(Appointment.id != exclude_appointment_id)

        appt_result = await session.execute(appt_stmt)
        for appt in appt_result.scalars().all():
            periods.append({"start": appt.start_time, "end": appt.end_time, "type": "appointment"})

        periods.sort(key=lambda p: p["start"])
        return periods

    async def _open_intervals(
        self,
        session: AsyncSession,
        staff_id: UUID,
        day: date,
        exclude_appointment_id: UUID | None = None,
    ) -> tuple[list[Interval], list[Interval]]:
        windows = await self.get_working_windows(session, staff_id, day)
        if not windows:
            return [], []

        day_start, day_end = self.day_bounds(day)
        busy = await self.get_busy_periods(
            session, staff_id, day_start, day_end, exclude_appointment_id
        )
        open_intervals = subtract_intervals(windows, [(p["start"], p["end"]) for p in busy])
        return windows, open_intervals

    async def compute_open_intervals(self, staff_id: UUID, day: date) -> list[Interval]:
        """Effective availability of the day: working hours minus absences minus appointments."""
        async with self.db.session() as session:
            await load_active_staff(session, staff_id)
            _, open_intervals = await self._open_intervals(session, staff_id, day)
        return open_intervals

    async def compute_available_slots(
        self,
        staff_id: UUID,
        day: date,
        selections: list[ServiceSelection] | list[UUID],
    ) -> list[datetime]:
        """
        Bookable slot starts for the requested services, ascending.

        Raises:
            NotFoundError: Unknown or inactive staff member
            InvalidRequestError: Unknown service or service not offered by the staff member
        """
        selections = normalize_selections(selections)

        async with self.db.session() as session:
            await load_active_staff(session, staff_id)
            selected = await validate_service_selection(session, staff_id, selections)
            total_duration = sum(s.duration_minutes for s in selected)

            windows, open_intervals = await self._open_intervals(session, staff_id, day)

        if not windows:
            logger.info(
                f"No working hours for staff {staff_id} on {day} (weekday {day.weekday()})",
                extra={"staff_id": staff_id},
            )
            return []

        step = get_settings().slot_step_for_weekday(day.weekday())
        slots = generate_slot_starts(
            open_intervals,
            windows,
            duration_minutes=total_duration,
            step_minutes=step,
            not_before=self.now_provider(),
        )

        logger.info(
            f"Computed {len(slots)} slots for staff {staff_id} on {day} "
            f"(duration={total_duration}min, step={step}min)",
            extra={"staff_id": staff_id},
        )
        return slots
