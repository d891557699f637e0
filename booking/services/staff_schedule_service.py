"""
Staff schedules: weekly working hours and absences.

Working hours are replaced as a whole week at a time; several windows per
weekday are allowed (split shifts) as long as they do not overlap. Absences
override working hours in the availability engine.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import delete, func, select

from booking.authorization import Capability, CurrentUser, ensure_capability
from booking.errors import NotFoundError, ValidationError
from booking.utils.date_parser import WEEKDAYS_ES, combine_local, to_local
from database.connection import Database
from database.models import Appointment, AppointmentStatus, Staff, StaffAbsence, StaffWorkingHours

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkingWindow:
    """One working-hour window on a weekday (0=Monday ... 6=Sunday)."""

    day_of_week: int
    start_time: time
    end_time: time


def validate_working_windows(windows: list[WorkingWindow]) -> None:
    """
    Raises:
        ValidationError: Invalid weekday, end not after start, or overlapping windows
    """
    by_day: dict[int, list[WorkingWindow]] = {}
    for window in windows:
        if not 0 <= window.day_of_week <= 6:
            raise ValidationError(
                f"Día de la semana inválido: {window.day_of_week}",
                error_code="INVALID_WEEKDAY",
            )
        if window.end_time <= window.start_time:
            raise ValidationError(
                "La hora de fin debe ser posterior a la de inicio",
                error_code="INVALID_TIME_RANGE",
                details={
                    "day_of_week": window.day_of_week,
                    "start": window.start_time.strftime("%H:%M"),
                    "end": window.end_time.strftime("%H:%M"),
                },
            )
        by_day.setdefault(window.day_of_week, []).append(window)

    for day, day_windows in by_day.items():
        day_windows.sort(key=lambda w: w.start_time)
        for previous, current in zip(day_windows, day_windows[1:]):
            if current.start_time < previous.end_time:
                raise ValidationError(
                    f"Horarios superpuestos el {WEEKDAYS_ES[day]}",
                    error_code="OVERLAPPING_WORKING_HOURS",
                    details={"day_of_week": day},
                )


def serialize_working_hours(row: StaffWorkingHours) -> dict[str, Any]:
    return {
        "id": str(row.id),
        "day_of_week": row.day_of_week,
        "day_name": WEEKDAYS_ES[row.day_of_week],
        "start": row.start_time.strftime("%H:%M"),
        "end": row.end_time.strftime("%H:%M"),
    }


def serialize_absence(absence: StaffAbsence) -> dict[str, Any]:
    return {
        "id": str(absence.id),
        "staff_id": str(absence.staff_id),
        "start_time": to_local(absence.start_time).isoformat(),
        "end_time": to_local(absence.end_time).isoformat(),
        "reason": absence.reason,
    }


class StaffScheduleService:
    def __init__(self, db: Database):
        self.db = db

    @staticmethod
    async def _get_staff(session, staff_id: UUID, lock: bool = False) -> Staff:
        stmt = select(Staff).where(Staff.id == staff_id)
        if lock:
            stmt = stmt.with_for_update()
        result = await session.execute(stmt)
        staff = result.scalar_one_or_none()
        if staff is None:
            raise NotFoundError("Empleado no encontrado", details={"staff_id": str(staff_id)})
        return staff

    async def list_working_hours(self, staff_id: UUID) -> list[dict[str, Any]]:
        async with self.db.session() as session:
            await self._get_staff(session, staff_id)
            result = await session.execute(
                select(StaffWorkingHours)
                .where(StaffWorkingHours.staff_id == staff_id)
                .order_by(StaffWorkingHours.day_of_week, StaffWorkingHours.start_time)
            )
            return [serialize_working_hours(row) for row in result.scalars().all()]

    async def replace_working_hours(
        self,
        staff_id: UUID,
        actor: CurrentUser,
        windows: list[WorkingWindow],
    ) -> list[dict[str, Any]]:
        """
        Replace the whole weekly schedule of a staff member.

        Existing appointments are left untouched even if they now fall outside
        the new hours.
        """
        ensure_capability(actor.role, Capability.MANAGE_STAFF_SCHEDULES)
        validate_working_windows(windows)

        async with self.db.session() as session:
            # Same lock the booking transaction takes
            await self._get_staff(session, staff_id, lock=True)
            await session.execute(
                delete(StaffWorkingHours).where(StaffWorkingHours.staff_id == staff_id)
            )
            rows = [
                StaffWorkingHours(
                    staff_id=staff_id,
                    day_of_week=w.day_of_week,
                    start_time=w.start_time,
                    end_time=w.end_time,
                )
                for w in sorted(windows, key=lambda w: (w.day_of_week, w.start_time))
            ]
            session.add_all(rows)
            await session.commit()

        logger.info(
            f"Working hours replaced for staff {staff_id}: {len(rows)} window(s)",
            extra={"staff_id": staff_id, "user_id": actor.id},
        )
        return [serialize_working_hours(row) for row in rows]

    async def list_absences(
        self,
        staff_id: UUID,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> list[dict[str, Any]]:
        stmt = select(StaffAbsence).where(StaffAbsence.staff_id == staff_id)
        if date_from is not None:
            stmt = stmt.where(StaffAbsence.end_time > combine_local(date_from, time.min))
        if date_to is not None:
            stmt = stmt.where(
                StaffAbsence.start_time < combine_local(date_to + timedelta(days=1), time.min)
            )

        async with self.db.session() as session:
            await self._get_staff(session, staff_id)
            result = await session.execute(stmt.order_by(StaffAbsence.start_time))
            return [serialize_absence(a) for a in result.scalars().all()]

    async def add_absence(
        self,
        staff_id: UUID,
        actor: CurrentUser,
        start_time: datetime,
        end_time: datetime,
        reason: str | None = None,
    ) -> dict[str, Any]:
        """
        Declare an absence.

        Appointments already booked inside the absence are kept; their count is
        returned as ``affected_appointments`` so staff can reschedule them.
        """
        ensure_capability(actor.role, Capability.MANAGE_STAFF_SCHEDULES)
        start_time, end_time = to_local(start_time), to_local(end_time)
        if end_time <= start_time:
            raise ValidationError(
                "La hora de fin debe ser posterior a la de inicio",
                error_code="INVALID_TIME_RANGE",
            )

        async with self.db.session() as session:
            await self._get_staff(session, staff_id, lock=True)
            absence = StaffAbsence(
                staff_id=staff_id,
                start_time=start_time,
                end_time=end_time,
                reason=reason,
            )
            session.add(absence)

            overlap = await session.execute(
                select(func.count(Appointment.id)).where(
                    Appointment.staff_id == staff_id,
                    Appointment.status != AppointmentStatus.CANCELLED,
                    Appointment.start_time < end_time,
                    Appointment.end_time > start_time,
                )
            )
            affected = overlap.scalar_one()
            await session.commit()

        if affected:
            logger.warning(
                f"Absence overlaps {affected} booked appointment(s)",
                extra={"staff_id": staff_id},
            )
        logger.info(f"Absence added for staff {staff_id}", extra={"staff_id": staff_id})
        return {**serialize_absence(absence), "affected_appointments": affected}

    async def delete_absence(self, staff_id: UUID, absence_id: UUID, actor: CurrentUser) -> None:
        ensure_capability(actor.role, Capability.MANAGE_STAFF_SCHEDULES)
        async with self.db.session() as session:
            result = await session.execute(
                delete(StaffAbsence)
                .where(StaffAbsence.id == absence_id, StaffAbsence.staff_id == staff_id)
                .returning(StaffAbsence.id)
            )
            if result.scalar_one_or_none() is None:
                raise NotFoundError(
                    "Ausencia no encontrada", details={"absence_id": str(absence_id)}
                )
            await session.commit()

        logger.info(f"Absence {absence_id} deleted", extra={"staff_id": staff_id})
