"""
Transaction Validators for Booking Business Rules.

Validators that check business constraints inside the booking transaction.
Used by BookingTransaction (and the availability engine for the service
checks) to ensure bookings meet all requirements. Every validator raises a
typed error from ``booking.errors``; none of them writes.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from booking.errors import ConflictError, InvalidRequestError, NotFoundError, ValidationError
from database.models import (
    Appointment,
    AppointmentStatus,
    Service,
    Staff,
    StaffAbsence,
    User,
    staff_services,
)

logger = logging.getLogger(__name__)

Interval = tuple[datetime, datetime]


@dataclass(frozen=True)
class ServiceSelection:
    """One requested service and how many times it is performed."""

    service_id: UUID
    quantity: int = 1


@dataclass(frozen=True)
class SelectedService:
    """A resolved selection: the catalog row plus its quantity."""

    service: Service
    quantity: int

    @property
    def duration_minutes(self) -> int:
        return self.service.duration_minutes * self.quantity


def normalize_selections(
    selections: list[ServiceSelection] | list[UUID],
) -> list[ServiceSelection]:
    """
    Accept bare service ids or selections; merge duplicates by summing quantities.

    Raises:
        ValidationError: If nothing was selected or a quantity is below 1
    """
    if not selections:
        raise ValidationError(
            "Debe seleccionar al menos un servicio",
            error_code="SERVICES_REQUIRED",
        )

    quantities: dict[UUID, int] = {}
    for item in selections:
        if not isinstance(item, ServiceSelection):
            item = ServiceSelection(service_id=item)
        if item.quantity < 1:
            raise ValidationError(
                "La cantidad de cada servicio debe ser al menos 1",
                error_code="INVALID_QUANTITY",
                details={"service_id": str(item.service_id)},
            )
        quantities[item.service_id] = quantities.get(item.service_id, 0) + item.quantity

    return [ServiceSelection(service_id=sid, quantity=qty) for sid, qty in quantities.items()]


async def load_active_staff(
    session: AsyncSession,
    staff_id: UUID,
    lock: bool = False,
) -> Staff:
    """
    Fetch an active staff member whose user account is active.

    With ``lock=True`` the staff row is locked (SELECT ... FOR UPDATE) until the
    transaction ends. Every booking write for this staff member takes the same
    lock before its overlap check, which serializes check-and-insert per staff.

    Raises:
        NotFoundError: If the staff member does not exist or is inactive
    """
    stmt = (
        select(Staff)
        .join(User, Staff.user_id == User.id)
        .where(Staff.id == staff_id, Staff.is_active.is_(True), User.is_active.is_(True))
    )
    if lock:
        stmt = stmt.with_for_update(of=Staff)

    result = await session.execute(stmt)
    staff = result.scalar_one_or_none()

    if staff is None:
        raise NotFoundError("Empleado no encontrado", details={"staff_id": str(staff_id)})
    return staff


async def validate_service_selection(
    session: AsyncSession,
    staff_id: UUID,
    selections: list[ServiceSelection],
) -> list[SelectedService]:
    """
    Resolve selections against the catalog and the staff member's offered services.

    Raises:
        InvalidRequestError: If a service is unknown, inactive or not offered by the staff member
    """
    service_ids = [s.service_id for s in selections]

    result = await session.execute(
        select(Service).where(Service.id.in_(service_ids), Service.is_active.is_(True))
    )
    services = {s.id: s for s in result.scalars().all()}

    missing = [sid for sid in service_ids if sid not in services]
    if missing:
        logger.warning(
            f"Unknown or inactive services requested: {missing}",
            extra={"staff_id": staff_id},
        )
        raise InvalidRequestError(
            "Uno o más servicios no fueron encontrados",
            error_code="INVALID_SERVICE_IDS",
            details={"missing_service_ids": [str(sid) for sid in missing]},
        )

    offered_result = await session.execute(
        select(staff_services.c.service_id).where(
            staff_services.c.staff_id == staff_id,
            staff_services.c.service_id.in_(service_ids),
        )
    )
    offered = set(offered_result.scalars().all())

    not_offered = [sid for sid in service_ids if sid not in offered]
    if not_offered:
        logger.warning(
            f"Services not offered by staff {staff_id}: {not_offered}",
            extra={"staff_id": staff_id},
        )
        raise InvalidRequestError(
            "El empleado seleccionado no ofrece uno o más de los servicios",
            error_code="SERVICE_NOT_OFFERED",
            details={"service_ids": [str(sid) for sid in not_offered]},
        )

    return [SelectedService(service=services[s.service_id], quantity=s.quantity) for s in selections]


def validate_start_in_future(start_time: datetime, now: datetime) -> None:
    """
    Raises:
        InvalidRequestError: If the appointment would start in the past
    """
    if start_time < now:
        raise InvalidRequestError(
            "No se pueden reservar citas en el pasado",
            error_code="START_IN_PAST",
            details={"start_time": start_time.isoformat()},
        )


def validate_within_working_hours(
    windows: list[Interval],
    start_time: datetime,
    end_time: datetime,
) -> None:
    """
    The whole [start, end) interval must fit inside one working window.

    Raises:
        InvalidRequestError: If the interval falls outside the staff member's working hours
    """
    for window_start, window_end in windows:
        if window_start <= start_time and end_time <= window_end:
            return

    raise InvalidRequestError(
        "El horario seleccionado está fuera del horario de trabajo del empleado",
        error_code="OUTSIDE_WORKING_HOURS",
        details={"start_time": start_time.isoformat(), "end_time": end_time.isoformat()},
    )


async def validate_slot_availability(
    session: AsyncSession,
    staff_id: UUID,
    start_time: datetime,
    end_time: datetime,
    exclude_appointment_id: UUID | None = None,
) -> None:
    """
    Validate that [start_time, end_time) overlaps no absence and no non-cancelled appointment.

    Must run inside the booking transaction, after the staff row lock.

    Raises:
        ConflictError: SLOT_TAKEN or STAFF_ABSENT
    """
    stmt = (
        select(Appointment)
        .where(Appointment.staff_id == staff_id)
        .where(Appointment.status != AppointmentStatus.CANCELLED)
        # Half-open overlap: existing starts before our end and ends after our start
        .where(Appointment.start_time < end_time)
        .where(Appointment.end_time > start_time)
    )
    if exclude_appointment_id is not None:
        stmt = stmt.where(Appointment.id != exclude_appointment_id)

    result = await session.execute(stmt)
    conflict = result.scalars().first()

    if conflict is not None:
        logger.warning(
            f"Slot conflict detected: {start_time} - {end_time}",
            extra={"staff_id": staff_id, "appointment_id": conflict.id},
        )
        raise ConflictError(
            "El horario seleccionado ya está ocupado. "
            "Por favor, elige otro horario de los disponibles.",
            error_code="SLOT_TAKEN",
            details={"conflicting_appointment_id": str(conflict.id)},
        )

    absence_result = await session.execute(
        select(StaffAbsence).where(
            StaffAbsence.staff_id == staff_id,
            StaffAbsence.start_time < end_time,
            StaffAbsence.end_time > start_time,
        )
    )
    absence = absence_result.scalars().first()

    if absence is not None:
        logger.warning(
            f"Slot overlaps staff absence: {start_time} - {end_time}",
            extra={"staff_id": staff_id},
        )
        raise ConflictError(
            "El empleado no está disponible en el horario seleccionado",
            error_code="STAFF_ABSENT",
            details={"absence_id": str(absence.id)},
        )

    logger.info(f"Slot available: {start_time} - {end_time}", extra={"staff_id": staff_id})
