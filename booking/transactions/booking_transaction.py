"""
Booking Transaction Manager.

Turns a selection of services, a staff member and a start time into an
appointment, atomically:
- Business rule validation (service selection, future start, working hours)
- Overlap re-check at commit time against appointments and absences
- Appointment + line items + pending payment written in one SERIALIZABLE transaction
- Calendar push and notifications AFTER commit (fire-and-forget, non-blocking)

Concurrency: every write for a staff member first locks that staff row
(SELECT ... FOR UPDATE) inside a SERIALIZABLE transaction, so two requests for
the same staff member run their check-and-insert one after the other. The
``excl_appointments_staff_no_overlap`` exclusion constraint backs this up at
the database level; its violation, like a serialization failure, surfaces as
ConflictError.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import delete, select, text, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from booking.authorization import Capability, CurrentUser, ensure_capability
from booking.errors import BookingError, ConflictError, InvalidTransitionError, NotFoundError
from booking.services.appointment_state_machine import (
    INITIAL_STATUS,
    AppointmentStateMachine,
    is_terminal,
)
from booking.services.availability_service import AvailabilityService
from booking.services.gcal_push_service import staff_calendar_id
from booking.utils.date_parser import format_hhmm, now_local, to_local
from booking.validators.transaction_validators import (
    SelectedService,
    ServiceSelection,
    load_active_staff,
    normalize_selections,
    validate_service_selection,
    validate_slot_availability,
    validate_start_in_future,
    validate_within_working_hours,
)
from database.connection import Database
from database.models import (
    Appointment,
    AppointmentService,
    Customer,
    Payment,
    PaymentMethod,
    PaymentStatus,
    Staff,
)

logger = logging.getLogger(__name__)

# SQLSTATEs meaning "another transaction got there first"
CONFLICT_SQLSTATES = {
    "40001",  # serialization_failure
    "40P01",  # deadlock_detected
    "23P01",  # exclusion_violation
    "23505",  # unique_violation
}


@dataclass(frozen=True)
class BookingTotals:
    duration_minutes: int
    amount: Decimal


def compute_totals(selected: list[SelectedService]) -> BookingTotals:
    """Duration = Σ duration × quantity; amount = Σ price × quantity."""
    return BookingTotals(
        duration_minutes=sum(s.duration_minutes for s in selected),
        amount=sum((s.service.price * s.quantity for s in selected), Decimal("0.00")),
    )


def _sqlstate(error: DBAPIError) -> str | None:
    orig = error.orig
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def is_conflict_error(error: DBAPIError) -> bool:
    return isinstance(error, IntegrityError) or _sqlstate(error) in CONFLICT_SQLSTATES


async def get_or_create_customer(session: AsyncSession, user_id: UUID) -> Customer:
    """Customer profile of ``user_id``, created on first use. Never creates a duplicate."""
    result = await session.execute(select(Customer).where(Customer.user_id == user_id))
    customer = result.scalar_one_or_none()
    if customer is not None:
        return customer

    await session.execute(
        pg_insert(Customer)
        .values(user_id=user_id)
        .on_conflict_do_nothing(index_elements=[Customer.user_id])
    )
    result = await session.execute(select(Customer).where(Customer.user_id == user_id))
    customer = result.scalar_one()
    logger.info(f"Customer profile created for user {user_id}", extra={"user_id": user_id})
    return customer


def _serialize_booking(
    appointment: Appointment,
    selected: list[SelectedService],
    totals: BookingTotals,
) -> dict[str, Any]:
    start = to_local(appointment.start_time)
    return {
        "appointment_id": str(appointment.id),
        "customer_id": str(appointment.customer_id),
        "staff_id": str(appointment.staff_id),
        "status": appointment.status.value,
        "start_time": start.isoformat(),
        "end_time": to_local(appointment.end_time).isoformat(),
        "date": start.date().isoformat(),
        "start": format_hhmm(appointment.start_time),
        "end": format_hhmm(appointment.end_time),
        "duration_minutes": totals.duration_minutes,
        "total": str(totals.amount),
        "services": [
            {
                "service_id": str(s.service.id),
                "name": s.service.name,
                "quantity": s.quantity,
                "unit_price": str(s.service.price),
            }
            for s in selected
        ],
    }


class BookingTransaction:
    """
    Atomic transaction handler for creating and rescheduling appointments.

    The booking flow:
    1. Resolve (or lazily create) the customer
    2. Lock the staff row and resolve the requested services
    3. Recompute duration and end time from the catalog
    4. Re-validate the slot (future, working hours, no overlap)
    5. Insert appointment, line items and pending payment; commit
    6. After commit: calendar push and notifications (best-effort)
    """

    def __init__(
        self,
        db: Database,
        availability: AvailabilityService,
        state_machine: AppointmentStateMachine,
        now_provider: Callable[[], datetime] = now_local,
    ):
        self.db = db
        self.availability = availability
        self.state_machine = state_machine
        self.now_provider = now_provider

    async def _validate_slot(
        self,
        session: AsyncSession,
        staff_id: UUID,
        start_time: datetime,
        end_time: datetime,
        exclude_appointment_id: UUID | None = None,
    ) -> None:
        validate_start_in_future(start_time, self.now_provider())
        windows = await self.availability.get_working_windows(
            session, staff_id, to_local(start_time).date()
        )
        validate_within_working_hours(windows, start_time, end_time)
        await validate_slot_availability(
            session, staff_id, start_time, end_time, exclude_appointment_id
        )

    async def _create(
        self,
        resolve_customer: Callable[[AsyncSession], Awaitable[Customer]],
        staff_id: UUID,
        selections: list[ServiceSelection] | list[UUID],
        start_time: datetime,
        notes: str | None,
    ) -> dict[str, Any]:
        start_time = to_local(start_time)
        selections = normalize_selections(selections)
        trace_id = f"{staff_id}_{start_time.isoformat()}"
        logger.info(
            f"[{trace_id}] Starting booking transaction",
            extra={"staff_id": staff_id},
        )

        try:
            async with self.db.session() as session:
                await session.execute(text("SET TRANSACTION ISOLATION LEVEL SERIALIZABLE"))

                await load_active_staff(session, staff_id, lock=True)
                customer = await resolve_customer(session)

                selected = await validate_service_selection(session, staff_id, selections)
                totals = compute_totals(selected)
                end_time = start_time + timedelta(minutes=totals.duration_minutes)

                await self._validate_slot(session, staff_id, start_time, end_time)

                appointment = Appointment(
                    customer_id=customer.id,
                    staff_id=staff_id,
                    start_time=start_time,
                    end_time=end_time,
                    status=INITIAL_STATUS,
                    notes=notes,
                )
                session.add(appointment)
                await session.flush()  # Flush to get ID, but don't commit yet

                for item in selected:
                    session.add(
                        AppointmentService(
                            appointment_id=appointment.id,
                            service_id=item.service.id,
                            quantity=item.quantity,
                            unit_price=item.service.price,
                            duration_minutes=item.service.duration_minutes,
                            discount=Decimal("0.00"),
                        )
                    )

                session.add(
                    Payment(
                        appointment_id=appointment.id,
                        amount=totals.amount,
                        method=PaymentMethod.CASH,
                        status=PaymentStatus.PENDING,
                    )
                )

                await session.commit()

        except BookingError as e:
            logger.warning(
                f"[{trace_id}] Booking rejected: {e.error_code}",
                extra={"staff_id": staff_id},
            )
            raise
        except DBAPIError as e:
            if is_conflict_error(e):
                logger.warning(
                    f"[{trace_id}] Concurrent booking detected ({_sqlstate(e)})",
                    extra={"staff_id": staff_id},
                )
                raise ConflictError(
                    "El horario seleccionado ya no está disponible",
                    error_code="SLOT_TAKEN",
                ) from e
            logger.error(f"[{trace_id}] Database error", exc_info=True)
            raise

        logger.info(
            f"[{trace_id}] Appointment committed to database",
            extra={"appointment_id": appointment.id, "staff_id": staff_id},
        )

        # DB-first: side effects never roll back the booking
        await self.state_machine.on_created(appointment.id)

        return _serialize_booking(appointment, selected, totals)

    async def execute(
        self,
        customer_user_id: UUID,
        staff_id: UUID,
        selections: list[ServiceSelection] | list[UUID],
        start_time: datetime,
        notes: str | None = None,
    ) -> dict[str, Any]:
        """
        Customer self-service booking.

        Returns:
            Dict with appointment_id, start/end, duration_minutes, total and services

        Raises:
            ValidationError / InvalidRequestError: Bad selection, past start, outside working hours
            NotFoundError: Unknown or inactive staff member
            ConflictError: Slot taken (or lost to a concurrent booking) or staff absent
        """
        return await self._create(
            lambda session: get_or_create_customer(session, customer_user_id),
            staff_id,
            selections,
            start_time,
            notes,
        )

    async def create_for_customer(
        self,
        actor: CurrentUser,
        customer_id: UUID,
        staff_id: UUID,
        selections: list[ServiceSelection] | list[UUID],
        start_time: datetime,
        notes: str | None = None,
    ) -> dict[str, Any]:
        """Staff-side booking for an existing customer profile."""
        ensure_capability(actor.role, Capability.MANAGE_APPOINTMENTS)

        async def resolve(session: AsyncSession) -> Customer:
            customer = await session.get(Customer, customer_id)
            if customer is None:
                raise NotFoundError(
                    "Cliente no encontrado", details={"customer_id": str(customer_id)}
                )
            return customer

        return await self._create(resolve, staff_id, selections, start_time, notes)

    async def reschedule(
        self,
        appointment_id: UUID,
        actor: CurrentUser,
        staff_id: UUID | None = None,
        start_time: datetime | None = None,
        selections: list[ServiceSelection] | list[UUID] | None = None,
        notes: str | None = None,
    ) -> dict[str, Any]:
        """
        Move an appointment (staff, start, services) and/or edit its notes.

        The slot is re-validated under the same staff lock, ignoring the
        appointment itself. When services change, line items and the amount of
        pending payments are recomputed.

        Raises:
            NotFoundError: Unknown appointment or staff member
            InvalidTransitionError: Appointment already completed or cancelled
            ConflictError: New slot not available
        """
        ensure_capability(actor.role, Capability.MANAGE_APPOINTMENTS)
        if selections is not None:
            selections = normalize_selections(selections)
        trace_id = f"reschedule_{appointment_id}"

        try:
            async with self.db.session() as session:
                await session.execute(text("SET TRANSACTION ISOLATION LEVEL SERIALIZABLE"))

                result = await session.execute(
                    select(Appointment).where(Appointment.id == appointment_id).with_for_update()
                )
                appointment = result.scalar_one_or_none()
                if appointment is None:
                    raise NotFoundError(
                        "Cita no encontrada", details={"appointment_id": str(appointment_id)}
                    )
                if is_terminal(appointment.status):
                    raise InvalidTransitionError(
                        "No se puede modificar una cita completada o cancelada",
                        error_code="APPOINTMENT_CLOSED",
                        details={"status": appointment.status.value},
                    )

                target_staff_id = staff_id or appointment.staff_id
                new_start = to_local(start_time) if start_time else appointment.start_time
                staff_changed = target_staff_id != appointment.staff_id

                await load_active_staff(session, target_staff_id, lock=True)

                items_result = await session.execute(
                    select(AppointmentService).where(
                        AppointmentService.appointment_id == appointment_id
                    )
                )
                current_items = list(items_result.scalars().all())

                selected: list[SelectedService] | None = None
                if selections is not None:
                    selected = await validate_service_selection(session, target_staff_id, selections)
                    totals = compute_totals(selected)
                else:
                    if staff_changed:
                        # New staff member must offer the booked services
                        await validate_service_selection(
                            session,
                            target_staff_id,
                            [ServiceSelection(i.service_id, i.quantity) for i in current_items],
                        )
                    totals = BookingTotals(
                        duration_minutes=sum(i.duration_minutes * i.quantity for i in current_items),
                        amount=sum((i.subtotal for i in current_items), Decimal("0.00")),
                    )

                new_end = new_start + timedelta(minutes=totals.duration_minutes)
                time_changed = (
                    staff_changed
                    or new_start != appointment.start_time
                    or new_end != appointment.end_time
                )

                previous_calendar_id: str | None = None
                if staff_changed:
                    previous_staff = await session.get(Staff, appointment.staff_id)
                    if previous_staff is not None:
                        previous_calendar_id = staff_calendar_id(previous_staff)

                if time_changed:
                    await self._validate_slot(
                        session, target_staff_id, new_start, new_end, exclude_appointment_id=appointment_id
                    )
                    appointment.staff_id = target_staff_id
                    appointment.start_time = new_start
                    appointment.end_time = new_end

                if selected is not None:
                    await session.execute(
                        delete(AppointmentService).where(
                            AppointmentService.appointment_id == appointment_id
                        )
                    )
                    for item in selected:
                        session.add(
                            AppointmentService(
                                appointment_id=appointment_id,
                                service_id=item.service.id,
                                quantity=item.quantity,
                                unit_price=item.service.price,
                                duration_minutes=item.service.duration_minutes,
                                discount=Decimal("0.00"),
                            )
                        )
                    await session.execute(
                        update(Payment)
                        .where(
                            Payment.appointment_id == appointment_id,
                            Payment.status == PaymentStatus.PENDING,
                        )
                        .values(amount=totals.amount)
                    )

                if notes is not None:
                    appointment.notes = notes

                await session.commit()

        except BookingError:
            raise
        except DBAPIError as e:
            if is_conflict_error(e):
                raise ConflictError(
                    "El horario seleccionado ya no está disponible",
                    error_code="SLOT_TAKEN",
                ) from e
            logger.error(f"[{trace_id}] Database error", exc_info=True)
            raise

        logger.info(
            f"[{trace_id}] Appointment updated (time_changed={time_changed}, staff_changed={staff_changed})",
            extra={"appointment_id": appointment_id, "staff_id": target_staff_id},
        )

        if time_changed:
            await self.state_machine.on_rescheduled(
                appointment_id,
                staff_changed=staff_changed,
                previous_calendar_id=previous_calendar_id,
            )

        start = to_local(appointment.start_time)
        return {
            "appointment_id": str(appointment_id),
            "staff_id": str(appointment.staff_id),
            "status": appointment.status.value,
            "start_time": start.isoformat(),
            "end_time": to_local(appointment.end_time).isoformat(),
            "duration_minutes": totals.duration_minutes,
            "total": str(totals.amount),
            "notes": appointment.notes,
        }
