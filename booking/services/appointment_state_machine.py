"""
Appointment State Machine.

    pending -> confirmed -> in_progress -> completed
    pending | confirmed | in_progress -> cancelled

``completed`` and ``cancelled`` are terminal. Each transition is a single
locked update followed by best-effort side effects (notifications, calendar
mirror) that run after the commit and are never rolled back.
"""

import logging
from uuid import UUID

from sqlalchemy import select

from booking.authorization import Capability, CurrentUser, ensure_capability
from booking.errors import InvalidTransitionError, NotFoundError, ValidationError
from booking.interfaces import run_side_effect
from booking.services.gcal_push_service import CalendarMirror
from booking.services.notification_dispatcher import NotificationDispatcher
from booking.utils.date_parser import now_local
from database.connection import Database
from database.models import Appointment, AppointmentStatus, Customer

logger = logging.getLogger(__name__)

INITIAL_STATUS = AppointmentStatus.PENDING

TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.PENDING: frozenset({AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED}),
    AppointmentStatus.CONFIRMED: frozenset({AppointmentStatus.IN_PROGRESS, AppointmentStatus.CANCELLED}),
    AppointmentStatus.IN_PROGRESS: frozenset({AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED}),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
}

# Spanish status names accepted from clients
STATUS_ALIASES = {
    "pendiente": AppointmentStatus.PENDING,
    "confirmada": AppointmentStatus.CONFIRMED,
    "en_proceso": AppointmentStatus.IN_PROGRESS,
    "completada": AppointmentStatus.COMPLETED,
    "cancelada": AppointmentStatus.CANCELLED,
}


def parse_status(value: str | AppointmentStatus) -> AppointmentStatus:
    """
    Raises:
        ValidationError: If the value is not a known status
    """
    if isinstance(value, AppointmentStatus):
        return value
    normalized = value.strip().lower().replace(" ", "_")
    if normalized in STATUS_ALIASES:
        return STATUS_ALIASES[normalized]
    try:
        return AppointmentStatus(normalized)
    except ValueError:
        raise ValidationError(
            f"Estado de cita desconocido: '{value}'",
            error_code="UNKNOWN_STATUS",
        ) from None


def is_terminal(status: AppointmentStatus) -> bool:
    return not TRANSITIONS[status]


def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    return target in TRANSITIONS[current]


def ensure_transition(current: AppointmentStatus, target: AppointmentStatus) -> None:
    if not can_transition(current, target):
        raise InvalidTransitionError(
            f"No se puede cambiar una cita de '{current.value}' a '{target.value}'",
            details={
                "from": current.value,
                "to": target.value,
                "allowed": sorted(s.value for s in TRANSITIONS[current]),
            },
        )


class AppointmentStateMachine:
    """Single entry point for appointment status changes."""

    def __init__(
        self,
        db: Database,
        dispatcher: NotificationDispatcher,
        calendar_mirror: CalendarMirror,
        now_provider=now_local,
    ):
        self.db = db
        self.dispatcher = dispatcher
        self.calendar_mirror = calendar_mirror
        self.now_provider = now_provider

    async def _apply(
        self,
        appointment_id: UUID,
        target: AppointmentStatus,
        owner_user_id: UUID | None = None,
    ) -> Appointment:
        async with self.db.session() as session:
            stmt = select(Appointment).where(Appointment.id == appointment_id)
            if owner_user_id is not None:
                stmt = stmt.join(Customer, Appointment.customer_id == Customer.id).where(
                    Customer.user_id == owner_user_id
                )
            result = await session.execute(stmt.with_for_update(of=Appointment))
            appointment = result.scalar_one_or_none()

            if appointment is None:
                raise NotFoundError(
                    "Cita no encontrada",
                    details={"appointment_id": str(appointment_id)},
                )

            previous = appointment.status
            ensure_transition(previous, target)

            appointment.status = target
            if target == AppointmentStatus.CANCELLED:
                appointment.cancelled_at = self.now_provider()

            await session.commit()

        logger.info(
            f"Appointment status changed: {previous.value} -> {target.value}",
            extra={"appointment_id": appointment_id},
        )
        return appointment

    async def transition(
        self,
        appointment_id: UUID,
        target: AppointmentStatus | str,
        actor: CurrentUser,
    ) -> Appointment:
        """
        Staff/admin status change.

        Raises:
            PermissionDeniedError: Actor cannot manage appointments
            NotFoundError: Unknown appointment
            InvalidTransitionError: Target not reachable from the current status
        """
        ensure_capability(actor.role, Capability.MANAGE_APPOINTMENTS)
        target = parse_status(target)
        appointment = await self._apply(appointment_id, target)
        await self._after_transition(appointment)
        return appointment

    async def cancel(self, appointment_id: UUID, actor: CurrentUser) -> Appointment:
        """Owner/admin cancellation (the DELETE endpoint); records are never removed."""
        ensure_capability(actor.role, Capability.DELETE_APPOINTMENTS)
        appointment = await self._apply(appointment_id, AppointmentStatus.CANCELLED)
        await self._after_transition(appointment)
        return appointment

    async def cancel_by_customer(self, appointment_id: UUID, user_id: UUID) -> Appointment:
        """
        Customer self-service cancellation; only the owner may cancel.

        Raises:
            NotFoundError: Unknown appointment or not owned by the caller
            InvalidTransitionError: Appointment already completed or cancelled
        """
        appointment = await self._apply(
            appointment_id, AppointmentStatus.CANCELLED, owner_user_id=user_id
        )
        await self._after_transition(appointment)
        return appointment

    # ------------------------------------------------------------------
    # Side effects (after commit, best-effort)
    # ------------------------------------------------------------------

    async def on_created(self, appointment_id: UUID) -> None:
        """Mirror a new appointment and notify both participants."""
        await run_side_effect(
            lambda: self.calendar_mirror.push_appointment(appointment_id), "calendar create"
        )
        await run_side_effect(
            lambda: self.dispatcher.notify_confirmation(appointment_id), "notify customer"
        )
        await run_side_effect(
            lambda: self.dispatcher.notify_staff_assignment(appointment_id), "notify staff"
        )

    async def on_rescheduled(
        self,
        appointment_id: UUID,
        staff_changed: bool = False,
        previous_calendar_id: str | None = None,
    ) -> None:
        await run_side_effect(
            lambda: self.calendar_mirror.update_appointment(
                appointment_id, previous_calendar_id=previous_calendar_id
            ),
            "calendar update",
        )
        if staff_changed:
            await run_side_effect(
                lambda: self.dispatcher.notify_staff_assignment(appointment_id), "notify staff"
            )

    async def _after_transition(self, appointment: Appointment) -> None:
        appointment_id = appointment.id

        if appointment.status == AppointmentStatus.CANCELLED:
            await run_side_effect(
                lambda: self.calendar_mirror.remove_appointment(appointment_id), "calendar delete"
            )
            await run_side_effect(
                lambda: self.dispatcher.notify_cancellation(appointment_id), "notify cancellation"
            )
            return

        await run_side_effect(
            lambda: self.calendar_mirror.update_appointment(appointment_id), "calendar update"
        )
        if appointment.status == AppointmentStatus.CONFIRMED:
            await run_side_effect(
                lambda: self.dispatcher.notify_confirmation(appointment_id), "notify confirmation"
            )
