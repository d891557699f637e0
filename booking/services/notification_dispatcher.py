"""
Notification Dispatcher - appointment lifecycle messages.

Every notify call:
1. Loads the appointment with its participants and services
2. Writes an in-app Notification for the recipient
3. Pushes to the recipient's active device tokens
4. Deactivates tokens that FCM reports as invalid

A recipient without device tokens is not an error (in-app record only).
Dispatcher methods never raise: any failure degrades to a logged warning and
a False return value, so a booking or status change is never affected.
"""

import logging
from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import selectinload

from booking.interfaces import Notifier
from booking.utils.date_parser import format_date_spanish, format_hhmm, to_local
from database.connection import Database
from database.models import (
    Appointment,
    AppointmentService,
    Customer,
    DeviceToken,
    Notification,
    NotificationCategory,
    Staff,
)

logger = logging.getLogger(__name__)

TITLE_CONFIRMATION = "✅ Cita Confirmada"
TITLE_REMINDER = "⏰ Recordatorio de Cita"
TITLE_STAFF_ASSIGNMENT = "📅 Nueva Cita Asignada"
TITLE_CANCELLATION = "❌ Cita Cancelada"


@dataclass(frozen=True)
class AppointmentContext:
    """What a message needs to know about an appointment."""

    appointment_id: UUID
    customer_user_id: UUID
    customer_name: str
    staff_user_id: UUID
    staff_name: str
    services: str
    fecha: str
    hora: str
    dia: str  # "lunes 16 de marzo"

    def push_data(self, tipo: str) -> dict[str, str]:
        # FCM data payload values must be strings
        return {
            "tipo": tipo,
            "citaId": str(self.appointment_id),
            "fecha": self.fecha,
            "hora": self.hora,
            "empleado": self.staff_name,
            "servicios": self.services,
        }

    @property
    def link(self) -> str:
        return f"/citas/{self.appointment_id}"


class NotificationDispatcher:
    """Best-effort in-app + push notifications for appointment events."""

    def __init__(self, db: Database, notifier: Notifier):
        self.db = db
        self.notifier = notifier

    async def _load_context(self, appointment_id: UUID) -> AppointmentContext | None:
        async with self.db.session() as session:
            result = await session.execute(
                select(Appointment)
                .where(Appointment.id == appointment_id)
                .options(
                    selectinload(Appointment.customer).selectinload(Customer.user),
                    selectinload(Appointment.staff).selectinload(Staff.user),
                    selectinload(Appointment.line_items).selectinload(AppointmentService.service),
                )
            )
            appointment = result.scalar_one_or_none()

        if appointment is None:
            return None

        start = to_local(appointment.start_time)
        return AppointmentContext(
            appointment_id=appointment.id,
            customer_user_id=appointment.customer.user_id,
            customer_name=appointment.customer.user.full_name,
            staff_user_id=appointment.staff.user_id,
            staff_name=appointment.staff.user.full_name,
            services=", ".join(item.service.name for item in appointment.line_items),
            fecha=start.strftime("%d/%m/%Y"),
            hora=format_hhmm(start),
            dia=format_date_spanish(start),
        )

    async def _create_inbox_record(
        self,
        user_id: UUID,
        ctx: AppointmentContext,
        title: str,
        body: str,
        category: NotificationCategory,
    ) -> None:
        try:
            async with self.db.session() as session:
                session.add(
                    Notification(
                        user_id=user_id,
                        title=title,
                        body=body,
                        category=category,
                        link=ctx.link,
                        appointment_id=ctx.appointment_id,
                    )
                )
                await session.commit()
        except Exception as e:
            logger.warning(
                f"Failed to create notification record: {e}",
                extra={"appointment_id": ctx.appointment_id, "user_id": user_id},
            )

    async def _active_tokens(self, user_id: UUID) -> list[str]:
        async with self.db.session() as session:
            result = await session.execute(
                select(DeviceToken.token).where(
                    DeviceToken.user_id == user_id,
                    DeviceToken.is_active.is_(True),
                )
            )
            return list(result.scalars().all())

    async def _prune_tokens(self, tokens: list[str]) -> None:
        async with self.db.session() as session:
            await session.execute(
                update(DeviceToken)
                .where(DeviceToken.token.in_(tokens))
                .values(is_active=False)
            )
            await session.commit()
        logger.info(f"Deactivated {len(tokens)} invalid device token(s)")

    async def _deliver(
        self,
        user_id: UUID,
        ctx: AppointmentContext,
        title: str,
        body: str,
        tipo: str,
        category: NotificationCategory = NotificationCategory.APPOINTMENT,
    ) -> bool:
        """Inbox record plus push for one recipient. Returns False if the push failed."""
        await self._create_inbox_record(user_id, ctx, title, body, category)

        try:
            tokens = await self._active_tokens(user_id)
            if not tokens:
                logger.info(
                    f"No device tokens for user {user_id}, push skipped",
                    extra={"appointment_id": ctx.appointment_id, "user_id": user_id},
                )
                return True

            result = await self.notifier.send(tokens, title, body, ctx.push_data(tipo))
        except Exception as e:
            logger.warning(
                f"Push '{tipo}' to user {user_id} failed: {e}",
                extra={"appointment_id": ctx.appointment_id, "user_id": user_id},
                exc_info=True,
            )
            return False

        if result.invalid_tokens:
            try:
                await self._prune_tokens(result.invalid_tokens)
            except Exception as e:
                logger.warning(f"Failed to prune invalid tokens: {e}")

        if result.failure_count and not result.success_count:
            logger.warning(
                f"Push '{tipo}' failed for every device of user {user_id}",
                extra={"appointment_id": ctx.appointment_id, "user_id": user_id},
            )
            return False
        return True

    async def _dispatch(self, appointment_id: UUID, kind: str, build) -> bool:
        try:
            ctx = await self._load_context(appointment_id)
            if ctx is None:
                logger.warning(
                    f"Cannot send {kind}: appointment not found",
                    extra={"appointment_id": appointment_id},
                )
                return False

            delivered = True
            for user_id, title, body, tipo, category in build(ctx):
                delivered = await self._deliver(user_id, ctx, title, body, tipo, category) and delivered

            logger.info(
                f"Dispatched {kind} (delivered={delivered})",
                extra={"appointment_id": appointment_id},
            )
            return delivered

        except Exception as e:
            logger.warning(
                f"Failed to dispatch {kind}: {e}",
                extra={"appointment_id": appointment_id},
                exc_info=True,
            )
            return False

    async def notify_confirmation(self, appointment_id: UUID) -> bool:
        """Tell the customer the appointment is confirmed."""
        return await self._dispatch(
            appointment_id,
            "confirmation",
            lambda ctx: [(
                ctx.customer_user_id,
                TITLE_CONFIRMATION,
                f"Tu cita con {ctx.staff_name} para el {ctx.dia} a las {ctx.hora} ha sido confirmada",
                "confirmacion_cita",
                NotificationCategory.APPOINTMENT,
            )],
        )

    async def notify_reminder(self, appointment_id: UUID) -> bool:
        """Remind the customer of an upcoming appointment."""
        return await self._dispatch(
            appointment_id,
            "reminder",
            lambda ctx: [(
                ctx.customer_user_id,
                TITLE_REMINDER,
                f"Recuerda tu cita del {ctx.dia} con {ctx.staff_name} a las {ctx.hora}",
                "recordatorio_cita",
                NotificationCategory.REMINDER,
            )],
        )

    async def notify_staff_assignment(self, appointment_id: UUID) -> bool:
        """Tell the staff member a new appointment was assigned to them."""
        return await self._dispatch(
            appointment_id,
            "staff assignment",
            lambda ctx: [(
                ctx.staff_user_id,
                TITLE_STAFF_ASSIGNMENT,
                f"Tienes una nueva cita con {ctx.customer_name} el {ctx.dia} a las {ctx.hora} "
                f"({ctx.services})",
                "nueva_cita",
                NotificationCategory.APPOINTMENT,
            )],
        )

    async def notify_cancellation(self, appointment_id: UUID) -> bool:
        """Tell both participants the appointment was cancelled."""
        return await self._dispatch(
            appointment_id,
            "cancellation",
            lambda ctx: [
                (
                    ctx.customer_user_id,
                    TITLE_CANCELLATION,
                    f"Tu cita con {ctx.staff_name} del {ctx.fecha} a las {ctx.hora} ha sido cancelada",
                    "cancelacion_cita",
                    NotificationCategory.APPOINTMENT,
                ),
                (
                    ctx.staff_user_id,
                    TITLE_CANCELLATION,
                    f"La cita con {ctx.customer_name} del {ctx.fecha} a las {ctx.hora} ha sido cancelada",
                    "cancelacion_cita",
                    NotificationCategory.APPOINTMENT,
                ),
            ],
        )
