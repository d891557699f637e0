"""
Payments of an appointment.

A pending payment is seeded with the appointment total at booking time;
staff then record or settle payments here. Amounts of completed and partial
payments never add up to more than the appointment total unless the caller
explicitly overrides the check.
"""

import logging
from collections.abc import Callable
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from booking.authorization import Capability, CurrentUser, ensure_capability
from booking.errors import NotFoundError, ValidationError
from booking.utils.date_parser import now_local, to_local
from database.connection import Database
from database.models import Appointment, AppointmentService, Payment, PaymentMethod, PaymentStatus

logger = logging.getLogger(__name__)

# Statuses whose amount counts as money received
SETTLED_STATUSES = frozenset({PaymentStatus.COMPLETED, PaymentStatus.PARTIAL})


def serialize_payment(payment: Payment) -> dict[str, Any]:
    return {
        "id": str(payment.id),
        "appointment_id": str(payment.appointment_id),
        "amount": str(payment.amount),
        "tax": str(payment.tax),
        "tip": str(payment.tip),
        "method": payment.method.value,
        "status": payment.status.value,
        "reference_code": payment.reference_code,
        "invoice_issued": payment.invoice_issued,
        "paid_at": to_local(payment.paid_at).isoformat() if payment.paid_at else None,
    }


def ensure_within_total(
    total: Decimal,
    settled: Decimal,
    amount: Decimal,
    allow_override: bool = False,
) -> None:
    """
    Raises:
        ValidationError: If ``settled + amount`` exceeds ``total`` without override
    """
    if allow_override or settled + amount <= total:
        return
    raise ValidationError(
        "El monto pagado supera el total de la cita",
        error_code="OVERPAYMENT",
        details={
            "total": str(total),
            "already_paid": str(settled),
            "amount": str(amount),
        },
    )


class PaymentService:
    def __init__(self, db: Database, now_provider: Callable[[], datetime] = now_local):
        self.db = db
        self.now_provider = now_provider

    async def _lock_appointment(self, session: AsyncSession, appointment_id: UUID) -> Appointment:
        result = await session.execute(
            select(Appointment).where(Appointment.id == appointment_id).with_for_update()
        )
        appointment = result.scalar_one_or_none()
        if appointment is None:
            raise NotFoundError(
                "Cita no encontrada", details={"appointment_id": str(appointment_id)}
            )
        return appointment

    @staticmethod
    async def _appointment_total(session: AsyncSession, appointment_id: UUID) -> Decimal:
        result = await session.execute(
            select(AppointmentService).where(AppointmentService.appointment_id == appointment_id)
        )
        return sum((item.subtotal for item in result.scalars().all()), Decimal("0.00"))

    @staticmethod
    async def _payments(session: AsyncSession, appointment_id: UUID) -> list[Payment]:
        result = await session.execute(
            select(Payment)
            .where(Payment.appointment_id == appointment_id)
            .order_by(Payment.created_at.asc())
        )
        return list(result.scalars().all())

    async def list_payments(self, appointment_id: UUID, actor: CurrentUser) -> list[dict[str, Any]]:
        ensure_capability(actor.role, Capability.MANAGE_PAYMENTS)
        async with self.db.session() as session:
            appointment = await session.get(Appointment, appointment_id)
            if appointment is None:
                raise NotFoundError(
                    "Cita no encontrada", details={"appointment_id": str(appointment_id)}
                )
            return [serialize_payment(p) for p in await self._payments(session, appointment_id)]

    async def record_payment(
        self,
        appointment_id: UUID,
        actor: CurrentUser,
        amount: Decimal,
        method: PaymentMethod = PaymentMethod.CASH,
        status: PaymentStatus = PaymentStatus.COMPLETED,
        tax: Decimal = Decimal("0.00"),
        tip: Decimal = Decimal("0.00"),
        reference_code: str | None = None,
        invoice_issued: bool = False,
        allow_override: bool = False,
    ) -> dict[str, Any]:
        """
        Add a payment to an appointment.

        Raises:
            PermissionDeniedError: Actor cannot manage payments
            NotFoundError: Unknown appointment
            ValidationError: Non-positive amount or overpayment without override
        """
        ensure_capability(actor.role, Capability.MANAGE_PAYMENTS)
        if amount <= 0:
            raise ValidationError(
                "El monto debe ser mayor que cero", error_code="INVALID_AMOUNT"
            )

        async with self.db.session() as session:
            await self._lock_appointment(session, appointment_id)

            if status in SETTLED_STATUSES:
                total = await self._appointment_total(session, appointment_id)
                settled = sum(
                    (p.amount for p in await self._payments(session, appointment_id) if p.status in SETTLED_STATUSES),
                    Decimal("0.00"),
                )
                ensure_within_total(total, settled, amount, allow_override)

            payment = Payment(
                appointment_id=appointment_id,
                amount=amount,
                tax=tax,
                tip=tip,
                method=method,
                status=status,
                reference_code=reference_code,
                invoice_issued=invoice_issued,
                paid_at=self.now_provider() if status == PaymentStatus.COMPLETED else None,
            )
            session.add(payment)
            await session.commit()

        logger.info(
            f"Payment recorded: {amount} ({method.value}, {status.value})",
            extra={"appointment_id": appointment_id, "user_id": actor.id},
        )
        return serialize_payment(payment)

    async def update_payment(
        self,
        appointment_id: UUID,
        payment_id: UUID,
        actor: CurrentUser,
        status: PaymentStatus | None = None,
        method: PaymentMethod | None = None,
        reference_code: str | None = None,
        invoice_issued: bool | None = None,
        allow_override: bool = False,
    ) -> dict[str, Any]:
        """Change status, method, reference code or invoice flag of a payment."""
        ensure_capability(actor.role, Capability.MANAGE_PAYMENTS)

        async with self.db.session() as session:
            await self._lock_appointment(session, appointment_id)
            payments = await self._payments(session, appointment_id)
            payment = next((p for p in payments if p.id == payment_id), None)
            if payment is None:
                raise NotFoundError("Pago no encontrado", details={"payment_id": str(payment_id)})

            if (
                status is not None
                and status in SETTLED_STATUSES
                and payment.status not in SETTLED_STATUSES
            ):
                total = await self._appointment_total(session, appointment_id)
                settled = sum(
                    (p.amount for p in payments if p.id != payment_id and p.status in SETTLED_STATUSES),
                    Decimal("0.00"),
                )
                ensure_within_total(total, settled, payment.amount, allow_override)

            if status is not None:
                if status == PaymentStatus.COMPLETED and payment.paid_at is None:
                    payment.paid_at = self.now_provider()
                payment.status = status
            if method is not None:
                payment.method = method
            if reference_code is not None:
                payment.reference_code = reference_code
            if invoice_issued is not None:
                payment.invoice_issued = invoice_issued

            await session.commit()

        logger.info(
            f"Payment {payment_id} updated (status={payment.status.value})",
            extra={"appointment_id": appointment_id, "user_id": actor.id},
        )
        return serialize_payment(payment)
