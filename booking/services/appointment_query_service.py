"""
Appointment query service - read side of appointments.

- Customer self-service: "mis citas"
- Staff/admin listing with filters and single-appointment lookup
- Aggregate statistics for owners and admins

Read-only operation (no database modifications).
"""

import logging
from datetime import date, time, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import selectinload

from booking.authorization import Capability, CurrentUser, ensure_capability
from booking.errors import NotFoundError, ValidationError
from booking.utils.date_parser import combine_local, format_hhmm, to_local
from database.connection import Database
from database.models import (
    Appointment,
    AppointmentService,
    AppointmentStatus,
    Customer,
    Service,
    Staff,
    User,
)

logger = logging.getLogger(__name__)

TOP_SERVICES_LIMIT = 5


def _appointment_options():
    return (
        selectinload(Appointment.customer).selectinload(Customer.user),
        selectinload(Appointment.staff).selectinload(Staff.user),
        selectinload(Appointment.line_items).selectinload(AppointmentService.service),
    )


def serialize_appointment(appointment: Appointment) -> dict[str, Any]:
    """Appointment with customer, staff and line items loaded, as a JSON-ready dict."""
    start = to_local(appointment.start_time)
    total = sum((item.subtotal for item in appointment.line_items), Decimal("0.00"))
    return {
        "id": str(appointment.id),
        "status": appointment.status.value,
        "date": start.date().isoformat(),
        "start": format_hhmm(appointment.start_time),
        "end": format_hhmm(appointment.end_time),
        "start_time": start.isoformat(),
        "end_time": to_local(appointment.end_time).isoformat(),
        "duration_minutes": appointment.duration_minutes,
        "customer": {
            "id": str(appointment.customer_id),
            "name": appointment.customer.user.full_name,
        },
        "staff": {
            "id": str(appointment.staff_id),
            "name": appointment.staff.user.full_name,
        },
        "services": [
            {
                "service_id": str(item.service_id),
                "name": item.service.name,
                "quantity": item.quantity,
                "unit_price": str(item.unit_price),
                "discount": str(item.discount),
                "duration_minutes": item.duration_minutes,
            }
            for item in appointment.line_items
        ],
        "total": str(total),
        "notes": appointment.notes,
        "cancelled_at": to_local(appointment.cancelled_at).isoformat() if appointment.cancelled_at else None,
    }


class AppointmentQueryService:
    def __init__(self, db: Database):
        self.db = db

    async def list_for_customer_user(self, user_id: UUID) -> list[dict[str, Any]]:
        """Appointments of the caller, newest first. Empty when no customer profile exists yet."""
        async with self.db.session() as session:
            customer_result = await session.execute(
                select(Customer.id).where(Customer.user_id == user_id)
            )
            customer_id = customer_result.scalar_one_or_none()
            if customer_id is None:
                return []

            result = await session.execute(
                select(Appointment)
                .where(Appointment.customer_id == customer_id)
                .options(*_appointment_options())
                .order_by(Appointment.start_time.desc())
            )
            return [serialize_appointment(a) for a in result.scalars().all()]

    async def get_appointment(self, appointment_id: UUID, actor: CurrentUser) -> dict[str, Any]:
        """
        Staff see any appointment; customers only their own.

        Raises:
            NotFoundError: Unknown appointment or not visible to the caller
        """
        async with self.db.session() as session:
            stmt = (
                select(Appointment)
                .where(Appointment.id == appointment_id)
                .options(*_appointment_options())
            )
            if not actor.can(Capability.MANAGE_APPOINTMENTS):
                stmt = stmt.join(Customer, Appointment.customer_id == Customer.id).where(
                    Customer.user_id == actor.id
                )
            result = await session.execute(stmt)
            appointment = result.scalar_one_or_none()

        if appointment is None:
            raise NotFoundError(
                "Cita no encontrada", details={"appointment_id": str(appointment_id)}
            )
        return serialize_appointment(appointment)

    async def list_appointments(
        self,
        actor: CurrentUser,
        customer_id: UUID | None = None,
        staff_id: UUID | None = None,
        day: date | None = None,
        status: AppointmentStatus | None = None,
    ) -> list[dict[str, Any]]:
        """Filtered appointment list for staff and admins, ordered by start descending."""
        ensure_capability(actor.role, Capability.MANAGE_APPOINTMENTS)

        stmt = select(Appointment).options(*_appointment_options())
        if customer_id is not None:
            stmt = stmt.where(Appointment.customer_id == customer_id)
        if staff_id is not None:
            stmt = stmt.where(Appointment.staff_id == staff_id)
        if status is not None:
            stmt = stmt.where(Appointment.status == status)
        if day is not None:
            day_start = combine_local(day, time.min)
            stmt = stmt.where(
                Appointment.start_time >= day_start,
                Appointment.start_time < day_start + timedelta(days=1),
            )

        async with self.db.session() as session:
            result = await session.execute(stmt.order_by(Appointment.start_time.desc()))
            return [serialize_appointment(a) for a in result.scalars().all()]

    async def get_statistics(
        self,
        actor: CurrentUser,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> dict[str, Any]:
        """
        Aggregates over appointments starting in [date_from, date_to] (inclusive days).

        Returns:
            Dict with total, counts per status, revenue (non-cancelled), completed
            revenue, top services and appointments per staff member
        """
        ensure_capability(actor.role, Capability.VIEW_APPOINTMENT_STATS)
        if date_from and date_to and date_from > date_to:
            raise ValidationError(
                "La fecha inicial debe ser anterior a la final",
                error_code="INVALID_DATE_RANGE",
            )

        filters = []
        if date_from is not None:
            filters.append(Appointment.start_time >= combine_local(date_from, time.min))
        if date_to is not None:
            filters.append(
                Appointment.start_time < combine_local(date_to + timedelta(days=1), time.min)
            )

        subtotal = AppointmentService.unit_price * AppointmentService.quantity - AppointmentService.discount

        async with self.db.session() as session:
            status_rows = await session.execute(
                select(Appointment.status, func.count(Appointment.id))
                .where(*filters)
                .group_by(Appointment.status)
            )
            by_status = {s.value: 0 for s in AppointmentStatus}
            for status, count in status_rows.all():
                by_status[status.value] = count

            revenue_rows = await session.execute(
                select(Appointment.status, func.coalesce(func.sum(subtotal), 0))
                .select_from(Appointment)
                .join(AppointmentService, AppointmentService.appointment_id == Appointment.id)
                .where(*filters)
                .group_by(Appointment.status)
            )
            revenue_by_status = {status: Decimal(amount) for status, amount in revenue_rows.all()}

            top_rows = await session.execute(
                select(
                    Service.id,
                    Service.name,
                    func.sum(AppointmentService.quantity).label("times"),
                )
                .join(AppointmentService, AppointmentService.service_id == Service.id)
                .join(Appointment, AppointmentService.appointment_id == Appointment.id)
                .where(Appointment.status != AppointmentStatus.CANCELLED, *filters)
                .group_by(Service.id, Service.name)
                .order_by(func.sum(AppointmentService.quantity).desc(), Service.name)
                .limit(TOP_SERVICES_LIMIT)
            )
            top_services = [
                {"service_id": str(sid), "name": name, "count": int(times)}
                for sid, name, times in top_rows.all()
            ]

            staff_rows = await session.execute(
                select(Staff.id, User.first_name, User.last_name, func.count(Appointment.id))
                .select_from(Appointment)
                .join(Staff, Appointment.staff_id == Staff.id)
                .join(User, Staff.user_id == User.id)
                .where(Appointment.status != AppointmentStatus.CANCELLED, *filters)
                .group_by(Staff.id, User.first_name, User.last_name)
                .order_by(func.count(Appointment.id).desc())
            )
            per_staff = [
                {
                    "staff_id": str(staff_id),
                    "name": f"{first} {last}".strip() if last else first,
                    "count": count,
                }
                for staff_id, first, last, count in staff_rows.all()
            ]

        revenue = sum(
            (amount for status, amount in revenue_by_status.items() if status != AppointmentStatus.CANCELLED),
            Decimal("0.00"),
        )
        completed_revenue = revenue_by_status.get(AppointmentStatus.COMPLETED, Decimal("0.00"))

        return {
            "from": date_from.isoformat() if date_from else None,
            "to": date_to.isoformat() if date_to else None,
            "total": sum(by_status.values()),
            "by_status": by_status,
            "revenue": str(revenue),
            "completed_revenue": str(completed_revenue),
            "top_services": top_services,
            "per_staff": per_staff,
        }
