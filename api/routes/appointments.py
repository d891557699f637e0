"""
Staff/admin appointment endpoints.

Role gating (capabilities):
- MANAGE_APPOINTMENTS (staff, owner, admin): list, create, reschedule, status changes
- VIEW_APPOINTMENT_STATS (owner, admin): /stats
- DELETE_APPOINTMENTS (owner, admin): DELETE cancels, never removes the record
- MANAGE_PAYMENTS (staff, owner, admin): payments of an appointment
"""

import logging
from datetime import date
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from api.dependencies import (
    CurrentUserDep,
    get_availability,
    get_booking,
    get_payments,
    get_queries,
    get_state_machine,
    require_capability,
)
from api.models.appointments import (
    CreateAppointmentRequest,
    PaymentCreateRequest,
    PaymentUpdateRequest,
    StatusChangeRequest,
    UpdateAppointmentRequest,
)
from booking.authorization import Capability, CurrentUser
from booking.services.appointment_query_service import AppointmentQueryService
from booking.services.appointment_state_machine import AppointmentStateMachine, parse_status
from booking.services.availability_service import AvailabilityService
from booking.services.payment_service import PaymentService
from booking.transactions.booking_transaction import BookingTransaction
from booking.utils.date_parser import combine_local, format_hhmm, now_local

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/citas", tags=["citas"])

StaffUser = Annotated[CurrentUser, Depends(require_capability(Capability.MANAGE_APPOINTMENTS))]
Queries = Annotated[AppointmentQueryService, Depends(get_queries)]
StateMachine = Annotated[AppointmentStateMachine, Depends(get_state_machine)]
Payments = Annotated[PaymentService, Depends(get_payments)]


@router.get("")
async def list_appointments(
    user: StaffUser,
    queries: Queries,
    cliente_id: UUID | None = None,
    empleado_id: UUID | None = None,
    fecha: date | None = None,
    estado: str | None = None,
):
    citas = await queries.list_appointments(
        user,
        customer_id=cliente_id,
        staff_id=empleado_id,
        day=fecha,
        status=parse_status(estado) if estado else None,
    )
    return {"success": True, "count": len(citas), "citas": citas}


@router.post("", status_code=201)
async def create_appointment(
    body: CreateAppointmentRequest,
    user: StaffUser,
    booking: Annotated[BookingTransaction, Depends(get_booking)],
):
    result = await booking.create_for_customer(
        actor=user,
        customer_id=body.cliente_id,
        staff_id=body.empleado_id,
        selections=body.selections(),
        start_time=combine_local(body.fecha, body.horario),
        notes=body.notas,
    )
    return {"success": True, "message": "Cita creada exitosamente", "cita": result}


@router.get("/stats")
async def appointment_stats(
    user: Annotated[CurrentUser, Depends(require_capability(Capability.VIEW_APPOINTMENT_STATS))],
    queries: Queries,
    desde: date | None = None,
    hasta: date | None = None,
):
    stats = await queries.get_statistics(user, date_from=desde, date_to=hasta)
    return {"success": True, "stats": stats}


@router.get("/disponibilidad/{empleado_id}")
async def staff_availability(
    empleado_id: UUID,
    user: StaffUser,
    availability: Annotated[AvailabilityService, Depends(get_availability)],
    fecha: Annotated[date | None, Query()] = None,
):
    """Open intervals (working hours minus absences minus appointments) of one day."""
    day = fecha or now_local().date()
    intervals = await availability.compute_open_intervals(empleado_id, day)
    return {
        "success": True,
        "fecha": day.isoformat(),
        "intervalos": [
            {"inicio": format_hhmm(start), "fin": format_hhmm(end)} for start, end in intervals
        ],
    }


@router.get("/{cita_id}")
async def get_appointment(cita_id: UUID, user: CurrentUserDep, queries: Queries):
    """Staff see any appointment; customers only their own."""
    cita = await queries.get_appointment(cita_id, user)
    return {"success": True, "cita": cita}


@router.put("/{cita_id}")
async def update_appointment(
    cita_id: UUID,
    body: UpdateAppointmentRequest,
    user: StaffUser,
    booking: Annotated[BookingTransaction, Depends(get_booking)],
):
    result = await booking.reschedule(
        appointment_id=cita_id,
        actor=user,
        staff_id=body.empleado_id,
        start_time=combine_local(body.fecha, body.horario) if body.fecha else None,
        selections=body.selections(),
        notes=body.notas,
    )
    return {"success": True, "message": "Cita actualizada exitosamente", "cita": result}


@router.patch("/{cita_id}/estado")
async def change_status(
    cita_id: UUID,
    body: StatusChangeRequest,
    user: StaffUser,
    state_machine: StateMachine,
):
    appointment = await state_machine.transition(cita_id, body.estado, user)
    return {
        "success": True,
        "message": "Estado actualizado exitosamente",
        "estado": appointment.status.value,
    }


@router.delete("/{cita_id}")
async def delete_appointment(
    cita_id: UUID,
    user: Annotated[CurrentUser, Depends(require_capability(Capability.DELETE_APPOINTMENTS))],
    state_machine: StateMachine,
):
    """Cancels the appointment; the record is kept for history."""
    await state_machine.cancel(cita_id, user)
    return {"success": True, "message": "Cita cancelada exitosamente"}


# =============================================================================
# Payments
# =============================================================================


@router.get("/{cita_id}/pagos")
async def list_payments(cita_id: UUID, user: CurrentUserDep, payments: Payments):
    pagos = await payments.list_payments(cita_id, user)
    return {"success": True, "count": len(pagos), "pagos": pagos}


@router.post("/{cita_id}/pagos", status_code=201)
async def record_payment(
    cita_id: UUID,
    body: PaymentCreateRequest,
    user: CurrentUserDep,
    payments: Payments,
):
    pago = await payments.record_payment(
        cita_id,
        user,
        amount=body.monto,
        method=body.metodo,
        status=body.estado,
        tax=body.impuesto,
        tip=body.propina,
        reference_code=body.referencia,
        invoice_issued=body.factura_emitida,
        allow_override=body.permitir_exceso,
    )
    return {"success": True, "pago": pago}


@router.patch("/{cita_id}/pagos/{pago_id}")
async def update_payment(
    cita_id: UUID,
    pago_id: UUID,
    body: PaymentUpdateRequest,
    user: CurrentUserDep,
    payments: Payments,
):
    pago = await payments.update_payment(
        cita_id,
        pago_id,
        user,
        status=body.estado,
        method=body.metodo,
        reference_code=body.referencia,
        invoice_issued=body.factura_emitida,
        allow_override=body.permitir_exceso,
    )
    return {"success": True, "pago": pago}
