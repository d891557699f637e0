"""
Customer self-service reservation endpoints.

Flow: services -> capable staff -> free slots -> process booking.
Listing endpoints are public; booking, "mis citas" and cancellation require
a bearer token.
"""

import logging
from decimal import Decimal
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends

from api.dependencies import (
    CurrentUserDep,
    get_availability,
    get_booking,
    get_catalog,
    get_queries,
    get_state_machine,
    parse_uuid,
    parse_uuid_list,
)
from api.models.reservation import ProcessReservationRequest, ProcessReservationResponse, ReservationData
from booking.authorization import Capability, ensure_capability
from booking.errors import ValidationError
from booking.services.appointment_query_service import AppointmentQueryService
from booking.services.appointment_state_machine import AppointmentStateMachine
from booking.services.availability_service import AvailabilityService
from booking.services.catalog_service import CatalogService
from booking.transactions.booking_transaction import BookingTransaction
from booking.utils.date_parser import combine_local, format_hhmm, parse_date

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/reservacion", tags=["reservacion"])


def _missing_parameters(*names: str) -> ValidationError:
    return ValidationError(
        f"Faltan parámetros requeridos: {', '.join(names)}",
        error_code="MISSING_PARAMETERS",
        details={"missing": list(names)},
    )


@router.get("/servicios")
async def list_services(catalog: Annotated[CatalogService, Depends(get_catalog)]):
    """Active services, grouped by category order."""
    services = await catalog.list_bookable_services()
    return {"success": True, "count": len(services), "data": services}


@router.get("/empleados")
async def list_staff(
    catalog: Annotated[CatalogService, Depends(get_catalog)],
    servicios: str | None = None,
):
    """Staff members offering every service in ``servicios`` (comma-separated ids)."""
    if not servicios or not servicios.strip():
        raise _missing_parameters("servicios")

    service_ids = set(parse_uuid_list(servicios, "servicios"))
    staff = await catalog.list_staff_for_services(service_ids)
    return {"success": True, "count": len(staff), "empleados": staff}


@router.get("/empleados/{empleado_id}")
async def get_staff_member(
    empleado_id: UUID,
    catalog: Annotated[CatalogService, Depends(get_catalog)],
):
    return {"success": True, "empleado": await catalog.get_staff(empleado_id)}


@router.get("/horarios")
async def list_slots(
    availability: Annotated[AvailabilityService, Depends(get_availability)],
    empleadoId: str | None = None,
    fecha: str | None = None,
    servicios: str | None = None,
):
    """Free slot starts ("HH:MM") for a staff member, date and services."""
    missing = [
        name
        for name, value in (("empleadoId", empleadoId), ("fecha", fecha), ("servicios", servicios))
        if not value or not value.strip()
    ]
    if missing:
        raise _missing_parameters(*missing)

    try:
        day = parse_date(fecha)
    except ValueError as e:
        raise ValidationError(str(e), error_code="INVALID_DATE") from e

    slots = await availability.compute_available_slots(
        staff_id=parse_uuid(empleadoId, "empleadoId"),
        day=day,
        selections=parse_uuid_list(servicios, "servicios"),
    )
    horarios = [format_hhmm(slot) for slot in slots]
    return {"success": True, "count": len(horarios), "horarios": horarios}


@router.post("/procesar", response_model=ProcessReservationResponse)
async def process_reservation(
    body: ProcessReservationRequest,
    user: CurrentUserDep,
    booking: Annotated[BookingTransaction, Depends(get_booking)],
):
    """
    Book an appointment for the caller.

    The total sent by the client is never trusted: the response carries the
    total computed from the catalog.
    """
    ensure_capability(user.role, Capability.BOOK_FOR_SELF)

    result = await booking.execute(
        customer_user_id=user.id,
        staff_id=body.empleadoId,
        selections=body.selections(),
        start_time=combine_local(body.fecha, body.horario),
        notes=body.notas,
    )

    if body.total != Decimal(result["total"]):
        logger.warning(
            f"Client total {body.total} differs from computed total {result['total']}",
            extra={"appointment_id": result["appointment_id"], "user_id": user.id},
        )

    return ProcessReservationResponse(
        data=ReservationData(
            citaId=result["appointment_id"],
            fecha=result["date"],
            horaInicio=result["start"],
            horaFin=result["end"],
            total=result["total"],
        )
    )


@router.get("/mis-citas")
async def my_appointments(
    user: CurrentUserDep,
    queries: Annotated[AppointmentQueryService, Depends(get_queries)],
):
    citas = await queries.list_for_customer_user(user.id)
    return {"success": True, "count": len(citas), "citas": citas}


@router.put("/cancelar/{cita_id}")
async def cancel_my_appointment(
    cita_id: UUID,
    user: CurrentUserDep,
    state_machine: Annotated[AppointmentStateMachine, Depends(get_state_machine)],
):
    """Owner-only cancellation; someone else's appointment is reported as not found."""
    await state_machine.cancel_by_customer(cita_id, user.id)
    return {"success": True, "message": "Cita cancelada exitosamente"}
