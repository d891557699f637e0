"""Working hours and absences of a staff member (owner/admin)."""

from datetime import date
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends

from api.dependencies import CurrentUserDep, get_schedules, require_capability
from api.models.schedules import AbsenceRequest, ReplaceWorkingHoursRequest
from booking.authorization import Capability, CurrentUser
from booking.services.staff_schedule_service import StaffScheduleService

router = APIRouter(prefix="/api/empleados/{empleado_id}", tags=["empleados"])

Schedules = Annotated[StaffScheduleService, Depends(get_schedules)]
ScheduleManager = Annotated[
    CurrentUser, Depends(require_capability(Capability.MANAGE_STAFF_SCHEDULES))
]


@router.get("/horarios")
async def list_working_hours(empleado_id: UUID, user: CurrentUserDep, schedules: Schedules):
    horarios = await schedules.list_working_hours(empleado_id)
    return {"success": True, "count": len(horarios), "horarios": horarios}


@router.put("/horarios")
async def replace_working_hours(
    empleado_id: UUID,
    body: ReplaceWorkingHoursRequest,
    user: ScheduleManager,
    schedules: Schedules,
):
    horarios = await schedules.replace_working_hours(
        empleado_id, user, [h.to_window() for h in body.horarios]
    )
    return {"success": True, "count": len(horarios), "horarios": horarios}


@router.get("/ausencias")
async def list_absences(
    empleado_id: UUID,
    user: CurrentUserDep,
    schedules: Schedules,
    desde: date | None = None,
    hasta: date | None = None,
):
    ausencias = await schedules.list_absences(empleado_id, date_from=desde, date_to=hasta)
    return {"success": True, "count": len(ausencias), "ausencias": ausencias}


@router.post("/ausencias", status_code=201)
async def add_absence(
    empleado_id: UUID,
    body: AbsenceRequest,
    user: ScheduleManager,
    schedules: Schedules,
):
    ausencia = await schedules.add_absence(empleado_id, user, body.inicio, body.fin, body.motivo)
    return {"success": True, "ausencia": ausencia}


@router.delete("/ausencias/{ausencia_id}")
async def delete_absence(
    empleado_id: UUID,
    ausencia_id: UUID,
    user: ScheduleManager,
    schedules: Schedules,
):
    await schedules.delete_absence(empleado_id, ausencia_id, user)
    return {"success": True, "message": "Ausencia eliminada"}
