"""Notification inbox and push device registration for the current user."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from api.dependencies import CurrentUserDep, get_notifications
from api.models.notifications import DeviceRegistrationRequest
from booking.services.notification_service import NotificationService

router = APIRouter(prefix="/api/notificaciones", tags=["notificaciones"])

Notifications = Annotated[NotificationService, Depends(get_notifications)]


@router.get("")
async def list_notifications(
    user: CurrentUserDep,
    notifications: Notifications,
    no_leidas: bool = False,
    limite: Annotated[int, Query(ge=1, le=200)] = 50,
):
    items = await notifications.list_notifications(user.id, unread_only=no_leidas, limit=limite)
    return {"success": True, "count": len(items), "notificaciones": items}


@router.get("/no-leidas")
async def unread_count(user: CurrentUserDep, notifications: Notifications):
    return {"success": True, "count": await notifications.unread_count(user.id)}


@router.patch("/leer-todas")
async def mark_all_read(user: CurrentUserDep, notifications: Notifications):
    updated = await notifications.mark_all_read(user.id)
    return {"success": True, "actualizadas": updated}


@router.patch("/{notificacion_id}/leer")
async def mark_read(notificacion_id: UUID, user: CurrentUserDep, notifications: Notifications):
    item = await notifications.mark_read(notificacion_id, user.id)
    return {"success": True, "notificacion": item}


@router.post("/dispositivos", status_code=201)
async def register_device(
    body: DeviceRegistrationRequest,
    user: CurrentUserDep,
    notifications: Notifications,
):
    await notifications.register_device(user.id, body.token, body.plataforma)
    return {"success": True, "message": "Dispositivo registrado"}


@router.delete("/dispositivos/{token}")
async def unregister_device(token: str, user: CurrentUserDep, notifications: Notifications):
    await notifications.unregister_device(user.id, token)
    return {"success": True, "message": "Dispositivo eliminado"}
