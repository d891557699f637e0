"""
FastAPI dependencies: authentication and service construction.

Process-wide handles (database, calendar adapter, push notifier) live on
``app.state`` and are created in the application lifespan. Services are
cheap objects built per request around those handles.
"""

import logging
from typing import Annotated, Any
from uuid import UUID

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from booking.authorization import Capability, CurrentUser, ensure_capability
from booking.errors import ValidationError
from booking.services.appointment_query_service import AppointmentQueryService
from booking.services.appointment_state_machine import AppointmentStateMachine
from booking.services.availability_service import AvailabilityService
from booking.services.catalog_service import CatalogService
from booking.services.gcal_push_service import CalendarMirror
from booking.services.notification_dispatcher import NotificationDispatcher
from booking.services.notification_service import NotificationService
from booking.services.payment_service import PaymentService
from booking.services.staff_schedule_service import StaffScheduleService
from booking.transactions.booking_transaction import BookingTransaction
from database.connection import Database
from database.models import User
from shared.config import get_settings
from shared.redis_client import get_redis_client

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


# =============================================================================
# Authentication
# =============================================================================


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def verify_token(token: str) -> dict[str, Any]:
    """
    Verify JWT signature and expiration and return the payload.

    Tokens are issued by the identity provider; ``sub`` carries the user id.
    """
    settings = get_settings()
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as e:
        raise _unauthorized(f"Token inválido: {e}") from e


async def check_token_blacklist(jti: str) -> bool:
    """Check if token JTI is blacklisted (revoked). Fails open when Redis is down."""
    try:
        redis_client = get_redis_client()
        result = await redis_client.get(f"token_blacklist:{jti}")
        return result is not None
    except Exception as e:
        logger.warning(f"Token blacklist check failed, allowing token: {e}")
        return False


def get_db(request: Request) -> Database:
    return request.app.state.db


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    db: Annotated[Database, Depends(get_db)],
) -> CurrentUser:
    """
    Dependency to get the current authenticated user.

    Verifies the bearer token, checks the revocation list and loads the user,
    rejecting unknown or inactive accounts with 401.
    """
    if credentials is None:
        raise _unauthorized("Token de autenticación requerido")

    payload = verify_token(credentials.credentials)

    try:
        user_id = UUID(str(payload.get("sub") or payload.get("user_id")))
    except ValueError:
        raise _unauthorized("Token sin identificador de usuario válido") from None

    jti = payload.get("jti")
    if jti and await check_token_blacklist(jti):
        raise _unauthorized("Token revocado")

    async with db.session() as session:
        user = await session.get(User, user_id)

    if user is None or not user.is_active:
        raise _unauthorized("Usuario no encontrado o inactivo")

    return CurrentUser(id=user.id, role=user.role, email=user.email)


CurrentUserDep = Annotated[CurrentUser, Depends(get_current_user)]


def require_capability(capability: Capability):
    """Dependency factory: the current user, provided their role grants ``capability``."""

    async def dependency(user: CurrentUserDep) -> CurrentUser:
        ensure_capability(user.role, capability)
        return user

    return dependency


# =============================================================================
# Query parameter helpers
# =============================================================================


def parse_uuid(value: str, field: str) -> UUID:
    try:
        return UUID(value.strip())
    except ValueError:
        raise ValidationError(
            f"Identificador inválido en '{field}': '{value}'",
            error_code="INVALID_ID",
        ) from None


def parse_uuid_list(value: str, field: str) -> list[UUID]:
    """Comma-separated ids ("id1,id2") as UUIDs."""
    return [parse_uuid(part, field) for part in value.split(",") if part.strip()]


# =============================================================================
# Services
# =============================================================================


DatabaseDep = Annotated[Database, Depends(get_db)]


def get_catalog(db: DatabaseDep) -> CatalogService:
    return CatalogService(db)


def get_availability(db: DatabaseDep) -> AvailabilityService:
    return AvailabilityService(db)


def get_state_machine(request: Request, db: DatabaseDep) -> AppointmentStateMachine:
    return AppointmentStateMachine(
        db,
        NotificationDispatcher(db, request.app.state.notifier),
        CalendarMirror(db, request.app.state.calendar),
    )


def get_booking(
    db: DatabaseDep,
    availability: Annotated[AvailabilityService, Depends(get_availability)],
    state_machine: Annotated[AppointmentStateMachine, Depends(get_state_machine)],
) -> BookingTransaction:
    return BookingTransaction(db, availability, state_machine)


def get_queries(db: DatabaseDep) -> AppointmentQueryService:
    return AppointmentQueryService(db)


def get_payments(db: DatabaseDep) -> PaymentService:
    return PaymentService(db)


def get_schedules(db: DatabaseDep) -> StaffScheduleService:
    return StaffScheduleService(db)


def get_notifications(db: DatabaseDep) -> NotificationService:
    return NotificationService(db)
