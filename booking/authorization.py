"""
Capability-based authorization.

Roles form a closed set (``UserRole``); endpoints and services check a
capability instead of comparing role values directly.
"""

from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from booking.errors import PermissionDeniedError
from database.models import UserRole


class Capability(str, Enum):
    BOOK_FOR_SELF = "book_for_self"
    MANAGE_APPOINTMENTS = "manage_appointments"
    DELETE_APPOINTMENTS = "delete_appointments"
    VIEW_APPOINTMENT_STATS = "view_appointment_stats"
    MANAGE_PAYMENTS = "manage_payments"
    MANAGE_STAFF_SCHEDULES = "manage_staff_schedules"


ROLE_CAPABILITIES: dict[UserRole, frozenset[Capability]] = {
    UserRole.CUSTOMER: frozenset({Capability.BOOK_FOR_SELF}),
    UserRole.STAFF: frozenset({
        Capability.BOOK_FOR_SELF,
        Capability.MANAGE_APPOINTMENTS,
        Capability.MANAGE_PAYMENTS,
    }),
    UserRole.OWNER: frozenset(Capability),
    UserRole.ADMIN: frozenset(Capability),
}


@dataclass(frozen=True)
class CurrentUser:
    """Authenticated caller as seen by the core."""

    id: UUID
    role: UserRole
    email: str | None = None

    def can(self, capability: Capability) -> bool:
        return has_capability(self.role, capability)


def has_capability(role: UserRole, capability: Capability) -> bool:
    return capability in ROLE_CAPABILITIES.get(role, frozenset())


def ensure_capability(role: UserRole, capability: Capability) -> None:
    """Raise PermissionDeniedError unless ``role`` grants ``capability``."""
    if not has_capability(role, capability):
        raise PermissionDeniedError(
            "No tienes permisos para realizar esta acción",
            details={"role": role.value, "required": capability.value},
        )
