"""
Catalog Reader - read-only lookups feeding availability and booking.

Storage errors are not caught here; they propagate to the API layer as
infrastructure errors (500).
"""

import logging
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import selectinload

from booking.errors import NotFoundError
from database.connection import Database
from database.models import Service, ServiceCategory, Staff, User, staff_services

logger = logging.getLogger(__name__)


def serialize_service(service: Service) -> dict[str, Any]:
    return {
        "id": str(service.id),
        "name": service.name,
        "description": service.description,
        "duration_minutes": service.duration_minutes,
        "price": str(service.price),
        "category_id": str(service.category_id) if service.category_id else None,
        "category_name": service.category.name if service.category else None,
    }


def serialize_staff(staff: Staff) -> dict[str, Any]:
    return {
        "id": str(staff.id),
        "user_id": str(staff.user_id),
        "first_name": staff.user.first_name,
        "last_name": staff.user.last_name,
        "email": staff.user.email,
        "phone": staff.user.phone,
        "title": staff.title,
        "biography": staff.biography,
        "specialties": sorted(s.name for s in staff.specialties),
        "service_ids": sorted(str(s.id) for s in staff.services),
    }


class CatalogService:
    """Services, staff and specialties lookups."""

    def __init__(self, db: Database):
        self.db = db

    async def list_bookable_services(self) -> list[dict[str, Any]]:
        """Active services ordered by category name, then service name."""
        async with self.db.session() as session:
            stmt = (
                select(Service)
                .outerjoin(ServiceCategory, Service.category_id == ServiceCategory.id)
                .where(Service.is_active.is_(True))
                .options(selectinload(Service.category))
                .order_by(ServiceCategory.name, Service.name)
            )
            result = await session.execute(stmt)
            services = list(result.scalars().all())

        logger.debug(f"Found {len(services)} bookable services")
        return [serialize_service(s) for s in services]

    async def list_staff_for_services(self, service_ids: set[UUID]) -> list[dict[str, Any]]:
        """
        Active staff members that offer every service in ``service_ids``.

        Staff whose user account is inactive are excluded.
        """
        if not service_ids:
            return []

        # Staff offering all requested services: count of matches == requested count
        capable = (
            select(staff_services.c.staff_id)
            .where(staff_services.c.service_id.in_(service_ids))
            .group_by(staff_services.c.staff_id)
            .having(func.count(staff_services.c.service_id.distinct()) == len(service_ids))
        )

        async with self.db.session() as session:
            stmt = (
                select(Staff)
                .join(User, Staff.user_id == User.id)
                .where(
                    Staff.id.in_(capable),
                    Staff.is_active.is_(True),
                    User.is_active.is_(True),
                )
                .options(
                    selectinload(Staff.user),
                    selectinload(Staff.specialties),
                    selectinload(Staff.services),
                )
                .order_by(User.first_name, User.last_name)
            )
            result = await session.execute(stmt)
            staff_members = list(result.scalars().unique().all())

        logger.debug(
            f"Found {len(staff_members)} staff members for {len(service_ids)} services"
        )
        return [serialize_staff(s) for s in staff_members]

    async def get_staff(self, staff_id: UUID) -> dict[str, Any]:
        async with self.db.session() as session:
            stmt = (
                select(Staff)
                .where(Staff.id == staff_id)
                .options(
                    selectinload(Staff.user),
                    selectinload(Staff.specialties),
                    selectinload(Staff.services),
                )
            )
            result = await session.execute(stmt)
            staff = result.scalar_one_or_none()

        if staff is None:
            raise NotFoundError("Empleado no encontrado", details={"staff_id": str(staff_id)})
        return serialize_staff(staff)
