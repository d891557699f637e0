"""
In-app notification inbox and device token registry.

Records are created by the NotificationDispatcher; here their recipient reads
and marks them, and registers the devices push messages go to.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert

from booking.errors import NotFoundError, ValidationError
from booking.utils.date_parser import now_local, to_local
from database.connection import Database
from database.models import DeviceToken, Notification

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
SUPPORTED_PLATFORMS = frozenset({"android", "ios", "web"})


def serialize_notification(notification: Notification) -> dict[str, Any]:
    return {
        "id": str(notification.id),
        "title": notification.title,
        "body": notification.body,
        "category": notification.category.value,
        "link": notification.link,
        "appointment_id": str(notification.appointment_id) if notification.appointment_id else None,
        "is_read": notification.is_read,
        "read_at": to_local(notification.read_at).isoformat() if notification.read_at else None,
        "created_at": to_local(notification.created_at).isoformat() if notification.created_at else None,
    }


class NotificationService:
    def __init__(self, db: Database, now_provider: Callable[[], datetime] = now_local):
        self.db = db
        self.now_provider = now_provider

    async def list_notifications(
        self,
        user_id: UUID,
        unread_only: bool = False,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> list[dict[str, Any]]:
        stmt = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            stmt = stmt.where(Notification.is_read.is_(False))
        stmt = stmt.order_by(Notification.created_at.desc()).limit(limit)

        async with self.db.session() as session:
            result = await session.execute(stmt)
            return [serialize_notification(n) for n in result.scalars().all()]

    async def unread_count(self, user_id: UUID) -> int:
        async with self.db.session() as session:
            result = await session.execute(
                select(func.count(Notification.id)).where(
                    Notification.user_id == user_id,
                    Notification.is_read.is_(False),
                )
            )
            return result.scalar_one()

    async def mark_read(self, notification_id: UUID, user_id: UUID) -> dict[str, Any]:
        """
        Raises:
            NotFoundError: Unknown notification or owned by another user
        """
        async with self.db.session() as session:
            result = await session.execute(
                select(Notification).where(
                    Notification.id == notification_id,
                    Notification.user_id == user_id,
                )
            )
            notification = result.scalar_one_or_none()
            if notification is None:
                raise NotFoundError(
                    "Notificación no encontrada",
                    details={"notification_id": str(notification_id)},
                )
            if not notification.is_read:
                notification.is_read = True
                notification.read_at = self.now_provider()
                await session.commit()
            return serialize_notification(notification)

    async def mark_all_read(self, user_id: UUID) -> int:
        """Returns how many notifications changed."""
        async with self.db.session() as session:
            result = await session.execute(
                update(Notification)
                .where(Notification.user_id == user_id, Notification.is_read.is_(False))
                .values(is_read=True, read_at=self.now_provider())
            )
            await session.commit()
        return result.rowcount or 0

    async def register_device(
        self,
        user_id: UUID,
        token: str,
        platform: str | None = None,
    ) -> None:
        """
        Register (or re-activate) a push token for the user.

        A token moving to a different user (shared device, new login) is
        reassigned rather than duplicated.
        """
        token = token.strip()
        if not token:
            raise ValidationError("Token de dispositivo vacío", error_code="TOKEN_REQUIRED")
        if platform is not None:
            platform = platform.strip().lower()
            if platform not in SUPPORTED_PLATFORMS:
                raise ValidationError(
                    f"Plataforma no soportada: '{platform}'",
                    error_code="UNSUPPORTED_PLATFORM",
                )

        stmt = pg_insert(DeviceToken).values(user_id=user_id, token=token, platform=platform, is_active=True)
        stmt = stmt.on_conflict_do_update(
            index_elements=[DeviceToken.token],
            set_={
                "user_id": user_id,
                "platform": platform,
                "is_active": True,
                "updated_at": func.now(),
            },
        )
        async with self.db.session() as session:
            await session.execute(stmt)
            await session.commit()
        logger.info("Device token registered", extra={"user_id": user_id})

    async def unregister_device(self, user_id: UUID, token: str) -> None:
        async with self.db.session() as session:
            result = await session.execute(
                update(DeviceToken)
                .where(DeviceToken.token == token, DeviceToken.user_id == user_id)
                .values(is_active=False)
            )
            if not result.rowcount:
                raise NotFoundError("Dispositivo no encontrado")
            await session.commit()
        logger.info("Device token unregistered", extra={"user_id": user_id})

    async def purge_read_older_than(self, days: int) -> int:
        """Delete read notifications created more than ``days`` ago. Returns the count."""
        cutoff = self.now_provider() - timedelta(days=days)
        async with self.db.session() as session:
            result = await session.execute(
                delete(Notification).where(
                    Notification.is_read.is_(True),
                    Notification.created_at < cutoff,
                )
            )
            await session.commit()
        purged = result.rowcount or 0
        logger.info(f"Purged {purged} read notification(s) older than {days} days")
        return purged
