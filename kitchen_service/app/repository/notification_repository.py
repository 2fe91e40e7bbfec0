from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.base import utc_now
from ..models.notification import Notification


class NotificationRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_notification(
        self,
        user_id: int,
        notification_type: str,
        title: str,
        message: str,
        data: Dict[str, Any],
        priority: str,
        expires_at: datetime,
    ) -> Notification:
        notification = Notification(
            user_id=user_id,
            type=notification_type,
            title=title[:100],
            message=message[:500],
            data=data,
            priority=priority,
            expires_at=expires_at,
        )
        self.session.add(notification)
        await self.session.commit()
        await self.session.refresh(notification)
        return notification

    async def get_notifications_by_user(
        self,
        user_id: int,
        skip: int = 0,
        limit: int = 20,
        notification_type: Optional[str] = None,
        read: Optional[bool] = None,
    ) -> Tuple[List[Notification], int]:
        """Live (unexpired) notifications for a user, newest first, with total count"""
        query = select(Notification).where(
            Notification.user_id == user_id, Notification.expires_at > utc_now()
        )
        if notification_type:
            query = query.where(Notification.type == notification_type)
        if read is not None:
            query = query.where(Notification.read.is_(read))

        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.session.execute(count_query)).scalar() or 0

        query = (
            query.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(skip)
            .limit(limit)
        )
        result = await self.session.execute(query)
        return list(result.scalars().all()), total

    async def count_unread(self, user_id: int) -> int:
        query = select(func.count(Notification.id)).where(
            Notification.user_id == user_id,
            Notification.read.is_(False),
            Notification.expires_at > utc_now(),
        )
        result = await self.session.execute(query)
        return result.scalar() or 0

    async def mark_as_read(self, user_id: int, notification_ids: Sequence[int]) -> int:
        stmt = (
            update(Notification)
            .where(
                Notification.user_id == user_id,
                Notification.id.in_(list(notification_ids)),
                Notification.read.is_(False),
            )
            .values(read=True, read_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        return result.rowcount

    async def mark_all_as_read(self, user_id: int) -> int:
        stmt = (
            update(Notification)
            .where(Notification.user_id == user_id, Notification.read.is_(False))
            .values(read=True, read_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        return result.rowcount

    async def delete_notification(self, user_id: int, notification_id: int) -> bool:
        stmt = delete(Notification).where(
            Notification.id == notification_id, Notification.user_id == user_id
        )
        result = await self.session.execute(stmt)
        await self.session.commit()
        return result.rowcount > 0

    async def delete_expired(self, now: Optional[datetime] = None) -> int:
        stmt = delete(Notification).where(Notification.expires_at <= (now or utc_now()))
        result = await self.session.execute(stmt)
        await self.session.commit()
        return result.rowcount

    async def get_notification_count_by_type(self) -> Dict[str, Dict[str, int]]:
        """Totals and unread counts per notification type"""
        query = (
            select(
                Notification.type,
                func.count(Notification.id).label("count"),
                func.sum(case((Notification.read.is_(False), 1), else_=0)),
            )
            .where(Notification.expires_at > utc_now())
            .group_by(Notification.type)
        )
        result = await self.session.execute(query)
        return {
            row[0]: {"count": row[1], "unread": int(row[2] or 0)} for row in result.all()
        }
