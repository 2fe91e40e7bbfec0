from typing import Optional

from fastapi import APIRouter, Query, status

from ...schemas.notification import (
    MarkReadRequest,
    NotificationListResponse,
    NotificationStatsResponse,
    NotificationUpdateResponse,
    UnreadCountResponse,
)
from ...services.notification_service import NotificationService
from ..deps import AdminUserDep, CurrentUserIdDep, NotificationServiceDep

router = APIRouter(prefix="/notifications")


@router.get("", status_code=status.HTTP_200_OK)
async def list_notifications(
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=50),
    notification_type: Optional[str] = Query(None, alias="type"),
    read: Optional[bool] = Query(None),
    user_id: int = CurrentUserIdDep,
    notification_service: NotificationService = NotificationServiceDep,
) -> NotificationListResponse:
    result = await notification_service.list_notifications(
        user_id,
        skip=skip,
        limit=limit,
        notification_type=notification_type,
        read=read,
    )
    return NotificationListResponse(
        **result, message=f"Retrieved {len(result['notifications'])} notifications"
    )


@router.get("/unread-count", status_code=status.HTTP_200_OK)
async def unread_count(
    user_id: int = CurrentUserIdDep,
    notification_service: NotificationService = NotificationServiceDep,
) -> UnreadCountResponse:
    count = await notification_service.get_unread_count(user_id)
    return UnreadCountResponse(unread_count=count)


@router.put("/mark-read", status_code=status.HTTP_200_OK)
async def mark_read(
    payload: MarkReadRequest,
    user_id: int = CurrentUserIdDep,
    notification_service: NotificationService = NotificationServiceDep,
) -> NotificationUpdateResponse:
    result = await notification_service.mark_as_read(user_id, payload.notification_ids)
    return NotificationUpdateResponse(
        **result, message=f"{result['updated']} notifications marked as read"
    )


@router.put("/mark-all-read", status_code=status.HTTP_200_OK)
async def mark_all_read(
    user_id: int = CurrentUserIdDep,
    notification_service: NotificationService = NotificationServiceDep,
) -> NotificationUpdateResponse:
    result = await notification_service.mark_all_as_read(user_id)
    return NotificationUpdateResponse(
        **result, message="All notifications marked as read"
    )


@router.get("/stats", status_code=status.HTTP_200_OK)
async def notification_stats(
    admin: dict = AdminUserDep,
    notification_service: NotificationService = NotificationServiceDep,
) -> NotificationStatsResponse:
    stats = await notification_service.get_statistics()
    return NotificationStatsResponse(**stats, message="Notification statistics")


@router.delete("/{notification_id}", status_code=status.HTTP_200_OK)
async def delete_notification(
    notification_id: int,
    user_id: int = CurrentUserIdDep,
    notification_service: NotificationService = NotificationServiceDep,
) -> NotificationUpdateResponse:
    unread = await notification_service.delete_notification(user_id, notification_id)
    return NotificationUpdateResponse(
        updated=1, unread_count=unread, message="Notification deleted"
    )
