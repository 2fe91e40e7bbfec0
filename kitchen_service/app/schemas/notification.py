from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    type: str
    title: str
    message: str
    data: Dict[str, Any] = {}
    read: bool
    read_at: Optional[datetime] = None
    priority: str
    created_at: datetime
    expires_at: datetime


class NotificationListResponse(BaseModel):
    notifications: List[NotificationResponse]
    total: int
    unread_count: int
    skip: int
    limit: int
    message: str


class MarkReadRequest(BaseModel):
    notification_ids: List[int] = Field(..., min_length=1, max_length=100)


class NotificationUpdateResponse(BaseModel):
    updated: int
    unread_count: int
    message: str


class UnreadCountResponse(BaseModel):
    unread_count: int


class NotificationStatsResponse(BaseModel):
    total: int
    unread: int
    by_type: Dict[str, Dict[str, int]]
    message: str
