"""Notification Pydantic schemas."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel


class NotificationOut(BaseModel):
    id: int
    message: str
    link: Optional[str] = None
    is_read: bool
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class NotificationFeed(BaseModel):
    unread_count: int
    notifications: List[NotificationOut]
