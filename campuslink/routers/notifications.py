"""Notifications router — fetch, read, and mark-all-read."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import desc, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from campuslink.database import get_db
from campuslink.models.notification import Notification
from campuslink.models.user import User
from campuslink.routers.auth import require_user
from campuslink.schemas.notification import NotificationFeed, NotificationOut

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=NotificationFeed)
async def get_notifications(
    current_user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    """Return last 20 notifications + unread count for the current user."""
    count_result = await db.execute(
        select(func.count(Notification.id)).where(
            Notification.user_id == current_user.id,
            Notification.is_read.is_(False),
        )
    )
    unread_count = count_result.scalar() or 0

    result = await db.execute(
        select(Notification)
        .where(Notification.user_id == current_user.id)
        .order_by(desc(Notification.created_at), desc(Notification.id))
        .limit(20)
    )
    return {"unread_count": unread_count, "notifications": result.scalars().all()}


@router.post("/read/{notif_id}", response_model=NotificationOut)
async def mark_read(
    notif_id: int,
    current_user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    """Mark a single notification as read."""
    result = await db.execute(
        select(Notification).where(
            Notification.id == notif_id,
            Notification.user_id == current_user.id,
        )
    )
    notif = result.scalar_one_or_none()
    if not notif:
        raise HTTPException(status_code=404, detail="Notification not found")

    notif.is_read = True
    await db.commit()
    return notif


@router.post("/read-all")
async def mark_all_read(
    current_user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    """Mark all notifications as read for the current user."""
    await db.execute(
        update(Notification)
        .where(
            Notification.user_id == current_user.id,
            Notification.is_read.is_(False),
        )
        .values(is_read=True)
    )
    await db.commit()
    return {"ok": True}
