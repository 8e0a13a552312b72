from datetime import datetime
from typing import List, Optional
import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from procurement.database import get_db
from procurement.errors import NotFoundError
from procurement.middleware.auth import get_current_user
from procurement.models.notification import AppNotification
from procurement.schemas.common import iso
from procurement.schemas.notification import MarkAllReadResponse, NotificationResponse

logger = structlog.get_logger()
router = APIRouter()


def _to_response(row: AppNotification) -> NotificationResponse:
    return NotificationResponse(
        id=str(row.id),
        type=row.type.value,
        title=row.title,
        content=row.content,
        link=row.link,
        is_read=row.is_read,
        read_at=iso(row.read_at) or None,
        created_at=iso(row.created_at),
    )


@router.get("", response_model=List[NotificationResponse])
async def list_notifications(
    is_read: Optional[bool] = Query(None),
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Fetch the 50 most recent notifications for the logged-in user."""
    q = select(AppNotification).where(
        AppNotification.user_id == uuid.UUID(current_user["user_id"])
    )
    if is_read is not None:
        q = q.where(AppNotification.is_read == is_read)
    q = q.order_by(AppNotification.created_at.desc()).limit(50)
    result = await db.execute(q)
    return [_to_response(row) for row in result.scalars().all()]


@router.patch("/read-all", response_model=MarkAllReadResponse)
async def mark_all_read(
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await db.execute(
        update(AppNotification)
        .where(
            AppNotification.user_id == uuid.UUID(current_user["user_id"]),
            AppNotification.is_read == False,  # noqa: E712
        )
        .values(is_read=True, read_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    logger.info("notifications_marked_read", user_id=current_user["user_id"], count=result.rowcount)
    return MarkAllReadResponse(updated=result.rowcount or 0)


@router.patch("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: uuid.UUID,
    current_user: dict = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Mark a specific notification as read."""
    result = await db.execute(
        select(AppNotification).where(
            AppNotification.id == notification_id,
            AppNotification.user_id == uuid.UUID(current_user["user_id"]),
        )
    )
    noti = result.scalar_one_or_none()
    if not noti:
        raise NotFoundError("Notification not found")

    if not noti.is_read:
        noti.is_read = True
        noti.read_at = datetime.utcnow()
        await db.commit()
    return _to_response(noti)
