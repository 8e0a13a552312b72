"""
In-app notification service.

Rows are written after the business change has been committed and are
committed on their own; any failure is logged and swallowed so the caller's
workflow never aborts because of a notification. A copy can be forwarded to
the chat webhook via BackgroundTasks (fire-and-forget).
"""

from typing import Iterable, Optional
import uuid

from fastapi import BackgroundTasks
from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from procurement.models.notification import AppNotification
from procurement.models.status import NotificationType, UserRole, UserStatus
from procurement.models.user import User
from procurement.services.chat_webhook_service import send_chat_message

logger = structlog.get_logger()

MAX_TITLE_LENGTH = 255
MAX_CONTENT_LENGTH = 5000


def format_amount(cents: int) -> str:
    """Convert cents to display string (e.g. 500000 → '5,000.00')."""
    return f"{cents / 100:,.2f}"


def truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def _dedupe(user_ids: Iterable) -> list[uuid.UUID]:
    seen: list[uuid.UUID] = []
    for user_id in user_ids:
        if user_id is None:
            continue
        if not isinstance(user_id, uuid.UUID):
            user_id = uuid.UUID(str(user_id))
        if user_id not in seen:
            seen.append(user_id)
    return seen


async def quote_submission_recipients(
    session: AsyncSession, buyer_id: uuid.UUID, store_id: Optional[uuid.UUID]
) -> list[uuid.UUID]:
    """ACTIVE store users of the RFQ's store, the buyer, and ACTIVE admins."""
    conditions = [User.role == UserRole.ADMIN]
    if store_id is not None:
        conditions.append((User.role == UserRole.STORE) & (User.store_id == store_id))
    result = await session.execute(
        select(User.id).where(User.status == UserStatus.ACTIVE, or_(*conditions))
    )
    store_and_admins = [row[0] for row in result.all()]
    return _dedupe([*store_and_admins, buyer_id])


async def active_user_ids(session: AsyncSession, *roles: UserRole) -> list[uuid.UUID]:
    result = await session.execute(
        select(User.id).where(User.status == UserStatus.ACTIVE, User.role.in_(roles))
    )
    return [row[0] for row in result.all()]


async def notify_users(
    session: AsyncSession,
    user_ids: Iterable,
    notification_type: NotificationType,
    title: str,
    content: str,
    link: Optional[str] = None,
    background_tasks: Optional[BackgroundTasks] = None,
) -> int:
    """
    Persist one notification per distinct recipient and commit.

    Returns the number of notifications written (0 on failure).
    """
    title = truncate(title, MAX_TITLE_LENGTH)
    content = truncate(content, MAX_CONTENT_LENGTH)

    try:
        recipients = _dedupe(user_ids)
        if not recipients:
            logger.info("notification_no_recipients", type=notification_type.value)
            return 0
        for user_id in recipients:
            session.add(
                AppNotification(
                    user_id=user_id,
                    type=notification_type,
                    title=title,
                    content=content,
                    link=link,
                )
            )
        await session.commit()
    except Exception as exc:
        await session.rollback()
        logger.warning(
            "notification_failed",
            type=notification_type.value,
            title=title,
            error=str(exc),
        )
        return 0

    logger.info(
        "notification_sent",
        type=notification_type.value,
        recipients=len(recipients),
    )
    if background_tasks is not None:
        background_tasks.add_task(send_chat_message, title, content)
    return len(recipients)
